from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from transfer_metrics.services.sample_store import delete_older_than
from transfer_metrics.settings import get_settings
from transfer_metrics.time_ranges import days_to_ms, now_ms

log = logging.getLogger(__name__)


def cleanup_old_samples(db: Session, days: int | None = None, now: int | None = None) -> int:
    if days is None:
        days = get_settings().metrics_retention_days

    cutoff = (now if now is not None else now_ms()) - days_to_ms(days)
    deleted = delete_older_than(db, cutoff)
    log.info(f"Retention: deleted {deleted} samples older than {days} days")
    return deleted


def run_retention_job(db: Session) -> dict:
    return {"samples_deleted": cleanup_old_samples(db)}
