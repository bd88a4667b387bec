from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]
from sqlalchemy.exc import SQLAlchemyError

from transfer_metrics.db.session import SessionLocal
from transfer_metrics.services.retention import run_retention_job
from transfer_metrics.settings import get_settings

log = logging.getLogger(__name__)

_scheduler: BackgroundScheduler | None = None


def retention_job() -> None:
    db = SessionLocal()
    try:
        result = run_retention_job(db)
        log.info(f"Retention job completed: {result}")
    except SQLAlchemyError as e:
        log.error(f"Retention job failed: {e}")
        db.rollback()
    finally:
        db.close()


def start_scheduler() -> None:
    global _scheduler

    if _scheduler is not None:
        return

    settings = get_settings()
    _scheduler = BackgroundScheduler(timezone="UTC")

    _scheduler.add_job(
        retention_job,
        CronTrigger(hour=str(settings.cleanup_hour), minute="0"),
        id="retention",
        name="Cleanup old samples",
        replace_existing=True,
    )

    _scheduler.start()
    log.info("Background scheduler started")


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("Background scheduler stopped")


def is_running() -> bool:
    return _scheduler is not None
