from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.orm import Session

from transfer_metrics.models.sample import Sample

if TYPE_CHECKING:
    from transfer_metrics.services.counter_corrector import CorrectedSample

log = logging.getLogger(__name__)

_VALUE_COLUMNS = (
    "client_type",
    "upload_speed",
    "download_speed",
    "total_uploaded",
    "total_downloaded",
)


def _upsert_statement(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(Sample)
    if dialect == "sqlite":
        return sqlite_insert(Sample)
    raise RuntimeError(f"Unsupported database dialect for sample upsert: {dialect}")


def write_samples(db: Session, timestamp: int, samples: list[CorrectedSample]) -> int:
    """Upsert one row per sample keyed by (timestamp, instance_id).

    Re-writing the same tick overwrites the earlier rows. Does not commit.
    """
    if not samples:
        return 0

    rows = {
        s.instance_id: {
            "timestamp": timestamp,
            "instance_id": s.instance_id,
            "client_type": s.client_type,
            "upload_speed": s.upload_speed,
            "download_speed": s.download_speed,
            "total_uploaded": s.upload_total,
            "total_downloaded": s.download_total,
        }
        for s in samples
    }

    stmt = _upsert_statement(db).values(list(rows.values()))
    stmt = stmt.on_conflict_do_update(
        index_elements=["timestamp", "instance_id"],
        set_={col: stmt.excluded[col] for col in _VALUE_COLUMNS},
    )
    db.execute(stmt)
    return len(rows)


def delete_older_than(db: Session, cutoff: int) -> int:
    """Delete samples with timestamp < cutoff (ms). Commits."""
    result = cast(CursorResult, db.execute(delete(Sample).where(Sample.timestamp < cutoff)))
    db.commit()
    return result.rowcount or 0
