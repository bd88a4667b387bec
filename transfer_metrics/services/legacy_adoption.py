"""Hand over data recorded before instances had their own ids.

Older databases stored samples with ``instance_id == client_type`` and kept
restart-tracking state under client-type prefixed keys (``rt_pid`` ...).
Once the instance registry is known at startup, the first registered
instance of each client type takes over those rows and keys.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import cast

from sqlalchemy import and_, delete, exists, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from transfer_metrics.client_catalog import ClientCatalog
from transfer_metrics.models.metadata_entry import delete_metadata, get_metadata, set_metadata
from transfer_metrics.models.sample import Sample
from transfer_metrics.services.counter_corrector import RESTART_STATE_FIELDS, restart_state_key

log = logging.getLogger(__name__)


@dataclass
class RegisteredInstance:
    instance_id: str
    client_type: str
    network_category: str | None = None


@dataclass
class AdoptionReport:
    # client_type -> instance_id that adopted it
    adopted: dict[str, str] = field(default_factory=dict)
    rows_adopted: int = 0
    rows_dropped: int = 0
    metadata_keys_migrated: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.rows_adopted or self.rows_dropped or self.metadata_keys_migrated)


def _adopt_rows(db: Session, client_type: str, instance_id: str) -> tuple[int, int]:
    existing = aliased(Sample)
    placeholder = and_(Sample.client_type == client_type, Sample.instance_id == client_type)
    collides = exists().where(
        existing.instance_id == instance_id, existing.timestamp == Sample.timestamp
    )

    adopted = cast(
        CursorResult,
        db.execute(
            update(Sample)
            .where(placeholder, ~collides)
            .values(instance_id=instance_id)
            .execution_options(synchronize_session=False)
        ),
    ).rowcount or 0

    # Whatever is left shares a timestamp with a real row; the real row wins
    dropped = cast(
        CursorResult,
        db.execute(delete(Sample).where(placeholder).execution_options(synchronize_session=False)),
    ).rowcount or 0

    return adopted, dropped


def _migrate_restart_keys(db: Session, legacy_prefix: str, instance_id: str) -> int:
    migrated = 0
    for suffix in RESTART_STATE_FIELDS:
        old_key = f"{legacy_prefix}{suffix}"
        new_key = restart_state_key(instance_id, suffix)
        value = get_metadata(db, old_key)
        if value is not None and get_metadata(db, new_key) is None:
            set_metadata(db, new_key, value)
            migrated += 1
        delete_metadata(db, old_key)
    return migrated


def adopt_legacy(
    db: Session, catalog: ClientCatalog, registered: list[RegisteredInstance]
) -> AdoptionReport:
    """Reassign placeholder rows and restart state to real instance ids.

    Idempotent; runs as a single transaction.
    """
    report = AdoptionReport()
    try:
        for inst in registered:
            descriptor = catalog.find(inst.client_type)
            if (
                descriptor is not None
                and inst.network_category is not None
                and inst.network_category != descriptor.network_category
            ):
                log.warning(
                    f"{inst.instance_id}: registry says network {inst.network_category}, "
                    f"grouping under {descriptor.network_category}"
                )

            if inst.client_type in report.adopted:
                continue
            report.adopted[inst.client_type] = inst.instance_id

            # An instance registered under the bare type name already owns its rows
            if inst.instance_id != inst.client_type:
                adopted, dropped = _adopt_rows(db, inst.client_type, inst.instance_id)
            else:
                adopted, dropped = 0, 0
            report.rows_adopted += adopted
            report.rows_dropped += dropped
            if adopted:
                log.info(f"Adopted {adopted} legacy {inst.client_type} samples -> {inst.instance_id}")
            if dropped:
                log.warning(
                    f"Dropped {dropped} legacy {inst.client_type} samples already recorded "
                    f"for {inst.instance_id}"
                )

            if catalog.tracks_pid(inst.client_type):
                prefix = catalog.get(inst.client_type).legacy_prefix
                migrated = _migrate_restart_keys(db, prefix, inst.instance_id)
                report.metadata_keys_migrated += migrated
                if migrated:
                    log.info(
                        f"Migrated {migrated} legacy restart-tracking keys for "
                        f"{inst.client_type} -> {inst.instance_id}"
                    )

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    return report

