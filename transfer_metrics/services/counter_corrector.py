"""Restart-safe correction of cumulative transfer counters.

Clients that report a process id (``tracks_pid``) reset their session
totals to zero whenever the process restarts. For those instances the
corrector keeps a per-instance carry-over in the metadata table so the
stored totals keep growing across restarts:

    effective = raw session total + sum of totals of previous sessions

State lives under ``"<instance_id>:<field>"`` keys. A whole tick (samples
and state) is committed as one transaction.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from transfer_metrics.client_catalog import ClientCatalog
from transfer_metrics.models.metadata_entry import get_metadata_int, set_metadata
from transfer_metrics.services.sample_store import write_samples

log = logging.getLogger(__name__)

RESTART_STATE_FIELDS = (
    "pid",
    "accumulated_uploaded",
    "accumulated_downloaded",
    "last_session_uploaded",
    "last_session_downloaded",
)

# Largest value a BIGINT column holds
MAX_COUNT = 2**63 - 1

# One ingestion writer at a time per process
_tick_lock = threading.Lock()


@dataclass
class RawSample:
    instance_id: str
    client_type: str
    upload_speed: Any = 0
    download_speed: Any = 0
    upload_total: Any = 0
    download_total: Any = 0
    pid: Any = None


@dataclass
class CorrectedSample:
    instance_id: str
    client_type: str
    upload_speed: int
    download_speed: int
    upload_total: int
    download_total: int


@dataclass
class RestartState:
    pid: int = 0
    accumulated_uploaded: int = 0
    accumulated_downloaded: int = 0
    last_session_uploaded: int = 0
    last_session_downloaded: int = 0


def restart_state_key(instance_id: str, field: str) -> str:
    return f"{instance_id}:{field}"


def _parse_count(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 <= value <= MAX_COUNT else None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0 or number > MAX_COUNT:
        return None
    return min(int(number), MAX_COUNT)


def coerce_count(value: Any) -> int:
    """Turn a reported counter or speed into a non-negative int.

    Anything unusable (None, NaN, infinities, negatives, values too large
    to store, junk strings) becomes 0.
    """
    if value is None:
        return 0
    parsed = _parse_count(value)
    return parsed if parsed is not None else 0


def _coerce_field(instance_id: str, field: str, value: Any) -> int:
    if value is None:
        return 0
    parsed = _parse_count(value)
    if parsed is None:
        log.warning(f"Malformed {field} for {instance_id}: {value!r}, recording 0")
        return 0
    return parsed


def load_restart_state(db: Session, instance_id: str) -> RestartState:
    values = {f: get_metadata_int(db, restart_state_key(instance_id, f)) for f in RESTART_STATE_FIELDS}
    return RestartState(**values)


def save_restart_state(db: Session, instance_id: str, state: RestartState) -> None:
    for f in RESTART_STATE_FIELDS:
        set_metadata(db, restart_state_key(instance_id, f), str(getattr(state, f)))


def apply_restart_correction(
    state: RestartState, pid: int, raw_up: int, raw_down: int
) -> tuple[RestartState, int, int]:
    """Pure step of the corrector: returns (new_state, effective_up, effective_down).

    The first sample seen (``state.pid == 0``) establishes a baseline and never
    counts as a restart.
    """
    acc_up = state.accumulated_uploaded
    acc_down = state.accumulated_downloaded

    if state.pid > 0 and pid != state.pid:
        # The old process is gone; everything it reported last becomes carry-over
        acc_up += state.last_session_uploaded
        acc_down += state.last_session_downloaded

    new_state = RestartState(
        pid=pid,
        accumulated_uploaded=acc_up,
        accumulated_downloaded=acc_down,
        last_session_uploaded=raw_up,
        last_session_downloaded=raw_down,
    )
    return new_state, raw_up + acc_up, raw_down + acc_down


def correct_sample(db: Session, catalog: ClientCatalog, sample: RawSample) -> CorrectedSample:
    instance_id = sample.instance_id
    upload_speed = _coerce_field(instance_id, "upload_speed", sample.upload_speed)
    download_speed = _coerce_field(instance_id, "download_speed", sample.download_speed)
    total_up = _coerce_field(instance_id, "upload_total", sample.upload_total)
    total_down = _coerce_field(instance_id, "download_total", sample.download_total)

    pid = coerce_count(sample.pid)
    if catalog.tracks_pid(sample.client_type) and pid > 0:
        state = load_restart_state(db, instance_id)
        new_state, total_up, total_down = apply_restart_correction(
            state, pid, total_up, total_down
        )
        if state.pid > 0 and pid != state.pid:
            log.info(f"{instance_id} restart detected (PID: {state.pid} -> {pid})")
            log.info(
                f"{instance_id} accumulated offsets: upload={new_state.accumulated_uploaded}, "
                f"download={new_state.accumulated_downloaded}"
            )
        save_restart_state(db, instance_id, new_state)

    return CorrectedSample(
        instance_id=instance_id,
        client_type=sample.client_type,
        upload_speed=upload_speed,
        download_speed=download_speed,
        # carry-over on top of a huge session total can exceed the column
        upload_total=min(total_up, MAX_COUNT),
        download_total=min(total_down, MAX_COUNT),
    )


def record_tick(
    db: Session, catalog: ClientCatalog, timestamp: int, samples: list[RawSample]
) -> list[CorrectedSample]:
    """Correct and persist one ingestion tick atomically.

    Returns the samples with restart-corrected totals. Storage errors roll
    the whole tick back and propagate to the caller.
    """
    if not samples:
        return []

    with _tick_lock:
        latest: dict[str, RawSample] = {}
        for sample in samples:
            if not sample.instance_id:
                log.warning(f"Skipping {sample.client_type} sample without instance id")
                continue
            if sample.instance_id in latest:
                log.warning(
                    f"Duplicate sample for {sample.instance_id} in tick {timestamp}, keeping last"
                )
            latest[sample.instance_id] = sample

        corrected: list[CorrectedSample] = []
        try:
            for sample in latest.values():
                corrected.append(correct_sample(db, catalog, sample))

            write_samples(db, timestamp, corrected)
            db.commit()
        except SQLAlchemyError as e:
            log.error(f"Failed to record metrics tick {timestamp}: {e}")
            db.rollback()
            raise

    return corrected
