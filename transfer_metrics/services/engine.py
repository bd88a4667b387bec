from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session

from transfer_metrics.client_catalog import DEFAULT_CATALOG, ClientCatalog
from transfer_metrics.services.aggregation import Bucket, BucketAggregator
from transfer_metrics.services.counter_corrector import CorrectedSample, RawSample, record_tick
from transfer_metrics.services.legacy_adoption import (
    AdoptionReport,
    RegisteredInstance,
    adopt_legacy,
)
from transfer_metrics.services.range_stats import (
    PeakResult,
    RangeTotals,
    get_peak_speeds,
    get_totals,
)
from transfer_metrics.services.retention import cleanup_old_samples


class MetricsEngine:
    """Entry point for callers outside a request (ingestion driver, startup, jobs).

    Every call runs in its own session.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        catalog: ClientCatalog | None = None,
    ):
        if session_factory is None:
            from transfer_metrics.db.session import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory
        self.catalog = catalog or DEFAULT_CATALOG
        self.aggregator = BucketAggregator(self.catalog)

    def record_tick(self, timestamp: int, samples: list[RawSample]) -> list[CorrectedSample]:
        db = self.session_factory()
        try:
            return record_tick(db, self.catalog, timestamp, samples)
        finally:
            db.close()

    def aggregate(
        self,
        start_time: int,
        end_time: int,
        bucket_size: int,
        instance_ids: list[str] | None = None,
    ) -> list[Bucket]:
        db = self.session_factory()
        try:
            return self.aggregator.aggregate(db, start_time, end_time, bucket_size, instance_ids)
        finally:
            db.close()

    def get_totals(
        self, start_time: int, end_time: int, instance_ids: list[str] | None = None
    ) -> RangeTotals:
        db = self.session_factory()
        try:
            return get_totals(db, self.catalog, start_time, end_time, instance_ids)
        finally:
            db.close()

    def get_peak_speeds(
        self, start_time: int, end_time: int, instance_ids: list[str] | None = None
    ) -> PeakResult:
        db = self.session_factory()
        try:
            return get_peak_speeds(db, self.catalog, start_time, end_time, instance_ids)
        finally:
            db.close()

    def adopt_legacy(self, registered: list[RegisteredInstance]) -> AdoptionReport:
        db = self.session_factory()
        try:
            return adopt_legacy(db, self.catalog, registered)
        finally:
            db.close()

    def cleanup(self, retention_days: int | None = None) -> int:
        db = self.session_factory()
        try:
            return cleanup_old_samples(db, retention_days)
        finally:
            db.close()
