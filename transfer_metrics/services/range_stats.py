from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session

from transfer_metrics.client_catalog import ClientCatalog
from transfer_metrics.models.sample import Sample
from transfer_metrics.services.aggregation import sample_filters

log = logging.getLogger(__name__)


@dataclass
class TransferTotals:
    up: int = 0
    down: int = 0


@dataclass
class RangeTotals:
    first_timestamp: int | None = None
    last_timestamp: int | None = None
    categories: dict[str, TransferTotals] = field(default_factory=dict)


@dataclass
class PeakSpeeds:
    peak_upload_speed: int = 0
    peak_download_speed: int = 0


@dataclass
class PeakResult:
    peak_upload_speed: int = 0
    peak_download_speed: int = 0
    categories: dict[str, PeakSpeeds] = field(default_factory=dict)


def _edge_samples(db: Session, filters, edge) -> dict[str, Sample]:
    """Earliest (edge=func.min) or latest (edge=func.max) sample per instance."""
    edges = (
        select(Sample.instance_id, edge(Sample.timestamp).label("edge_ts"))
        .where(*filters)
        .group_by(Sample.instance_id)
        .subquery()
    )
    stmt = select(Sample).join(
        edges,
        and_(Sample.instance_id == edges.c.instance_id, Sample.timestamp == edges.c.edge_ts),
    )
    return {s.instance_id: s for s in db.execute(stmt).scalars().all()}


def get_totals(
    db: Session,
    catalog: ClientCatalog,
    start_time: int,
    end_time: int,
    instance_ids: list[str] | None = None,
) -> RangeTotals:
    """Net bytes per network category between each instance's first and last sample."""
    result = RangeTotals(categories={nt: TransferTotals() for nt in catalog.network_categories})

    filters = sample_filters(start_time, end_time, instance_ids)
    first = _edge_samples(db, filters, func.min)
    last = _edge_samples(db, filters, func.max)

    for instance_id, first_sample in first.items():
        last_sample = last.get(instance_id)
        if last_sample is None:
            continue

        descriptor = catalog.find(first_sample.client_type)
        if descriptor is None:
            log.debug(f"Skipping {instance_id}: unknown client type {first_sample.client_type}")
            continue

        if result.first_timestamp is None or first_sample.timestamp < result.first_timestamp:
            result.first_timestamp = first_sample.timestamp
        if result.last_timestamp is None or last_sample.timestamp > result.last_timestamp:
            result.last_timestamp = last_sample.timestamp

        totals = result.categories[descriptor.network_category]
        # Clamped: a counter that went backwards contributes nothing
        totals.up += max(0, (last_sample.total_uploaded or 0) - (first_sample.total_uploaded or 0))
        totals.down += max(
            0, (last_sample.total_downloaded or 0) - (first_sample.total_downloaded or 0)
        )

    return result


def get_peak_speeds(
    db: Session,
    catalog: ClientCatalog,
    start_time: int,
    end_time: int,
    instance_ids: list[str] | None = None,
) -> PeakResult:
    """Highest combined instantaneous speed seen at any single timestamp in the range."""
    categories = catalog.network_categories
    known = catalog.client_types
    if not known:
        return PeakResult()

    def summed(column, client_types: list[str], label: str):
        return func.sum(case((Sample.client_type.in_(client_types), column), else_=0)).label(label)

    per_ts_cols = [
        summed(Sample.upload_speed, known, "all_up"),
        summed(Sample.download_speed, known, "all_down"),
    ]
    for j, nt in enumerate(categories):
        types = catalog.types_in_category(nt)
        per_ts_cols += [
            summed(Sample.upload_speed, types, f"c{j}_up"),
            summed(Sample.download_speed, types, f"c{j}_down"),
        ]

    per_ts = (
        select(*per_ts_cols)
        .where(*sample_filters(start_time, end_time, instance_ids))
        .group_by(Sample.timestamp)
        .subquery()
    )
    stmt = select(*[func.max(col).label(col.name) for col in per_ts.c])
    peaks = db.execute(stmt).one()._mapping

    def peak(name: str) -> int:
        return int(peaks[name] or 0)

    return PeakResult(
        peak_upload_speed=peak("all_up"),
        peak_download_speed=peak("all_down"),
        categories={
            nt: PeakSpeeds(
                peak_upload_speed=peak(f"c{j}_up"),
                peak_download_speed=peak(f"c{j}_down"),
            )
            for j, nt in enumerate(categories)
        },
    )
