"""Time-bucketed aggregation of instance samples.

Two passes over the same filtered rows, both keyed on
``bucket = floor(timestamp / bucket_size) * bucket_size``:

* speeds: sum per client type at each timestamp, then average those sums
  over the timestamps of the bucket;
* transferred bytes: ``max(total) - min(total)`` per instance per bucket,
  then summed per client type. Deltas are taken per instance before summing
  so an instance dropping out of a bucket cannot drag the sum of the others
  down.

A bucket is returned only when both passes produced a row for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import sqlalchemy as sa
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from transfer_metrics.client_catalog import ClientCatalog
from transfer_metrics.models.sample import Sample


@dataclass
class ClientTypeBucket:
    avg_upload_speed: float = 0.0
    avg_download_speed: float = 0.0
    uploaded_delta: int = 0
    downloaded_delta: int = 0


@dataclass
class Bucket:
    bucket_start: int
    client_types: dict[str, ClientTypeBucket] = field(default_factory=dict)


def bucket_start(timestamp: int, bucket_size: int) -> int:
    return (timestamp // bucket_size) * bucket_size


def sample_filters(
    start_time: int, end_time: int, instance_ids: list[str] | None
) -> list[sa.ColumnElement[bool]]:
    """Range (inclusive on both ends) plus optional instance restriction."""
    filters = [Sample.timestamp.between(start_time, end_time)]
    if instance_ids is not None:
        filters.append(Sample.instance_id.in_(instance_ids))
    return filters


def _delta(column):
    # A zero minimum means no real baseline yet in this bucket, not a start from zero
    return case((func.min(column) == 0, 0), else_=func.max(column) - func.min(column))


class BucketAggregator:
    def __init__(self, catalog: ClientCatalog):
        self.catalog = catalog

    def _speed_rows(self, db: Session, bucket_size: int, filters) -> list[sa.Row]:
        types = self.catalog.client_types
        per_type_cols = []
        for i, client_type in enumerate(types):
            is_type = Sample.client_type == client_type
            per_type_cols += [
                func.sum(case((is_type, Sample.upload_speed), else_=0)).label(f"t{i}_up"),
                func.sum(case((is_type, Sample.download_speed), else_=0)).label(f"t{i}_down"),
                func.sum(case((is_type, 1), else_=0)).label(f"t{i}_n"),
            ]

        per_ts = (
            select(
                Sample.timestamp.label("ts"),
                ((Sample.timestamp // bucket_size) * bucket_size).label("bucket"),
                *per_type_cols,
            )
            .where(*filters)
            .group_by(Sample.timestamp)
            .subquery()
        )

        avg_cols = []
        for i in range(len(types)):
            avg_cols += [
                func.avg(per_ts.c[f"t{i}_up"]).label(f"t{i}_up"),
                func.avg(per_ts.c[f"t{i}_down"]).label(f"t{i}_down"),
                func.sum(per_ts.c[f"t{i}_n"]).label(f"t{i}_n"),
            ]

        stmt = (
            select(per_ts.c.bucket, *avg_cols)
            .group_by(per_ts.c.bucket)
            .order_by(per_ts.c.bucket.asc())
        )
        return list(db.execute(stmt).all())

    def _delta_rows(self, db: Session, bucket_size: int, filters) -> list[sa.Row]:
        tagged = (
            select(
                Sample.instance_id,
                Sample.client_type,
                Sample.total_uploaded,
                Sample.total_downloaded,
                ((Sample.timestamp // bucket_size) * bucket_size).label("bucket"),
            )
            .where(*filters)
            .subquery()
        )

        per_instance = (
            select(
                tagged.c.bucket,
                tagged.c.instance_id,
                tagged.c.client_type,
                _delta(tagged.c.total_uploaded).label("up_delta"),
                _delta(tagged.c.total_downloaded).label("down_delta"),
            )
            .group_by(tagged.c.bucket, tagged.c.instance_id, tagged.c.client_type)
            .subquery()
        )

        stmt = select(
            per_instance.c.bucket,
            per_instance.c.client_type,
            func.sum(per_instance.c.up_delta).label("uploaded_delta"),
            func.sum(per_instance.c.down_delta).label("downloaded_delta"),
        ).group_by(per_instance.c.bucket, per_instance.c.client_type)
        return list(db.execute(stmt).all())

    def aggregate(
        self,
        db: Session,
        start_time: int,
        end_time: int,
        bucket_size: int,
        instance_ids: list[str] | None = None,
    ) -> list[Bucket]:
        if bucket_size <= 0:
            raise ValueError(f"bucket_size must be positive, got {bucket_size}")

        types = self.catalog.client_types
        if not types:
            return []
        filters = sample_filters(start_time, end_time, instance_ids)
        filters.append(Sample.client_type.in_(types))

        deltas: dict[tuple[int, str], tuple[int, int]] = {}
        for row in self._delta_rows(db, bucket_size, filters):
            deltas[(int(row.bucket), row.client_type)] = (
                int(row.uploaded_delta or 0),
                int(row.downloaded_delta or 0),
            )
        delta_buckets = {b for b, _ in deltas}

        buckets: list[Bucket] = []
        for row in self._speed_rows(db, bucket_size, filters):
            start = int(row.bucket)
            if start not in delta_buckets:
                continue
            values = row._mapping
            bucket = Bucket(bucket_start=start)
            for i, client_type in enumerate(types):
                if not values[f"t{i}_n"]:
                    continue
                up_delta, down_delta = deltas.get((start, client_type), (0, 0))
                bucket.client_types[client_type] = ClientTypeBucket(
                    avg_upload_speed=float(values[f"t{i}_up"] or 0),
                    avg_download_speed=float(values[f"t{i}_down"] or 0),
                    uploaded_delta=up_delta,
                    downloaded_delta=down_delta,
                )
            buckets.append(bucket)

        return buckets
