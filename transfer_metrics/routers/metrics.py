from __future__ import annotations

import logging
from typing import Any, Callable, cast

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from transfer_metrics.client_catalog import ClientCatalog, get_catalog
from transfer_metrics.db.session import get_db
from transfer_metrics.services.aggregation import BucketAggregator
from transfer_metrics.services.counter_corrector import RawSample, record_tick
from transfer_metrics.services.legacy_adoption import RegisteredInstance, adopt_legacy
from transfer_metrics.services.presentation import build_stats, format_buckets
from transfer_metrics.services.range_stats import get_peak_speeds, get_totals
from transfer_metrics.services.retention import cleanup_old_samples
from transfer_metrics.time_ranges import (
    VALID_RANGES,
    TimeRange,
    is_valid_range,
    now_ms,
    parse_time_range,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/metrics", tags=["metrics"])

# nginx convention for "client closed request"
CLIENT_CLOSED_REQUEST = 499


class ClientGone(Exception):
    pass


def _parse_range(range_label: str) -> TimeRange:
    if not is_valid_range(range_label):
        raise HTTPException(
            status_code=400, detail=f"range must be one of: {', '.join(VALID_RANGES)}"
        )
    return cast(TimeRange, parse_time_range(range_label))


def _parse_instance_ids(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    return [i for i in raw.split(",") if i]


async def _query(request: Request, fn: Callable, *args):
    """Run a blocking query off the event loop unless the caller already left."""
    if await request.is_disconnected():
        raise ClientGone()
    return await run_in_threadpool(fn, *args)


async def _history(
    request: Request,
    db: Session,
    catalog: ClientCatalog,
    range_label: str,
    bucket_size: int,
    tr: TimeRange,
    instance_ids: list[str] | None,
) -> dict:
    aggregator = BucketAggregator(catalog)
    buckets = await _query(
        request, aggregator.aggregate, db, tr.start_time, tr.end_time, bucket_size, instance_ids
    )
    return {"range": range_label, "data": format_buckets(buckets, catalog)}


async def _stats(
    request: Request,
    db: Session,
    catalog: ClientCatalog,
    range_label: str,
    tr: TimeRange,
    instance_ids: list[str] | None,
) -> dict | None:
    totals = await _query(request, get_totals, db, catalog, tr.start_time, tr.end_time, instance_ids)
    if totals.first_timestamp is None:
        return None
    peaks = await _query(
        request, get_peak_speeds, db, catalog, tr.start_time, tr.end_time, instance_ids
    )
    return build_stats(range_label, totals, peaks, catalog)


def _aborted(path: str) -> Response:
    log.info(f"Metrics request aborted by client: {path}")
    return Response(status_code=CLIENT_CLOSED_REQUEST)


@router.get("/history")
async def history(
    request: Request,
    range_label: str = Query(default="24h", alias="range"),
    instance_ids: str | None = Query(default=None, alias="instanceIds"),
    db: Session = Depends(get_db),
    catalog: ClientCatalog = Depends(get_catalog),
):
    """Coarse buckets for the data transfer charts."""
    tr = _parse_range(range_label)
    try:
        data = await _history(
            request, db, catalog, range_label, tr.bucket_size, tr, _parse_instance_ids(instance_ids)
        )
    except ClientGone:
        return _aborted(request.url.path)
    return data


@router.get("/speed-history")
async def speed_history(
    request: Request,
    range_label: str = Query(default="24h", alias="range"),
    instance_ids: str | None = Query(default=None, alias="instanceIds"),
    db: Session = Depends(get_db),
    catalog: ClientCatalog = Depends(get_catalog),
):
    """Finer buckets for the speed charts."""
    tr = _parse_range(range_label)
    try:
        data = await _history(
            request,
            db,
            catalog,
            range_label,
            tr.speed_bucket_size,
            tr,
            _parse_instance_ids(instance_ids),
        )
    except ClientGone:
        return _aborted(request.url.path)
    return data


@router.get("/stats")
async def stats(
    request: Request,
    range_label: str = Query(default="24h", alias="range"),
    instance_ids: str | None = Query(default=None, alias="instanceIds"),
    db: Session = Depends(get_db),
    catalog: ClientCatalog = Depends(get_catalog),
):
    tr = _parse_range(range_label)
    try:
        data = await _stats(request, db, catalog, range_label, tr, _parse_instance_ids(instance_ids))
    except ClientGone:
        return _aborted(request.url.path)
    # null body when the range has no samples
    return JSONResponse(content=data)


@router.get("/dashboard")
async def dashboard(
    request: Request,
    range_label: str = Query(default="24h", alias="range"),
    instance_ids: str | None = Query(default=None, alias="instanceIds"),
    db: Session = Depends(get_db),
    catalog: ClientCatalog = Depends(get_catalog),
):
    tr = _parse_range(range_label)
    ids = _parse_instance_ids(instance_ids)
    try:
        speed_data = await _history(
            request, db, catalog, range_label, tr.speed_bucket_size, tr, ids
        )
        historical_data = await _history(request, db, catalog, range_label, tr.bucket_size, tr, ids)
        historical_stats = await _stats(request, db, catalog, range_label, tr, ids)
    except ClientGone:
        return _aborted(request.url.path)

    return {
        "speedData": speed_data,
        "historicalData": historical_data,
        "historicalStats": historical_stats,
    }


class TickSample(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    instance_id: str = Field(alias="instanceId", min_length=1)
    client_type: str = Field(alias="clientType", min_length=1)
    # Left untyped on purpose: malformed numbers are coerced to 0, not rejected
    upload_speed: Any = Field(default=0, alias="uploadSpeed")
    download_speed: Any = Field(default=0, alias="downloadSpeed")
    upload_total: Any = Field(default=0, alias="uploadTotal")
    download_total: Any = Field(default=0, alias="downloadTotal")
    pid: Any = None


class TickRequest(BaseModel):
    timestamp: int | None = None
    samples: list[dict[str, Any]]


@router.post("/ticks")
def ingest_tick(
    payload: TickRequest,
    db: Session = Depends(get_db),
    catalog: ClientCatalog = Depends(get_catalog),
):
    raw: list[RawSample] = []
    for s in payload.samples:
        try:
            parsed = TickSample.model_validate(s)
        except ValidationError as e:
            log.warning(f"Ingest: skipping invalid sample {s!r}: {e.error_count()} errors")
            continue
        raw.append(
            RawSample(
                instance_id=parsed.instance_id,
                client_type=parsed.client_type,
                upload_speed=parsed.upload_speed,
                download_speed=parsed.download_speed,
                upload_total=parsed.upload_total,
                download_total=parsed.download_total,
                pid=parsed.pid,
            )
        )

    timestamp = payload.timestamp if payload.timestamp is not None else now_ms()
    try:
        corrected = record_tick(db, catalog, timestamp, raw)
    except SQLAlchemyError as e:
        raise HTTPException(status_code=503, detail="Metrics storage unavailable") from e

    return {
        "ok": True,
        "timestamp": timestamp,
        "samples": [
            {
                "instanceId": c.instance_id,
                "clientType": c.client_type,
                "uploadSpeed": c.upload_speed,
                "downloadSpeed": c.download_speed,
                "uploadTotal": c.upload_total,
                "downloadTotal": c.download_total,
            }
            for c in corrected
        ],
    }


class AdoptInstance(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    instance_id: str = Field(alias="instanceId", min_length=1)
    client_type: str = Field(alias="clientType", min_length=1)
    network_category: str | None = Field(default=None, alias="networkCategory")


class AdoptRequest(BaseModel):
    instances: list[AdoptInstance]


@router.post("/adopt")
def adopt(
    payload: AdoptRequest,
    db: Session = Depends(get_db),
    catalog: ClientCatalog = Depends(get_catalog),
):
    registered = [
        RegisteredInstance(
            instance_id=i.instance_id,
            client_type=i.client_type,
            network_category=i.network_category,
        )
        for i in payload.instances
    ]
    report = adopt_legacy(db, catalog, registered)
    return {
        "ok": True,
        "adopted": report.adopted,
        "rowsAdopted": report.rows_adopted,
        "rowsDropped": report.rows_dropped,
        "metadataKeysMigrated": report.metadata_keys_migrated,
    }


class CleanupRequest(BaseModel):
    retention_days: int | None = Field(default=None, alias="retentionDays", ge=0)


@router.post("/cleanup")
def cleanup(payload: CleanupRequest, db: Session = Depends(get_db)):
    deleted = cleanup_old_samples(db, payload.retention_days)
    return {"ok": True, "deleted": deleted}


@router.get("/clients")
def clients(catalog: ClientCatalog = Depends(get_catalog)):
    """Known client types, for chart legends and the instance picker."""
    return [
        {
            "clientType": d.client_type,
            "displayName": d.display_name,
            "networkCategory": d.network_category,
            "tracksPid": d.capabilities.tracks_pid,
        }
        for d in catalog
    ]
