from __future__ import annotations

from transfer_metrics.client_catalog import ClientCatalog
from transfer_metrics.services.aggregation import Bucket
from transfer_metrics.services.range_stats import PeakResult, RangeTotals


def _round(value: float) -> int:
    # Half-up rounding, matching what the dashboard charts expect
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def format_buckets(buckets: list[Bucket], catalog: ClientCatalog) -> list[dict]:
    """Fold per-client-type bucket values into network-category and combined fields."""
    categories = catalog.network_categories
    formatted = []
    for bucket in buckets:
        up = dict.fromkeys(categories, 0.0)
        down = dict.fromkeys(categories, 0.0)
        up_delta = dict.fromkeys(categories, 0)
        down_delta = dict.fromkeys(categories, 0)

        for client_type, values in bucket.client_types.items():
            descriptor = catalog.find(client_type)
            if descriptor is None:
                continue
            nt = descriptor.network_category
            up[nt] += values.avg_upload_speed
            down[nt] += values.avg_download_speed
            up_delta[nt] += values.uploaded_delta
            down_delta[nt] += values.downloaded_delta

        row: dict = {"timestamp": bucket.bucket_start}
        for nt in categories:
            row[f"{nt}UploadSpeed"] = _round(up[nt])
            row[f"{nt}DownloadSpeed"] = _round(down[nt])
            row[f"{nt}UploadedDelta"] = up_delta[nt]
            row[f"{nt}DownloadedDelta"] = down_delta[nt]
        row["uploadSpeed"] = _round(sum(up.values()))
        row["downloadSpeed"] = _round(sum(down.values()))
        row["uploadedDelta"] = sum(up_delta.values())
        row["downloadedDelta"] = sum(down_delta.values())
        formatted.append(row)
    return formatted


def build_stats(
    range_label: str, totals: RangeTotals, peaks: PeakResult, catalog: ClientCatalog
) -> dict | None:
    """Totals, average and peak speeds per network category and combined.

    Averages are spread over the span actually covered by samples. Returns
    None when the range holds no samples at all.
    """
    if totals.first_timestamp is None or totals.last_timestamp is None:
        return None

    seconds = (totals.last_timestamp - totals.first_timestamp) / 1000

    def avg(total: int) -> int:
        return _round(total / seconds) if seconds > 0 else 0

    result: dict = {"range": range_label}
    total_up = 0
    total_down = 0
    for nt in catalog.network_categories:
        t = totals.categories.get(nt)
        up = t.up if t else 0
        down = t.down if t else 0
        total_up += up
        total_down += down
        p = peaks.categories.get(nt)
        result[nt] = {
            "totalUploaded": up,
            "totalDownloaded": down,
            "avgUploadSpeed": avg(up),
            "avgDownloadSpeed": avg(down),
            "peakUploadSpeed": p.peak_upload_speed if p else 0,
            "peakDownloadSpeed": p.peak_download_speed if p else 0,
        }

    result["totalUploaded"] = total_up
    result["totalDownloaded"] = total_down
    result["avgUploadSpeed"] = avg(total_up)
    result["avgDownloadSpeed"] = avg(total_down)
    result["peakUploadSpeed"] = peaks.peak_upload_speed
    result["peakDownloadSpeed"] = peaks.peak_download_speed
    return result
