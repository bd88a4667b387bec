"""Unit tests for chart and stats formatting."""

from transfer_metrics.services.aggregation import Bucket, ClientTypeBucket
from transfer_metrics.services.presentation import build_stats, format_buckets
from transfer_metrics.services.range_stats import (
    PeakResult,
    PeakSpeeds,
    RangeTotals,
    TransferTotals,
)


class TestFormatBuckets:
    def test_folds_client_types_into_categories(self, catalog):
        bucket = Bucket(
            bucket_start=900_000,
            client_types={
                "rtorrent": ClientTypeBucket(10.4, 1.0, 100, 10),
                "qbittorrent": ClientTypeBucket(5.2, 2.0, 50, 5),
                "amule": ClientTypeBucket(2.5, 0.0, 7, 1),
            },
        )

        [row] = format_buckets([bucket], catalog)

        assert row["timestamp"] == 900_000
        assert row["bittorrentUploadSpeed"] == 16
        assert row["bittorrentDownloadSpeed"] == 3
        assert row["bittorrentUploadedDelta"] == 150
        assert row["bittorrentDownloadedDelta"] == 15
        assert row["ed2kUploadSpeed"] == 3
        assert row["ed2kUploadedDelta"] == 7
        assert row["uploadSpeed"] == 18
        assert row["uploadedDelta"] == 157
        assert row["downloadedDelta"] == 16

    def test_missing_categories_zero_filled(self, catalog):
        bucket = Bucket(0, {"amule": ClientTypeBucket(1.0, 1.0, 1, 1)})

        [row] = format_buckets([bucket], catalog)

        assert row["bittorrentUploadSpeed"] == 0
        assert row["bittorrentUploadedDelta"] == 0

    def test_unknown_types_skipped(self, catalog):
        bucket = Bucket(0, {"utorrent": ClientTypeBucket(99.0, 99.0, 99, 99)})

        [row] = format_buckets([bucket], catalog)

        assert row["uploadSpeed"] == 0
        assert row["uploadedDelta"] == 0

    def test_empty(self, catalog):
        assert format_buckets([], catalog) == []


class TestBuildStats:
    def test_no_samples_returns_none(self, catalog):
        assert build_stats("24h", RangeTotals(), PeakResult(), catalog) is None

    def test_averages_over_covered_span(self, catalog):
        totals = RangeTotals(
            first_timestamp=0,
            last_timestamp=10_000,
            categories={
                "ed2k": TransferTotals(up=1000, down=500),
                "bittorrent": TransferTotals(up=3000, down=0),
            },
        )
        peaks = PeakResult(
            peak_upload_speed=700,
            peak_download_speed=90,
            categories={
                "ed2k": PeakSpeeds(200, 90),
                "bittorrent": PeakSpeeds(600, 0),
            },
        )

        stats = build_stats("7d", totals, peaks, catalog)

        assert stats["range"] == "7d"
        assert stats["ed2k"] == {
            "totalUploaded": 1000,
            "totalDownloaded": 500,
            "avgUploadSpeed": 100,
            "avgDownloadSpeed": 50,
            "peakUploadSpeed": 200,
            "peakDownloadSpeed": 90,
        }
        assert stats["bittorrent"]["avgUploadSpeed"] == 300
        assert stats["totalUploaded"] == 4000
        assert stats["avgUploadSpeed"] == 400
        assert stats["peakUploadSpeed"] == 700

    def test_single_timestamp_has_zero_average(self, catalog):
        totals = RangeTotals(
            first_timestamp=5000,
            last_timestamp=5000,
            categories={"ed2k": TransferTotals(), "bittorrent": TransferTotals()},
        )

        stats = build_stats("24h", totals, PeakResult(), catalog)

        assert stats["avgUploadSpeed"] == 0
        assert stats["bittorrent"]["peakUploadSpeed"] == 0
