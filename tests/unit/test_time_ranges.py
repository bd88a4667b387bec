"""Unit tests for time range helpers."""

from transfer_metrics.time_ranges import (
    MS_PER_DAY,
    MS_PER_HOUR,
    MS_PER_MINUTE,
    MS_PER_SECOND,
    TIME_RANGES,
    VALID_RANGES,
    days_to_ms,
    is_valid_range,
    parse_time_range,
)

NOW = 1_700_000_000_000


class TestParseTimeRange:
    def test_24h(self):
        tr = parse_time_range("24h", now=NOW)
        assert tr is not None
        assert tr.end_time == NOW
        assert tr.start_time == NOW - 24 * MS_PER_HOUR
        assert tr.bucket_size == 15 * MS_PER_MINUTE
        assert tr.speed_bucket_size == 30 * MS_PER_SECOND

    def test_7d(self):
        tr = parse_time_range("7d", now=NOW)
        assert tr.start_time == NOW - 7 * MS_PER_DAY
        assert tr.bucket_size == 2 * MS_PER_HOUR
        assert tr.speed_bucket_size == 15 * MS_PER_MINUTE

    def test_30d(self):
        tr = parse_time_range("30d", now=NOW)
        assert tr.start_time == NOW - 30 * MS_PER_DAY
        assert tr.bucket_size == 6 * MS_PER_HOUR
        assert tr.speed_bucket_size == MS_PER_HOUR

    def test_invalid_returns_none(self):
        assert parse_time_range("1y", now=NOW) is None
        assert parse_time_range("", now=NOW) is None

    def test_defaults_to_current_time(self):
        tr = parse_time_range("24h")
        assert tr.end_time - tr.start_time == 24 * MS_PER_HOUR

    def test_transfer_buckets_per_range(self):
        points = {k: c.duration // c.bucket_size for k, c in TIME_RANGES.items()}
        assert points == {"24h": 96, "7d": 84, "30d": 120}


class TestValidation:
    def test_valid_ranges(self):
        assert VALID_RANGES == ["24h", "7d", "30d"]
        assert is_valid_range("7d")
        assert not is_valid_range("7D")


class TestConversions:
    def test_days_to_ms(self):
        assert days_to_ms(1.5) == 36 * MS_PER_HOUR
        assert days_to_ms(30) == 30 * MS_PER_DAY
