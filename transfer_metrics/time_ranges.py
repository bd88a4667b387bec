from __future__ import annotations

import time
from dataclasses import dataclass

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


@dataclass(frozen=True)
class RangeConfig:
    duration: int
    bucket_size: int  # transfer charts
    speed_bucket_size: int  # speed charts, finer grained


@dataclass(frozen=True)
class TimeRange:
    start_time: int
    end_time: int
    bucket_size: int
    speed_bucket_size: int


TIME_RANGES: dict[str, RangeConfig] = {
    # 96 transfer points, 2880 speed points
    "24h": RangeConfig(24 * MS_PER_HOUR, 15 * MS_PER_MINUTE, 30 * MS_PER_SECOND),
    # 84 transfer points
    "7d": RangeConfig(7 * MS_PER_DAY, 2 * MS_PER_HOUR, 15 * MS_PER_MINUTE),
    # 120 transfer points
    "30d": RangeConfig(30 * MS_PER_DAY, 6 * MS_PER_HOUR, MS_PER_HOUR),
}

VALID_RANGES = list(TIME_RANGES)


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_time_range(range_label: str, now: int | None = None) -> TimeRange | None:
    config = TIME_RANGES.get(range_label)
    if config is None:
        return None

    end = now if now is not None else now_ms()
    return TimeRange(
        start_time=end - config.duration,
        end_time=end,
        bucket_size=config.bucket_size,
        speed_bucket_size=config.speed_bucket_size,
    )


def is_valid_range(range_label: str) -> bool:
    return range_label in TIME_RANGES


def days_to_ms(days: float) -> int:
    return int(days * MS_PER_DAY)
