"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Union

SECONDS_PER_DAY = 86400.0

TimestampLike = Union[datetime, str, int, float]


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso_z(value: datetime) -> str:
    """Render an aware (or naive-as-UTC) datetime as ISO-8601 with trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: TimestampLike) -> datetime:
    """
    Coerce a timestamp into an aware UTC datetime.

    Accepts datetimes (naive values are read as UTC), ISO-8601 strings with or
    without a trailing Z, and epoch milliseconds as emitted by browser clients.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, bool):
        raise ValueError(f"unsupported timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parse_timestamp(parsed)
    raise ValueError(f"unsupported timestamp: {value!r}")


def elapsed_days(earlier: datetime, later: datetime) -> float:
    """Signed elapsed time in fractional days; negative when `earlier` is in the future."""
    return (parse_timestamp(later) - parse_timestamp(earlier)).total_seconds() / SECONDS_PER_DAY
