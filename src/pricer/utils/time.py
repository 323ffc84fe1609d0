from __future__ import annotations

import time
from datetime import datetime, timezone

def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()

def utc_dt(ts: float | int) -> datetime:
    """Epoch seconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)

def iso_utc(ts: float | int | None = None) -> str:
    """ISO-8601 string with a Z suffix, millisecond precision."""
    dt = utc_dt(utc_now_s() if ts is None else ts)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")

def parse_iso_s(value: str) -> float:
    """
    ISO-8601 -> epoch seconds. Naive timestamps are taken as UTC.
    Raises ValueError on garbage.
    """
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()

def seconds_since(ts_past: float, now: float | None = None) -> float:
    """Non-negative time since past (clamped at 0)."""
    now = utc_now_s() if now is None else now
    return max(0.0, now - ts_past)
