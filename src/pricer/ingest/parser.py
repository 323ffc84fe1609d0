from __future__ import annotations

import math
from typing import Optional

from pricer.errors import SignalValidationError
from pricer.utils.time import iso_utc, parse_iso_s, utc_now_s
from pricer.utils.types import MarketSignal, RawViewEvent, SIGNAL_SOURCES, SIGNAL_TYPES

# legacy source labels still sent by older simulators
_SOURCE_ALIASES = {
    "manual_simulation": "manual",
    "simulate": "manual",
    "debug_api": "debug",
    "ticker": "cron",
}


def _normalize_ts(ts) -> str:
    """Accept ISO strings or epoch s/ms/ns; return ISO-8601 UTC."""
    if ts is None or ts == "":
        return iso_utc()
    if isinstance(ts, bool):
        raise SignalValidationError("timestamp must be ISO-8601 or epoch", timestamp=ts)
    if isinstance(ts, str):
        try:
            return iso_utc(parse_iso_s(ts))
        except ValueError:
            raise SignalValidationError("unparseable timestamp", timestamp=ts) from None
    if isinstance(ts, (int, float)) and math.isfinite(ts):
        if ts > 1e17:  # ns → s
            ts = ts / 1e9
        elif ts > 1e11:  # ms → s
            ts = ts / 1e3
        return iso_utc(ts)
    raise SignalValidationError("timestamp must be ISO-8601 or epoch", timestamp=ts)


def _coerce_value(raw) -> float:
    if isinstance(raw, bool) or raw is None:
        raise SignalValidationError("value must be a number", value=raw)
    try:
        v = float(raw)
    except (TypeError, ValueError):
        raise SignalValidationError("value must be a number", value=raw) from None
    if not math.isfinite(v) or v <= 0:
        raise SignalValidationError("value must be a finite number > 0", value=raw)
    return v


def parse_signal(m: dict, *, default_source: str = "manual") -> MarketSignal:
    """
    Validate an inbound signal payload and return an immutable MarketSignal.

    Accepted shapes (camelCase or snake_case):
      {"type": "competitor_price", "value": 95.0, "reason": "...",
       "timestamp": "2024-02-01T14:32:01Z", "source": "manual"}

    Raises SignalValidationError; a rejected payload never reaches the engine.
    """
    if not isinstance(m, dict):
        raise SignalValidationError("signal payload must be an object")

    typ = m.get("type") or m.get("signalType") or m.get("signal_type")
    if typ not in SIGNAL_TYPES:
        raise SignalValidationError("unknown signal type", type=typ)

    value = _coerce_value(m.get("value"))

    source = str(m.get("source") or default_source)
    source = _SOURCE_ALIASES.get(source, source)
    if source not in SIGNAL_SOURCES:
        raise SignalValidationError("unknown signal source", source=source)

    reason = m.get("reason")
    if reason is not None:
        reason = str(reason).strip() or None

    return MarketSignal(
        type=typ,
        value=value,
        timestamp=_normalize_ts(m.get("timestamp") or m.get("ts")),
        source=source,
        reason=reason,
    )


def parse_view(m: dict, *, now: Optional[float] = None) -> RawViewEvent:
    """Validate a page-view payload: {"itemId": "sku-1", "userId": "u-9"}."""
    if not isinstance(m, dict):
        raise SignalValidationError("view payload must be an object")
    item_id = m.get("itemId") or m.get("item_id")
    if not item_id or not str(item_id).strip():
        raise SignalValidationError("item id is required")
    user_id = m.get("userId") or m.get("user_id")
    ts = m.get("ts") or m.get("timestamp")
    return {
        "item_id": str(item_id).strip(),
        "user_id": str(user_id) if user_id else None,
        "ts": _normalize_ts(ts) if ts else iso_utc(utc_now_s() if now is None else now),
    }
