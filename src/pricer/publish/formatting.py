from __future__ import annotations
from datetime import datetime
from zoneinfo import ZoneInfo

from pricer.utils.time import parse_iso_s

_ARROWS = {"increase": "↑", "decrease": "↓", "hold": "→"}

def _fmt_ts(iso: str, tz_name: str) -> str:
    try:
        ts = parse_iso_s(iso)
    except (TypeError, ValueError):
        return iso or "?"
    return datetime.fromtimestamp(ts, ZoneInfo(tz_name)).strftime("%H:%M:%S %Z")

def format_price_pretty(rec: dict, tz_name: str = "UTC") -> str:
    price = float(rec.get("price", 0.0))
    prev = float(rec.get("previous_price", price))
    decision = str(rec.get("decision", "hold"))
    pct = ((price - prev) / prev * 100.0) if prev else 0.0

    parts = [
        f"[PRICE {decision.upper()}] {_fmt_ts(str(rec.get('timestamp', '')), tz_name)}",
        f"{_ARROWS.get(decision, '?')} {prev:.2f} → {price:.2f} ({pct:+.2f}%)",
    ]
    if rec.get("signal_type"):
        parts.append(f"signal={rec['signal_type']}:{float(rec.get('signal_value', 0.0)):g}")
    ctx = []
    if rec.get("competitor_price") is not None:
        ctx.append(f"comp={float(rec['competitor_price']):.2f}")
    if rec.get("stock_level") is not None:
        ctx.append(f"stock={float(rec['stock_level']):g}")
    if rec.get("velocity") is not None:
        ctx.append(f"views/min={float(rec['velocity']):g}")
    if ctx:
        parts.append(" ".join(ctx))
    text = "  |  ".join(parts)
    if rec.get("reason"):
        text += f"\n  {rec['reason']}"
    return text
