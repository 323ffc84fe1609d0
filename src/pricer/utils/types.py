from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Literal, Optional, TypedDict, get_args

# ---- signal domain ----

SignalType = Literal["demand_surge", "competitor_price", "stock_drop", "stock_increase"]
SignalSource = Literal["manual", "cron", "debug"]
Decision = Literal["increase", "decrease", "hold"]

SIGNAL_TYPES: tuple[str, ...] = get_args(SignalType)
SIGNAL_SOURCES: tuple[str, ...] = get_args(SignalSource)
DECISIONS: tuple[str, ...] = get_args(Decision)

# sources a human triggered; these are never silently dropped while fresh
HUMAN_SOURCES: tuple[str, ...] = ("manual", "debug")


@dataclass(slots=True, frozen=True)
class MarketSignal:
    type: str
    value: float
    timestamp: str          # ISO-8601, UTC
    source: str = "manual"
    reason: Optional[str] = None

    @property
    def dedupe_key(self) -> str:
        return f"{self.type}:{self.value!r}:{self.timestamp}:{self.source}"

    @property
    def human_triggered(self) -> bool:
        return self.source in HUMAN_SOURCES

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if d["reason"] is None:
            d.pop("reason")
        return d


@dataclass(slots=True)
class PricingState:
    """Singleton pricing record. Written as one unit by the decision engine."""
    current_price: float
    last_pricing_ts: float = 0.0
    last_decision: str = "hold"
    last_reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PricingState":
        return cls(
            current_price=d["current_price"],
            last_pricing_ts=float(d.get("last_pricing_ts") or 0.0),
            last_decision=str(d.get("last_decision") or "hold"),
            last_reason=str(d.get("last_reason") or ""),
        )


class RawViewEvent(TypedDict, total=False):
    item_id: str
    user_id: Optional[str]
    ts: str                 # ISO-8601


# ---- publication ----

class PriceRecord(TypedDict, total=False):
    type: Literal["signal", "decision"]
    price: float
    previous_price: float
    competitor_price: Optional[float]
    stock_level: Optional[float]
    velocity: Optional[float]         # demand level
    reason: str
    decision: str
    signal_type: str
    signal_value: float
    timestamp: str
