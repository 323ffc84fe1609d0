from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Literal

from pricer.config import PricingConfig
from pricer.utils.types import MarketSignal

StockStatus = Literal["low", "normal", "high"]


def classify_stock(level: float, cfg: PricingConfig) -> StockStatus:
    if level < cfg.low_stock:
        return "low"
    if level > cfg.high_stock:
        return "high"
    return "normal"


@dataclass(slots=True)
class PricingContext:
    """Everything the oracle (or the fallback) may look at for one signal."""
    current_price: float
    base_price: float
    min_price: float
    max_price: float
    max_change_pct: float
    min_margin: float
    competitor_price: float
    competitor_delta: float          # competitor - ours
    competitor_delta_pct: float      # relative to ours
    stock_level: float
    stock_status: StockStatus
    demand_level: float
    signal_type: str
    signal_value: float
    signal_source: str
    signal_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def apply_signal(signal: MarketSignal, competitor: float, stock: float, demand: float) -> tuple[float, float, float]:
    """Fold the incoming signal into (competitor, stock, demand)."""
    if signal.type == "competitor_price":
        competitor = signal.value
    elif signal.type in ("stock_drop", "stock_increase"):
        stock = signal.value
    elif signal.type == "demand_surge":
        demand = signal.value
    return competitor, stock, demand


def build_context(
    signal: MarketSignal,
    *,
    current_price: float,
    competitor_price: float,
    stock_level: float,
    demand_level: float,
    cfg: PricingConfig,
) -> PricingContext:
    delta = competitor_price - current_price
    delta_pct = delta / current_price if current_price else 0.0
    return PricingContext(
        current_price=round(current_price, 2),
        base_price=cfg.floor,
        min_price=cfg.min_price,
        max_price=cfg.max_price,
        max_change_pct=cfg.max_change_pct,
        min_margin=cfg.min_margin,
        competitor_price=round(competitor_price, 2),
        competitor_delta=round(delta, 2),
        competitor_delta_pct=round(delta_pct, 4),
        stock_level=stock_level,
        stock_status=classify_stock(stock_level, cfg),
        demand_level=demand_level,
        signal_type=signal.type,
        signal_value=signal.value,
        signal_source=signal.source,
        signal_reason=signal.reason,
    )
