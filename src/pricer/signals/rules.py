# src/pricer/signals/rules.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Literal

Direction = Literal["abs", "up", "down"]

@dataclass(slots=True, frozen=True)
class SignificanceRule:
    """
    A signal is significant when |new - last| / last >= threshold and the move
    goes the right way:
    - direction = "abs"  → either way
                 "up"   → value increased
                 "down" → value decreased
    """
    signal_type: str
    threshold: float
    direction: Direction = "abs"

    def passes(self, delta: float, pct_change: float) -> bool:
        if self.direction == "up" and delta <= 0:
            return False
        if self.direction == "down" and delta >= 0:
            return False
        return pct_change >= self.threshold


DEFAULT_RULES: dict[str, SignificanceRule] = {
    "demand_surge": SignificanceRule("demand_surge", threshold=0.15),
    "competitor_price": SignificanceRule("competitor_price", threshold=0.05),
    "stock_drop": SignificanceRule("stock_drop", threshold=0.20, direction="down"),
    "stock_increase": SignificanceRule("stock_increase", threshold=0.20, direction="up"),
}
