from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional

from pricer.config import PricingConfig


@dataclass(slots=True)
class OracleProposal:
    """Untrusted oracle (or fallback) output, before validation."""
    new_price: Any
    reasoning: str = ""
    decision: str = "hold"


@dataclass(slots=True)
class ValidatedPrice:
    price: float
    previous_price: float
    decision: str
    reasoning: str
    adjustments: list[str] = field(default_factory=list)

    @property
    def delta(self) -> float:
        return round(self.price - self.previous_price, 2)


def as_price(raw: Any) -> Optional[float]:
    """Finite positive number, or None. Tolerates "$1,234.50"-style strings."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.strip().replace("$", "").replace(",", "")
    try:
        v = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v) or v <= 0:
        return None
    return v


def _cents_toward(target: float, anchor: float) -> float:
    """Round to cents, never moving further from anchor than target is."""
    if target >= anchor:
        return math.floor(target * 100 + 1e-9) / 100
    return math.ceil(target * 100 - 1e-9) / 100


def truncate(text: str, limit: int) -> str:
    text = " ".join(str(text).split())
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)].rstrip() + "..."


def decision_for(new_price: float, previous_price: float) -> str:
    if new_price > previous_price:
        return "increase"
    if new_price < previous_price:
        return "decrease"
    return "hold"


def validate_proposal(proposal: OracleProposal, current_price: float, cfg: PricingConfig) -> ValidatedPrice:
    """
    Apply business invariants to an untrusted proposal, in order:
      1. non-numeric price      → keep current price, hold
      2. below base price       → base price (hard floor)
      3. outside [min, max]     → nearest bound
      4. move > max_change_pct  → capped in the same direction
      5. decision label         → recomputed from the final delta
      6. reasoning              → whitespace-normalized, truncated
    The floor and ceiling win over the per-update cap.
    """
    adjustments: list[str] = []
    reasoning = str(proposal.reasoning or "").strip()

    price = as_price(proposal.new_price)
    if price is None:
        adjustments.append("non_numeric_price")
        price = current_price
        reasoning = f"Oracle returned an unusable price ({proposal.new_price!r}); holding. {reasoning}".strip()
    price = round(price, 2)

    if price < cfg.base_price:
        adjustments.append("base_price_floor")
        price = cfg.base_price
    if price < cfg.min_price:
        adjustments.append("min_price_bound")
        price = cfg.min_price
    if price > cfg.max_price:
        adjustments.append("max_price_bound")
        price = cfg.max_price

    max_move = abs(current_price) * cfg.max_change_pct
    if abs(price - current_price) > max_move:
        adjustments.append("max_change_cap")
        if price > current_price:
            price = _cents_toward(current_price + max_move, current_price)
        else:
            price = _cents_toward(current_price - max_move, current_price)
        price = min(cfg.max_price, max(cfg.floor, price))

    if abs(price - current_price) < 0.005:
        price = current_price

    decision = decision_for(price, current_price)
    claimed = str(proposal.decision or "").strip().lower()
    if claimed != decision:
        adjustments.append("decision_relabelled")

    if not reasoning:
        reasoning = f"Price {decision} to {price:.2f}."

    return ValidatedPrice(
        price=price,
        previous_price=current_price,
        decision=decision,
        reasoning=truncate(reasoning, cfg.reason_max_len),
        adjustments=adjustments,
    )
