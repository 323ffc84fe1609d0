"""
Deterministic rule-based pricing, used when the oracle is unavailable or
returns unusable output. A pure function of the context.
"""
from __future__ import annotations

from pricer.config import PricingConfig
from pricer.engine.context import PricingContext
from pricer.engine.validation import OracleProposal, decision_for

# demand_surge: +0.2% per unit of velocity, capped at 15%
DEMAND_STEP = 0.002
DEMAND_CAP = 0.15
LOW_STOCK_AMPLIFIER = 1.5


def _competitor_move(ctx: PricingContext, cfg: PricingConfig) -> tuple[float, str]:
    p, c, floor = ctx.current_price, ctx.competitor_price, ctx.base_price
    if c < floor:
        return floor, (f"Competitor at ${c:.2f} is below our ${floor:.2f} floor; "
                       f"treating it as predatory and holding the floor.")
    if c < p:
        target = max(floor, c * (1 - cfg.undercut_margin))
        return target, (f"Competitor undercut to ${c:.2f}; matching at "
                        f"{cfg.undercut_margin:.0%} below, floor ${floor:.2f}.")
    if c > p:
        if ctx.stock_status == "low":
            return p * 1.08, f"Competitor at ${c:.2f} is above us and our stock is low; raising price."
        if ctx.stock_status == "normal":
            return min(p * 1.03, c), f"Competitor at ${c:.2f} is above us; modest increase."
        return p, f"Competitor at ${c:.2f} is above us but stock is high; holding to move volume."
    return p, "Competitor price matches ours; holding."


def _demand_move(ctx: PricingContext, cfg: PricingConfig) -> tuple[float, str]:
    pct = min(ctx.signal_value * DEMAND_STEP, DEMAND_CAP)
    note = ""
    if ctx.stock_status == "low":
        pct = min(pct * LOW_STOCK_AMPLIFIER, cfg.max_change_pct)
        note = " Amplified: stock is low."
    return ctx.current_price * (1 + pct), (
        f"Demand surge ({ctx.signal_value:g} views/min); raising price {pct:.1%}.{note}"
    )


def _stock_move(ctx: PricingContext, cfg: PricingConfig) -> tuple[float, str]:
    p, c, s = ctx.current_price, ctx.competitor_price, ctx.stock_level
    if s < cfg.very_low_stock:
        return p * 1.15, f"Stock critically low ({s:g} units); scarcity pricing."
    if ctx.stock_status == "low":
        return p * 1.08, f"Stock low ({s:g} units); raising price."
    if ctx.stock_status == "high" and c < p:
        target = max(ctx.base_price, c * (1 - cfg.undercut_margin))
        return target, f"Stock high ({s:g} units) and competitor cheaper at ${c:.2f}; matching."
    return p, f"Stock at {s:g} units; no pressure to move price."


def rule_based_price(ctx: PricingContext, cfg: PricingConfig) -> OracleProposal:
    if ctx.signal_type == "competitor_price":
        target, why = _competitor_move(ctx, cfg)
    elif ctx.signal_type == "demand_surge":
        target, why = _demand_move(ctx, cfg)
    elif ctx.signal_type in ("stock_drop", "stock_increase"):
        target, why = _stock_move(ctx, cfg)
    else:
        target, why = ctx.current_price, f"No rule for {ctx.signal_type}; holding."

    price = round(max(ctx.base_price, min(ctx.max_price, target)), 2)
    return OracleProposal(
        new_price=price,
        reasoning=f"{why} (rule-based)",
        decision=decision_for(price, ctx.current_price),
    )
