"""Prompt text for the LLM decision oracle.

Builders return plain strings; the oracle places them into the system and
user roles of a chat-completions request.
"""

from __future__ import annotations

import json

from pricer.engine.context import PricingContext

__all__ = ["SYSTEM_PROMPT", "build_pricing_prompt"]


SYSTEM_PROMPT = (
    "You are an expert revenue management analyst for an online store. "
    "You set the price of a single product in response to market signals. "
    "You must respect the price floor, the price bounds and the maximum change "
    "per update you are given. Prefer small, explainable moves. "
    'Respond with JSON only: {"new_price": number, "reasoning": string, '
    '"decision": "increase" | "decrease" | "hold"}.'
)


def build_pricing_prompt(ctx: PricingContext) -> str:
    """Return the user prompt describing current state and the incoming signal."""
    market = {
        "our_price": ctx.current_price,
        "price_floor": ctx.base_price,
        "price_bounds": [ctx.min_price, ctx.max_price],
        "max_change_per_update": ctx.max_change_pct,
        "minimum_margin": ctx.min_margin,
        "competitor_price": ctx.competitor_price,
        "competitor_delta": ctx.competitor_delta,
        "competitor_delta_pct": ctx.competitor_delta_pct,
        "stock_level": ctx.stock_level,
        "stock_status": ctx.stock_status,
        "demand_level_views_per_min": ctx.demand_level,
    }
    signal = {
        "type": ctx.signal_type,
        "value": ctx.signal_value,
        "source": ctx.signal_source,
        "reason": ctx.signal_reason,
    }
    return f"""
        CURRENT MARKET STATE:
        {json.dumps(market, indent=2)}

        INCOMING SIGNAL:
        {json.dumps(signal, indent=2)}

        Instructions:
        1. Never go below the price floor, even if the competitor does.
        2. Never move the price by more than max_change_per_update of our price.
        3. Low stock supports higher prices; high stock supports matching a cheaper competitor.
        4. Explain the move in one or two sentences a merchandiser would understand.
        Output JSON ONLY.
        """
