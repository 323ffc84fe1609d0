# src/pricer/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from pricer.errors import ConfigError


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number", value=raw) from None


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(slots=True)
class PricingConfig:
    # bounds
    base_price: float = 100.0          # hard floor
    min_price: float = 50.0
    max_price: float = 200.0           # hard ceiling
    max_change_pct: float = 0.25       # per update, fraction of current price
    # fallback tuning
    undercut_margin: float = 0.02      # match competitor minus 2%
    min_margin: float = 0.02
    low_stock: float = 200.0
    very_low_stock: float = 50.0
    high_stock: float = 800.0
    # pacing
    cooldown_seconds: float = 30.0     # cron-sourced signals only
    oracle_retries: int = 2
    oracle_backoff_s: float = 0.5
    oracle_backoff_cap_s: float = 4.0
    # context defaults when state is empty
    default_competitor_price: float = 100.0
    default_stock_level: float = 1000.0
    default_demand_level: float = 0.0
    # display / publication
    reason_max_len: int = 500
    group_id: str = "price:public"

    def __post_init__(self):
        self.validate()

    @property
    def floor(self) -> float:
        return max(self.base_price, self.min_price)

    def validate(self) -> None:
        if not (0 < self.min_price <= self.base_price <= self.max_price):
            raise ConfigError(
                "price bounds must satisfy 0 < min_price <= base_price <= max_price",
                min_price=self.min_price, base_price=self.base_price, max_price=self.max_price,
            )
        if not (0 < self.max_change_pct <= 1):
            raise ConfigError("max_change_pct must be in (0, 1]", max_change_pct=self.max_change_pct)
        if self.oracle_retries < 0:
            raise ConfigError("oracle_retries must be >= 0")


def pricing_config_from_env() -> PricingConfig:
    return PricingConfig(
        base_price=env_float("PRICING_BASE_PRICE", 100.0),
        min_price=env_float("PRICING_MIN_PRICE", 50.0),
        max_price=env_float("PRICING_MAX_PRICE", 200.0),
        max_change_pct=env_float("PRICING_MAX_CHANGE_PCT", 0.25),
        cooldown_seconds=env_float("PRICING_COOLDOWN_S", 30.0),
        oracle_retries=int(env_float("PRICING_ORACLE_RETRIES", 2)),
        group_id=os.getenv("PRICING_GROUP_ID", "price:public"),
    )


@dataclass(slots=True)
class ResetDefaults:
    price: float = 100.0
    competitor_price: float = 100.0
    stock_level: float = 1000.0


def oracle_api_key() -> Optional[str]:
    key = os.getenv("LLM_API_KEY") or os.getenv("GROQ_API_KEY")
    if key and key.strip() and key != "YOUR_API_KEY_HERE":
        return key.strip()
    return None


def validate_environment() -> list[str]:
    """
    Startup warnings only. The engine still refuses to price a signal
    when the oracle has no credentials.
    """
    warnings: list[str] = []
    oracle = os.getenv("PRICING_ORACLE", "llm").lower()
    if oracle not in ("llm", "rules"):
        warnings.append(f"PRICING_ORACLE={oracle!r} is unknown; expected 'llm' or 'rules'")
    if oracle == "llm" and oracle_api_key() is None:
        warnings.append("LLM_API_KEY / GROQ_API_KEY is not set - pricing decisions will fail")
    backend = os.getenv("STATE_BACKEND", "memory").lower()
    if backend == "redis" and not os.getenv("REDIS_URL"):
        warnings.append("STATE_BACKEND=redis without REDIS_URL; using redis://localhost:6379/0")
    return warnings
