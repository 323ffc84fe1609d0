import pytest

from pricer.config import PricingConfig, oracle_api_key, pricing_config_from_env, validate_environment
from pricer.errors import ConfigError

def test_floor_is_max_of_base_and_min():
    assert PricingConfig().floor == 100.0
    assert PricingConfig(base_price=50.0, min_price=50.0).floor == 50.0

@pytest.mark.parametrize("kw", [
    {"min_price": 120.0},                 # min above base
    {"max_price": 90.0},                  # max below base
    {"max_change_pct": 0.0},
    {"max_change_pct": 1.5},
    {"oracle_retries": -1},
])
def test_invalid_bounds_raise(kw):
    with pytest.raises(ConfigError):
        PricingConfig(**kw)

def test_from_env(monkeypatch):
    monkeypatch.setenv("PRICING_BASE_PRICE", "80")
    monkeypatch.setenv("PRICING_MAX_CHANGE_PCT", "0.1")
    monkeypatch.setenv("PRICING_COOLDOWN_S", "")
    cfg = pricing_config_from_env()
    assert cfg.base_price == 80.0 and cfg.max_change_pct == 0.1 and cfg.cooldown_seconds == 30.0

def test_from_env_bad_number(monkeypatch):
    monkeypatch.setenv("PRICING_MAX_PRICE", "lots")
    with pytest.raises(ConfigError):
        pricing_config_from_env()

def test_placeholder_key_is_missing(monkeypatch):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.setenv("LLM_API_KEY", "YOUR_API_KEY_HERE")
    monkeypatch.delenv("PRICING_ORACLE", raising=False)
    assert oracle_api_key() is None
    assert any("API_KEY" in w for w in validate_environment())
