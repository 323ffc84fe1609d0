from pricer.config import PricingConfig
from pricer.engine.context import build_context, classify_stock
from pricer.engine.fallback import rule_based_price
from tests.helpers.fakes import signal

CFG = PricingConfig()

def _price(type_, value, *, current=100.0, competitor=100.0, stock=1000.0, demand=0.0):
    sig = signal(type_, value)
    if type_ == "competitor_price":
        competitor = value
    elif type_ in ("stock_drop", "stock_increase"):
        stock = value
    elif type_ == "demand_surge":
        demand = value
    ctx = build_context(sig, current_price=current, competitor_price=competitor,
                        stock_level=stock, demand_level=demand, cfg=CFG)
    return rule_based_price(ctx, CFG)

def test_classify_stock():
    assert classify_stock(150, CFG) == "low"
    assert classify_stock(500, CFG) == "normal"
    assert classify_stock(900, CFG) == "high"

def test_predatory_competitor_holds_floor():
    p = _price("competitor_price", 70)
    assert p.new_price == 100.0
    assert p.decision == "hold"
    assert p.reasoning.endswith("(rule-based)")

def test_competitor_undercut_matches_above_floor():
    p = _price("competitor_price", 115, current=130.0)
    assert p.new_price == 112.7
    assert p.decision == "decrease"

def test_competitor_above_us_by_stock():
    assert _price("competitor_price", 130, stock=500).new_price == 103.0
    assert _price("competitor_price", 130, stock=150).new_price == 108.0
    assert _price("competitor_price", 130, stock=1000).decision == "hold"

def test_low_stock_drop_raises_price():
    p = _price("stock_drop", 150)
    assert p.new_price == 108.0
    assert p.decision == "increase"

def test_critically_low_stock():
    assert _price("stock_drop", 40).new_price == 115.0

def test_high_stock_matches_cheaper_competitor():
    p = _price("stock_increase", 900, current=120.0, competitor=105.0)
    assert p.new_price == 102.9
    assert p.decision == "decrease"

def test_demand_surge_scales_and_caps():
    assert _price("demand_surge", 50).new_price == 110.0
    assert _price("demand_surge", 500).new_price == 115.0
    assert _price("demand_surge", 50, stock=150).new_price == 115.0

def test_rule_price_never_exceeds_ceiling():
    p = _price("demand_surge", 100, current=190.0)
    assert p.new_price == 200.0
