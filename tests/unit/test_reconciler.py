import asyncio
import pytest

from pricer.errors import ConfigError
from pricer.signals.reconciler import PeriodicReconciler, ReconcilerConfig, in_window
from pricer.state.signal_store import NS_PRICING, NS_VIEWS
from pricer.utils.time import iso_utc
from pricer.engine.oracle import RuleBasedOracle
from tests.helpers.fakes import FlakyBackend, Pipeline, UnconfiguredOracle, signal

NOW = 1_706_797_921.0

async def _views(store, fresh, stale=0):
    for i in range(fresh):
        await store.append_view_event({"item_id": "sku-1", "user_id": f"u{i}", "ts": iso_utc(NOW - 10)})
    for i in range(stale):
        await store.append_view_event({"item_id": "sku-1", "user_id": f"old{i}", "ts": iso_utc(NOW - 600)})

def _reconciler(p, interval_s=60.0):
    return PeriodicReconciler(p.store, p.router, ReconcilerConfig(interval_s=interval_s), clock=lambda: NOW)

def test_in_window_drops_old_and_unparseable():
    values = [
        {"item_id": "a", "ts": iso_utc(NOW - 5)},
        {"item_id": "b", "ts": iso_utc(NOW - 61)},
        {"item_id": "c", "ts": "garbage"},
        {"item_id": "d"},
        {"item_id": "e", "ts": iso_utc(NOW - 60)},
        None,
        "not-an-event",
    ]
    assert in_window(values, NOW - 60) == [True, False, False, False, True, False, False]
    assert in_window([], NOW) == []


class _ViewDuringPricing(RuleBasedOracle):
    """Records a page view while the tick is waiting on the oracle."""

    def __init__(self, service, cfg):
        super().__init__(cfg)
        self.service = service

    async def request_pricing_decision(self, ctx):
        await self.service.record_view("sku-1", "late-user")
        return await super().request_pricing_decision(ctx)

@pytest.mark.asyncio
async def test_views_become_demand_surge_and_log_is_pruned():
    p = Pipeline()
    r = _reconciler(p)
    q = p.stream.subscribe()
    await _views(p.store, fresh=6, stale=3)

    report = await r.tick()

    assert report.view_count == 6 and report.total_events == 9
    assert report.emitted == ["demand_surge"]
    assert report.pruned == 3
    assert len(await p.store.get_view_events()) == 6
    rec = q.get_nowait()
    assert rec["velocity"] == 6.0
    assert rec["price"] == 101.2
    assert r.last_report is report

@pytest.mark.asyncio
async def test_views_at_threshold_do_not_trigger():
    p = Pipeline()
    await _views(p.store, fresh=5)
    report = await _reconciler(p).tick()
    assert report.candidates == []
    assert await p.stream.current() is None

@pytest.mark.asyncio
async def test_plateau_views_only_price_once():
    p = Pipeline()
    r = _reconciler(p)
    await _views(p.store, fresh=10)
    first = await r.tick()
    second = await r.tick()
    assert first.emitted == ["demand_surge"]
    assert second.candidates == ["demand_surge"] and second.emitted == []

@pytest.mark.asyncio
async def test_stored_manual_signal_is_consumed():
    p = Pipeline()
    await p.store.store_manual_signal(signal("competitor_price", 130, source="manual"))
    report = await _reconciler(p).tick()
    assert report.emitted == ["competitor_price"]
    assert await p.store.get_manual_signal("competitor_price") is None
    again = await _reconciler(p).tick()
    assert again.candidates == []

@pytest.mark.asyncio
async def test_manual_demand_signal_wins_over_views():
    p = Pipeline()
    await _views(p.store, fresh=10)
    await p.store.store_manual_signal(signal("demand_surge", 20, source="manual"))
    report = await _reconciler(p).tick()
    assert report.candidates == ["demand_surge"]
    assert (await p.stream.current())["velocity"] == 20.0

@pytest.mark.asyncio
async def test_one_type_failing_does_not_block_others():
    backend = FlakyBackend(fail_on={("set", NS_PRICING, "competitor_price")})
    p = Pipeline(backend=backend)
    await p.store.store_manual_signal(signal("competitor_price", 130, source="manual"))
    await p.store.store_manual_signal(signal("stock_drop", 150, source="manual"))

    report = await _reconciler(p).tick()

    assert "competitor_price" in report.failures
    assert report.emitted == ["stock_drop"]
    assert (await p.stream.current())["signal_type"] == "stock_drop"

@pytest.mark.asyncio
async def test_unreadable_view_log_is_recorded():
    p = Pipeline(backend=FlakyBackend(fail_on={("items", NS_VIEWS, None)}))
    await p.store.store_manual_signal(signal("stock_drop", 150, source="manual"))
    report = await _reconciler(p).tick()
    assert "raw_view_events" in report.failures
    assert report.emitted == ["stock_drop"]

@pytest.mark.asyncio
async def test_missing_credentials_stop_the_tick():
    p = Pipeline(oracle=UnconfiguredOracle())
    await _views(p.store, fresh=10)
    with pytest.raises(ConfigError):
        await _reconciler(p).tick()

@pytest.mark.asyncio
async def test_loop_ticks_and_stops():
    p = Pipeline()
    await _views(p.store, fresh=10)
    r = _reconciler(p, interval_s=0.01)
    await r.start()
    await asyncio.sleep(0.05)
    await r.stop()
    assert r.last_report is not None

@pytest.mark.asyncio
async def test_wait_surfaces_config_error():
    p = Pipeline(oracle=UnconfiguredOracle())
    await _views(p.store, fresh=10)
    r = _reconciler(p, interval_s=0.01)
    await r.start()
    with pytest.raises(ConfigError):
        await asyncio.wait_for(r.wait(), timeout=1.0)
    await r.stop()

@pytest.mark.asyncio
async def test_view_recorded_during_tick_survives_pruning():
    p = Pipeline()
    p.engine.oracle = _ViewDuringPricing(p.service, p.cfg)
    await _views(p.store, fresh=6, stale=2)

    report = await _reconciler(p).tick()

    assert report.emitted == ["demand_surge"]
    assert report.pruned == 2
    users = sorted(e["user_id"] for e in await p.store.get_view_events())
    assert "late-user" in users
    assert users == sorted([f"u{i}" for i in range(6)] + ["late-user"])

@pytest.mark.asyncio
async def test_malformed_view_entries_are_pruned():
    p = Pipeline()
    await _views(p.store, fresh=2)
    await p.store.backend.set(NS_VIEWS, "junk", "not-an-event")
    report = await _reconciler(p).tick()
    assert report.pruned == 1
    assert "junk" not in [k for k, _ in await p.store.get_view_log()]
    assert report.view_count == 2

@pytest.mark.asyncio
async def test_prune_failure_is_recorded():
    p = Pipeline(backend=FlakyBackend(fail_on={("delete", NS_VIEWS, None)}))
    await _views(p.store, fresh=6, stale=1)
    report = await _reconciler(p).tick()
    assert report.failures["prune"]
    assert report.emitted == ["demand_surge"]
