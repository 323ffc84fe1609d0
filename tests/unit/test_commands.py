import io
import json
import pytest

from pricer.ingest.commands import dispatch_command, stdin_loop
from pricer.signals.reconciler import PeriodicReconciler
from tests.helpers.fakes import Pipeline

def _wired():
    p = Pipeline()
    return p, PeriodicReconciler(p.store, p.router)

@pytest.mark.asyncio
async def test_signal_and_price_ops():
    p, r = _wired()
    reply = await dispatch_command(p.service, r, {"op": "signal", "type": "demand_surge", "value": 50})
    assert reply["ok"] and reply["signal"]["type"] == "demand_surge"
    await p.service.drain()
    reply = await dispatch_command(p.service, r, {"op": "price"})
    assert reply["current"]["price"] == 110.0

@pytest.mark.asyncio
async def test_validation_error_reply():
    p, r = _wired()
    reply = await dispatch_command(p.service, r, {"type": "nope", "value": 1})
    assert reply["ok"] is False
    assert reply["code"] == "VALIDATION_ERROR"
    assert reply["type"] == "nope"

@pytest.mark.asyncio
async def test_view_tick_force_reset_ops():
    p, r = _wired()
    for i in range(6):
        assert (await dispatch_command(p.service, r, {"op": "view", "itemId": "sku-1", "userId": f"u{i}"}))["ok"]
    tick = await dispatch_command(p.service, r, {"op": "tick"})
    assert tick["emitted"] == ["demand_surge"]
    force = await dispatch_command(p.service, r, {"op": "force", "reason": "demo"})
    assert force["signal"]["source"] == "debug" and force["signal"]["reason"] == "demo"
    reset = await dispatch_command(p.service, r, {"op": "reset"})
    assert reset["state"]["current_price"] == 100.0
    assert (await dispatch_command(p.service, r, {"op": "launch"}))["ok"] is False

@pytest.mark.asyncio
async def test_stdin_loop_replies_per_line():
    p, r = _wired()
    stream = io.StringIO('{"op": "signal", "type": "stock_drop", "value": 150}\nnot json\n\n[1]\n{"op": "price"}\n')
    out = io.StringIO()
    await stdin_loop(p.service, r, stream=stream, out=out)
    replies = [json.loads(line) for line in out.getvalue().splitlines()]
    assert len(replies) == 2
    assert replies[0]["ok"] and replies[1]["current"] is None
