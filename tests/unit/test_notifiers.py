import pytest

from pricer.errors import ConfigError
from pricer.notify import telegram
from pricer.notify.telegram import TelegramConfig, TelegramNotifier, config_from_env
from pricer.publish.formatting import format_price_pretty
from pricer.publish.notifiers import ConsoleNotifier
from pricer.publish.stream import make_price_record
from tests.helpers.fake_http import FakeResponse, FakeSession

REC = make_price_record(108.0, 100.0, "increase", "Stock low (150 units); raising price. (rule-based)",
                        competitor_price=100.0, stock_level=150.0, velocity=0.0,
                        timestamp="2024-02-01T14:32:01.000Z", signal_type="stock_drop", signal_value=150)

def test_format_price_pretty():
    text = format_price_pretty(REC)
    first, reason = text.split("\n")
    assert first.startswith("[PRICE INCREASE] 14:32:01 UTC")
    assert "100.00 → 108.00 (+8.00%)" in first
    assert "signal=stock_drop:150" in first
    assert "comp=100.00 stock=150 views/min=0" in first
    assert reason.strip().endswith("(rule-based)")

def test_format_price_pretty_timezone():
    assert "09:32:01" in format_price_pretty(REC, "America/New_York")

@pytest.mark.asyncio
async def test_console_notifier_falls_back_on_format_error(capsys):
    def broken(rec):
        raise KeyError("price")

    await ConsoleNotifier(format_fn=broken).send(REC)
    assert "[PRICE] increase 100.0 -> 108.0" in capsys.readouterr().out

def test_telegram_config_requires_env(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")
    with pytest.raises(ConfigError):
        config_from_env()

def _notifier(*responses, **cfg_kw):
    session = FakeSession(responses)
    cfg = TelegramConfig(bot_token="t0k", chat_id="42", per_chat_rate_per_sec=1000, per_chat_burst=10,
                         initial_backoff_s=0.0, **cfg_kw)
    return TelegramNotifier(cfg, records_queue=None, session=session), session

@pytest.mark.asyncio
async def test_telegram_sends_price_changes():
    n, session = _notifier(FakeResponse(200, {"ok": True}))
    assert await n.handle(REC) is True
    url, kw = session.calls[0]
    assert url == "https://api.telegram.org/bott0k/sendMessage"
    assert kw["data"]["chat_id"] == "42"
    assert kw["data"]["text"].startswith("[INCREASE] 100.00 → 108.00")
    assert n.sent == 1

@pytest.mark.asyncio
async def test_telegram_skips_holds():
    n, session = _notifier()
    hold = dict(REC, decision="hold", price=100.0)
    assert await n.handle(hold) is False
    assert session.calls == []

@pytest.mark.asyncio
async def test_telegram_retries_server_errors(monkeypatch):
    waits = []

    async def no_sleep(base):
        waits.append(base)

    monkeypatch.setattr(telegram, "sleep_with_jitter", no_sleep)
    n, session = _notifier(FakeResponse(502, text="bad gateway"), FakeResponse(200, {"ok": True}))
    assert await n.handle(REC) is True
    assert len(session.calls) == 2
    assert waits == [0.0]

@pytest.mark.asyncio
async def test_telegram_gives_up_on_client_error():
    n, session = _notifier(FakeResponse(400, {"ok": False}, text="chat not found"))
    assert await n.handle(REC) is False
    assert len(session.calls) == 1

@pytest.mark.asyncio
async def test_telegram_honours_retry_after(monkeypatch):
    slept = []

    async def fake_sleep(s):
        slept.append(s)

    monkeypatch.setattr(telegram.asyncio, "sleep", fake_sleep)
    n, session = _notifier(FakeResponse(429, {"ok": False, "parameters": {"retry_after": 3}}),
                           FakeResponse(200, {"ok": True}))
    assert await n.handle(REC) is True
    assert slept == [3.0]
