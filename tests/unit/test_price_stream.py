import json
import pytest

from pricer.notify.queue import NotifyQueue
from pricer.publish.stream import InMemoryPriceStream, RedisPriceStream, make_price_record
from tests.helpers.fake_redis import FakeRedis

def _rec(price, prev=100.0, decision="increase"):
    return make_price_record(price, prev, decision, "why", competitor_price=99.0, stock_level=500.0,
                             velocity=3.0, timestamp="2024-02-01T14:32:01.000Z", signal_type="demand_surge",
                             signal_value=3)

def test_make_price_record_shape():
    rec = _rec(101.2)
    assert rec["type"] == "decision"
    assert rec["signal_value"] == 3.0
    assert set(rec) == {"type", "price", "previous_price", "competitor_price", "stock_level", "velocity",
                        "reason", "decision", "timestamp", "signal_type", "signal_value"}
    bare = make_price_record(100, 100, "hold", "reset")
    assert bare["timestamp"].endswith("Z") and "signal_type" not in bare

@pytest.mark.asyncio
async def test_latest_value_overwrites_and_fans_out():
    s = InMemoryPriceStream("g")
    a, b = s.subscribe(), s.subscribe()
    await s.publish(_rec(101.0))
    await s.publish(_rec(102.0))
    assert (await s.current())["price"] == 102.0
    assert a.qsize() == b.qsize() == 2
    s.unsubscribe(b)
    await s.publish(_rec(103.0))
    assert a.qsize() == 3 and b.qsize() == 2

@pytest.mark.asyncio
async def test_slow_subscriber_keeps_latest():
    s = InMemoryPriceStream()
    q = s.subscribe(maxsize=2)
    for p in (101.0, 102.0, 103.0):
        await s.publish(_rec(p))
    assert [q.get_nowait()["price"], q.get_nowait()["price"]] == [102.0, 103.0]
    assert q.stats.enq_replaced == 1

@pytest.mark.asyncio
async def test_current_is_a_copy():
    s = InMemoryPriceStream()
    await s.publish(_rec(101.0))
    got = await s.current()
    got["price"] = 1.0
    assert (await s.current())["price"] == 101.0

@pytest.mark.asyncio
async def test_redis_stream_sets_and_publishes():
    r = FakeRedis()
    s = RedisPriceStream(r, group_id="price:public")
    q = s.subscribe()
    await s.publish(_rec(104.0))

    assert json.loads(r.strings["pricer:stream:price:public:current"])["price"] == 104.0
    channel, payload = r.published[0]
    assert channel == "pricer:stream:price:public"
    assert json.loads(payload)["decision"] == "increase"
    assert q.get_nowait()["price"] == 104.0
    assert (await s.current())["price"] == 104.0

@pytest.mark.asyncio
async def test_redis_stream_corrupt_current():
    r = FakeRedis()
    s = RedisPriceStream(r, prefix="t")
    assert await s.current() is None
    r.strings["t:stream:price:public:current"] = "{oops"
    assert await s.current() is None

@pytest.mark.asyncio
async def test_notify_queue_get():
    q = NotifyQueue(maxsize=1)
    assert q.try_put({"price": 1}) is True
    assert q.try_put({"price": 2}) is False
    assert (await q.get()) == {"price": 2}
    assert q.stats.deq_ok == 1
