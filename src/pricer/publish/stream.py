from __future__ import annotations

import json
from typing import Optional, Protocol

import structlog
from redis.asyncio import Redis

from pricer.notify.queue import NotifyQueue
from pricer.utils.time import iso_utc
from pricer.utils.types import PriceRecord

log = structlog.get_logger("price_stream")

DEFAULT_GROUP = "price:public"


def make_price_record(
    price: float,
    previous_price: float,
    decision: str,
    reasoning: str,
    *,
    competitor_price: Optional[float] = None,
    stock_level: Optional[float] = None,
    velocity: Optional[float] = None,
    timestamp: Optional[str] = None,
    signal_type: Optional[str] = None,
    signal_value: Optional[float] = None,
) -> PriceRecord:
    rec: PriceRecord = {
        "type": "decision",
        "price": float(price),
        "previous_price": float(previous_price),
        "competitor_price": competitor_price,
        "stock_level": stock_level,
        "velocity": velocity,
        "reason": reasoning,
        "decision": decision,
        "timestamp": timestamp or iso_utc(),
    }
    if signal_type is not None:
        rec["signal_type"] = signal_type
    if signal_value is not None:
        rec["signal_value"] = float(signal_value)
    return rec


class PricePublisher(Protocol):
    """Latest-value channel: one current record per group, overwritten on publish."""
    group_id: str

    async def publish(self, record: PriceRecord) -> None: ...
    async def current(self) -> Optional[PriceRecord]: ...


class InMemoryPriceStream:
    """
    Keeps the current record per group and fans every publish out to
    subscriber queues (console printer, Telegram, tests).
    """
    def __init__(self, group_id: str = DEFAULT_GROUP):
        self.group_id = group_id
        self._current: dict[str, PriceRecord] = {}
        self._subscribers: list[NotifyQueue] = []

    def subscribe(self, maxsize: int = 100) -> NotifyQueue:
        q = NotifyQueue(maxsize=maxsize)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: NotifyQueue) -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)

    async def publish(self, record: PriceRecord) -> None:
        self._current[self.group_id] = dict(record)  # type: ignore[assignment]
        for q in self._subscribers:
            q.try_put(dict(record))

    async def current(self) -> Optional[PriceRecord]:
        rec = self._current.get(self.group_id)
        return dict(rec) if rec is not None else None  # type: ignore[return-value]


class RedisPriceStream(InMemoryPriceStream):
    """
    Redis-backed stream: SET the latest record, PUBLISH it for live listeners.
    Local subscribers still get a copy.

    Keys: {prefix}:stream:{group}:current   channel: {prefix}:stream:{group}
    """
    def __init__(self, redis: Redis, group_id: str = DEFAULT_GROUP, prefix: str = "pricer"):
        super().__init__(group_id)
        self.r = redis
        self.prefix = prefix

    @property
    def current_key(self) -> str:
        return f"{self.prefix}:stream:{self.group_id}:current"

    @property
    def channel(self) -> str:
        return f"{self.prefix}:stream:{self.group_id}"

    async def publish(self, record: PriceRecord) -> None:
        payload = json.dumps(record)
        await self.r.set(self.current_key, payload)
        await self.r.publish(self.channel, payload)
        await super().publish(record)

    async def current(self) -> Optional[PriceRecord]:
        raw = await self.r.get(self.current_key)
        if raw is None:
            return None
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except ValueError:
            log.warning("price_stream_corrupt", key=self.current_key)
            return None
