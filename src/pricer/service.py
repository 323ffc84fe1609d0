# src/pricer/service.py
from __future__ import annotations

import asyncio
from typing import Optional, Union

import structlog

from pricer.config import PricingConfig, ResetDefaults
from pricer.errors import ConfigError
from pricer.ingest.parser import parse_signal, parse_view
from pricer.publish.stream import PricePublisher, make_price_record
from pricer.signals.router import SignalRouter
from pricer.state.signal_store import SignalStore
from pricer.utils.time import iso_utc
from pricer.utils.types import MarketSignal, PricingState, RawViewEvent

log = structlog.get_logger("pricing_service")

FORCE_TICK_VELOCITY = 50.0


class PricingService:
    """
    Inbound surface of the pricing core (transport-agnostic):
      - submit_signal(payload)   validate, store, enqueue; never waits on the engine
      - record_view(item, user)  append raw telemetry for the reconciler
      - force_tick(reason)       debug demand surge
      - reset()                  demo/test defaults

    A background worker drains the signal queue through the router.
    """

    def __init__(
        self,
        store: SignalStore,
        router: SignalRouter,
        publisher: PricePublisher,
        cfg: Optional[PricingConfig] = None,
        reset_defaults: Optional[ResetDefaults] = None,
        queue_maxsize: int = 1000,
    ):
        self.store = store
        self.router = router
        self.publisher = publisher
        self.cfg = cfg or PricingConfig()
        self.reset_defaults = reset_defaults or ResetDefaults()
        self._q: asyncio.Queue[MarketSignal] = asyncio.Queue(maxsize=queue_maxsize)
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.failures = 0

    # ---------------------------- inbound ---------------------------- #

    async def submit_signal(self, payload: Union[dict, MarketSignal]) -> MarketSignal:
        """Raises SignalValidationError for bad payloads."""
        signal = payload if isinstance(payload, MarketSignal) else parse_signal(payload)
        if signal.human_triggered:
            await self.store.store_manual_signal(signal)
        try:
            self._q.put_nowait(signal)
        except asyncio.QueueFull:
            # human signals stay stored; the next reconciler tick picks them up
            log.warning("signal_queue_full", signal_type=signal.type, source=signal.source)
        log.info("signal_submitted", signal_type=signal.type, value=signal.value, source=signal.source)
        return signal

    async def record_view(self, item_id: str, user_id: Optional[str] = None) -> RawViewEvent:
        evt = parse_view({"item_id": item_id, "user_id": user_id})
        await self.store.append_view_event(evt)
        log.debug("view_recorded", item_id=evt["item_id"])
        return evt

    async def force_tick(self, reason: Optional[str] = None) -> MarketSignal:
        return await self.submit_signal(
            MarketSignal(
                type="demand_surge",
                value=FORCE_TICK_VELOCITY,
                timestamp=iso_utc(),
                source="debug",
                reason=reason or "Manual Debug Trigger",
            )
        )

    async def reset(self) -> PricingState:
        d = self.reset_defaults
        price = min(self.cfg.max_price, max(self.cfg.floor, d.price))
        state = await self.store.reset(
            price=price,
            competitor_price=d.competitor_price,
            stock_level=d.stock_level,
            reason="Reset to default",
        )
        self.router.forget()
        while not self._q.empty():
            self._q.get_nowait()
        log.info("state_reset", price=price, competitor_price=d.competitor_price, stock_level=d.stock_level)

        try:
            await self.publisher.publish(
                make_price_record(price, price, "hold", "Reset to default values",
                                  competitor_price=d.competitor_price, stock_level=d.stock_level, velocity=0.0)
            )
        except Exception as e:
            log.warning("reset_publish_failed", err=str(e))
        return state

    # ---------------------------- worker ---------------------------- #

    async def start(self) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="signal-worker")

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except (asyncio.CancelledError, ConfigError):
                pass

    async def wait(self) -> None:
        if self._task:
            await self._task

    async def drain(self) -> int:
        """Process everything queued right now, in order. Returns the count."""
        n = 0
        while not self._q.empty():
            await self._process(self._q.get_nowait())
            n += 1
        return n

    def pending(self) -> int:
        return self._q.qsize()

    async def _loop(self) -> None:
        try:
            while not self._stop.is_set():
                signal = await self._q.get()
                await self._process(signal)
        except asyncio.CancelledError:
            return

    async def _process(self, signal: MarketSignal) -> None:
        try:
            await self.router.route(signal)
        except ConfigError:
            raise
        except Exception as e:
            self.failures += 1
            log.error("signal_processing_failed", signal_type=signal.type, value=signal.value, err=str(e))
