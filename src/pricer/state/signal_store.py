from __future__ import annotations

import asyncio
import copy
import math
import secrets
from typing import Any, Optional, Protocol

import structlog

from pricer.errors import SignalValidationError
from pricer.ingest.parser import parse_signal
from pricer.utils.time import utc_now_s
from pricer.utils.types import MarketSignal, PricingState, RawViewEvent

log = structlog.get_logger("signal_store")

# namespaces
NS_PRICING = "pricing"
NS_SIGNALS = "signals"
NS_INVENTORY = "inventory"
NS_VIEWS = "raw_view_events"
NS_MANUAL = "stored_manual_signals"


class StateStore(Protocol):
    """
    Key-value backend. Each call is atomic per (namespace, key); there are no
    multi-key transactions.
    """
    async def get(self, namespace: str, key: str) -> Any: ...
    async def set(self, namespace: str, key: str, value: Any) -> None: ...
    async def delete(self, namespace: str, key: str) -> None: ...
    async def get_all(self, namespace: str) -> list[Any]: ...
    async def items(self, namespace: str) -> list[tuple[str, Any]]: ...
    async def clear(self, namespace: str) -> None: ...


class InMemoryStateStore:
    """Process-local backend. Values are copied in and out."""

    def __init__(self):
        self._data: dict[str, dict[str, Any]] = {}

    async def get(self, namespace: str, key: str) -> Any:
        return copy.deepcopy(self._data.get(namespace, {}).get(key))

    async def set(self, namespace: str, key: str, value: Any) -> None:
        self._data.setdefault(namespace, {})[key] = copy.deepcopy(value)

    async def delete(self, namespace: str, key: str) -> None:
        self._data.get(namespace, {}).pop(key, None)

    async def get_all(self, namespace: str) -> list[Any]:
        return [copy.deepcopy(v) for v in self._data.get(namespace, {}).values()]

    async def items(self, namespace: str) -> list[tuple[str, Any]]:
        return [(k, copy.deepcopy(v)) for k, v in self._data.get(namespace, {}).items()]

    async def clear(self, namespace: str) -> None:
        self._data.pop(namespace, None)


def _as_number(v: Any) -> Optional[float]:
    if isinstance(v, bool) or v is None:
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


class SignalStore:
    """
    Typed access to shared pricing state: price, signal memory, inventory,
    raw view events and stored manual signals.

    Passed explicitly to every component. Holds the per-signal-type locks that
    serialize evaluate-then-update sequences, and one lock for PricingState.
    """

    def __init__(self, backend: Optional[StateStore] = None):
        self.backend: StateStore = backend if backend is not None else InMemoryStateStore()
        self._type_locks: dict[str, asyncio.Lock] = {}
        self.pricing_lock = asyncio.Lock()

    def type_lock(self, signal_type: str) -> asyncio.Lock:
        lk = self._type_locks.get(signal_type)
        if lk is None:
            lk = asyncio.Lock()
            self._type_locks[signal_type] = lk
        return lk

    # --- pricing state ---

    async def get_pricing_state(self) -> Optional[PricingState]:
        raw = await self.backend.get(NS_PRICING, "state")
        if not isinstance(raw, dict):
            return None
        try:
            return PricingState.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            log.warning("pricing_state_corrupt", raw=str(raw)[:200])
            return None

    async def set_pricing_state(self, state: PricingState) -> None:
        # one key, one write: the record is persisted as a unit
        await self.backend.set(NS_PRICING, "state", state.to_dict())

    # --- auxiliary business context ---

    async def get_competitor_price(self) -> Optional[float]:
        return _as_number(await self.backend.get(NS_PRICING, "competitor_price"))

    async def set_competitor_price(self, price: float) -> None:
        await self.backend.set(NS_PRICING, "competitor_price", float(price))

    async def get_demand_level(self) -> Optional[float]:
        return _as_number(await self.backend.get(NS_PRICING, "demand_level"))

    async def set_demand_level(self, level: float) -> None:
        await self.backend.set(NS_PRICING, "demand_level", float(level))

    async def get_stock_level(self) -> Optional[float]:
        return _as_number(await self.backend.get(NS_INVENTORY, "our_stock"))

    async def set_stock_level(self, level: float) -> None:
        await self.backend.set(NS_INVENTORY, "our_stock", float(level))

    # --- signal memory (significance comparison only) ---

    async def get_signal_memory(self, signal_type: str) -> Optional[float]:
        return _as_number(await self.backend.get(NS_SIGNALS, signal_type))

    async def set_signal_memory(self, signal_type: str, value: float) -> None:
        await self.backend.set(NS_SIGNALS, signal_type, float(value))

    async def clear_signal_memory(self) -> None:
        await self.backend.clear(NS_SIGNALS)

    # --- raw view events (append-only; stale ids pruned only by the reconciler) ---

    async def append_view_event(self, evt: RawViewEvent) -> str:
        event_id = f"{int(utc_now_s() * 1000)}_{secrets.token_hex(4)}"
        await self.backend.set(NS_VIEWS, event_id, dict(evt))
        return event_id

    async def get_view_events(self) -> list[RawViewEvent]:
        return [e for e in await self.backend.get_all(NS_VIEWS) if isinstance(e, dict)]

    async def get_view_log(self) -> list[tuple[str, Any]]:
        """(event id, raw value) pairs; values may be foreign or malformed."""
        return await self.backend.items(NS_VIEWS)

    async def delete_view_events(self, event_ids: list[str]) -> None:
        # per-id deletes: views appended meanwhile are left alone
        for event_id in event_ids:
            await self.backend.delete(NS_VIEWS, event_id)

    # --- stored manual/debug signals ---

    @staticmethod
    def _manual_key(signal_type: str) -> str:
        return f"signal_{signal_type}"

    async def store_manual_signal(self, signal: MarketSignal) -> None:
        await self.backend.set(NS_MANUAL, self._manual_key(signal.type), signal.to_dict())

    async def get_manual_signal(self, signal_type: str) -> Optional[MarketSignal]:
        key = self._manual_key(signal_type)
        raw = await self.backend.get(NS_MANUAL, key)
        if raw is None:
            return None
        try:
            return parse_signal(raw)
        except SignalValidationError as e:
            log.warning("stored_signal_invalid", signal_type=signal_type, err=str(e))
            await self.backend.delete(NS_MANUAL, key)
            return None

    async def pop_manual_signal(self, signal_type: str) -> Optional[MarketSignal]:
        sig = await self.get_manual_signal(signal_type)
        if sig is not None:
            await self.backend.delete(NS_MANUAL, self._manual_key(signal_type))
        return sig

    async def consume_manual_signal(self, signal: MarketSignal) -> bool:
        """Drop the stored copy of `signal` if it is still the latest of its type."""
        stored = await self.get_manual_signal(signal.type)
        if stored is None or stored.dedupe_key != signal.dedupe_key:
            return False
        await self.backend.delete(NS_MANUAL, self._manual_key(signal.type))
        return True

    async def clear_manual_signals(self) -> None:
        await self.backend.clear(NS_MANUAL)

    # --- admin ---

    async def reset(self, *, price: float, competitor_price: float, stock_level: float,
                    reason: str = "Reset to default") -> PricingState:
        # counts as a pricing event: cron signals wait out the cooldown after a
        # reset, manual and debug signals do not
        state = PricingState(
            current_price=float(price),
            last_pricing_ts=utc_now_s(),
            last_decision="hold",
            last_reason=reason,
        )
        async with self.pricing_lock:
            await self.set_pricing_state(state)
            await self.set_competitor_price(competitor_price)
            await self.set_stock_level(stock_level)
            await self.set_demand_level(0.0)
        await self.clear_signal_memory()
        await self.clear_manual_signals()
        await self.backend.clear(NS_VIEWS)
        return state
