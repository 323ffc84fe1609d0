from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from pricer.config import PricingConfig
from pricer.engine.context import PricingContext, apply_signal, build_context
from pricer.engine.fallback import rule_based_price
from pricer.engine.oracle import DecisionOracle
from pricer.engine.validation import OracleProposal, ValidatedPrice, as_price, validate_proposal
from pricer.errors import ConfigError, PersistenceError
from pricer.publish.stream import PricePublisher, make_price_record
from pricer.state.signal_store import SignalStore
from pricer.utils.backoff import retry_delays, sleep_with_jitter
from pricer.utils.time import iso_utc, seconds_since, utc_now_s
from pricer.utils.types import MarketSignal, PriceRecord, PricingState

log = structlog.get_logger("pricing_engine")


@dataclass(slots=True)
class EngineStats:
    decisions: int = 0
    oracle_failures: int = 0
    fallbacks: int = 0
    cooldown_skips: int = 0
    publish_failures: int = 0
    healed_states: int = 0


@dataclass(slots=True)
class _Outcome:
    result: ValidatedPrice
    competitor_price: float
    stock_level: float
    demand_level: float
    via: str


class PricingDecisionEngine:
    """
    Turns one significant signal into a persisted, published price.

    Per signal:
      1) load current price (self-healing to base price when missing/out of bounds)
      2) load competitor price, stock, demand (each defaulted independently)
      3) fold the signal into that context (in memory)
      4) build the oracle context, ask the oracle (bounded retries, then rules)
      5) validate + clamp (always; the oracle is untrusted)
      6) persist PricingState as one record, then the signal's context field
      7) publish (best effort; never rolls back step 6)

    Steps 1-6 run under the store's pricing lock. Missing oracle credentials
    raise ConfigError before anything is read or written.
    """

    def __init__(
        self,
        store: SignalStore,
        oracle: DecisionOracle,
        publisher: PricePublisher,
        cfg: Optional[PricingConfig] = None,
        clock: Callable[[], float] = utc_now_s,
    ):
        self.store = store
        self.oracle = oracle
        self.publisher = publisher
        self.cfg = cfg or PricingConfig()
        self._clock = clock
        self.stats = EngineStats()

    async def decide(self, signal: MarketSignal) -> Optional[PriceRecord]:
        try:
            self.oracle.ensure_configured()
        except ConfigError as e:
            log.error("pricing_config_error", err=str(e), signal_type=signal.type, oracle=self.oracle.name)
            raise

        log.info("pricing_started", signal_type=signal.type, value=signal.value, source=signal.source)
        async with self.store.pricing_lock:
            outcome = await self._decide_locked(signal)
        if outcome is None:
            return None

        r = outcome.result
        self.stats.decisions += 1
        log.info(
            "price_updated",
            price=r.price,
            previous_price=r.previous_price,
            decision=r.decision,
            via=outcome.via,
            adjustments=r.adjustments,
            signal_type=signal.type,
        )
        record = make_price_record(
            r.price,
            r.previous_price,
            r.decision,
            r.reasoning,
            competitor_price=outcome.competitor_price,
            stock_level=outcome.stock_level,
            velocity=outcome.demand_level,
            timestamp=iso_utc(self._clock()),
            signal_type=signal.type,
            signal_value=signal.value,
        )
        await self._publish(record)
        return record

    # ---------- steps ----------

    async def _decide_locked(self, signal: MarketSignal) -> Optional[_Outcome]:
        state, competitor, stock, demand = await self._load()
        competitor, stock, demand = apply_signal(signal, competitor, stock, demand)

        if self._in_cooldown(signal, state):
            self.stats.cooldown_skips += 1
            log.info("pricing_cooldown_skip", signal_type=signal.type,
                     since_last_s=round(seconds_since(state.last_pricing_ts, self._clock()), 1),
                     cooldown_s=self.cfg.cooldown_seconds)
            # no decision, but the next one should see this value
            await self._persist_context(signal, competitor, stock, demand)
            return None

        ctx = build_context(
            signal,
            current_price=state.current_price,
            competitor_price=competitor,
            stock_level=stock,
            demand_level=demand,
            cfg=self.cfg,
        )
        proposal, via = await self._consult_oracle(ctx)
        result = validate_proposal(proposal, state.current_price, self.cfg)

        new_state = PricingState(
            current_price=result.price,
            last_pricing_ts=self._clock(),
            last_decision=result.decision,
            last_reason=result.reasoning,
        )
        try:
            await self.store.set_pricing_state(new_state)
        except Exception as e:
            raise PersistenceError("could not persist pricing state", err=repr(e)) from e
        # written after the price; an aborted signal changes neither
        await self._persist_context(signal, competitor, stock, demand)
        return _Outcome(result, competitor, stock, demand, via)

    async def _load(self) -> tuple[PricingState, float, float, float]:
        try:
            state = await self.store.get_pricing_state()
            competitor = await self.store.get_competitor_price()
            stock = await self.store.get_stock_level()
            demand = await self.store.get_demand_level()
        except Exception as e:
            raise PersistenceError("could not load pricing context", err=repr(e)) from e

        state = self._heal(state)
        return (
            state,
            competitor if competitor is not None else self.cfg.default_competitor_price,
            stock if stock is not None else self.cfg.default_stock_level,
            demand if demand is not None else self.cfg.default_demand_level,
        )

    def _heal(self, state: Optional[PricingState]) -> PricingState:
        if state is None:
            return PricingState(current_price=self.cfg.base_price)
        price = as_price(state.current_price)
        if price is None or not (self.cfg.floor <= price <= self.cfg.max_price):
            self.stats.healed_states += 1
            log.warning("pricing_state_healed", stored_price=state.current_price, base_price=self.cfg.base_price)
            price = self.cfg.base_price
        state.current_price = price
        return state

    async def _persist_context(self, signal: MarketSignal, competitor: float, stock: float, demand: float) -> None:
        try:
            if signal.type == "competitor_price":
                await self.store.set_competitor_price(competitor)
            elif signal.type in ("stock_drop", "stock_increase"):
                await self.store.set_stock_level(stock)
            elif signal.type == "demand_surge":
                await self.store.set_demand_level(demand)
        except Exception as e:
            raise PersistenceError("could not persist market context", err=repr(e)) from e

    def _in_cooldown(self, signal: MarketSignal, state: PricingState) -> bool:
        if signal.human_triggered or self.cfg.cooldown_seconds <= 0 or not state.last_pricing_ts:
            return False
        return seconds_since(state.last_pricing_ts, self._clock()) < self.cfg.cooldown_seconds

    async def _consult_oracle(self, ctx: PricingContext) -> tuple[OracleProposal, str]:
        delays = list(retry_delays(self.cfg.oracle_retries, self.cfg.oracle_backoff_s, self.cfg.oracle_backoff_cap_s))
        attempts = len(delays) + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self.oracle.request_pricing_decision(ctx), self.oracle.name
            except ConfigError:
                raise
            except Exception as e:
                self.stats.oracle_failures += 1
                log.warning("oracle_attempt_failed", oracle=self.oracle.name, attempt=attempt,
                            attempts=attempts, err=str(e))
                if attempt < attempts:
                    await sleep_with_jitter(delays[attempt - 1])

        self.stats.fallbacks += 1
        log.warning("oracle_fallback", oracle=self.oracle.name, signal_type=ctx.signal_type)
        return rule_based_price(ctx, self.cfg), "fallback"

    async def _publish(self, record: PriceRecord) -> None:
        try:
            await self.publisher.publish(record)
        except Exception as e:
            # persisted price stands
            self.stats.publish_failures += 1
            log.warning("price_publish_failed", err=str(e), price=record.get("price"))
