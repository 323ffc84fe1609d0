from __future__ import annotations

from typing import Optional

import structlog

from pricer.engine.decision import PricingDecisionEngine
from pricer.signals.dedup import TTLDeduper
from pricer.signals.evaluator import Significance, SignificanceEvaluator
from pricer.state.signal_store import SignalStore
from pricer.utils.types import MarketSignal

log = structlog.get_logger("signal_router")


class SignalRouter:
    """
    Single path from a MarketSignal to the decision engine:
    dedupe → significance gate → engine.decide().

    Shared by the ingestion worker and the reconciler so a signal that reaches
    both is acted on once.
    """

    def __init__(
        self,
        store: SignalStore,
        evaluator: SignificanceEvaluator,
        engine: PricingDecisionEngine,
        dedupe_ttl_s: float = 600.0,
    ):
        self.store = store
        self.evaluator = evaluator
        self.engine = engine
        self._dedupe = TTLDeduper(ttl_s=dedupe_ttl_s, max_size=10_000)

    def forget(self) -> None:
        self._dedupe.clear()

    async def route(self, signal: MarketSignal) -> Optional[Significance]:
        """
        Returns the significance verdict, or None for a duplicate delivery.
        ConfigError and PersistenceError from the engine propagate.
        """
        if self._dedupe.check_and_mark(signal.dedupe_key):
            log.info("signal_duplicate_skipped", signal_type=signal.type, value=signal.value,
                     timestamp=signal.timestamp)
            return None

        if signal.human_triggered:
            # stored copy exists only so the reconciler can pick up dropped signals
            await self.store.consume_manual_signal(signal)

        verdict = await self.evaluator.evaluate(signal)
        if verdict.significant:
            await self.engine.decide(signal)
        return verdict
