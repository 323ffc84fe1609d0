from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import structlog

from pricer.signals.rules import DEFAULT_RULES, SignificanceRule
from pricer.state.signal_store import SignalStore
from pricer.utils.time import parse_iso_s, utc_now_s
from pricer.utils.types import MarketSignal

log = structlog.get_logger("significance")


def pct_change(new_value: float, last_value: float) -> float:
    if last_value == 0:
        return 1.0
    return abs(new_value - last_value) / abs(last_value)


def is_significant(
    signal_type: str,
    new_value: float,
    last_value: Optional[float],
    rules: Mapping[str, SignificanceRule] = DEFAULT_RULES,
) -> bool:
    """
    Pure significance gate.
    - no prior value  → significant (first signal of a kind always gets through)
    - last value of 0 → significant (no meaningful percentage)
    - otherwise the per-type rule decides
    """
    if last_value is None or last_value == 0:
        return True
    rule = rules.get(signal_type)
    if rule is None:
        return False
    delta = new_value - last_value
    return rule.passes(delta, pct_change(new_value, last_value))


@dataclass(slots=True)
class Significance:
    signal: MarketSignal
    significant: bool
    last_value: Optional[float]
    pct_change: float
    why: str


class SignificanceEvaluator:
    """
    Stateful wrapper around is_significant(): reads the last-seen value of the
    signal's type, decides, and always records the new value.

    The read-decide-write sequence runs under a per-type lock so two concurrent
    evaluations cannot both see "no prior value".
    """

    def __init__(
        self,
        store: SignalStore,
        rules: Optional[Mapping[str, SignificanceRule]] = None,
        manual_freshness_s: float = 120.0,
        clock: Callable[[], float] = utc_now_s,
    ):
        self.store = store
        self.rules = dict(rules) if rules is not None else dict(DEFAULT_RULES)
        self.manual_freshness_s = manual_freshness_s
        self._clock = clock

    def _is_fresh_human(self, signal: MarketSignal) -> bool:
        if not signal.human_triggered:
            return False
        try:
            age = self._clock() - parse_iso_s(signal.timestamp)
        except ValueError:
            return False
        return age < self.manual_freshness_s

    async def evaluate(self, signal: MarketSignal) -> Significance:
        async with self.store.type_lock(signal.type):
            last = await self.store.get_signal_memory(signal.type)
            pct = 1.0 if last is None else pct_change(signal.value, last)

            if last is None:
                significant, why = True, "first_of_type"
            elif self._is_fresh_human(signal):
                significant, why = True, "fresh_human_trigger"
            elif is_significant(signal.type, signal.value, last, self.rules):
                significant, why = True, "threshold"
            else:
                significant, why = False, "below_threshold"

            # written whether or not the change was significant
            await self.store.set_signal_memory(signal.type, signal.value)

        log.info(
            "signal_evaluated",
            signal_type=signal.type,
            value=signal.value,
            last_value=last,
            pct_change=round(pct, 4),
            significant=significant,
            why=why,
            source=signal.source,
        )
        return Significance(signal, significant, last, pct, why)
