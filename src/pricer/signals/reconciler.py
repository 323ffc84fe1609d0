from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import numpy as np
import structlog

from pricer.errors import ConfigError
from pricer.signals.router import SignalRouter
from pricer.state.signal_store import SignalStore
from pricer.utils.time import iso_utc, parse_iso_s, utc_now_s
from pricer.utils.types import MarketSignal, SIGNAL_TYPES

log = structlog.get_logger("reconciler")


@dataclass(slots=True)
class ReconcilerConfig:
    interval_s: float = 60.0        # tick cadence
    window_s: float = 60.0          # trailing window for view velocity
    min_views_for_surge: int = 5    # count must exceed this to form a candidate


@dataclass(slots=True)
class TickReport:
    started_at: float
    view_count: int = 0
    total_events: int = 0
    candidates: list[str] = field(default_factory=list)
    emitted: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    pruned: int = 0


def in_window(values: list[Any], cutoff: float) -> list[bool]:
    """Per value: a view event dict with a parseable timestamp at or after cutoff (epoch s)."""
    if not values:
        return []
    ts = np.full(len(values), np.nan, dtype=np.float64)
    for i, v in enumerate(values):
        raw = v.get("ts") if isinstance(v, dict) else None
        if not raw:
            continue
        try:
            ts[i] = parse_iso_s(str(raw))
        except ValueError:
            continue
    return (ts >= cutoff).tolist()  # NaN compares False


class PeriodicReconciler:
    """
    Fixed-cadence pass over shared state:
      1) read raw view events, keep those inside the trailing window
      2) view count → demand_surge candidate (when above min_views_for_surge)
      3) stored manual/debug signals → one candidate per type (consumed)
      4) route each candidate (significance gate → engine), once per type per tick
      5) delete the view events that were outside the window when read

    Sole writer allowed to delete from the view log. Events appended while a
    tick runs are never touched by it. A failure for one type is
    recorded and the tick carries on; ConfigError stops the loop.
    """

    def __init__(
        self,
        store: SignalStore,
        router: SignalRouter,
        cfg: Optional[ReconcilerConfig] = None,
        clock: Callable[[], float] = utc_now_s,
    ):
        self.store = store
        self.router = router
        self.cfg = cfg or ReconcilerConfig()
        self._clock = clock
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[TickReport] = None

    async def start(self) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="reconciler")

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except (asyncio.CancelledError, ConfigError):
                pass

    async def wait(self) -> None:
        """Await the loop task; re-raises what stopped it."""
        if self._task:
            await self._task

    async def _loop(self) -> None:
        try:
            while not self._stop.is_set():
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.cfg.interval_s)
                    break
                except asyncio.TimeoutError:
                    pass
                await self.tick()
        except asyncio.CancelledError:
            return

    # ---------- one pass ----------

    async def tick(self) -> TickReport:
        now = self._clock()
        report = TickReport(started_at=now)
        log.info("tick_started")

        try:
            entries = await self.store.get_view_log()
        except Exception as e:
            log.error("tick_read_views_failed", err=str(e))
            report.failures["raw_view_events"] = str(e)
            entries = []
        keep = in_window([v for _, v in entries], now - self.cfg.window_s)
        stale_ids = [event_id for (event_id, _), k in zip(entries, keep) if not k]
        view_count = len(entries) - len(stale_ids)
        report.total_events = len(entries)
        report.view_count = view_count
        log.info("tick_view_velocity", recent=view_count, total=len(entries), window_s=self.cfg.window_s)

        for signal_type in SIGNAL_TYPES:
            try:
                candidate = await self._candidate(signal_type, view_count, now)
                if candidate is None:
                    continue
                report.candidates.append(signal_type)
                verdict = await self.router.route(candidate)
                if verdict is not None and verdict.significant:
                    report.emitted.append(signal_type)
            except ConfigError:
                raise
            except Exception as e:
                log.error("tick_signal_failed", signal_type=signal_type, err=str(e))
                report.failures[signal_type] = str(e)

        if stale_ids:
            try:
                await self.store.delete_view_events(stale_ids)
                report.pruned = len(stale_ids)
                log.debug("tick_pruned", removed=report.pruned, kept=view_count)
            except Exception as e:
                log.error("tick_prune_failed", err=str(e))
                report.failures["prune"] = str(e)

        self.last_report = report
        log.info("tick_completed", emitted=report.emitted, failures=len(report.failures))
        return report

    async def _candidate(self, signal_type: str, view_count: int, now: float) -> Optional[MarketSignal]:
        stored = await self.store.pop_manual_signal(signal_type)
        if stored is not None:
            return stored
        if signal_type == "demand_surge" and view_count > self.cfg.min_views_for_surge:
            return MarketSignal(
                type="demand_surge",
                value=float(view_count),
                timestamp=iso_utc(now),
                source="cron",
                reason=f"High traffic velocity: {view_count} views in last {self.cfg.window_s:g}s",
            )
        return None
