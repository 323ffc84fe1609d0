# src/pricer/publish/notifiers.py
from __future__ import annotations
import structlog
from typing import Callable, Optional

log = structlog.get_logger("notifier")

class ConsoleNotifier:
    """Prints price records; falls back to a raw one-liner if formatting breaks."""
    def __init__(self, format_fn: Optional[Callable[[dict], str]] = None):
        self._format_fn = format_fn

    async def send(self, rec: dict):
        if self._format_fn:
            try:
                print(self._format_fn(rec), flush=True)
                return
            except Exception as e:
                log.warning("console_format_failed", err=str(e))
        print(f"[PRICE] {rec.get('decision')} {rec.get('previous_price')} -> {rec.get('price')} "
              f"reason={rec.get('reason')}", flush=True)
