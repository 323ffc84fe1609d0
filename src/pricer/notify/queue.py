from __future__ import annotations
import asyncio
from dataclasses import dataclass

@dataclass(slots=True)
class QueueStats:
    enq_ok: int = 0
    enq_replaced: int = 0   # oldest record evicted to make room
    deq_ok: int = 0

class NotifyQueue:
    """
    Bounded, non-blocking subscriber queue for price records.
    - try_put(rec) never blocks; when full it evicts the oldest record, so a
      slow subscriber still ends up with the latest price
    - get() awaits like a normal queue
    """
    def __init__(self, maxsize: int = 2000):
        self._q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.stats = QueueStats()

    def try_put(self, rec) -> bool:
        """True if nothing was evicted."""
        evicted = False
        if self._q.full():
            try:
                self._q.get_nowait()
                self.stats.enq_replaced += 1
                evicted = True
            except asyncio.QueueEmpty:
                pass
        self._q.put_nowait(rec)
        self.stats.enq_ok += 1
        return not evicted

    async def get(self):
        item = await self._q.get()
        self.stats.deq_ok += 1
        return item

    def get_nowait(self):
        item = self._q.get_nowait()
        self.stats.deq_ok += 1
        return item

    def qsize(self) -> int:
        return self._q.qsize()
