from __future__ import annotations
import time

class TTLDeduper:
    """
    TTL-based dedupe cache with max size. Keys expire after ttl_s.
    Used to drop re-delivered signals before they reach the evaluator.
    """
    def __init__(self, ttl_s: float, max_size: int = 10_000):
        self.ttl_s = ttl_s
        self.max_size = max_size
        self._store: dict[str, float] = {}  # key -> expire_ts

    def _now(self) -> float:
        return time.time()

    def seen_recently(self, key: str) -> bool:
        now = self._now()
        exp = self._store.get(key)
        if exp is None:
            return False
        if exp < now:
            self._store.pop(key, None)
            return False
        return True

    def mark(self, key: str) -> None:
        if len(self._store) >= self.max_size:
            self._evict()
        self._store[key] = self._now() + self.ttl_s

    def check_and_mark(self, key: str) -> bool:
        """True if `key` was already seen; marks it otherwise."""
        if self.seen_recently(key):
            return True
        self.mark(key)
        return False

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    def _evict(self) -> None:
        now = self._now()
        for k, exp in list(self._store.items()):
            if exp < now:
                self._store.pop(k, None)
        # still full: drop oldest quarter (dicts keep insertion order)
        if len(self._store) >= self.max_size:
            for k in list(self._store)[: max(1, self.max_size // 4)]:
                self._store.pop(k, None)
