"""
Keyed fixed-window counters.

``RateLimiter`` only talks to a ``CounterStore``. The in-memory store
below is process-local: counts are not shared between server
instances, so a multi-instance deployment needs a store backed by a
shared cache that implements the same three methods.
"""
import threading
from collections import namedtuple
from time import time

from errors import RateLimitError

RateLimitResult = namedtuple("RateLimitResult", "allowed remaining reset_at retry_after")


class CounterStore:
    def incr(self, key: str, window_seconds: float, limit: int):
        """Count one hit for ``key`` unless ``limit`` is already reached.

        Returns ``(count, reset_at, counted)``.
        """
        raise NotImplementedError

    def reset(self, key: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class MemoryCounterStore(CounterStore):
    def __init__(self, clock=time, prune_interval=60):
        self._clock = clock
        self._lock = threading.Lock()
        self._windows = {}
        self.prune_interval = prune_interval
        self._last_prune = clock()

    def _drop_expired(self, now) -> int:
        expired = [k for k, (_, reset_at) in self._windows.items() if now >= reset_at]
        for k in expired:
            del self._windows[k]
        self._last_prune = now
        return len(expired)

    def incr(self, key, window_seconds, limit):
        now = self._clock()
        with self._lock:
            if now - self._last_prune >= self.prune_interval:
                self._drop_expired(now)

            entry = self._windows.get(key)
            if entry is None or now >= entry[1]:
                entry = [1, now + window_seconds]
                self._windows[key] = entry
                return 1, entry[1], True

            if entry[0] >= limit:
                return entry[0], entry[1], False

            entry[0] += 1
            return entry[0], entry[1], True

    def reset(self, key):
        with self._lock:
            self._windows.pop(key, None)

    def clear(self):
        with self._lock:
            self._windows.clear()

    def prune(self) -> int:
        with self._lock:
            return self._drop_expired(self._clock())

    def __len__(self):
        return len(self._windows)


class RateLimiter:
    def __init__(self, store: CounterStore, max_hits: int, window_seconds: float,
                 prefix: str = "", message: str = None, clock=time):
        self.store = store
        self.max_hits = max_hits
        self.window_seconds = window_seconds
        self.prefix = prefix
        self.message = message
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.max_hits > 0

    def _key(self, key) -> str:
        return f"{self.prefix}:{key}" if self.prefix else str(key)

    def hit(self, key) -> RateLimitResult:
        if not self.enabled:
            return RateLimitResult(True, 0, 0.0, 0)

        count, reset_at, counted = self.store.incr(self._key(key), self.window_seconds, self.max_hits)
        if not counted:
            retry_after = max(int(reset_at - self._clock()) + 1, 1)
            return RateLimitResult(False, 0, reset_at, retry_after)
        return RateLimitResult(True, self.max_hits - count, reset_at, 0)

    def check(self, key) -> RateLimitResult:
        result = self.hit(key)
        if not result.allowed:
            raise RateLimitError(self.message, retry_after=result.retry_after)
        return result

    def reset(self, key) -> None:
        self.store.reset(self._key(key))
