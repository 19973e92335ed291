# rate_limiter.py
# Fixed-window request counter. The store is a plain mapping of key -> record;
# a shared store (redis hash, db table) can be passed in place of the dict as
# long as it supports get/set/delete/items.
import threading
import time
from dataclasses import dataclass
from typing import Callable, MutableMapping, Optional


@dataclass
class RateLimitRecord:
    count: int
    reset_at: float  # epoch seconds


@dataclass
class RateLimitResult:
    success: bool
    remaining: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        store: Optional[MutableMapping[str, RateLimitRecord]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.store: MutableMapping[str, RateLimitRecord] = store if store is not None else {}
        self._clock = clock
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            self._clean_expired(now)

            record = self.store.get(key)
            if record is None:
                record = RateLimitRecord(count=0, reset_at=now + self.window_seconds)
            elif now > record.reset_at:
                record.count = 0
                record.reset_at = now + self.window_seconds

            record.count += 1
            self.store[key] = record

            return RateLimitResult(
                success=record.count <= self.max_requests,
                remaining=max(0, self.max_requests - record.count),
                reset_at=record.reset_at,
            )

    def reset(self) -> None:
        with self._lock:
            self.store.clear()

    def _clean_expired(self, now: float) -> None:
        expired = [k for k, r in list(self.store.items()) if now > r.reset_at]
        for k in expired:
            del self.store[k]
