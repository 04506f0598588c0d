import threading
import time
from collections import deque
from typing import Callable

from app.core.config import settings
from app.platform.ports.rate_limiter import RateLimiterPort

class InMemoryRateLimiter(RateLimiterPort):
    """Sliding-window log per (user, channel), process local."""

    def __init__(self, limits: dict[str, int] | None = None, window_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.limits = dict(limits if limits is not None else settings.RATE_LIMITS)
        self.window = float(window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS)
        self.clock = clock
        self._hits: dict[tuple[str, str], deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep: float | None = None

    def _prune(self, key: tuple[str, str], now: float) -> int:
        hits = self._hits.get(key)
        if hits is None:
            return 0
        while hits and hits[0] <= now - self.window:
            hits.popleft()
        if not hits:
            del self._hits[key]
            return 0
        return len(hits)

    async def acquire(self, user_id: str, channels: list[str]) -> tuple[str, float] | None:
        with self._lock:
            now = self.clock()
            if self._last_sweep is None or now - self._last_sweep >= self.window:
                # once per window, drop users that went quiet
                for key in list(self._hits):
                    self._prune(key, now)
                self._last_sweep = now
            for ch in channels:
                cap = self.limits.get(ch)
                if cap is None:
                    continue
                if self._prune((user_id, ch), now) >= cap:
                    return ch, max(0.0, self._hits[(user_id, ch)][0] + self.window - now)
            for ch in channels:
                if ch in self.limits:
                    self._hits.setdefault((user_id, ch), deque()).append(now)
            return None

    async def reset(self, user_id: str | None = None) -> None:
        with self._lock:
            if user_id is None:
                self._hits.clear()
            else:
                for key in [k for k in self._hits if k[0] == user_id]:
                    del self._hits[key]
