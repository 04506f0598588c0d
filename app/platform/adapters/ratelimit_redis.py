import logging
import time
import uuid
from typing import Callable

from app.core.config import settings
from app.platform.ports.rate_limiter import RateLimiterPort

log = logging.getLogger("ratelimit.redis")

# KEYS: one sorted set per channel. ARGV: now_ms, window_ms, member, cap per key.
# Checks every key before counting any, so a rejected batch leaves no trace.
ACQUIRE_LUA = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
for i, key in ipairs(KEYS) do
  redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
  local cap = tonumber(ARGV[3 + i])
  if redis.call('ZCARD', key) >= cap then
    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    local retry = window
    if oldest[2] then retry = tonumber(oldest[2]) + window - now end
    return {i, retry}
  end
end
for i, key in ipairs(KEYS) do
  redis.call('ZADD', key, now, ARGV[3] .. ':' .. i)
  redis.call('PEXPIRE', key, window)
end
return {0, 0}
"""

class RedisRateLimiter(RateLimiterPort):
    """Sliding window shared by every instance, one Lua call per acquire."""

    def __init__(self, redis, limits: dict[str, int] | None = None, window_seconds: float | None = None, clock: Callable[[], float] = time.time):
        self.redis = redis
        self.limits = dict(limits if limits is not None else settings.RATE_LIMITS)
        self.window_ms = int(float(window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS) * 1000)
        self.clock = clock
        self.prefix = settings.RATE_LIMIT_PREFIX
        self._script = redis.register_script(ACQUIRE_LUA)

    def _key(self, user_id: str, channel: str) -> str:
        return f"{self.prefix}:{user_id}:{channel}"

    async def acquire(self, user_id: str, channels: list[str]) -> tuple[str, float] | None:
        limited = [ch for ch in channels if ch in self.limits]
        if not limited:
            return None
        now_ms = int(self.clock() * 1000)
        keys = [self._key(user_id, ch) for ch in limited]
        args = [now_ms, self.window_ms, uuid.uuid4().hex] + [self.limits[ch] for ch in limited]
        idx, retry_ms = await self._script(keys=keys, args=args)
        if int(idx) == 0:
            return None
        channel = limited[int(idx) - 1]
        log.debug(f"rate limit hit user={user_id} channel={channel}")
        return channel, max(0.0, int(retry_ms) / 1000)

    async def reset(self, user_id: str | None = None) -> None:
        if user_id is None:
            keys = [k async for k in self.redis.scan_iter(match=f"{self.prefix}:*")]
        else:
            keys = [self._key(user_id, ch) for ch in self.limits]
        if keys:
            await self.redis.delete(*keys)
