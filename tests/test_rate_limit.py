"""Sliding-window rate limiting, in-process and Redis-backed."""

import asyncio

import fakeredis
import pytest

from app.platform.adapters.ratelimit_memory import InMemoryRateLimiter
from app.platform.adapters.ratelimit_redis import RedisRateLimiter


class FakeClock:
    def __init__(self, t: float = 1_000_000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float):
        self.t += seconds


class TestInMemoryRateLimiter:
    async def test_101st_push_in_an_hour_is_rejected(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)
        for _ in range(100):
            assert await limiter.acquire("u1", ["push"]) is None
            clock.advance(1)
        hit = await limiter.acquire("u1", ["push"])
        assert hit is not None
        channel, retry_after = hit
        assert channel == "push"
        assert 0 < retry_after <= 3600

    async def test_window_slides(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)
        for _ in range(100):
            await limiter.acquire("u1", ["push"])
        assert await limiter.acquire("u1", ["push"]) is not None
        clock.advance(3600)
        assert await limiter.acquire("u1", ["push"]) is None

    async def test_rejection_counts_nothing(self):
        limiter = InMemoryRateLimiter(limits={"email": 5, "whatsapp": 1}, clock=FakeClock())
        assert await limiter.acquire("u1", ["whatsapp"]) is None
        for _ in range(3):
            assert await limiter.acquire("u1", ["email", "whatsapp"]) == ("whatsapp", 3600.0)
        # email was never charged for the rejected calls
        for _ in range(5):
            assert await limiter.acquire("u1", ["email"]) is None
        assert (await limiter.acquire("u1", ["email"]))[0] == "email"

    async def test_users_are_independent(self):
        limiter = InMemoryRateLimiter(limits={"whatsapp": 1}, clock=FakeClock())
        assert await limiter.acquire("u1", ["whatsapp"]) is None
        assert await limiter.acquire("u2", ["whatsapp"]) is None
        assert await limiter.acquire("u1", ["whatsapp"]) is not None

    async def test_expired_keys_are_forgotten(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(limits={"email": 1, "push": 1}, clock=clock)
        await limiter.acquire("u1", ["email"])
        clock.advance(1800)
        await limiter.acquire("u1", ["push"])
        clock.advance(1800)
        # email expired and is gone, push still counts
        assert await limiter.acquire("u1", ["email", "push"]) == ("push", 1800.0)
        assert ("u1", "email") not in limiter._hits
        assert await limiter.acquire("u2", ["push"]) is None
        clock.advance(3600)
        await limiter.acquire("u3", ["sms"])
        await limiter.acquire("u2", ["email"])
        assert set(limiter._hits) == {("u2", "email")}

    async def test_concurrent_acquires_never_exceed_cap(self):
        limiter = InMemoryRateLimiter(limits={"sms": 20}, clock=FakeClock())
        results = await asyncio.gather(*[limiter.acquire("u1", ["sms"]) for _ in range(50)])
        assert sum(1 for r in results if r is None) == 20

    async def test_reset(self):
        limiter = InMemoryRateLimiter(limits={"sms": 1}, clock=FakeClock())
        await limiter.acquire("u1", ["sms"])
        await limiter.reset("u1")
        assert await limiter.acquire("u1", ["sms"]) is None


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis()


class TestRedisRateLimiter:
    async def test_cap_and_slide(self, redis_client):
        clock = FakeClock()
        limiter = RedisRateLimiter(redis_client, limits={"whatsapp": 10}, clock=clock)
        for _ in range(10):
            assert await limiter.acquire("u1", ["whatsapp"]) is None
            clock.advance(1)
        channel, retry_after = await limiter.acquire("u1", ["whatsapp"])
        assert channel == "whatsapp"
        assert retry_after == pytest.approx(3590, abs=1)
        clock.advance(3600)
        assert await limiter.acquire("u1", ["whatsapp"]) is None

    async def test_rejection_counts_nothing(self, redis_client):
        limiter = RedisRateLimiter(redis_client, limits={"email": 2, "whatsapp": 1}, clock=FakeClock())
        assert await limiter.acquire("u1", ["whatsapp"]) is None
        assert (await limiter.acquire("u1", ["email", "whatsapp"]))[0] == "whatsapp"
        assert await limiter.acquire("u1", ["email"]) is None
        assert await limiter.acquire("u1", ["email"]) is None
        assert (await limiter.acquire("u1", ["email"]))[0] == "email"

    async def test_shared_between_instances(self, redis_client):
        clock = FakeClock()
        a = RedisRateLimiter(redis_client, limits={"sms": 2}, clock=clock)
        b = RedisRateLimiter(redis_client, limits={"sms": 2}, clock=clock)
        assert await a.acquire("u1", ["sms"]) is None
        assert await b.acquire("u1", ["sms"]) is None
        assert await a.acquire("u1", ["sms"]) is not None

    async def test_unlimited_channel_passes(self, redis_client):
        limiter = RedisRateLimiter(redis_client, limits={}, clock=FakeClock())
        assert await limiter.acquire("u1", ["inapp"]) is None

    async def test_reset_user(self, redis_client):
        limiter = RedisRateLimiter(redis_client, limits={"sms": 1}, clock=FakeClock())
        await limiter.acquire("u1", ["sms"])
        await limiter.reset("u1")
        assert await limiter.acquire("u1", ["sms"]) is None
