"""Fixed-window rate limiting behaviour."""

import asyncio

import pytest

from ghibli_ai.repositories.rate_limits import InMemoryRateLimitRepository


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_window_admits_limit_then_blocks_until_reset():
    clock = FakeClock()
    repo = InMemoryRateLimitRepository(clock=clock)

    results = [await repo.is_allowed("generate:1.2.3.4", 3, 1000) for _ in range(4)]
    assert results == [True, True, True, False]

    clock.now = 1001
    assert await repo.is_allowed("generate:1.2.3.4", 3, 1000) is True


@pytest.mark.asyncio
async def test_blocked_status_reports_retry_after():
    clock = FakeClock()
    repo = InMemoryRateLimitRepository(clock=clock)
    for _ in range(2):
        await repo.hit("k", 2, 60_000)

    clock.now = 15_500
    status = await repo.hit("k", 2, 60_000)

    assert status.allowed is False
    assert status.remaining == 0
    assert status.retry_after_seconds == 45
    assert status.headers() == {
        "X-RateLimit-Limit": "2",
        "X-RateLimit-Remaining": "0",
        "Retry-After": "45",
    }


@pytest.mark.asyncio
async def test_keys_are_counted_independently():
    repo = InMemoryRateLimitRepository(clock=FakeClock())

    assert await repo.is_allowed("a", 1, 1000)
    assert not await repo.is_allowed("a", 1, 1000)
    assert await repo.is_allowed("b", 1, 1000)


@pytest.mark.asyncio
async def test_concurrent_hits_never_exceed_limit():
    repo = InMemoryRateLimitRepository(clock=FakeClock())

    results = await asyncio.gather(*(repo.is_allowed("burst", 10, 1000) for _ in range(50)))

    assert sum(results) == 10


@pytest.mark.asyncio
async def test_cleanup_removes_only_expired_entries():
    clock = FakeClock()
    repo = InMemoryRateLimitRepository(clock=clock)
    await repo.hit("old", 5, 100)
    clock.now = 50
    await repo.hit("fresh", 5, 1000)

    clock.now = 200
    removed = await repo.cleanup()

    assert removed == 1
    assert len(repo) == 1


@pytest.mark.asyncio
async def test_sweeper_starts_and_stops():
    repo = InMemoryRateLimitRepository(sweep_interval_seconds=0.01)

    repo.start()
    assert repo.running
    await repo.stop()
    assert not repo.running
