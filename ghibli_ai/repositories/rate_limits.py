"""In-process fixed-window rate limiting."""

from __future__ import annotations

import asyncio
import contextlib
import math
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict

import structlog

from ..domain.rate_limits import RateLimitEntry, RateLimitStatus

logger = structlog.get_logger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class RateLimitRepository(ABC):
    """Interface describing operations for tracking request quotas."""

    @abstractmethod
    async def hit(self, key: str, max_requests: int, window_ms: int) -> RateLimitStatus:
        """Record a request and return the latest quota status."""

    async def is_allowed(self, key: str, max_requests: int, window_ms: int) -> bool:
        status = await self.hit(key, max_requests, window_ms)
        return status.allowed


class InMemoryRateLimitRepository(RateLimitRepository):
    """Fixed-window counter table owned by a single process.

    The window for a key starts on its first request and resets once the
    clock passes ``reset_time``; bursts straddling a boundary are not smoothed.
    Lookups and increments share one lock so concurrent requests for the same
    key never lose updates. Expired entries are deleted by a sweep task started
    with :meth:`start` and stopped with :meth:`stop`.
    """

    def __init__(
        self,
        *,
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    async def hit(self, key: str, max_requests: int, window_ms: int) -> RateLimitStatus:
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or entry.expired(now):
                self._entries[key] = RateLimitEntry(key=key, count=1, reset_time_ms=now + window_ms)
                return RateLimitStatus(
                    allowed=True,
                    limit=max_requests,
                    remaining=max(max_requests - 1, 0),
                    retry_after_seconds=0,
                )

            if entry.count >= max_requests:
                retry_after = math.ceil(max(entry.reset_time_ms - now, 0) / 1000)
                return RateLimitStatus(
                    allowed=False,
                    limit=max_requests,
                    remaining=0,
                    retry_after_seconds=retry_after,
                )

            entry.count += 1
            return RateLimitStatus(
                allowed=True,
                limit=max_requests,
                remaining=max(max_requests - entry.count, 0),
                retry_after_seconds=0,
            )

    async def cleanup(self) -> int:
        """Delete every entry whose window has passed; return how many went."""

        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("rate_limit.swept", removed=len(expired), remaining=len(self._entries))
        return len(expired)

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""

        if self.running:
            return
        self._sweeper = asyncio.create_task(self._sweep_forever(), name="rate-limit-sweeper")

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.cleanup()
            except Exception:  # pragma: no cover - keep the sweeper alive
                logger.exception("rate_limit.sweep_failed")
