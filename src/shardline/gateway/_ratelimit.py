from __future__ import annotations

import asyncio
import logging
import time
import typing
from collections.abc import Awaitable, Callable, Sequence

__all__: Sequence[str] = ("IdentifyGate", "WindowLimiter")


@typing.final
class WindowLimiter:
    """Fixed window limiter: at most ``limit`` acquisitions every ``period`` seconds."""

    def __init__(
        self,
        limit: int,
        period: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.limit: int = limit
        self.period: float = period
        self._clock: Callable[[], float] = clock
        self._sleep: Callable[[float], Awaitable[None]] = sleep
        self._remaining: int = limit
        self._reset_at: float = float("-inf")
        self._lock: asyncio.Lock = asyncio.Lock()

    @property
    def remaining(self) -> int:
        if self._clock() >= self._reset_at:
            return self.limit
        return self._remaining

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            if now >= self._reset_at:
                self._reset_at = now + self.period
                self._remaining = self.limit
            elif self._remaining <= 0:
                await self._sleep(self._reset_at - now)
                self._reset_at = self._clock() + self.period
                self._remaining = self.limit
            self._remaining -= 1


@typing.final
class IdentifyGate:
    """Admission control for new sessions, shared by every shard of one application.

    The upstream lets ``max_concurrency`` shards identify per ``period``, bucketed by
    ``shard_id % max_concurrency``. The gate is in-process only.
    """

    _logger: logging.Logger = logging.getLogger("shardline.identify")

    def __init__(
        self,
        max_concurrency: int = 1,
        period: float = 5.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency: int = max_concurrency
        self.period: float = period
        self._clock: Callable[[], float] = clock
        self._sleep: Callable[[float], Awaitable[None]] = sleep
        self._locks: list[asyncio.Lock] = [asyncio.Lock() for _ in range(max_concurrency)]
        self._last_identify: list[float] = [float("-inf")] * max_concurrency

    def bucket(self, shard_id: int) -> int:
        return shard_id % self.max_concurrency

    async def acquire(self, shard_id: int = 0) -> None:
        bucket = self.bucket(shard_id)
        async with self._locks[bucket]:
            wait = self._last_identify[bucket] + self.period - self._clock()
            if wait > 0:
                self._logger.debug("shard %s waits %.2fs for identify bucket %s", shard_id, wait, bucket)
                await self._sleep(wait)
            self._last_identify[bucket] = self._clock()
