from __future__ import annotations

import asyncio
import logging
import random
import time
import typing
from collections.abc import Awaitable, Callable, Sequence

__all__: Sequence[str] = ("HeartbeatMonitor",)


@typing.final
class HeartbeatMonitor:
    """Keeps a connection alive and notices when the other side stops answering.

    ``send`` writes one heartbeat frame. ``on_timeout`` is awaited at most once per
    :meth:`run` when a beat is still unacknowledged at the next tick.
    """

    _logger: logging.Logger = logging.getLogger("shardline.heartbeat")

    def __init__(
        self,
        send: Callable[[], Awaitable[None]],
        on_timeout: Callable[[], Awaitable[None]],
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._send: Callable[[], Awaitable[None]] = send
        self._on_timeout: Callable[[], Awaitable[None]] = on_timeout
        self._rng: random.Random = rng or random.Random()
        self._clock: Callable[[], float] = clock
        self._sleep: Callable[[float], Awaitable[None]] = sleep
        if logger is not None:
            self._logger = logger

        self.interval: float = float("nan")
        self.ack_received: bool = True
        self._last_heartbeat_sent: float = float("nan")
        self._last_heartbeat_ack: float = float("nan")
        self._task: asyncio.Task[None] | None = None

    @property
    def latency(self) -> float:
        return self._last_heartbeat_ack - self._last_heartbeat_sent

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def first_delay(self, interval: float) -> float:
        return self._rng.random() * interval

    def start(self, interval_ms: int) -> None:
        self.stop()
        self._task = asyncio.create_task(self.run(interval_ms / 1_000.0), name="heartbeat")

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def ack(self) -> None:
        self._last_heartbeat_ack = self._clock()
        self.ack_received = True
        self._logger.debug("heartbeat acknowledged, latency %.3fs", self.latency)

    async def beat(self, *, scheduled: bool = True) -> None:
        # Beats requested by the other side leave the ack bookkeeping of the schedule alone.
        await self._send()
        if scheduled:
            self._last_heartbeat_sent = self._clock()
            self.ack_received = False

    async def run(self, interval: float) -> None:
        self.interval = interval
        self.ack_received = True
        self._logger.debug("starting heartbeat with %ss interval", interval)

        await self._sleep(self.first_delay(interval))
        while True:
            if not self.ack_received:
                self._logger.warning("heartbeat not acknowledged within %ss, zombie connection", interval)
                await self._on_timeout()
                return
            await self.beat()
            await self._sleep(interval)
