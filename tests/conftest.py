"""Shared fixtures: an in-memory transport the gateway can be driven through."""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from msgspec import json
from yarl import URL

from shardline.config import GatewayConfig
from shardline.gateway import EnvelopeCodec, Gateway, GatewayListener, GatewayPayload, OpCode

READY_DATA: dict[str, Any] = {
    "v": 10,
    "user": {"id": "80351110224678912", "username": "shardline", "discriminator": "0", "bot": True},
    "guilds": [{"id": "41771983423143937", "unavailable": True}],
    "session_id": "abc",
    "resume_gateway_url": "wss://resume.example",
    "shard": [0, 1],
    "application": {"id": "1234", "flags": 0},
}


def frame(op: OpCode, d: Any = None, *, s: int | None = None, t: str | None = None) -> bytes:
    return json.encode({"op": int(op), "d": d, "s": s, "t": t})


class FakeTransport:
    def __init__(self, *, auto_ack: bool = False) -> None:
        self.auto_ack: bool = auto_ack
        self.sent: list[GatewayPayload] = []
        self.sent_raw: list[dict[str, Any]] = []
        self.closed_with: int | None = None
        self._close_code: int | None = None
        self._inbound: asyncio.Queue[bytes | int | None] = asyncio.Queue()
        self._codec = EnvelopeCodec()

    @property
    def close_code(self) -> int | None:
        return self._close_code

    def feed(self, op: OpCode, d: Any = None, *, s: int | None = None, t: str | None = None) -> None:
        self._inbound.put_nowait(frame(op, d, s=s, t=t))

    def feed_raw(self, data: bytes) -> None:
        self._inbound.put_nowait(data)

    def hello(self, interval: int = 41250) -> None:
        self.feed(OpCode.HELLO, {"heartbeat_interval": interval})

    def dispatch(self, t: str, d: Any, s: int) -> None:
        self.feed(OpCode.DISPATCH, d, s=s, t=t)

    def server_close(self, code: int) -> None:
        self._inbound.put_nowait(code)

    def commands(self, op: OpCode) -> list[GatewayPayload]:
        return [payload for payload in self.sent if payload.op is op]

    async def send(self, data: bytes) -> None:
        self.sent_raw.append(json.decode(data))
        payload = self._codec.decode(data)
        self.sent.append(payload)
        if self.auto_ack and payload.op is OpCode.HEARTBEAT:
            self.feed(OpCode.HEARTBEAT_ACK)

    async def receive(self) -> AsyncIterator[bytes | str]:
        while True:
            item = await self._inbound.get()
            if item is None or isinstance(item, int):
                if self._close_code is None:
                    self._close_code = item
                return
            yield item

    async def close(self, code: int = 1000) -> None:
        if self.closed_with is None:
            self.closed_with = code
            if self._close_code is None:
                self._close_code = code
            self._inbound.put_nowait(None)


class FakeTransportFactory:
    """Hands out the given transports in order, then fresh ones."""

    def __init__(self, *transports: FakeTransport, auto_hello: bool = False) -> None:
        self.pending: list[FakeTransport] = list(transports)
        self.opened: list[FakeTransport] = []
        self.urls: list[URL] = []
        self.auto_hello: bool = auto_hello

    async def __call__(self, url: URL) -> FakeTransport:
        self.urls.append(url)
        if self.pending:
            transport = self.pending.pop(0)
        else:
            transport = FakeTransport()
            if self.auto_hello:
                transport.hello()
        self.opened.append(transport)
        return transport


class RecordingListener(GatewayListener):
    def __init__(self) -> None:
        self.ready: list[Any] = []
        self.events: list[tuple[str, Any]] = []
        self.disconnects: list[tuple[Exception, bool]] = []
        self.fatal: list[Exception] = []

    async def on_ready(self, gateway: Gateway, ready: Any) -> None:
        self.ready.append(ready)

    async def on_event(self, gateway: Gateway, name: str, payload: Any) -> None:
        self.events.append((name, payload))

    async def on_disconnected(self, gateway: Gateway, reason: Exception, resumable: bool) -> None:
        self.disconnects.append((reason, resumable))

    async def on_fatal_error(self, gateway: Gateway, error: Exception) -> None:
        self.fatal.append(error)


async def wait_until(predicate: Callable[[], object], *, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)


@pytest.fixture
def fast_config() -> GatewayConfig:
    return GatewayConfig(backoff_base=0.0, backoff_jitter=0.0, identify_period=0.0)


@pytest.fixture
def make_gateway(fast_config: GatewayConfig):
    def _make(
        *transports: FakeTransport, config: GatewayConfig | None = None, **kwargs: Any
    ) -> tuple[Gateway, FakeTransportFactory, RecordingListener]:
        factory = FakeTransportFactory(*transports)
        listener = RecordingListener()
        gateway = Gateway(
            "wss://gateway.example",
            "token",
            config=config or fast_config,
            listener=listener,
            transport_factory=factory,
            # first heartbeat lands ~35s in, well past any test
            rng=random.Random(0),
            **kwargs,
        )
        return gateway, factory, listener

    return _make
