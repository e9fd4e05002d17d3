from __future__ import annotations

import logging
import typing
import zlib
from collections.abc import AsyncIterator, Sequence
from contextlib import AsyncExitStack
from typing import Protocol

from aiohttp import ClientError, ClientSession, ClientWebSocketResponse, WSMessage, WSMsgType
from aiohttp.typedefs import StrOrURL

from shardline.errors import TransportError

__all__: Sequence[str] = ("GatewayTransport", "Transport")

ZLIB_SUFFIX: typing.Final[bytes] = b"\x00\x00\xff\xff"


class Transport(Protocol):
    @property
    def close_code(self) -> int | None: ...

    async def send(self, data: bytes) -> None: ...

    def receive(self) -> AsyncIterator[bytes | str]: ...

    async def close(self, code: int = 1000) -> None: ...


@typing.final
class GatewayTransport:
    _logger: logging.Logger = logging.getLogger("shardline.transport")

    @classmethod
    async def connect(
        cls, url: StrOrURL, *, client_session: ClientSession | None = None, transport_compression: bool = False
    ) -> GatewayTransport:
        exit_stack: AsyncExitStack = AsyncExitStack()
        try:
            if client_session is None:
                client_session = ClientSession()
                await exit_stack.enter_async_context(client_session)
            connection = await exit_stack.enter_async_context(
                client_session.ws_connect(url, max_msg_size=0, autoclose=False)
            )
        except (ClientError, OSError) as exc:
            await exit_stack.aclose()
            raise TransportError(f"could not connect to {url}: {exc}") from exc
        cls._logger.debug("connected to %s", url)
        return cls(connection, exit_stack, transport_compression=transport_compression)

    def __init__(
        self, connection: ClientWebSocketResponse, exit_stack: AsyncExitStack, *, transport_compression: bool
    ) -> None:
        self.connection: ClientWebSocketResponse = connection
        self.transport_compression: bool = transport_compression

        self._exit_stack: AsyncExitStack = exit_stack
        self._close_code: int | None = None

        self._inflator: zlib._Decompress | None = zlib.decompressobj() if self.transport_compression else None
        self._buffer: bytearray = bytearray()

    @property
    def close_code(self) -> int | None:
        if self._close_code is not None:
            return self._close_code
        return self.connection.close_code

    async def send(self, data: bytes) -> None:
        try:
            await self.connection.send_str(data.decode())
        except (ClientError, ConnectionError) as exc:
            raise TransportError(f"send failed: {exc}") from exc

    def _inflate(self, data: bytes) -> bytes | None:
        assert self._inflator is not None
        self._buffer.extend(data)
        if not self._buffer.endswith(ZLIB_SUFFIX):
            return None
        inflated = self._inflator.decompress(self._buffer)
        self._buffer.clear()
        return inflated

    async def receive(self) -> AsyncIterator[bytes | str]:
        while True:
            message: WSMessage = await self.connection.receive()

            if message.type == WSMsgType.TEXT:
                yield message.data
            elif message.type == WSMsgType.BINARY:
                if self._inflator is None:
                    yield message.data
                elif (inflated := self._inflate(message.data)) is not None:
                    yield inflated
            elif message.type == WSMsgType.CLOSE:
                self._close_code = message.data
                self._logger.debug("closed by remote [code:%s] %s", message.data, message.extra or "")
                return
            elif message.type in (WSMsgType.CLOSING, WSMsgType.CLOSED):
                return
            elif message.type == WSMsgType.ERROR:
                raise TransportError(f"websocket error: {message.data!r}")
            else:
                self._logger.debug("ignoring websocket message [type:%s]", message.type)

    async def close(self, code: int = 1000) -> None:
        if not self.connection.closed:
            self._logger.debug("closing with [code:%s]", code)
            await self.connection.close(code=code)
        await self._exit_stack.aclose()
