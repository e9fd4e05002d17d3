from __future__ import annotations

import asyncio
import logging
import platform
import random
import sys
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from enum import Enum
from typing import Any, Final

from aiohttp import ClientSession
from msgspec import UNSET, Struct, UnsetType
from yarl import URL

from shardline.config import GatewayConfig
from shardline.errors import (
    DecodeError,
    FatalCloseError,
    GatewayCloseError,
    GatewayError,
    HeartbeatTimeoutError,
    InvalidCommandError,
    NotConnectedError,
    ProtocolViolationError,
    ReconnectExhaustedError,
    ResumableCloseError,
    TransportError,
    UnknownOpcodeError,
)
from shardline.events import Ready
from shardline.intents import Intents

from ._backoff import ExponentialBackoff
from ._commands import (
    LIBRARY_NAME,
    Activity,
    Command,
    CommandSender,
    ConnectionProperties,
    Heartbeat,
    Identify,
    PresenceUpdate,
    RequestGuildMembers,
    RequestSoundboardSounds,
    Resume,
    ShardInfo,
    Status,
    VoiceStateUpdate,
    validate,
)
from ._heartbeat import HeartbeatMonitor
from ._listener import GatewayListener
from ._payload import CloseCode, EnvelopeCodec, GatewayPayload, Hello, OpCode, Recoverability, classify_close
from ._ratelimit import IdentifyGate, WindowLimiter
from ._router import DispatchRouter, UnknownEvent
from ._session import SessionState
from ._transport import GatewayTransport, Transport

__all__: Sequence[str] = ("Gateway", "GatewayState", "TransportFactory")

_READY: Final[str] = sys.intern("READY")
_RESUMED: Final[str] = sys.intern("RESUMED")

# 1000 and 1001 make the upstream drop the session, anything else keeps it resumable.
_CLOSE_NORMAL: Final[int] = 1000
_CLOSE_RESUMABLE: Final[int] = 4000

TransportFactory = Callable[[URL], Awaitable[Transport]]


class GatewayState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    IDENTIFYING = "identifying"
    RESUMING = "resuming"
    READY = "ready"
    STEADY = "steady"
    CLOSING = "closing"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


_ACCEPTS_COMMANDS: Final[frozenset[GatewayState]] = frozenset(
    {GatewayState.RESUMING, GatewayState.READY, GatewayState.STEADY}
)


class _Disconnect(Struct, frozen=True):
    reason: GatewayError
    recoverability: Recoverability


class Gateway:
    _logger: logging.Logger = logging.getLogger("shardline.gateway")

    def __init__(
        self,
        url: str,
        token: str,
        *,
        intents: int = Intents.NONE,
        shard_id: int | None = None,
        shard_count: int | None = None,
        large_threshold: int | None = None,
        presence: PresenceUpdate | None = None,
        config: GatewayConfig | None = None,
        listener: GatewayListener | None = None,
        catalog: Mapping[str, type[Any]] | None = None,
        identify_gate: IdentifyGate | None = None,
        session: SessionState | None = None,
        client_session: ClientSession | None = None,
        transport_factory: TransportFactory | None = None,
        rng: random.Random | None = None,
        browser: str = LIBRARY_NAME,
    ) -> None:
        if shard_id is not None:
            self._logger = self._logger.getChild(str(shard_id))

        self.config: GatewayConfig = config or GatewayConfig()

        self.shard_id: int | None = shard_id
        self.shard_count: int | None = shard_count

        self.large_threshold: int = self.config.large_threshold if large_threshold is None else large_threshold
        self.intents: Intents = Intents(intents)
        self.presence: PresenceUpdate | None = presence

        self.listener: GatewayListener = listener or GatewayListener()
        self.session: SessionState = session or SessionState()
        self.ready: Ready | None = None

        self._token: str = token
        self._browser: str = browser
        self._gateway_url: str = url
        self._client_session: ClientSession | None = client_session
        self._transport_factory: TransportFactory = transport_factory or self._connect_transport
        self._transport: Transport | None = None

        rng = rng or random.Random()
        self._codec: EnvelopeCodec = EnvelopeCodec()
        self._router: DispatchRouter = DispatchRouter(catalog, logger=self._logger)
        self._commands: CommandSender = CommandSender(self._codec, self._write, logger=self._logger)
        self._heartbeat: HeartbeatMonitor = HeartbeatMonitor(
            self._send_heartbeat, self._on_heartbeat_timeout, rng=rng, logger=self._logger
        )
        self._backoff: ExponentialBackoff = ExponentialBackoff(
            self.config.backoff_base,
            self.config.backoff_factor,
            self.config.backoff_max,
            self.config.backoff_jitter,
            rng=rng,
        )
        self._identify_gate: IdentifyGate = identify_gate or IdentifyGate(period=self.config.identify_period)
        self._send_limiter: WindowLimiter = WindowLimiter(self.config.send_limit, self.config.send_period)
        self._send_lock: asyncio.Lock = asyncio.Lock()

        self._state: GatewayState = GatewayState.IDLE
        self._stop_event: asyncio.Event = asyncio.Event()
        self._disconnect: _Disconnect | None = None
        self._resuming: bool = False
        self._established: bool = False
        self._decode_errors: int = 0
        self._resume_failures: int = 0
        self._reconnect_failures: int = 0

        validate(self._identify)

    def __repr__(self) -> str:
        return f"<Gateway shard={self.shard_info!r} state={self._state.value}>"

    @property
    def _identify(self) -> Identify:
        return Identify(
            token=self._token,
            properties=ConnectionProperties(system=platform.system(), browser=self._browser, device=self._browser),
            intents=int(self.intents),
            large_threshold=self.large_threshold,
            shard=self.shard_info or UNSET,
            presence=self.presence or UNSET,
        )

    @property
    def shard_info(self) -> ShardInfo | None:
        if self.shard_id is not None and self.shard_count is not None:
            return ShardInfo(self.shard_id, self.shard_count)
        return None

    @property
    def state(self) -> GatewayState:
        return self._state

    @property
    def heartbeat_latency(self) -> float:
        return self._heartbeat.latency

    @property
    def is_running(self) -> bool:
        return self._state not in (GatewayState.IDLE, GatewayState.TERMINATED)

    def gateway_url(self, *, resume: bool) -> URL:
        base = self.session.resume_gateway_url if resume and self.session.resume_gateway_url else self._gateway_url
        url_query: dict[str, Any] = {"v": self.config.version, "encoding": "json"}
        if self.config.transport_compression:
            url_query["compress"] = "zlib-stream"
        return URL(base).with_query(url_query)

    async def _connect_transport(self, url: URL) -> Transport:
        return await GatewayTransport.connect(
            url, client_session=self._client_session, transport_compression=self.config.transport_compression
        )

    # outbound

    async def _write(self, data: bytes) -> None:
        transport = self._transport
        if transport is None:
            raise NotConnectedError("no open connection")
        async with self._send_lock:
            await transport.send(data)

    async def _send_heartbeat(self) -> None:
        try:
            await self._commands.send(Heartbeat(seq=self.session.sequence))
        except (TransportError, NotConnectedError) as exc:
            self._logger.warning("could not send heartbeat: %s", exc)
            await self._request_close(ResumableCloseError(None, "heartbeat send failed"), Recoverability.RESUME)
            return
        self._logger.debug("send heartbeat [s:%s]", self.session.sequence)

    async def send(self, command: Command) -> None:
        if isinstance(command, (Heartbeat, Identify, Resume)):
            raise InvalidCommandError(f"{type(command).__name__} is sent by the gateway itself")
        validate(command)
        if self._state not in _ACCEPTS_COMMANDS:
            raise NotConnectedError(f"cannot send {type(command).__name__} while {self._state.value}")
        await self._send_limiter.acquire()
        await self._commands.send(command)

    async def update_presence(
        self,
        *,
        status: Status = Status.ONLINE,
        activities: Iterable[Activity] = (),
        since: int | None = None,
        afk: bool = False,
    ) -> None:
        presence = PresenceUpdate(since=since, activities=list(activities), status=status, afk=afk)
        await self.send(presence)
        self.presence = presence

    async def update_voice_state(
        self, guild_id: int, channel_id: int | None, *, self_mute: bool = False, self_deaf: bool = False
    ) -> None:
        await self.send(
            VoiceStateUpdate(guild_id=guild_id, channel_id=channel_id, self_mute=self_mute, self_deaf=self_deaf)
        )

    async def request_guild_members(
        self,
        guild_id: int,
        *,
        query: str | UnsetType = UNSET,
        limit: int | UnsetType = UNSET,
        user_ids: int | Sequence[int] | UnsetType = UNSET,
        presences: bool | UnsetType = UNSET,
        nonce: str | UnsetType = UNSET,
    ) -> None:
        if not isinstance(user_ids, (int, UnsetType)):
            user_ids = list(user_ids)
        await self.send(
            RequestGuildMembers(
                guild_id=guild_id, query=query, limit=limit, user_ids=user_ids, presences=presences, nonce=nonce
            )
        )

    async def request_soundboard_sounds(self, guild_ids: Iterable[int]) -> None:
        await self.send(RequestSoundboardSounds(guild_ids=list(guild_ids)))

    # inbound

    async def _on_heartbeat_timeout(self) -> None:
        await self._request_close(HeartbeatTimeoutError(), Recoverability.RESUME)

    async def _request_close(self, reason: GatewayError, recoverability: Recoverability) -> None:
        if self._disconnect is not None:
            return
        self._disconnect = _Disconnect(reason, recoverability)
        self._state = GatewayState.CLOSING
        self._heartbeat.stop()
        self._logger.info("closing connection: %s", reason)
        if self._transport is not None:
            await self._transport.close(_CLOSE_RESUMABLE if recoverability is Recoverability.RESUME else _CLOSE_NORMAL)

    def _on_established(self) -> None:
        self._established = True
        self._resume_failures = 0
        self._reconnect_failures = 0
        self._backoff.reset()

    async def _handle_hello(self, payload: GatewayPayload) -> None:
        try:
            hello = self._codec.decode_data(payload, Hello)
        except DecodeError as exc:
            await self._request_close(ProtocolViolationError(str(exc)), Recoverability.IDENTIFY)
            return

        self._logger.debug("connected, heartbeat interval %s ms", hello.heartbeat_interval)
        self._heartbeat.start(hello.heartbeat_interval)

        if self.session.can_resume():
            assert self.session.session_id is not None
            self._state = GatewayState.RESUMING
            self._resuming = True
            self._logger.info("resuming session %r at [s:%s]", self.session.session_id, self.session.last_sequence)
            await self._commands.send(
                Resume(token=self._token, session_id=self.session.session_id, seq=self.session.last_sequence)
            )
            return

        # The identify slot was taken before connecting.
        self.session.clear()
        self._state = GatewayState.IDENTIFYING
        self._logger.info("identifying [intents:%s,shard:%s]", int(self.intents), self.shard_info)
        await self._commands.send(self._identify)

    async def _handle_ready(self, payload: GatewayPayload) -> None:
        assert payload.t is not None and payload.s is not None
        try:
            ready = self._codec.decode_data(payload, Ready)
        except DecodeError as exc:
            await self._request_close(ProtocolViolationError(str(exc)), Recoverability.IDENTIFY)
            return

        self.session.on_ready(ready.session_id, ready.resume_gateway_url)
        self.session.on_dispatch(payload.s)
        self.ready = ready
        self._on_established()
        if ready.v != self.config.version:
            self._logger.warning("ready on v%s gateway, but v%s was requested", ready.v, self.config.version)
        self._logger.info(
            "ready: %s guilds, %s (ID: %s), session %r on v%s gateway",
            len(ready.guilds),
            ready.user.display,
            ready.user.id,
            ready.session_id,
            ready.v,
        )

        self._state = GatewayState.READY
        try:
            await self.listener.on_ready(self, ready)
        except Exception:
            self._logger.exception("on_ready listener failed")
        self._state = GatewayState.STEADY

    async def _handle_dispatch(self, payload: GatewayPayload) -> None:
        assert payload.t is not None and payload.s is not None
        if payload.t == _READY:
            await self._handle_ready(payload)
            return

        self.session.on_dispatch(payload.s)
        self._logger.debug("received dispatch [t:%s,s:%s]", payload.t, payload.s)

        if payload.t == _RESUMED:
            self.session.on_resumed()
            self._on_established()
            self._state = GatewayState.STEADY
            self._logger.info("resumed session %r", self.session.session_id)

        try:
            routed = self._router.route(payload.t, payload.d)
        except DecodeError as exc:
            self._logger.warning("dropping dispatch: %s", exc)
            return
        if isinstance(routed, UnknownEvent):
            return
        try:
            await self.listener.on_event(self, routed.name, routed.data)
        except Exception:
            self._logger.exception("on_event listener failed for [t:%s]", routed.name)

    async def _handle_invalid_session(self, payload: GatewayPayload) -> None:
        resumable = payload.d is True
        self._logger.warning("session %r invalidated [resumable:%s]", self.session.session_id, resumable)
        self.session.on_invalidated(resumable)
        if resumable:
            await self._request_close(ResumableCloseError(None, "session invalidated"), Recoverability.RESUME)
        else:
            await self._request_close(GatewayCloseError(None, "session invalidated"), Recoverability.IDENTIFY)

    async def _handle_payload(self, payload: GatewayPayload) -> None:
        if self._state is GatewayState.AWAITING_HELLO and payload.op is not OpCode.HELLO:
            self._logger.error("expected hello, but received [op:%s], closing...", payload.op.name)
            await self._request_close(
                ProtocolViolationError(f"expected HELLO, received {payload.op.name}"), Recoverability.IDENTIFY
            )
            return

        if payload.op is OpCode.DISPATCH:
            await self._handle_dispatch(payload)
        elif payload.op is OpCode.HEARTBEAT_ACK:
            self._heartbeat.ack()
        elif payload.op is OpCode.HEARTBEAT:
            self._logger.debug("heartbeat requested by gateway")
            await self._heartbeat.beat(scheduled=False)
        elif payload.op is OpCode.HELLO:
            if self._state is GatewayState.AWAITING_HELLO:
                await self._handle_hello(payload)
            else:
                self._logger.warning("ignoring repeated hello")
        elif payload.op is OpCode.RECONNECT:
            await self._request_close(ResumableCloseError(None, "reconnect requested"), Recoverability.RESUME)
        elif payload.op is OpCode.INVALID_SESSION:
            await self._handle_invalid_session(payload)
        else:
            self._logger.warning("unexpected op code from gateway [op:%s], ignoring", payload.op.name)

    def _decode(self, frame: bytes | str) -> GatewayPayload | None:
        try:
            payload = self._codec.decode(frame)
        except UnknownOpcodeError as exc:
            self._logger.warning("unrecognized op code [op:%s], dropping frame", exc.op)
            return None
        except DecodeError as exc:
            self._decode_errors += 1
            self._logger.warning(
                "dropping malformed frame (%s/%s): %s", self._decode_errors, self.config.max_decode_errors, exc
            )
            return None
        self._logger.debug("received [op:%s,s:%s,t:%s]", payload.op.name, payload.s, payload.t)
        return payload

    async def _run_session(self, transport: Transport) -> _Disconnect:
        self._state = GatewayState.AWAITING_HELLO
        self._disconnect = None
        self._resuming = False
        self._established = False
        self._decode_errors = 0
        self._send_limiter = WindowLimiter(self.config.send_limit, self.config.send_period)

        try:
            async for frame in transport.receive():
                if self._disconnect is not None:
                    break
                payload = self._decode(frame)
                if payload is not None:
                    await self._handle_payload(payload)
                elif self._decode_errors >= self.config.max_decode_errors:
                    await self._request_close(
                        ResumableCloseError(None, "too many malformed frames"), Recoverability.RESUME
                    )
                if self._disconnect is not None:
                    break
        except TransportError as exc:
            self._logger.warning("transport failed: %s", exc)
            if self._disconnect is None:
                return _Disconnect(exc, Recoverability.RESUME)

        if self._disconnect is not None:
            return self._disconnect

        code = transport.close_code
        recoverability = classify_close(code)
        try:
            name = CloseCode(code).name if code is not None else "no close code"
        except ValueError:
            name = "transport close"

        if self._stop_event.is_set():
            return _Disconnect(GatewayCloseError(code, "closed by client"), recoverability)
        if recoverability is Recoverability.FATAL:
            self._logger.error("closed by gateway [code:%s] %s", code, name)
            return _Disconnect(FatalCloseError(code, name), recoverability)
        self._logger.warning("closed by gateway [code:%s] %s", code, name)
        if recoverability is Recoverability.RESUME:
            return _Disconnect(ResumableCloseError(code, name), recoverability)
        return _Disconnect(GatewayCloseError(code, name), recoverability)

    # lifecycle

    async def _fail(self, error: GatewayError) -> None:
        self._state = GatewayState.TERMINATED
        self._logger.error("giving up: %s", error)
        await self.listener.on_fatal_error(self, error)
        raise error

    async def _after_disconnect(self, disconnect: _Disconnect) -> None:
        if disconnect.recoverability is Recoverability.FATAL:
            await self._fail(disconnect.reason)

        if not self._established:
            self._reconnect_failures += 1
            if self._resuming:
                self._resume_failures += 1

        resumable = disconnect.recoverability is Recoverability.RESUME and self.session.can_resume()
        if resumable and self._resume_failures >= self.config.max_resume_attempts:
            self._logger.warning("resume failed %s times in a row, starting a new session", self._resume_failures)
            resumable = False
        if not resumable:
            self.session.clear()
            self._resume_failures = 0

        try:
            await self.listener.on_disconnected(self, disconnect.reason, resumable)
        except Exception:
            self._logger.exception("on_disconnected listener failed")

        limit = self.config.max_reconnect_attempts
        if limit is not None and self._reconnect_failures >= limit:
            await self._fail(ReconnectExhaustedError(self._reconnect_failures))

    async def _acquire_identify_slot(self) -> bool:
        """Wait for the identify gate before a connection is opened, so no frame goes unread meanwhile.

        Returns ``False`` when :meth:`close` was called during the wait.
        """
        acquire = asyncio.ensure_future(self._identify_gate.acquire(self.shard_id or 0))
        stopped = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait((acquire, stopped), return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
            acquire.cancel()
        return acquire.done() and not acquire.cancelled() and not self._stop_event.is_set()

    async def _wait_before_reconnect(self) -> None:
        self._state = GatewayState.RECONNECTING
        delay = self._backoff.next_delay()
        if delay <= 0:
            return
        self._logger.info("reconnecting in %.2fs", delay)
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except TimeoutError:
            pass

    async def run(self) -> None:
        """Connect and keep the shard connected until :meth:`close` or a terminal error.

        Terminal errors (:class:`FatalCloseError`, :class:`ReconnectExhaustedError`) are
        passed to :meth:`GatewayListener.on_fatal_error` and then raised.
        """
        if self.is_running:
            raise RuntimeError("gateway is already running")
        self._stop_event.clear()

        try:
            while not self._stop_event.is_set():
                self._state = GatewayState.CONNECTING
                can_resume = self.session.can_resume()
                if not can_resume and not await self._acquire_identify_slot():
                    break
                url = self.gateway_url(resume=can_resume)
                self._logger.info("connecting to %s", url)
                try:
                    transport = await self._transport_factory(url)
                except TransportError as exc:
                    self._logger.warning("%s", exc)
                    self._established = False
                    self._resuming = False
                    await self._after_disconnect(_Disconnect(exc, Recoverability.RESUME))
                    await self._wait_before_reconnect()
                    continue

                self._transport = transport
                disconnect: _Disconnect | None = None
                try:
                    if not self._stop_event.is_set():
                        disconnect = await self._run_session(transport)
                finally:
                    self._heartbeat.stop()
                    self._transport = None
                    self.session.on_disconnected()
                    resume = disconnect is None or disconnect.recoverability is Recoverability.RESUME
                    await transport.close(
                        _CLOSE_RESUMABLE if resume and not self._stop_event.is_set() else _CLOSE_NORMAL
                    )

                if disconnect is None or self._stop_event.is_set():
                    break
                await self._after_disconnect(disconnect)
                if self._stop_event.is_set():
                    break
                await self._wait_before_reconnect()
        finally:
            self._heartbeat.stop()
            self._state = GatewayState.TERMINATED
            self._logger.info("stopped")

    async def close(self) -> None:
        self._stop_event.set()
        self._heartbeat.stop()
        transport = self._transport
        if transport is not None:
            self._state = GatewayState.CLOSING
            await transport.close(_CLOSE_NORMAL)
