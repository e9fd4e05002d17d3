from __future__ import annotations

import typing
from collections.abc import Sequence
from enum import Enum
from typing import Any, Final, TypeVar

import msgspec
from msgspec import Struct, json

from shardline.errors import DecodeError, UnknownOpcodeError

__all__: Sequence[str] = (
    "CLIENT_OPCODES",
    "CloseCode",
    "EnvelopeCodec",
    "GatewayPayload",
    "Hello",
    "OpCode",
    "Recoverability",
    "classify_close",
)

_T = TypeVar("_T")


@typing.final
class OpCode(int, Enum):
    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    PRESENCE_UPDATE = 3
    VOICE_STATE_UPDATE = 4
    RESUME = 6
    RECONNECT = 7
    REQUEST_GUILD_MEMBERS = 8
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11
    REQUEST_SOUNDBOARD_SOUNDS = 31


CLIENT_OPCODES: Final[frozenset[OpCode]] = frozenset(
    {
        OpCode.HEARTBEAT,
        OpCode.IDENTIFY,
        OpCode.PRESENCE_UPDATE,
        OpCode.VOICE_STATE_UPDATE,
        OpCode.RESUME,
        OpCode.REQUEST_GUILD_MEMBERS,
        OpCode.REQUEST_SOUNDBOARD_SOUNDS,
    }
)

_KNOWN_OPCODES: Final[frozenset[int]] = frozenset(op.value for op in OpCode)


@typing.final
class Recoverability(Enum):
    RESUME = "resume"
    IDENTIFY = "identify"
    FATAL = "fatal"


@typing.final
class CloseCode(int, Enum):
    UNKNOWN_ERROR = 4000
    UNKNOWN_OPCODE = 4001
    DECODE_ERROR = 4002
    NOT_AUTHENTICATED = 4003
    AUTHENTICATION_FAILED = 4004
    ALREADY_AUTHENTICATED = 4005
    INVALID_SEQ = 4007
    RATE_LIMITED = 4008
    SESSION_TIMED_OUT = 4009
    INVALID_SHARD = 4010
    SHARDING_REQUIRED = 4011
    INVALID_API_VERSION = 4012
    INVALID_INTENTS = 4013
    DISALLOWED_INTENTS = 4014

    @property
    def recoverability(self) -> Recoverability:
        if self in _FATAL_CLOSE_CODES:
            return Recoverability.FATAL
        if self is CloseCode.INVALID_SEQ:
            return Recoverability.IDENTIFY
        return Recoverability.RESUME

    @property
    def is_fatal(self) -> bool:
        return self.recoverability is Recoverability.FATAL


_FATAL_CLOSE_CODES: Final[frozenset[CloseCode]] = frozenset(
    {
        CloseCode.AUTHENTICATION_FAILED,
        CloseCode.INVALID_SHARD,
        CloseCode.SHARDING_REQUIRED,
        CloseCode.INVALID_API_VERSION,
        CloseCode.INVALID_INTENTS,
        CloseCode.DISALLOWED_INTENTS,
    }
)


def classify_close(code: int | None) -> Recoverability:
    # Transport level codes (1006 abnormal closure, a dropped socket, ...) are worth a resume.
    if code is None:
        return Recoverability.RESUME
    try:
        return CloseCode(code).recoverability
    except ValueError:
        return Recoverability.RESUME


class GatewayPayload(Struct):
    op: OpCode
    d: Any | None = None
    s: int | None = None
    t: str | None = None


class Hello(Struct):
    heartbeat_interval: int


class _RawPayload(Struct):
    op: int
    d: Any | None = None
    s: int | None = None
    t: str | None = None


class _ClientPayload(Struct):
    op: OpCode
    d: Any | None


@typing.final
class EnvelopeCodec:
    def __init__(self) -> None:
        self._decoder: json.Decoder[_RawPayload] = json.Decoder(_RawPayload)
        self._encoder: json.Encoder = json.Encoder()

    def decode(self, data: bytes | bytearray | memoryview | str) -> GatewayPayload:
        try:
            raw = self._decoder.decode(data)
        except msgspec.DecodeError as exc:
            raise DecodeError(f"malformed envelope: {exc}") from exc

        if raw.op not in _KNOWN_OPCODES:
            raise UnknownOpcodeError(raw.op)

        op = OpCode(raw.op)
        if (raw.s is None) != (raw.t is None):
            raise DecodeError(f"sequence and event name must travel together [op:{op.name},s:{raw.s},t:{raw.t}]")
        if op is OpCode.DISPATCH and raw.t is None:
            raise DecodeError("dispatch envelope without sequence and event name")
        if op is not OpCode.DISPATCH and raw.t is not None:
            raise DecodeError(f"sequence and event name on a non-dispatch envelope [op:{op.name}]")

        return GatewayPayload(op=op, d=raw.d, s=raw.s, t=raw.t)

    def encode(self, payload: GatewayPayload) -> bytes:
        if payload.op is OpCode.DISPATCH:
            return self._encoder.encode(payload)
        return self._encoder.encode(_ClientPayload(op=payload.op, d=payload.d))

    @staticmethod
    def decode_data(payload: GatewayPayload, data_type: type[_T]) -> _T:
        try:
            return msgspec.convert(payload.d, type=data_type, strict=False)
        except msgspec.ValidationError as exc:
            raise DecodeError(f"invalid data for [op:{payload.op.name}]: {exc}") from exc
