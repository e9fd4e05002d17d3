from __future__ import annotations

import logging
import sys
import typing
from collections.abc import Awaitable, Callable, Mapping, Sequence
from enum import Enum
from typing import Annotated, Any, ClassVar, Final, Union

import msgspec
from msgspec import UNSET, Meta, Struct, UnsetType, field

from shardline.errors import DecodeError, InvalidCommandError

from ._payload import EnvelopeCodec, GatewayPayload, OpCode

__all__: Sequence[str] = (
    "LIBRARY_NAME",
    "Activity",
    "ActivityType",
    "Command",
    "CommandSender",
    "ConnectionProperties",
    "Heartbeat",
    "Identify",
    "PresenceUpdate",
    "RequestGuildMembers",
    "RequestSoundboardSounds",
    "Resume",
    "ShardInfo",
    "Status",
    "VoiceStateUpdate",
    "decode_command",
    "validate",
)

LIBRARY_NAME: Final[str] = sys.intern("discord-shardline")

_MAX_NONCE_BYTES: Final[int] = 32

Snowflake = int


class ConnectionProperties(Struct):
    system: str = field(name="os")
    browser: str = LIBRARY_NAME
    device: str = LIBRARY_NAME


class ShardInfo(Struct, array_like=True, frozen=True):
    shard_id: Annotated[int, Meta(ge=0)]
    shard_count: Annotated[int, Meta(ge=1)]


class ActivityType(int, Enum):
    PLAYING = 0
    STREAMING = 1
    LISTENING = 2
    WATCHING = 3
    CUSTOM = 4
    COMPETING = 5


class Status(str, Enum):
    ONLINE = "online"
    DND = "dnd"
    IDLE = "idle"
    INVISIBLE = "invisible"
    OFFLINE = "offline"


class Activity(Struct, omit_defaults=True):
    name: str
    type: ActivityType = ActivityType.PLAYING
    url: str | None = None
    state: str | None = None


class Heartbeat(Struct):
    OPCODE: ClassVar[OpCode] = OpCode.HEARTBEAT

    seq: int | None = None

    def data(self) -> int | None:
        return self.seq


class PresenceUpdate(Struct):
    OPCODE: ClassVar[OpCode] = OpCode.PRESENCE_UPDATE

    since: int | None = None
    activities: list[Activity] = []
    status: Status = Status.ONLINE
    afk: bool = False

    def data(self) -> PresenceUpdate:
        return self


class Identify(Struct, omit_defaults=True):
    OPCODE: ClassVar[OpCode] = OpCode.IDENTIFY

    token: str
    properties: ConnectionProperties
    intents: Annotated[int, Meta(ge=0)]
    compress: bool = False
    large_threshold: Annotated[int, Meta(ge=50, le=250)] | UnsetType = UNSET
    shard: ShardInfo | UnsetType = UNSET
    presence: PresenceUpdate | UnsetType = UNSET

    def __repr__(self) -> str:
        return f"Identify(intents={self.intents}, shard={self.shard!r}, large_threshold={self.large_threshold!r})"

    def data(self) -> Identify:
        return self


class Resume(Struct):
    OPCODE: ClassVar[OpCode] = OpCode.RESUME

    token: str
    session_id: str
    seq: int

    def __repr__(self) -> str:
        return f"Resume(session_id={self.session_id!r}, seq={self.seq})"

    def data(self) -> Resume:
        return self


class VoiceStateUpdate(Struct):
    OPCODE: ClassVar[OpCode] = OpCode.VOICE_STATE_UPDATE

    guild_id: Snowflake
    channel_id: Snowflake | None = None
    self_mute: bool = False
    self_deaf: bool = False

    def data(self) -> VoiceStateUpdate:
        return self


class RequestGuildMembers(Struct, omit_defaults=True):
    OPCODE: ClassVar[OpCode] = OpCode.REQUEST_GUILD_MEMBERS

    guild_id: Snowflake
    query: str | UnsetType = UNSET
    limit: Annotated[int, Meta(ge=0, le=100)] | UnsetType = UNSET
    user_ids: Snowflake | list[Snowflake] | UnsetType = UNSET
    presences: bool | UnsetType = UNSET
    nonce: str | UnsetType = UNSET

    def data(self) -> RequestGuildMembers:
        return self


class RequestSoundboardSounds(Struct):
    OPCODE: ClassVar[OpCode] = OpCode.REQUEST_SOUNDBOARD_SOUNDS

    guild_ids: Annotated[list[Snowflake], Meta(min_length=1)]

    def data(self) -> RequestSoundboardSounds:
        return self


Command = Union[
    Heartbeat,
    Identify,
    PresenceUpdate,
    Resume,
    VoiceStateUpdate,
    RequestGuildMembers,
    RequestSoundboardSounds,
]

_COMMANDS: Final[Mapping[OpCode, type[Any]]] = {
    OpCode.HEARTBEAT: Heartbeat,
    OpCode.IDENTIFY: Identify,
    OpCode.PRESENCE_UPDATE: PresenceUpdate,
    OpCode.RESUME: Resume,
    OpCode.VOICE_STATE_UPDATE: VoiceStateUpdate,
    OpCode.REQUEST_GUILD_MEMBERS: RequestGuildMembers,
    OpCode.REQUEST_SOUNDBOARD_SOUNDS: RequestSoundboardSounds,
}


def _check_request_guild_members(command: RequestGuildMembers) -> None:
    with_query = command.query is not UNSET or command.limit is not UNSET
    with_user_ids = command.user_ids is not UNSET

    if with_query and with_user_ids:
        raise InvalidCommandError("request guild members takes either query and limit or user_ids, not both")
    if not with_user_ids and (command.query is UNSET or command.limit is UNSET):
        raise InvalidCommandError("request guild members needs both query and limit, or user_ids")
    if isinstance(command.user_ids, list) and not command.user_ids:
        raise InvalidCommandError("request guild members got an empty user_ids list")
    if command.nonce is not UNSET and len(command.nonce.encode()) > _MAX_NONCE_BYTES:
        raise InvalidCommandError(f"nonce is longer than {_MAX_NONCE_BYTES} bytes")


def validate(command: Command) -> None:
    command_type = type(command)
    # Struct constructors skip Meta constraints, a builtins round trip enforces them.
    try:
        msgspec.convert(msgspec.to_builtins(command), type=command_type)
    except (msgspec.ValidationError, TypeError) as exc:
        raise InvalidCommandError(f"invalid {command_type.__name__}: {exc}") from exc

    if isinstance(command, RequestGuildMembers):
        _check_request_guild_members(command)
    elif isinstance(command, Identify) and isinstance(command.shard, ShardInfo):
        if command.shard.shard_id >= command.shard.shard_count:
            raise InvalidCommandError(
                f"shard id {command.shard.shard_id} is out of range for {command.shard.shard_count} shards"
            )


def decode_command(codec: EnvelopeCodec, data: bytes | str) -> Command:
    payload = codec.decode(data)
    command_type = _COMMANDS.get(payload.op)
    if command_type is None:
        raise DecodeError(f"not a client command [op:{payload.op.name}]")
    if command_type is Heartbeat:
        return Heartbeat(seq=codec.decode_data(payload, typing.Optional[int]))
    return codec.decode_data(payload, command_type)


@typing.final
class CommandSender:
    def __init__(
        self, codec: EnvelopeCodec, send: Callable[[bytes], Awaitable[None]], *, logger: logging.Logger | None = None
    ) -> None:
        self._codec: EnvelopeCodec = codec
        self._send: Callable[[bytes], Awaitable[None]] = send
        self._logger: logging.Logger = logger or logging.getLogger("shardline.commands")

    def encode(self, command: Command) -> bytes:
        validate(command)
        return self._codec.encode(GatewayPayload(op=command.OPCODE, d=command.data()))

    async def send(self, command: Command) -> None:
        data = self.encode(command)
        self._logger.debug("send [op:%s] %r", command.OPCODE.name, command)
        await self._send(data)
