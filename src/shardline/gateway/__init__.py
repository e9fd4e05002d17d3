from __future__ import annotations

from collections.abc import Sequence

from ._commands import (
    Activity,
    ActivityType,
    Command,
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
)
from ._listener import GatewayListener
from ._payload import CloseCode, EnvelopeCodec, GatewayPayload, OpCode, Recoverability, classify_close
from ._ratelimit import IdentifyGate
from ._router import Dispatch, DispatchRouter, UnknownEvent
from ._session import SessionSnapshot, SessionState
from ._shards import ShardManager, shard_id_for_guild
from .gateway import Gateway, GatewayState

__all__: Sequence[str] = (
    "Activity",
    "ActivityType",
    "CloseCode",
    "Command",
    "ConnectionProperties",
    "Dispatch",
    "DispatchRouter",
    "EnvelopeCodec",
    "Gateway",
    "GatewayListener",
    "GatewayPayload",
    "GatewayState",
    "Heartbeat",
    "Identify",
    "IdentifyGate",
    "OpCode",
    "PresenceUpdate",
    "Recoverability",
    "RequestGuildMembers",
    "RequestSoundboardSounds",
    "Resume",
    "SessionSnapshot",
    "SessionState",
    "ShardInfo",
    "ShardManager",
    "Status",
    "UnknownEvent",
    "VoiceStateUpdate",
    "classify_close",
    "shard_id_for_guild",
)
