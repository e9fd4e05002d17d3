from __future__ import annotations

from collections.abc import Sequence

from .config import GatewayConfig
from .errors import (
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
from .events import DispatchEvents, Ready
from .gateway import Gateway, GatewayListener, GatewayState, ShardManager
from .intents import Intents

__all__: Sequence[str] = (
    "DecodeError",
    "DispatchEvents",
    "FatalCloseError",
    "Gateway",
    "GatewayCloseError",
    "GatewayConfig",
    "GatewayError",
    "GatewayListener",
    "GatewayState",
    "HeartbeatTimeoutError",
    "Intents",
    "InvalidCommandError",
    "NotConnectedError",
    "ProtocolViolationError",
    "Ready",
    "ReconnectExhaustedError",
    "ResumableCloseError",
    "ShardManager",
    "TransportError",
    "UnknownOpcodeError",
)
