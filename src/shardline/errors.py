from __future__ import annotations

from collections.abc import Sequence

__all__: Sequence[str] = (
    "DecodeError",
    "FatalCloseError",
    "GatewayCloseError",
    "GatewayError",
    "HeartbeatTimeoutError",
    "InvalidCommandError",
    "NotConnectedError",
    "ProtocolViolationError",
    "ReconnectExhaustedError",
    "ResumableCloseError",
    "TransportError",
    "UnknownOpcodeError",
)


class GatewayError(Exception):
    pass


class DecodeError(GatewayError):
    """A frame could not be turned into an envelope. The frame is dropped."""


class UnknownOpcodeError(DecodeError):
    def __init__(self, op: int) -> None:
        super().__init__(f"unknown opcode {op}")
        self.op: int = op


class ProtocolViolationError(GatewayError):
    """A well-formed frame that is illegal in the current connection state."""


class TransportError(GatewayError):
    pass


class GatewayCloseError(GatewayError):
    def __init__(self, code: int | None, reason: str = "") -> None:
        super().__init__(f"gateway closed [code:{code}] {reason}".rstrip())
        self.code: int | None = code
        self.reason: str = reason


class FatalCloseError(GatewayCloseError):
    """The upstream rejected the session for good; retrying cannot help."""


class ResumableCloseError(GatewayCloseError):
    pass


class HeartbeatTimeoutError(ResumableCloseError):
    def __init__(self) -> None:
        super().__init__(None, "heartbeat not acknowledged")


class InvalidCommandError(GatewayError, ValueError):
    pass


class NotConnectedError(GatewayError):
    pass


class ReconnectExhaustedError(GatewayError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"gave up after {attempts} failed reconnect attempts")
        self.attempts: int = attempts
