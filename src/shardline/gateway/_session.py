from __future__ import annotations

import logging
from collections.abc import Sequence

from msgspec import Struct

__all__: Sequence[str] = ("SessionSnapshot", "SessionState")


class SessionSnapshot(Struct, frozen=True):
    """What a host needs to persist to resume a session after a restart.

    Compatibility across gateway versions is not guaranteed; hosts should drop
    snapshots taken against another version.
    """

    session_id: str | None = None
    resume_gateway_url: str | None = None
    last_sequence: int = 0


class SessionState:
    _logger: logging.Logger = logging.getLogger("shardline.session")

    def __init__(self) -> None:
        self.session_id: str | None = None
        self.resume_gateway_url: str | None = None
        self.last_sequence: int = 0
        self.ready: bool = False

    def __repr__(self) -> str:
        return (
            f"SessionState(session_id={self.session_id!r}, resume_gateway_url={self.resume_gateway_url!r}, "
            f"last_sequence={self.last_sequence}, ready={self.ready})"
        )

    @property
    def sequence(self) -> int | None:
        # Heartbeats carry null until the first dispatch arrives.
        return self.last_sequence or None

    def can_resume(self) -> bool:
        return self.session_id is not None

    def on_ready(self, session_id: str, resume_url: str) -> None:
        self.session_id = session_id
        self.resume_gateway_url = resume_url
        self.last_sequence = 0
        self.ready = True

    def on_resumed(self) -> None:
        self.ready = True

    def on_dispatch(self, seq: int) -> None:
        """Record a dispatch sequence number.

        A number lower than the last one means the upstream started over: the old
        session can no longer be resumed, so the next connection identifies.
        """
        if seq < self.last_sequence:
            self._logger.warning(
                "sequence went backwards [%s -> %s], treating as a new session", self.last_sequence, seq
            )
            self.session_id = None
            self.resume_gateway_url = None
        self.last_sequence = seq

    def on_invalidated(self, resumable: bool) -> None:
        self.ready = False
        if not resumable:
            self.clear()

    def on_disconnected(self) -> None:
        self.ready = False

    def clear(self) -> None:
        self.session_id = None
        self.resume_gateway_url = None
        self.last_sequence = 0
        self.ready = False

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            resume_gateway_url=self.resume_gateway_url,
            last_sequence=self.last_sequence,
        )

    @classmethod
    def restore(cls, snapshot: SessionSnapshot) -> SessionState:
        state = cls()
        state.session_id = snapshot.session_id
        state.resume_gateway_url = snapshot.resume_gateway_url
        state.last_sequence = snapshot.last_sequence
        return state
