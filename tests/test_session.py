from __future__ import annotations

import logging

import pytest
from msgspec import json

from shardline.gateway import SessionSnapshot, SessionState


def test_fresh_session_cannot_resume() -> None:
    session = SessionState()

    assert not session.can_resume()
    assert session.sequence is None
    assert not session.ready


def test_ready_then_dispatches_track_highest_sequence() -> None:
    session = SessionState()
    session.on_ready("abc", "wss://resume.example")
    for seq in (1, 2, 3):
        session.on_dispatch(seq)

    assert session.can_resume()
    assert session.ready
    assert session.last_sequence == 3
    assert session.sequence == 3


def test_backwards_sequence_starts_a_new_session(caplog: pytest.LogCaptureFixture) -> None:
    session = SessionState()
    session.on_ready("abc", "wss://resume.example")
    session.on_dispatch(10)

    with caplog.at_level(logging.WARNING, logger="shardline.session"):
        session.on_dispatch(4)

    assert session.last_sequence == 4
    assert "backwards" in caplog.text
    assert not session.can_resume()
    assert session.resume_gateway_url is None


def test_resumable_invalidation_keeps_the_session() -> None:
    session = SessionState()
    session.on_ready("abc", "wss://resume.example")
    session.on_dispatch(7)

    session.on_invalidated(resumable=True)

    assert session.can_resume()
    assert session.last_sequence == 7
    assert not session.ready


def test_non_resumable_invalidation_clears_everything() -> None:
    session = SessionState()
    session.on_ready("abc", "wss://resume.example")
    session.on_dispatch(7)

    session.on_invalidated(resumable=False)

    assert not session.can_resume()
    assert session.session_id is None
    assert session.resume_gateway_url is None
    assert session.last_sequence == 0


def test_disconnect_keeps_resume_data() -> None:
    session = SessionState()
    session.on_ready("abc", "wss://resume.example")
    session.on_disconnected()

    assert not session.ready
    assert session.can_resume()

    session.on_resumed()
    assert session.ready


def test_snapshot_survives_serialization() -> None:
    session = SessionState()
    session.on_ready("abc", "wss://resume.example")
    session.on_dispatch(42)

    data = json.encode(session.snapshot())
    restored = SessionState.restore(json.decode(data, type=SessionSnapshot))

    assert restored.session_id == "abc"
    assert restored.resume_gateway_url == "wss://resume.example"
    assert restored.last_sequence == 42
    assert restored.can_resume()
    assert not restored.ready
