from __future__ import annotations

import logging
from typing import Any

import pytest
from conftest import READY_DATA
from msgspec import Struct

from shardline.errors import DecodeError
from shardline.events import DEFAULT_CATALOG, DispatchEvents, GuildMembersChunk, Ready, Resumed
from shardline.gateway import Dispatch, DispatchRouter, UnknownEvent


def test_ready_is_typed() -> None:
    routed = DispatchRouter().route("READY", READY_DATA)

    assert isinstance(routed, Dispatch)
    assert isinstance(routed.data, Ready)
    assert routed.data.session_id == "abc"
    assert routed.data.user.id == 80351110224678912
    assert routed.data.shard == (0, 1)
    assert routed.data.guilds[0].unavailable


def test_resumed_without_data() -> None:
    routed = DispatchRouter().route("RESUMED", None)

    assert routed == Dispatch(name="RESUMED", data=Resumed())


def test_opaque_events_stay_mappings() -> None:
    routed = DispatchRouter().route("MESSAGE_CREATE", {"id": "1", "content": "hi"})

    assert isinstance(routed, Dispatch)
    assert routed.data == {"id": "1", "content": "hi"}


def test_members_chunk() -> None:
    routed = DispatchRouter().route(
        "GUILD_MEMBERS_CHUNK",
        {"guild_id": "1", "members": [], "chunk_index": 0, "chunk_count": 1, "not_found": ["5"], "nonce": "n"},
    )

    assert isinstance(routed.data, GuildMembersChunk)
    assert routed.data.not_found == [5]
    assert routed.data.nonce == "n"


def test_unknown_event_is_returned_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="shardline.router"):
        routed = DispatchRouter().route("SOMETHING_NEW", {"a": 1})

    assert routed == UnknownEvent(name="SOMETHING_NEW", data={"a": 1})
    assert "SOMETHING_NEW" in caplog.text


def test_bad_payload_raises_decode_error() -> None:
    with pytest.raises(DecodeError):
        DispatchRouter().route("READY", {"v": 10})


def test_custom_catalog() -> None:
    class Typing(Struct):
        channel_id: int
        user_id: int

    catalog: dict[str, type[Any]] = {"TYPING_START": Typing}
    router = DispatchRouter(catalog)

    assert "TYPING_START" in router
    assert "READY" not in router
    assert router.route("TYPING_START", {"channel_id": "1", "user_id": 2}).data == Typing(channel_id=1, user_id=2)
    assert isinstance(router.route("READY", READY_DATA), UnknownEvent)


def test_default_catalog_covers_every_event_name() -> None:
    assert set(DEFAULT_CATALOG) == {event.value for event in DispatchEvents}
