from __future__ import annotations

import pytest
from msgspec import UNSET, json

from shardline.errors import DecodeError, InvalidCommandError
from shardline.gateway import (
    Activity,
    ActivityType,
    ConnectionProperties,
    EnvelopeCodec,
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
from shardline.gateway._commands import CommandSender, decode_command, validate


def _identify(**kwargs) -> Identify:
    return Identify(token="token", properties=ConnectionProperties(system="Linux"), intents=513, **kwargs)


COMMANDS = [
    Heartbeat(seq=None),
    Heartbeat(seq=1234),
    _identify(),
    _identify(
        large_threshold=250,
        shard=ShardInfo(1, 4),
        presence=PresenceUpdate(
            since=91879201,
            activities=[Activity("a game"), Activity("a stream", ActivityType.STREAMING, url="https://example.com")],
            status=Status.DND,
            afk=True,
        ),
    ),
    Resume(token="token", session_id="abc", seq=1337),
    PresenceUpdate(),
    VoiceStateUpdate(guild_id=41771983423143937, channel_id=127121515262115840, self_mute=True),
    VoiceStateUpdate(guild_id=41771983423143937, channel_id=None),
    RequestGuildMembers(guild_id=1, query="", limit=0),
    RequestGuildMembers(guild_id=1, user_ids=[2, 3], presences=True, nonce="abc"),
    RequestGuildMembers(guild_id=1, user_ids=2),
    RequestSoundboardSounds(guild_ids=[1, 2, 3]),
]


@pytest.mark.parametrize("command", COMMANDS, ids=lambda command: type(command).__name__)
def test_encoded_command_decodes_to_the_same_request(command) -> None:
    codec = EnvelopeCodec()
    data = CommandSender(codec, None).encode(command)  # type: ignore[arg-type]

    raw = json.decode(data)
    assert raw["op"] == command.OPCODE
    assert "s" not in raw and "t" not in raw
    assert decode_command(codec, data) == command


def test_identify_wire_shape() -> None:
    data = CommandSender(EnvelopeCodec(), None).encode(_identify(shard=ShardInfo(0, 2)))  # type: ignore[arg-type]

    assert json.decode(data) == {
        "op": 2,
        "d": {
            "token": "token",
            "properties": {"os": "Linux", "browser": "discord-shardline", "device": "discord-shardline"},
            "intents": 513,
            "shard": [0, 2],
        },
    }


def test_identify_repr_hides_token() -> None:
    identify = Identify(token="s3cret", properties=ConnectionProperties(system="Linux"), intents=0)
    assert "s3cret" not in repr(identify)
    assert "abc" in repr(Resume(token="secret", session_id="abc", seq=1))
    assert "secret" not in repr(Resume(token="secret", session_id="abc", seq=1))


def test_decode_command_rejects_server_opcodes() -> None:
    with pytest.raises(DecodeError):
        decode_command(EnvelopeCodec(), b'{"op":11,"d":null}')


@pytest.mark.parametrize("threshold", [50, 100, 250])
def test_large_threshold_in_range(threshold: int) -> None:
    validate(_identify(large_threshold=threshold))


@pytest.mark.parametrize("threshold", [0, 49, 251])
def test_large_threshold_out_of_range(threshold: int) -> None:
    with pytest.raises(InvalidCommandError):
        validate(_identify(large_threshold=threshold))


def test_shard_id_must_be_below_count() -> None:
    with pytest.raises(InvalidCommandError):
        validate(_identify(shard=ShardInfo(2, 2)))


@pytest.mark.parametrize(
    "command",
    [
        RequestGuildMembers(guild_id=1, query="a", limit=10),
        RequestGuildMembers(guild_id=1, query="", limit=0, presences=False),
        RequestGuildMembers(guild_id=1, user_ids=[1]),
        RequestGuildMembers(guild_id=1, user_ids=1, nonce="x" * 32),
    ],
)
def test_valid_member_requests(command: RequestGuildMembers) -> None:
    validate(command)


@pytest.mark.parametrize(
    "command",
    [
        RequestGuildMembers(guild_id=1),
        RequestGuildMembers(guild_id=1, query="a", user_ids=[2]),
        RequestGuildMembers(guild_id=1, query="a", limit=1, user_ids=[2]),
        RequestGuildMembers(guild_id=1, limit=1, user_ids=[2]),
        RequestGuildMembers(guild_id=1, query="a"),
        RequestGuildMembers(guild_id=1, limit=5),
        RequestGuildMembers(guild_id=1, user_ids=[]),
        RequestGuildMembers(guild_id=1, query="a", limit=101),
        RequestGuildMembers(guild_id=1, user_ids=[1], nonce="x" * 33),
        # 17 characters but 34 bytes
        RequestGuildMembers(guild_id=1, user_ids=[1], nonce="é" * 17),
    ],
)
def test_invalid_member_requests(command: RequestGuildMembers) -> None:
    with pytest.raises(InvalidCommandError):
        validate(command)


def test_soundboard_request_needs_guilds() -> None:
    with pytest.raises(InvalidCommandError):
        validate(RequestSoundboardSounds(guild_ids=[]))


def test_unset_fields_are_omitted() -> None:
    command = RequestGuildMembers(guild_id=1, user_ids=[5])

    assert command.query is UNSET
    assert json.decode(json.encode(command)) == {"guild_id": 1, "user_ids": [5]}


async def test_sender_sends_nothing_for_invalid_commands() -> None:
    sent: list[bytes] = []

    async def send(data: bytes) -> None:
        sent.append(data)

    sender = CommandSender(EnvelopeCodec(), send)

    with pytest.raises(InvalidCommandError):
        await sender.send(RequestGuildMembers(guild_id=1, query="a", user_ids=[1]))
    assert sent == []

    await sender.send(RequestGuildMembers(guild_id=1, user_ids=[1]))
    assert json.decode(sent[0]) == {"op": 8, "d": {"guild_id": 1, "user_ids": [1]}}
