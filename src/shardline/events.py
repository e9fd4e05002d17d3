from __future__ import annotations

import typing
from collections.abc import Mapping, Sequence
from enum import Enum, IntFlag
from typing import Any, Final

from msgspec import Struct, field

__all__: Sequence[str] = (
    "DEFAULT_CATALOG",
    "DispatchEvents",
    "GuildMembersChunk",
    "PartialApplication",
    "Ready",
    "Resumed",
    "SoundboardSounds",
    "UnavailableGuild",
    "User",
    "UserFlag",
)

Snowflake = int


@typing.final
class DispatchEvents(str, Enum):
    APPLICATION_COMMAND_PERMISSIONS_UPDATE = "APPLICATION_COMMAND_PERMISSIONS_UPDATE"
    AUTO_MODERATION_ACTION_EXECUTION = "AUTO_MODERATION_ACTION_EXECUTION"
    AUTO_MODERATION_RULE_CREATE = "AUTO_MODERATION_RULE_CREATE"
    AUTO_MODERATION_RULE_DELETE = "AUTO_MODERATION_RULE_DELETE"
    AUTO_MODERATION_RULE_UPDATE = "AUTO_MODERATION_RULE_UPDATE"
    CHANNEL_CREATE = "CHANNEL_CREATE"
    CHANNEL_DELETE = "CHANNEL_DELETE"
    CHANNEL_PINS_UPDATE = "CHANNEL_PINS_UPDATE"
    CHANNEL_UPDATE = "CHANNEL_UPDATE"
    ENTITLEMENT_CREATE = "ENTITLEMENT_CREATE"
    ENTITLEMENT_DELETE = "ENTITLEMENT_DELETE"
    ENTITLEMENT_UPDATE = "ENTITLEMENT_UPDATE"
    GUILD_AUDIT_LOG_ENTRY_CREATE = "GUILD_AUDIT_LOG_ENTRY_CREATE"
    GUILD_BAN_ADD = "GUILD_BAN_ADD"
    GUILD_BAN_REMOVE = "GUILD_BAN_REMOVE"
    GUILD_CREATE = "GUILD_CREATE"
    GUILD_DELETE = "GUILD_DELETE"
    GUILD_EMOJIS_UPDATE = "GUILD_EMOJIS_UPDATE"
    GUILD_INTEGRATIONS_UPDATE = "GUILD_INTEGRATIONS_UPDATE"
    GUILD_MEMBER_ADD = "GUILD_MEMBER_ADD"
    GUILD_MEMBER_REMOVE = "GUILD_MEMBER_REMOVE"
    GUILD_MEMBERS_CHUNK = "GUILD_MEMBERS_CHUNK"
    GUILD_MEMBER_UPDATE = "GUILD_MEMBER_UPDATE"
    GUILD_ROLE_CREATE = "GUILD_ROLE_CREATE"
    GUILD_ROLE_DELETE = "GUILD_ROLE_DELETE"
    GUILD_ROLE_UPDATE = "GUILD_ROLE_UPDATE"
    GUILD_SCHEDULED_EVENT_CREATE = "GUILD_SCHEDULED_EVENT_CREATE"
    GUILD_SCHEDULED_EVENT_DELETE = "GUILD_SCHEDULED_EVENT_DELETE"
    GUILD_SCHEDULED_EVENT_UPDATE = "GUILD_SCHEDULED_EVENT_UPDATE"
    GUILD_SCHEDULED_EVENT_USER_ADD = "GUILD_SCHEDULED_EVENT_USER_ADD"
    GUILD_SCHEDULED_EVENT_USER_REMOVE = "GUILD_SCHEDULED_EVENT_USER_REMOVE"
    GUILD_SOUNDBOARD_SOUND_CREATE = "GUILD_SOUNDBOARD_SOUND_CREATE"
    GUILD_SOUNDBOARD_SOUND_DELETE = "GUILD_SOUNDBOARD_SOUND_DELETE"
    GUILD_SOUNDBOARD_SOUNDS_UPDATE = "GUILD_SOUNDBOARD_SOUNDS_UPDATE"
    GUILD_SOUNDBOARD_SOUND_UPDATE = "GUILD_SOUNDBOARD_SOUND_UPDATE"
    SOUNDBOARD_SOUNDS = "SOUNDBOARD_SOUNDS"
    GUILD_STICKERS_UPDATE = "GUILD_STICKERS_UPDATE"
    GUILD_UPDATE = "GUILD_UPDATE"
    INTEGRATION_CREATE = "INTEGRATION_CREATE"
    INTEGRATION_DELETE = "INTEGRATION_DELETE"
    INTEGRATION_UPDATE = "INTEGRATION_UPDATE"
    INTERACTION_CREATE = "INTERACTION_CREATE"
    INVITE_CREATE = "INVITE_CREATE"
    INVITE_DELETE = "INVITE_DELETE"
    MESSAGE_CREATE = "MESSAGE_CREATE"
    MESSAGE_DELETE = "MESSAGE_DELETE"
    MESSAGE_DELETE_BULK = "MESSAGE_DELETE_BULK"
    MESSAGE_POLL_VOTE_ADD = "MESSAGE_POLL_VOTE_ADD"
    MESSAGE_POLL_VOTE_REMOVE = "MESSAGE_POLL_VOTE_REMOVE"
    MESSAGE_REACTION_ADD = "MESSAGE_REACTION_ADD"
    MESSAGE_REACTION_REMOVE = "MESSAGE_REACTION_REMOVE"
    MESSAGE_REACTION_REMOVE_ALL = "MESSAGE_REACTION_REMOVE_ALL"
    MESSAGE_REACTION_REMOVE_EMOJI = "MESSAGE_REACTION_REMOVE_EMOJI"
    MESSAGE_UPDATE = "MESSAGE_UPDATE"
    PRESENCE_UPDATE = "PRESENCE_UPDATE"
    READY = "READY"
    RESUMED = "RESUMED"
    STAGE_INSTANCE_CREATE = "STAGE_INSTANCE_CREATE"
    STAGE_INSTANCE_DELETE = "STAGE_INSTANCE_DELETE"
    STAGE_INSTANCE_UPDATE = "STAGE_INSTANCE_UPDATE"
    SUBSCRIPTION_CREATE = "SUBSCRIPTION_CREATE"
    SUBSCRIPTION_DELETE = "SUBSCRIPTION_DELETE"
    SUBSCRIPTION_UPDATE = "SUBSCRIPTION_UPDATE"
    THREAD_CREATE = "THREAD_CREATE"
    THREAD_DELETE = "THREAD_DELETE"
    THREAD_LIST_SYNC = "THREAD_LIST_SYNC"
    THREAD_MEMBERS_UPDATE = "THREAD_MEMBERS_UPDATE"
    THREAD_MEMBER_UPDATE = "THREAD_MEMBER_UPDATE"
    THREAD_UPDATE = "THREAD_UPDATE"
    TYPING_START = "TYPING_START"
    USER_UPDATE = "USER_UPDATE"
    VOICE_CHANNEL_EFFECT_SEND = "VOICE_CHANNEL_EFFECT_SEND"
    VOICE_SERVER_UPDATE = "VOICE_SERVER_UPDATE"
    VOICE_STATE_UPDATE = "VOICE_STATE_UPDATE"
    WEBHOOKS_UPDATE = "WEBHOOKS_UPDATE"


class UserFlag(IntFlag):
    NONE = 0
    STAFF = 1 << 0
    PARTNER = 1 << 1
    HYPESQUAD = 1 << 2
    BUG_HUNTER_LEVEL_1 = 1 << 3
    BUG_HUNTER_LEVEL_2 = 1 << 14
    VERIFIED_BOT = 1 << 16
    VERIFIED_DEVELOPER = 1 << 17
    BOT_HTTP_INTERACTIONS = 1 << 19
    ACTIVE_DEVELOPER = 1 << 22


class User(Struct):
    id: Snowflake
    username: str
    discriminator: str | None = None
    global_name: str | None = None
    avatar: str | None = None
    bot: bool = False
    public_flags: int = 0

    @property
    def flags(self) -> UserFlag:
        return UserFlag(self.public_flags)

    @property
    def display(self) -> str:
        if self.discriminator and self.discriminator != "0":
            return f"{self.username}#{self.discriminator}"
        return self.username


class UnavailableGuild(Struct):
    id: Snowflake
    unavailable: bool = True


class PartialApplication(Struct):
    id: Snowflake
    flags: int = 0


class Ready(Struct):
    v: int
    user: User
    session_id: str
    resume_gateway_url: str
    guilds: list[UnavailableGuild] = []
    shard: tuple[int, int] | None = None
    application: PartialApplication | None = None


class Resumed(Struct):
    pass


class GuildMembersChunk(Struct):
    guild_id: Snowflake
    members: list[dict[str, Any]]
    chunk_index: int
    chunk_count: int
    not_found: list[Snowflake] = []
    presences: list[dict[str, Any]] = []
    nonce: str | None = None


class SoundboardSounds(Struct):
    guild_id: Snowflake
    soundboard_sounds: list[dict[str, Any]] = field(default_factory=list)


_TYPED_EVENTS: Final[Mapping[DispatchEvents, type[Any]]] = {
    DispatchEvents.READY: Ready,
    DispatchEvents.RESUMED: Resumed,
    DispatchEvents.GUILD_MEMBERS_CHUNK: GuildMembersChunk,
    DispatchEvents.SOUNDBOARD_SOUNDS: SoundboardSounds,
}

# Everything without a dedicated struct is handed over as the decoded JSON object.
DEFAULT_CATALOG: Final[Mapping[str, type[Any]]] = {
    event.value: _TYPED_EVENTS.get(event, dict[str, Any]) for event in DispatchEvents
}
