from __future__ import annotations

from collections.abc import Sequence
from enum import IntFlag

__all__: Sequence[str] = ("Intents",)


class Intents(IntFlag):
    NONE = 0
    GUILDS = 1 << 0
    GUILD_MEMBERS = 1 << 1
    GUILD_MODERATION = 1 << 2
    GUILD_BANS = GUILD_MODERATION
    GUILD_EXPRESSIONS = 1 << 3
    GUILD_EMOJIS_AND_STICKERS = GUILD_EXPRESSIONS
    GUILD_INTEGRATIONS = 1 << 4
    GUILD_WEBHOOKS = 1 << 5
    GUILD_INVITES = 1 << 6
    GUILD_VOICE_STATES = 1 << 7
    GUILD_PRESENCES = 1 << 8
    GUILD_MESSAGES = 1 << 9
    GUILD_MESSAGE_REACTIONS = 1 << 10
    GUILD_MESSAGE_TYPING = 1 << 11
    DIRECT_MESSAGES = 1 << 12
    DIRECT_MESSAGE_REACTIONS = 1 << 13
    DIRECT_MESSAGE_TYPING = 1 << 14
    MESSAGE_CONTENT = 1 << 15
    GUILD_SCHEDULED_EVENTS = 1 << 16
    AUTO_MODERATION_CONFIGURATION = 1 << 20
    AUTO_MODERATION_EXECUTION = 1 << 21
    GUILD_MESSAGE_POLLS = 1 << 24
    DIRECT_MESSAGE_POLLS = 1 << 25

    @classmethod
    def privileged(cls) -> Intents:
        return cls.GUILD_MEMBERS | cls.GUILD_PRESENCES | cls.MESSAGE_CONTENT

    @classmethod
    def all(cls) -> Intents:
        value = cls.NONE
        for member in cls:
            value |= member
        return value

    @classmethod
    def default(cls) -> Intents:
        """Every intent that does not need to be enabled in the developer portal."""
        return cls.all() & ~cls.privileged()
