from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shardline.errors import GatewayError
    from shardline.events import Ready

    from .gateway import Gateway

__all__: Sequence[str] = ("GatewayListener",)


class GatewayListener:
    """Application hooks. Subclass and override the ones you need.

    Hooks are awaited inline by the shard that fires them, so dispatches reach
    :meth:`on_event` in the order they arrived. Slow hooks hold up that shard.
    """

    async def on_ready(self, gateway: Gateway, ready: Ready) -> None:
        pass

    async def on_event(self, gateway: Gateway, name: str, payload: Any) -> None:
        pass

    async def on_disconnected(self, gateway: Gateway, reason: GatewayError, resumable: bool) -> None:
        pass

    async def on_fatal_error(self, gateway: Gateway, error: GatewayError) -> None:
        pass
