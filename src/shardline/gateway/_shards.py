from __future__ import annotations

import asyncio
import logging
import typing
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any

from aiohttp import ClientSession

from shardline.config import GatewayConfig
from shardline.intents import Intents

from ._commands import PresenceUpdate
from ._listener import GatewayListener
from ._ratelimit import IdentifyGate
from .gateway import Gateway, TransportFactory

__all__: Sequence[str] = ("ShardManager", "shard_id_for_guild")


def shard_id_for_guild(guild_id: int, shard_count: int) -> int:
    return (guild_id >> 22) % shard_count


@typing.final
class ShardManager:
    """Runs one :class:`Gateway` per shard.

    Shards share nothing but the identify gate: every shard keeps its own
    session, heartbeat and reconnect schedule.
    """

    _logger: logging.Logger = logging.getLogger("shardline.shards")

    def __init__(
        self,
        url: str,
        token: str,
        shard_count: int,
        *,
        shard_ids: Iterable[int] | None = None,
        intents: int = Intents.NONE,
        max_concurrency: int = 1,
        presence: PresenceUpdate | None = None,
        config: GatewayConfig | None = None,
        listener: GatewayListener | None = None,
        catalog: Mapping[str, type[Any]] | None = None,
        client_session: ClientSession | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        if shard_count < 1:
            raise ValueError("shard_count must be at least 1")
        ids = sorted(set(range(shard_count) if shard_ids is None else shard_ids))
        if not ids or ids[0] < 0 or ids[-1] >= shard_count:
            raise ValueError(f"shard ids must lie in [0, {shard_count})")

        config = config or GatewayConfig()
        self.shard_count: int = shard_count
        self.identify_gate: IdentifyGate = IdentifyGate(max_concurrency, config.identify_period)
        self.shards: dict[int, Gateway] = {
            shard_id: Gateway(
                url,
                token,
                intents=intents,
                shard_id=shard_id,
                shard_count=shard_count,
                presence=presence,
                config=config,
                listener=listener,
                catalog=catalog,
                identify_gate=self.identify_gate,
                client_session=client_session,
                transport_factory=transport_factory,
            )
            for shard_id in ids
        }

    def __len__(self) -> int:
        return len(self.shards)

    def __iter__(self) -> Iterator[Gateway]:
        return iter(self.shards.values())

    def __getitem__(self, shard_id: int) -> Gateway:
        return self.shards[shard_id]

    @property
    def latencies(self) -> dict[int, float]:
        return {shard_id: gateway.heartbeat_latency for shard_id, gateway in self.shards.items()}

    def for_guild(self, guild_id: int) -> Gateway:
        shard_id = shard_id_for_guild(guild_id, self.shard_count)
        try:
            return self.shards[shard_id]
        except KeyError:
            raise LookupError(f"guild {guild_id} belongs to shard {shard_id}, which is not run here") from None

    async def run(self) -> None:
        """Run every shard until all of them stop.

        A shard that fails for good does not stop the others. The first terminal
        error is raised once every shard has stopped.
        """
        self._logger.info("starting %s of %s shards", len(self.shards), self.shard_count)
        results = await asyncio.gather(
            *(gateway.run() for gateway in self.shards.values()), return_exceptions=True
        )
        errors: list[BaseException] = []
        for shard_id, result in zip(self.shards, results):
            if isinstance(result, BaseException):
                self._logger.error("shard %s stopped with %r", shard_id, result)
                errors.append(result)
        if errors:
            raise errors[0]

    async def close(self) -> None:
        await asyncio.gather(*(gateway.close() for gateway in self.shards.values()))
