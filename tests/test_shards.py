from __future__ import annotations

import asyncio

import pytest
from conftest import FakeTransportFactory, RecordingListener, wait_until

from shardline.config import GatewayConfig
from shardline.gateway import OpCode, ShardManager, shard_id_for_guild


def test_shard_for_guild() -> None:
    assert shard_id_for_guild(41771983423143937, 1) == 0
    assert shard_id_for_guild(41771983423143937, 16) == (41771983423143937 >> 22) % 16


@pytest.mark.parametrize(("count", "ids"), [(0, None), (2, [2]), (2, [-1]), (2, [])])
def test_rejects_bad_shard_ids(count: int, ids: list[int] | None) -> None:
    with pytest.raises(ValueError):
        ShardManager("wss://gateway.example", "token", count, shard_ids=ids)


def test_each_shard_gets_its_own_session() -> None:
    manager = ShardManager("wss://gateway.example", "token", 4, shard_ids=[1, 3])

    assert len(manager) == 2
    assert [gateway.shard_id for gateway in manager] == [1, 3]
    assert manager[1].session is not manager[3].session
    assert manager[1]._identify_gate is manager[3]._identify_gate is manager.identify_gate


async def test_shards_identify_with_their_own_shard_info(fast_config: GatewayConfig) -> None:
    factory = FakeTransportFactory(auto_hello=True)
    manager = ShardManager(
        "wss://gateway.example",
        "token",
        2,
        max_concurrency=2,
        config=fast_config,
        listener=RecordingListener(),
        transport_factory=factory,
    )
    task = asyncio.create_task(manager.run())

    await wait_until(
        lambda: len(factory.opened) == 2 and all(transport.commands(OpCode.IDENTIFY) for transport in factory.opened)
    )
    shards = sorted(tuple(transport.commands(OpCode.IDENTIFY)[0].d["shard"]) for transport in factory.opened)
    assert shards == [(0, 2), (1, 2)]

    await manager.close()
    await asyncio.wait_for(task, 2.0)
    assert all(transport.closed_with == 1000 for transport in factory.opened)


def test_for_guild() -> None:
    guild_id = 41771983423143937
    manager = ShardManager("wss://gateway.example", "token", 2)

    assert manager.for_guild(guild_id) is manager[shard_id_for_guild(guild_id, 2)]


def test_for_guild_on_a_shard_run_elsewhere() -> None:
    guild_id = 41771983423143937
    other = 1 - shard_id_for_guild(guild_id, 2)
    manager = ShardManager("wss://gateway.example", "token", 2, shard_ids=[other])

    with pytest.raises(LookupError, match="not run here"):
        manager.for_guild(guild_id)
