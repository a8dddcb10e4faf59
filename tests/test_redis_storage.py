"""Redis storage backend tests.

The change-message tests run without Redis; the rest use the testcontainers
Redis and are marked ``integration``.
"""

from __future__ import annotations

import asyncio
import json

import pytest
import redis.asyncio as aioredis

from tabspaces.overlay.store.base import StorageChange, StorageReadError
from tabspaces.overlay.store.redis import RedisStorage


class _UnusedClient:
    """Stands in for a client that is never reached."""


def _storage() -> RedisStorage:
    return RedisStorage(_UnusedClient(), namespace="unit")  # type: ignore[arg-type]


def test_change_message_from_other_instance_is_relayed() -> None:
    storage = _storage()
    received: list[dict[str, StorageChange]] = []
    storage.subscribe(received.append)

    storage.handle_change_message(
        json.dumps({"origin": "other", "changes": {"activeWorkspacePerWindow": {"old": None, "new": {"1": "work"}}}})
    )

    assert received == [{"activeWorkspacePerWindow": StorageChange(old_value=None, new_value={"1": "work"})}]


def test_own_and_garbled_messages_are_dropped() -> None:
    storage = _storage()
    received: list[dict[str, StorageChange]] = []
    storage.subscribe(received.append)

    storage.handle_change_message(json.dumps({"origin": storage._origin, "changes": {"k": {"new": 1}}}))
    storage.handle_change_message(b"not json")

    assert received == []


@pytest.mark.integration
async def test_round_trip_and_local_notification(redis_client: aioredis.Redis) -> None:
    storage = RedisStorage(redis_client, namespace="test")
    received: list[dict[str, StorageChange]] = []
    storage.subscribe(received.append)

    await storage.set({"workspaces": [{"id": "general"}]})
    await storage.set({"workspaces": []})

    assert await storage.get(["workspaces", "missing"], {"missing": 0}) == {"workspaces": [], "missing": 0}
    assert await redis_client.get("test:workspaces") == b"[]"
    assert received[1] == {"workspaces": StorageChange(old_value=[{"id": "general"}], new_value=[])}


@pytest.mark.integration
async def test_invalid_json_is_a_read_error(redis_client: aioredis.Redis) -> None:
    await redis_client.set("test:workspaces", "{broken")
    storage = RedisStorage(redis_client, namespace="test")

    with pytest.raises(StorageReadError):
        await storage.get(["workspaces"])


@pytest.mark.integration
async def test_writes_reach_other_instances(redis_client: aioredis.Redis) -> None:
    writer = RedisStorage(redis_client, namespace="test")
    reader = RedisStorage(redis_client, namespace="test")
    arrived = asyncio.Event()
    received: list[dict[str, StorageChange]] = []

    def _on_change(changes: dict[str, StorageChange]) -> None:
        received.append(changes)
        arrived.set()

    reader.subscribe(_on_change)
    listener = asyncio.create_task(reader.run_change_listener())
    try:
        for _ in range(50):
            if (await redis_client.pubsub_numsub(reader.channel))[0][1]:
                break
            await asyncio.sleep(0.05)

        await writer.set({"activeWorkspacePerWindow": {"1": "work"}})
        await asyncio.wait_for(arrived.wait(), timeout=5)
    finally:
        listener.cancel()
        with pytest.raises(asyncio.CancelledError):
            await listener

    assert received == [{"activeWorkspacePerWindow": StorageChange(old_value=None, new_value={"1": "work"})}]
