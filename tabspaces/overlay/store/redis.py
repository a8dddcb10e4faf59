"""Redis storage backend.

Each key is stored as a JSON string under ``{namespace}:{key}``.  Writes are
applied in one MULTI/EXEC pipeline together with a PUBLISH on
``{namespace}:changes`` so other processes sharing the namespace learn about
them through ``run_change_listener``.

Message payload::

    {"origin": "<instance id>", "changes": {"<key>": {"old": ..., "new": ...}}}

A backend ignores messages carrying its own origin; its own writes are
reported to local listeners synchronously from ``set``.
"""

from __future__ import annotations

import json
import uuid
from typing import TYPE_CHECKING, Any

from loguru import logger
from redis.exceptions import RedisError

from tabspaces.overlay.store.base import ChangeNotifier, StorageChange, StorageReadError, StorageWriteError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    import redis.asyncio as aioredis


class RedisStorage:
    """Redis implementation of the KeyValueStorage protocol."""

    def __init__(self, client: aioredis.Redis, namespace: str = "tabspaces") -> None:
        self._client = client
        self._namespace = namespace
        self._origin = uuid.uuid4().hex
        self._notifier = ChangeNotifier()

    @property
    def channel(self) -> str:
        return f"{self._namespace}:changes"

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    # -- Read ------------------------------------------------------------------

    async def get(self, keys: Iterable[str], defaults: Mapping[str, Any] | None = None) -> dict[str, Any]:
        keys = list(keys)
        defaults = defaults or {}
        if not keys:
            return {}
        try:
            raw_values = await self._client.mget([self._key(k) for k in keys])
        except RedisError as exc:
            raise StorageReadError(",".join(keys), str(exc)) from exc

        result: dict[str, Any] = {}
        for key, raw in zip(keys, raw_values, strict=True):
            if raw is None:
                if key in defaults:
                    result[key] = defaults[key]
                continue
            try:
                result[key] = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise StorageReadError(key, f"invalid JSON ({exc})") from exc
        return result

    # -- Write -----------------------------------------------------------------

    async def set(self, record: Mapping[str, Any]) -> None:
        if not record:
            return
        keys = list(record)
        encoded: dict[str, str] = {}
        for key in keys:
            try:
                encoded[key] = json.dumps(record[key])
            except (TypeError, ValueError) as exc:
                raise StorageWriteError(key, f"not JSON serializable ({exc})") from exc

        try:
            old_raw = await self._client.mget([self._key(k) for k in keys])
        except RedisError:
            old_raw = [None] * len(keys)

        changes: dict[str, StorageChange] = {}
        for key, raw in zip(keys, old_raw, strict=True):
            changes[key] = StorageChange(old_value=_decode_or_none(raw), new_value=json.loads(encoded[key]))

        payload = json.dumps({
            "origin": self._origin,
            "changes": {k: {"old": c.old_value, "new": c.new_value} for k, c in changes.items()},
        })
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for key, data in encoded.items():
                    pipe.set(self._key(key), data)
                pipe.publish(self.channel, payload)
                await pipe.execute()
        except RedisError as exc:
            raise StorageWriteError(",".join(keys), str(exc)) from exc

        self._notifier.notify(changes)

    def subscribe(self, listener: Callable[[dict[str, StorageChange]], None]) -> Callable[[], None]:
        return self._notifier.subscribe(listener)

    # -- Cross-process changes -------------------------------------------------

    async def run_change_listener(self) -> None:
        """Relay changes published by other processes to local listeners.

        Runs until cancelled.
        """
        pubsub = self._client.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("Redis storage: listening on {}", self.channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                self.handle_change_message(message["data"])
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    def handle_change_message(self, data: bytes | str) -> None:
        """Decode one published change message and notify local listeners."""
        try:
            body = json.loads(data)
        except (TypeError, json.JSONDecodeError):
            logger.warning("Redis storage: dropping undecodable change message")
            return
        if body.get("origin") == self._origin:
            return
        changes = {
            key: StorageChange(old_value=change.get("old"), new_value=change.get("new"))
            for key, change in (body.get("changes") or {}).items()
        }
        self._notifier.notify(changes)

    async def aclose(self) -> None:
        await self._client.aclose()


def _decode_or_none(raw: bytes | str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None
