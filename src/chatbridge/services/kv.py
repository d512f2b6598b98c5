from __future__ import annotations

import logging
from typing import Any, Dict, Protocol

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..errors import TransportError
from ..settings import get_settings

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Durable string key-value interface backing the session store.

    ``get`` returns None only for a missing key. Backend failures raise
    TransportError so callers never mistake an outage for an absent value.
    """

    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class RedisKeyValueStore:
    """Key-value store on a Redis instance. Values are kept without expiry."""

    def __init__(self, url: str) -> None:
        """Create a store for the given URL (e.g. redis://localhost:6379/0)."""
        self._url = url
        self._client: Redis[Any] | None = None

    async def connect(self) -> None:
        """Open the connection and ping it. Idempotent."""
        if self._client is not None:
            return
        self._client = Redis.from_url(self._url, decode_responses=True)
        try:
            await self._client.ping()
            logger.info("Redis connection established: %s", self._url.split("@")[-1])
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.warning("Redis ping failed: %s", e)
            await self._client.aclose()
            self._client = None
            raise

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("Redis connection closed")

    def _connected(self, op: str, key: str) -> Redis[Any]:
        if self._client is None:
            raise TransportError(f"Redis {op} {key} failed: store is not connected")
        return self._client

    async def get(self, key: str) -> str | None:
        """Return the value for key, or None if the key does not exist."""
        client = self._connected("get", key)
        try:
            value = await client.get(key)
        except RedisError as e:
            logger.error("Redis get %s failed: %s", key, e)
            raise TransportError(f"Redis get {key} failed: {e}") from e
        return value if value is None else str(value)

    async def put(self, key: str, value: str) -> None:
        client = self._connected("put", key)
        try:
            await client.set(key, value)
        except RedisError as e:
            logger.error("Redis put %s failed: %s", key, e)
            raise TransportError(f"Redis put {key} failed: {e}") from e

    async def delete(self, key: str) -> None:
        """Delete key. Deleting a missing key is not an error."""
        client = self._connected("delete", key)
        try:
            await client.delete(key)
        except RedisError as e:
            logger.error("Redis delete %s failed: %s", key, e)
            raise TransportError(f"Redis delete {key} failed: {e}") from e


class InMemoryKeyValueStore:
    """Process-local store, used when no Redis URL is configured."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        self._data.clear()

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


def get_key_value_store() -> RedisKeyValueStore | InMemoryKeyValueStore:
    """Return a Redis store if redis_url is configured, else an in-memory one."""
    settings = get_settings()
    if not settings.redis_url or not settings.redis_url.strip():
        logger.warning("REDIS_URL not set; agent bindings will not survive a restart")
        return InMemoryKeyValueStore()
    return RedisKeyValueStore(settings.redis_url.strip())
