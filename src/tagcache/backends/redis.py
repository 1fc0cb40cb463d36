"""Redis storage backends."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from redis.exceptions import RedisError

from tagcache.errors import BackendError

logger = structlog.get_logger(__name__)

_SCAN_COUNT = 100


def _serialize_value(value: Any) -> str:
    """Serialize a value to JSON."""
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as err:
        raise BackendError(f"Cannot serialize value: {err}") from err


def _deserialize_value(data: bytes | str | None) -> Any | None:
    """Deserialize JSON to a value."""
    if data is None:
        return None
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        return json.loads(data)
    except ValueError as err:
        raise BackendError(f"Cannot deserialize value: {err}") from err


def _ttl_from_pttl(pttl: int) -> int | None:
    """Map Redis PTTL replies onto the backend TTL convention."""
    if pttl == -2:
        return None
    if pttl == -1:
        return 0
    return pttl


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except RedisError as err:
        raise BackendError(str(err)) from err


class _RedisKeys:
    """Key namespacing shared by the sync and async backends."""

    def __init__(self, prefix: str) -> None:
        self._prefix = prefix

    def _full_key(self, key: str) -> str:
        """Generate full Redis key for a cache key."""
        return f"{self._prefix}:{key}"

    def _short_key(self, full_key: bytes | str) -> str:
        if isinstance(full_key, bytes):
            full_key = full_key.decode("utf-8")
        return full_key[len(self._prefix) + 1 :]

    @property
    def _pattern(self) -> str:
        return f"{self._prefix}:*"


class RedisBackend(_RedisKeys):
    """Sync Redis storage backend."""

    def __init__(
        self,
        client: Any,  # redis.Redis
        *,
        prefix: str = "tagcache",
    ) -> None:
        super().__init__(prefix)
        self._client = client

    def _scan(self) -> list[bytes | str]:
        found: list[bytes | str] = []
        cursor = 0
        while True:
            cursor, keys = self._client.scan(
                cursor, match=self._pattern, count=_SCAN_COUNT
            )
            found.extend(keys)
            if cursor == 0:
                break
        return found

    def get(self, key: str) -> Any | None:
        """Get a value by key."""
        with _translate_errors():
            data = self._client.get(self._full_key(key))
        return _deserialize_value(data)

    def set(self, key: str, value: Any, duration: int) -> None:
        """Store a value with automatic expiration."""
        if value is None or duration < 0:
            self.delete(key)
            return
        payload = _serialize_value(value)
        with _translate_errors():
            self._client.set(self._full_key(key), payload, px=duration or None)

    def set_if_absent(self, key: str, value: Any, duration: int) -> bool:
        """Store a value only if the key is absent (SET NX)."""
        if value is None or duration < 0:
            return False
        payload = _serialize_value(value)
        with _translate_errors():
            result = self._client.set(
                self._full_key(key), payload, nx=True, px=duration or None
            )
        return bool(result)

    def delete(self, *keys: str) -> Any | None:
        """Delete keys and return the last one's value."""
        if not keys:
            return None
        last = self.get(keys[-1])
        with _translate_errors():
            self._client.delete(*(self._full_key(k) for k in keys))
        return last

    def exists(self, key: str) -> bool:
        with _translate_errors():
            return bool(self._client.exists(self._full_key(key)))

    def keys(self) -> list[str]:
        with _translate_errors():
            return [self._short_key(k) for k in self._scan()]

    def size(self) -> int:
        return len(self.keys())

    def data(self) -> dict[str, Any]:
        with _translate_errors():
            full_keys = self._scan()
            if not full_keys:
                return {}
            values = self._client.mget(full_keys)
        return {
            self._short_key(k): _deserialize_value(v)
            for k, v in zip(full_keys, values)
            if v is not None
        }

    def update(self, key: str, value: Any) -> tuple[Any | None, bool]:
        """Replace the value of an existing key, keeping its TTL."""
        full_key = self._full_key(key)
        with _translate_errors():
            if self._client.pttl(full_key) == -2:
                return None, False
            old = _deserialize_value(self._client.get(full_key))
            if value is None:
                self._client.delete(full_key)
            else:
                self._client.set(full_key, _serialize_value(value), keepttl=True)
        return old, True

    def get_ttl(self, key: str) -> int | None:
        with _translate_errors():
            return _ttl_from_pttl(self._client.pttl(self._full_key(key)))

    def set_ttl(self, key: str, duration: int) -> int | None:
        full_key = self._full_key(key)
        old = self.get_ttl(key)
        if old is None:
            return None
        with _translate_errors():
            if duration < 0:
                self._client.delete(full_key)
            elif duration == 0:
                self._client.persist(full_key)
            else:
                self._client.pexpire(full_key, duration)
        return old

    def clear(self) -> None:
        """Clear all entries under this backend's prefix."""
        with _translate_errors():
            keys = self._scan()
            if keys:
                self._client.delete(*keys)

    def disconnect(self) -> None:
        """Close the Redis connection."""
        logger.debug("redis_disconnect", prefix=self._prefix)
        self._client.close()


class AsyncRedisBackend(_RedisKeys):
    """Async Redis storage backend."""

    def __init__(
        self,
        client: Any,  # redis.asyncio.Redis
        *,
        prefix: str = "tagcache",
    ) -> None:
        super().__init__(prefix)
        self._client = client

    async def _scan(self) -> list[bytes | str]:
        found: list[bytes | str] = []
        cursor: int = 0
        while True:
            result = await self._client.scan(
                cursor, match=self._pattern, count=_SCAN_COUNT
            )
            cursor = result[0]
            found.extend(result[1])
            if cursor == 0:
                break
        return found

    async def get(self, key: str) -> Any | None:
        """Get a value by key."""
        with _translate_errors():
            data = await self._client.get(self._full_key(key))
        return _deserialize_value(data)

    async def set(self, key: str, value: Any, duration: int) -> None:
        """Store a value with automatic expiration."""
        if value is None or duration < 0:
            await self.delete(key)
            return
        payload = _serialize_value(value)
        with _translate_errors():
            await self._client.set(self._full_key(key), payload, px=duration or None)

    async def set_if_absent(self, key: str, value: Any, duration: int) -> bool:
        """Store a value only if the key is absent (SET NX)."""
        if value is None or duration < 0:
            return False
        payload = _serialize_value(value)
        with _translate_errors():
            result = await self._client.set(
                self._full_key(key), payload, nx=True, px=duration or None
            )
        return bool(result)

    async def delete(self, *keys: str) -> Any | None:
        """Delete keys and return the last one's value."""
        if not keys:
            return None
        last = await self.get(keys[-1])
        with _translate_errors():
            await self._client.delete(*(self._full_key(k) for k in keys))
        return last

    async def exists(self, key: str) -> bool:
        with _translate_errors():
            return bool(await self._client.exists(self._full_key(key)))

    async def keys(self) -> list[str]:
        with _translate_errors():
            return [self._short_key(k) for k in await self._scan()]

    async def size(self) -> int:
        return len(await self.keys())

    async def data(self) -> dict[str, Any]:
        with _translate_errors():
            full_keys = await self._scan()
            if not full_keys:
                return {}
            values = await self._client.mget(full_keys)
        return {
            self._short_key(k): _deserialize_value(v)
            for k, v in zip(full_keys, values)
            if v is not None
        }

    async def update(self, key: str, value: Any) -> tuple[Any | None, bool]:
        """Replace the value of an existing key, keeping its TTL."""
        full_key = self._full_key(key)
        with _translate_errors():
            if await self._client.pttl(full_key) == -2:
                return None, False
            old = _deserialize_value(await self._client.get(full_key))
            if value is None:
                await self._client.delete(full_key)
            else:
                await self._client.set(
                    full_key, _serialize_value(value), keepttl=True
                )
        return old, True

    async def get_ttl(self, key: str) -> int | None:
        with _translate_errors():
            return _ttl_from_pttl(await self._client.pttl(self._full_key(key)))

    async def set_ttl(self, key: str, duration: int) -> int | None:
        full_key = self._full_key(key)
        old = await self.get_ttl(key)
        if old is None:
            return None
        with _translate_errors():
            if duration < 0:
                await self._client.delete(full_key)
            elif duration == 0:
                await self._client.persist(full_key)
            else:
                await self._client.pexpire(full_key, duration)
        return old

    async def clear(self) -> None:
        """Clear all entries under this backend's prefix."""
        with _translate_errors():
            keys = await self._scan()
            if keys:
                await self._client.delete(*keys)

    async def disconnect(self) -> None:
        """Close the Redis connection."""
        logger.debug("redis_disconnect", prefix=self._prefix)
        await self._client.aclose()
