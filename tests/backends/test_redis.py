"""Integration tests for Redis backends using testcontainers."""

import pytest

# Skip all tests if redis or testcontainers are not installed
pytest.importorskip("redis")
pytest.importorskip("testcontainers")

import asyncio
import time

import redis
import redis.asyncio
from testcontainers.redis import RedisContainer

from tagcache import AsyncTagCache, BackendError, TagCache
from tagcache.backends.redis import AsyncRedisBackend, RedisBackend


@pytest.fixture(scope="module")
def redis_container():
    """Start a Redis container for the test module."""
    try:
        container = RedisContainer().start()
    except Exception as err:  # no Docker daemon available
        pytest.skip(f"Redis container unavailable: {err}")
    yield container
    container.stop()


@pytest.fixture
def redis_client(redis_container):
    """Create a sync Redis client."""
    client = redis.Redis(
        host=redis_container.get_container_host_ip(),
        port=redis_container.get_exposed_port(6379),
        decode_responses=False,
    )
    yield client
    client.flushdb()
    client.close()


@pytest.fixture
async def async_redis_client(redis_container):
    """Create an async Redis client."""
    client = redis.asyncio.Redis(
        host=redis_container.get_container_host_ip(),
        port=redis_container.get_exposed_port(6379),
        decode_responses=False,
    )
    yield client
    await client.flushdb()
    await client.aclose()


@pytest.fixture
def redis_backend(redis_client) -> RedisBackend:
    """Create a RedisBackend with a test prefix."""
    return RedisBackend(redis_client, prefix="test")


@pytest.fixture
def async_redis_backend(async_redis_client) -> AsyncRedisBackend:
    """Create an AsyncRedisBackend with a test prefix."""
    return AsyncRedisBackend(async_redis_client, prefix="test")


class TestRedisBackend:
    """Integration tests for sync RedisBackend."""

    def test_get_nonexistent_returns_none(self, redis_backend: RedisBackend) -> None:
        """Test that getting a nonexistent key returns None."""
        assert redis_backend.get("nonexistent") is None
        assert redis_backend.exists("nonexistent") is False

    def test_set_and_get(self, redis_backend: RedisBackend, redis_client) -> None:
        """Test setting and getting a value under the key prefix."""
        redis_backend.set("key1", {"id": "123", "name": "Test"}, 0)
        assert redis_backend.get("key1") == {"id": "123", "name": "Test"}
        assert redis_client.exists("test:key1") == 1

    def test_delete(self, redis_backend: RedisBackend) -> None:
        """Test deleting values."""
        redis_backend.set("key1", "a", 0)
        redis_backend.set("key2", "b", 0)
        assert redis_backend.delete("key1", "key2") == "b"
        assert redis_backend.get("key1") is None

    def test_set_if_absent(self, redis_backend: RedisBackend) -> None:
        """Test SET NX semantics with expiry."""
        assert redis_backend.set_if_absent("key1", "first", 60_000) is True
        assert redis_backend.set_if_absent("key1", "second", 0) is False
        assert redis_backend.get("key1") == "first"
        assert redis_backend.get_ttl("key1") > 0

    def test_enumeration_is_scoped(
        self, redis_backend: RedisBackend, redis_client
    ) -> None:
        """Test that keys outside the prefix are invisible."""
        redis_client.set("other:key", "x")
        redis_backend.set("a", 1, 0)
        redis_backend.set("b", 2, 0)

        assert sorted(redis_backend.keys()) == ["a", "b"]
        assert redis_backend.size() == 2
        assert redis_backend.data() == {"a": 1, "b": 2}

        redis_backend.clear()
        assert redis_backend.size() == 0
        assert redis_client.exists("other:key") == 1

    def test_update_and_ttl(self, redis_backend: RedisBackend) -> None:
        """Test update keeps the TTL and TTL helpers map PTTL replies."""
        assert redis_backend.get_ttl("missing") is None
        assert redis_backend.update("missing", 1) == (None, False)

        redis_backend.set("a", 1, 60_000)
        assert redis_backend.update("a", 2) == (1, True)
        assert redis_backend.get_ttl("a") > 0
        assert redis_backend.set_ttl("a", 0) > 0
        assert redis_backend.get_ttl("a") == 0
        redis_backend.set_ttl("a", -1)
        assert not redis_backend.exists("a")

    def test_ttl_expiration(self, redis_backend: RedisBackend) -> None:
        """Test that entries expire based on duration."""
        redis_backend.set("expiring_key", "test", 100)

        # Should exist immediately
        assert redis_backend.get("expiring_key") is not None

        # Wait for expiration
        time.sleep(0.2)

        # Should be gone
        assert redis_backend.get("expiring_key") is None

    def test_unserializable_value(self, redis_backend: RedisBackend) -> None:
        """Test that non-JSON values raise BackendError."""
        with pytest.raises(BackendError):
            redis_backend.set("k", object(), 0)

    def test_tag_cache_end_to_end(self, redis_backend: RedisBackend) -> None:
        """Test the person/family scenario on Redis."""
        cache = TagCache(redis_backend, prefix="prefix001")
        cache.set("person01", {"name": "zhangsan", "age": 10}, 0, "tag_person")
        cache.set("person02", {"name": "lisi", "age": 12}, 0, "tag_person")
        cache.set("family01", {"name": "zhang"}, 0, "tag_family")

        cache.remove_by_tag("tag_person")

        assert cache.contains("person01") is False
        assert cache.contains("person02") is False
        assert cache.contains("family01") is True


class TestRedisBackendErrors:
    """Tests for connection failures."""

    def test_unreachable_server(self) -> None:
        """Test that connection errors surface as BackendError."""
        client = redis.Redis(host="127.0.0.1", port=1, socket_connect_timeout=0.1)
        backend = RedisBackend(client)
        with pytest.raises(BackendError):
            backend.get("k")
        client.close()


class TestAsyncRedisBackend:
    """Integration tests for async AsyncRedisBackend."""

    async def test_get_nonexistent_returns_none(
        self, async_redis_backend: AsyncRedisBackend
    ) -> None:
        """Test that getting a nonexistent key returns None."""
        assert await async_redis_backend.get("nonexistent") is None

    async def test_set_get_delete(
        self, async_redis_backend: AsyncRedisBackend
    ) -> None:
        """Test the basic write/read/delete cycle."""
        await async_redis_backend.set("async_key1", {"id": "456"}, 0)
        assert await async_redis_backend.get("async_key1") == {"id": "456"}
        assert await async_redis_backend.delete("async_key1") == {"id": "456"}
        assert await async_redis_backend.get("async_key1") is None

    async def test_clear(self, async_redis_backend: AsyncRedisBackend) -> None:
        """Test clearing all cached entries."""
        await async_redis_backend.set("async_key1", "test", 0)
        await async_redis_backend.set("async_key2", "test", 0)

        await async_redis_backend.clear()

        assert await async_redis_backend.keys() == []

    async def test_ttl_expiration(self, async_redis_backend: AsyncRedisBackend) -> None:
        """Test that entries expire based on duration."""
        await async_redis_backend.set("async_expiring_key", "test", 100)
        assert await async_redis_backend.get("async_expiring_key") is not None

        await asyncio.sleep(0.2)

        assert await async_redis_backend.get("async_expiring_key") is None

    async def test_concurrent_tagging(
        self, async_redis_backend: AsyncRedisBackend
    ) -> None:
        """Test that concurrent tagged writes keep every member."""
        cache = AsyncTagCache(async_redis_backend)

        await asyncio.gather(*(cache.set(f"k{i}", i, 0, "T") for i in range(20)))

        assert len(await cache.tag_members("T")) == 20
        assert await cache.remove_by_tag("T") == 20
        assert await async_redis_backend.keys() == []
