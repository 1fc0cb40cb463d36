"""Async tag-aware cache client."""

import asyncio
import inspect
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import structlog

from tagcache.backends.base import AsyncStorageBackend
from tagcache.duration import parse_duration
from tagcache.errors import TagIndexDecodeError, TagLockTimeoutError
from tagcache.tags import decode_members, encode_members, merge_members, tag_index_key
from tagcache.types import NO_EXPIRY, Duration, Key, Tag

logger = structlog.get_logger(__name__)

AsyncProducer = Callable[[], Any]  # plain or coroutine function


def _abandon_acquire(acquire: "asyncio.Task[bool]", lock: asyncio.Lock) -> None:
    """Cancel a pending acquire, releasing the lock if it was granted anyway."""

    def release_if_acquired(task: "asyncio.Task[bool]") -> None:
        if not task.cancelled() and task.exception() is None:
            lock.release()

    acquire.add_done_callback(release_if_acquired)
    acquire.cancel()


class AsyncTagCache:
    """Async cache client that groups keys under tags.

    Same semantics as ``TagCache``, with an ``asyncio.Lock`` guarding the
    tag index. Cancelling a task while it waits for the lock or for the
    backend aborts the operation and propagates ``CancelledError``.
    """

    def __init__(
        self,
        backend: AsyncStorageBackend,
        *,
        prefix: str = "tagcache",
        lock_timeout: Duration | None = None,
    ) -> None:
        self._backend = backend
        self._prefix = prefix
        self._lock_timeout: float | None = None
        if lock_timeout is not None:
            timeout_ms = parse_duration(lock_timeout)
            if timeout_ms < 0:
                raise ValueError("lock_timeout must not be negative")
            self._lock_timeout = timeout_ms / 1000
        self._lock = asyncio.Lock()
        self._func_lock = asyncio.Lock()

    @property
    def backend(self) -> AsyncStorageBackend:
        return self._backend

    @property
    def prefix(self) -> str:
        return self._prefix

    # -------------------------------------------------------------------------
    # Tag index
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _hold(self, lock: asyncio.Lock, name: str) -> AsyncIterator[None]:
        # Acquire in a separate task so that a timeout or a cancellation racing
        # with a successful acquire can still hand the lock back.
        acquire = asyncio.create_task(lock.acquire())
        try:
            done, _ = await asyncio.wait({acquire}, timeout=self._lock_timeout)
        except asyncio.CancelledError:
            _abandon_acquire(acquire, lock)
            raise
        if not done:
            _abandon_acquire(acquire, lock)
            raise TagLockTimeoutError(
                f"{name} lock not acquired within {self._lock_timeout}s"
            )
        acquire.result()
        try:
            yield
        finally:
            lock.release()

    def _tag_lock(self) -> AbstractAsyncContextManager[None]:
        return self._hold(self._lock, "Tag")

    @asynccontextmanager
    async def _tagged(self, key: Key, tag: Tag | None) -> AsyncIterator[None]:
        """Hold the tag lock with ``key`` associated to ``tag`` for the block."""
        if tag is None:
            yield
            return
        async with self._tag_lock():
            await self._associate(key, tag)
            yield

    async def _associate(self, key: Key, tag: Tag) -> None:
        if not isinstance(key, str):
            raise TypeError(f"Tagged keys must be str, got {type(key).__name__}")
        tag_key = tag_index_key(self._prefix, tag)
        members = merge_members(key, decode_members(await self._backend.get(tag_key)))
        await self._backend.set(tag_key, encode_members(members), NO_EXPIRY)
        logger.debug("tag_associated", key=key, tag_key=tag_key, members=len(members))

    def tag_key(self, tag: Tag) -> str:
        """Backend key holding the member list of ``tag``."""
        return tag_index_key(self._prefix, tag)

    async def associate_tag(self, key: Key, tag: Tag | None) -> None:
        """Record ``key`` as a member of ``tag``. No-op when ``tag`` is None."""
        async with self._tagged(key, tag):
            pass

    async def tag_members(self, tag: Tag) -> list[Key]:
        """Current members of ``tag``; empty when the tag is unknown."""
        return decode_members(await self._backend.get(self.tag_key(tag)))

    async def remove_by_tag(
        self, tag: Tag | None, *, ignore_corrupt: bool = False
    ) -> int:
        """Delete every key tagged with ``tag``, then the tag itself.

        A corrupt tag index entry raises and is left in place unless
        ``ignore_corrupt`` is set, in which case it is logged and dropped.

        Returns:
            Number of member keys read from the tag index.
        """
        if tag is None:
            return 0
        tag_key = self.tag_key(tag)
        async with self._tag_lock():
            try:
                members = decode_members(await self._backend.get(tag_key))
            except TagIndexDecodeError as err:
                if not ignore_corrupt:
                    raise
                logger.warning("tag_index_corrupt", tag_key=tag_key, error=str(err))
                members = []
            if members:
                await self._backend.delete(*members)
            await self._backend.delete(tag_key)
        logger.info("tag_removed", tag_key=tag_key, members=len(members))
        return len(members)

    async def remove_by_tags(
        self, tags: Iterable[Tag], *, ignore_corrupt: bool = False
    ) -> int:
        total = 0
        for tag in tags:
            total += await self.remove_by_tag(tag, ignore_corrupt=ignore_corrupt)
        return total

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def set(
        self,
        key: Key,
        value: Any,
        duration: Duration = NO_EXPIRY,
        tag: Tag | None = None,
    ) -> None:
        """Store ``value`` under ``key``, optionally tagged."""
        duration_ms = parse_duration(duration)
        async with self._tagged(key, tag):
            await self._backend.set(key, value, duration_ms)

    async def set_if_not_exist(
        self,
        key: Key,
        value: Any,
        duration: Duration = NO_EXPIRY,
        tag: Tag | None = None,
    ) -> bool:
        """Store ``value`` only if ``key`` is absent. The tag is always associated."""
        duration_ms = parse_duration(duration)
        async with self._tagged(key, tag):
            return await self._backend.set_if_absent(key, value, duration_ms)

    async def get_or_set(
        self,
        key: Key,
        value: Any,
        duration: Duration = NO_EXPIRY,
        tag: Tag | None = None,
    ) -> Any | None:
        """Return the cached value, or store and return ``value``."""
        duration_ms = parse_duration(duration)
        async with self._tagged(key, tag):
            return await self._get_or_store(key, lambda: value, duration_ms)

    async def get_or_set_func(
        self,
        key: Key,
        fn: AsyncProducer,
        duration: Duration = NO_EXPIRY,
        tag: Tag | None = None,
    ) -> Any | None:
        """Return the cached value, or store and return the result of ``fn()``.

        ``fn`` may be a plain or a coroutine function.
        """
        duration_ms = parse_duration(duration)
        async with self._tagged(key, tag):
            return await self._get_or_store(key, fn, duration_ms)

    async def get_or_set_func_lock(
        self,
        key: Key,
        fn: AsyncProducer,
        duration: Duration = NO_EXPIRY,
        tag: Tag | None = None,
    ) -> Any | None:
        """Like ``get_or_set_func``, but ``fn`` always runs under a writer lock.

        Concurrent misses on this client run the producer once.
        """
        duration_ms = parse_duration(duration)
        async with self._hold(self._func_lock, "Writer"), self._tagged(key, tag):
            return await self._get_or_store(key, fn, duration_ms)

    async def _get_or_store(
        self, key: Key, fn: AsyncProducer, duration_ms: int
    ) -> Any | None:
        existing = await self._backend.get(key)
        if existing is not None:
            return existing
        value = fn()
        if inspect.isawaitable(value):
            value = await value
        if value is None:
            return None
        await self._backend.set(key, value, duration_ms)
        return value

    async def update(self, key: Key, value: Any) -> tuple[Any | None, bool]:
        """Replace the value of an existing key, keeping its TTL."""
        return await self._backend.update(key, value)

    async def set_ttl(self, key: Key, duration: Duration) -> int | None:
        return await self._backend.set_ttl(key, parse_duration(duration))

    # -------------------------------------------------------------------------
    # Reads and plain removal
    # -------------------------------------------------------------------------

    async def get(self, key: Key) -> Any | None:
        return await self._backend.get(key)

    async def contains(self, key: Key) -> bool:
        return await self._backend.exists(key)

    async def get_ttl(self, key: Key) -> int | None:
        return await self._backend.get_ttl(key)

    async def remove(self, key: Key) -> Any | None:
        """Delete ``key`` and return its value."""
        return await self._backend.delete(key)

    async def removes(self, keys: Iterable[Key]) -> None:
        keys = list(keys)
        if keys:
            await self._backend.delete(*keys)

    async def keys(self) -> list[Key]:
        return await self._backend.keys()

    async def values(self) -> list[Any]:
        return list((await self._backend.data()).values())

    async def data(self) -> dict[Key, Any]:
        return await self._backend.data()

    async def size(self) -> int:
        return await self._backend.size()

    async def clear(self) -> None:
        """Clear all cached entries, tag index entries included."""
        await self._backend.clear()

    async def disconnect(self) -> None:
        """Disconnect from the storage backend."""
        await self._backend.disconnect()
