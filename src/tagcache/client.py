"""Sync tag-aware cache client."""

import threading
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Any

import structlog

from tagcache.backends.base import StorageBackend
from tagcache.duration import parse_duration
from tagcache.errors import TagIndexDecodeError, TagLockTimeoutError
from tagcache.tags import decode_members, encode_members, merge_members, tag_index_key
from tagcache.types import NO_EXPIRY, Duration, Key, Producer, Tag

logger = structlog.get_logger(__name__)


class TagCache:
    """Sync cache client that groups keys under tags.

    Each tag's member list is stored in the backend itself, under a key
    derived from the tag and this client's prefix. Every read-modify-write
    of a member list, and every tagged value write, runs under one lock per
    client so concurrent taggers never lose each other's updates. Untagged
    operations go straight to the backend.
    """

    def __init__(
        self,
        backend: StorageBackend,
        *,
        prefix: str = "tagcache",
        lock_timeout: Duration | None = None,
    ) -> None:
        self._backend = backend
        self._prefix = prefix
        if lock_timeout is None:
            self._lock_timeout = -1.0
        else:
            timeout_ms = parse_duration(lock_timeout)
            if timeout_ms < 0:
                raise ValueError("lock_timeout must not be negative")
            self._lock_timeout = timeout_ms / 1000
        self._lock = threading.Lock()
        self._func_lock = threading.Lock()

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def prefix(self) -> str:
        return self._prefix

    # -------------------------------------------------------------------------
    # Tag index
    # -------------------------------------------------------------------------

    @contextmanager
    def _hold(self, lock: threading.Lock, name: str) -> Iterator[None]:
        if not lock.acquire(timeout=self._lock_timeout):
            raise TagLockTimeoutError(
                f"{name} lock not acquired within {self._lock_timeout}s"
            )
        try:
            yield
        finally:
            lock.release()

    def _tag_lock(self) -> AbstractContextManager[None]:
        return self._hold(self._lock, "Tag")

    @contextmanager
    def _tagged(self, key: Key, tag: Tag | None) -> Iterator[None]:
        """Hold the tag lock with ``key`` associated to ``tag`` for the block."""
        if tag is None:
            yield
            return
        with self._tag_lock():
            self._associate(key, tag)
            yield

    def _associate(self, key: Key, tag: Tag) -> None:
        if not isinstance(key, str):
            raise TypeError(f"Tagged keys must be str, got {type(key).__name__}")
        tag_key = tag_index_key(self._prefix, tag)
        members = merge_members(key, decode_members(self._backend.get(tag_key)))
        self._backend.set(tag_key, encode_members(members), NO_EXPIRY)
        logger.debug("tag_associated", key=key, tag_key=tag_key, members=len(members))

    def tag_key(self, tag: Tag) -> str:
        """Backend key holding the member list of ``tag``."""
        return tag_index_key(self._prefix, tag)

    def associate_tag(self, key: Key, tag: Tag | None) -> None:
        """Record ``key`` as a member of ``tag``. No-op when ``tag`` is None.

        Raises:
            TagIndexDecodeError: The stored member list is corrupt.
            TagLockTimeoutError: The tag lock was not acquired in time.
        """
        with self._tagged(key, tag):
            pass

    def tag_members(self, tag: Tag) -> list[Key]:
        """Current members of ``tag``; empty when the tag is unknown."""
        return decode_members(self._backend.get(self.tag_key(tag)))

    def remove_by_tag(self, tag: Tag | None, *, ignore_corrupt: bool = False) -> int:
        """Delete every key tagged with ``tag``, then the tag itself.

        Members are read once; a key that was a member at that moment is
        deleted even if it has been tagged elsewhere since. The tag index
        entry is deleted last so an interrupted removal can be retried.

        A corrupt tag index entry raises and is left in place. With
        ``ignore_corrupt`` it is logged and dropped instead; its members can
        no longer be found and stay cached until they expire.

        Returns:
            Number of member keys read from the tag index.

        Raises:
            TagIndexDecodeError: The stored member list is corrupt.
        """
        if tag is None:
            return 0
        tag_key = self.tag_key(tag)
        with self._tag_lock():
            try:
                members = decode_members(self._backend.get(tag_key))
            except TagIndexDecodeError as err:
                if not ignore_corrupt:
                    raise
                logger.warning("tag_index_corrupt", tag_key=tag_key, error=str(err))
                members = []
            if members:
                self._backend.delete(*members)
            self._backend.delete(tag_key)
        logger.info("tag_removed", tag_key=tag_key, members=len(members))
        return len(members)

    def remove_by_tags(
        self, tags: Iterable[Tag], *, ignore_corrupt: bool = False
    ) -> int:
        """Remove each tag in turn. Returns the total number of members read."""
        return sum(
            self.remove_by_tag(tag, ignore_corrupt=ignore_corrupt) for tag in tags
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def set(
        self,
        key: Key,
        value: Any,
        duration: Duration = NO_EXPIRY,
        tag: Tag | None = None,
    ) -> None:
        """Store ``value`` under ``key``, optionally tagged.

        The tag is associated before the value is written and is kept even if
        the write fails; removing a tag whose member is missing is harmless.
        """
        duration_ms = parse_duration(duration)
        with self._tagged(key, tag):
            self._backend.set(key, value, duration_ms)

    def set_if_not_exist(
        self,
        key: Key,
        value: Any,
        duration: Duration = NO_EXPIRY,
        tag: Tag | None = None,
    ) -> bool:
        """Store ``value`` only if ``key`` is absent. The tag is always associated."""
        duration_ms = parse_duration(duration)
        with self._tagged(key, tag):
            return self._backend.set_if_absent(key, value, duration_ms)

    def get_or_set(
        self,
        key: Key,
        value: Any,
        duration: Duration = NO_EXPIRY,
        tag: Tag | None = None,
    ) -> Any | None:
        """Return the cached value, or store and return ``value``."""
        duration_ms = parse_duration(duration)
        with self._tagged(key, tag):
            return self._get_or_store(key, lambda: value, duration_ms)

    def get_or_set_func(
        self,
        key: Key,
        fn: Producer,
        duration: Duration = NO_EXPIRY,
        tag: Tag | None = None,
    ) -> Any | None:
        """Return the cached value, or store and return the result of ``fn()``.

        When tagged, ``fn`` runs while the tag lock is held.
        """
        duration_ms = parse_duration(duration)
        with self._tagged(key, tag):
            return self._get_or_store(key, fn, duration_ms)

    def get_or_set_func_lock(
        self,
        key: Key,
        fn: Producer,
        duration: Duration = NO_EXPIRY,
        tag: Tag | None = None,
    ) -> Any | None:
        """Like ``get_or_set_func``, but ``fn`` always runs under a writer lock.

        Concurrent misses on this client run the producer once; the others
        get the stored value. The writer lock is taken before the tag lock.
        """
        duration_ms = parse_duration(duration)
        with self._hold(self._func_lock, "Writer"), self._tagged(key, tag):
            return self._get_or_store(key, fn, duration_ms)

    def _get_or_store(self, key: Key, fn: Producer, duration_ms: int) -> Any | None:
        existing = self._backend.get(key)
        if existing is not None:
            return existing
        value = fn()
        if value is None:
            return None
        self._backend.set(key, value, duration_ms)
        return value

    def update(self, key: Key, value: Any) -> tuple[Any | None, bool]:
        """Replace the value of an existing key, keeping its TTL.

        Returns:
            The previous value and whether the key existed.
        """
        return self._backend.update(key, value)

    def set_ttl(self, key: Key, duration: Duration) -> int | None:
        """Change the TTL of ``key``; returns the previous TTL in ms."""
        return self._backend.set_ttl(key, parse_duration(duration))

    # -------------------------------------------------------------------------
    # Reads and plain removal
    # -------------------------------------------------------------------------

    def get(self, key: Key) -> Any | None:
        return self._backend.get(key)

    def contains(self, key: Key) -> bool:
        return self._backend.exists(key)

    def get_ttl(self, key: Key) -> int | None:
        """Remaining TTL in ms, 0 for no expiry, None when absent."""
        return self._backend.get_ttl(key)

    def remove(self, key: Key) -> Any | None:
        """Delete ``key`` and return its value."""
        return self._backend.delete(key)

    def removes(self, keys: Iterable[Key]) -> None:
        keys = list(keys)
        if keys:
            self._backend.delete(*keys)

    def keys(self) -> list[Key]:
        return self._backend.keys()

    def values(self) -> list[Any]:
        return list(self._backend.data().values())

    def data(self) -> dict[Key, Any]:
        return self._backend.data()

    def size(self) -> int:
        return self._backend.size()

    def clear(self) -> None:
        """Clear all cached entries, tag index entries included."""
        self._backend.clear()

    def disconnect(self) -> None:
        """Disconnect from the storage backend."""
        self._backend.disconnect()
