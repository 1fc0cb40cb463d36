"""In-memory storage backends."""

import asyncio
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any


def _now_ms() -> float:
    return time.monotonic() * 1000


@dataclass(slots=True)
class _Item:
    value: Any
    expires_at: float | None  # monotonic ms, None for no expiry

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class _MemoryStore:
    """Unlocked dict store with lazy expiry and optional LRU eviction."""

    def __init__(self, max_items: int | None = None) -> None:
        self._items: OrderedDict[str, _Item] = OrderedDict()
        self._max_items = max_items

    def _live(self, key: str) -> _Item | None:
        item = self._items.get(key)
        if item is not None and item.expired(_now_ms()):
            del self._items[key]
            return None
        return item

    def _purge(self) -> None:
        now = _now_ms()
        for key in [k for k, item in self._items.items() if item.expired(now)]:
            del self._items[key]

    def get(self, key: str) -> Any | None:
        item = self._live(key)
        if item is None:
            return None
        self._items.move_to_end(key)  # LRU touch
        return item.value

    def set(self, key: str, value: Any, duration: int) -> None:
        if value is None or duration < 0:
            self._items.pop(key, None)
            return
        expires_at = _now_ms() + duration if duration > 0 else None
        self._items[key] = _Item(value, expires_at)
        self._items.move_to_end(key)
        if self._max_items and len(self._items) > self._max_items:
            self._items.popitem(last=False)

    def set_if_absent(self, key: str, value: Any, duration: int) -> bool:
        if self._live(key) is not None:
            return False
        if value is None or duration < 0:
            return False
        self.set(key, value, duration)
        return True

    def delete(self, *keys: str) -> Any | None:
        if not keys:
            return None
        last = self._live(keys[-1])
        for key in keys:
            self._items.pop(key, None)
        return last.value if last is not None else None

    def exists(self, key: str) -> bool:
        return self._live(key) is not None

    def keys(self) -> list[str]:
        self._purge()
        return list(self._items)

    def size(self) -> int:
        self._purge()
        return len(self._items)

    def data(self) -> dict[str, Any]:
        self._purge()
        return {key: item.value for key, item in self._items.items()}

    def update(self, key: str, value: Any) -> tuple[Any | None, bool]:
        item = self._live(key)
        if item is None:
            return None, False
        old = item.value
        if value is None:
            del self._items[key]
        else:
            item.value = value
        return old, True

    def get_ttl(self, key: str) -> int | None:
        item = self._live(key)
        if item is None:
            return None
        if item.expires_at is None:
            return 0
        return max(1, int(item.expires_at - _now_ms()))

    def set_ttl(self, key: str, duration: int) -> int | None:
        old = self.get_ttl(key)
        if old is None:
            return None
        if duration < 0:
            del self._items[key]
        else:
            self._items[key].expires_at = _now_ms() + duration if duration > 0 else None
        return old

    def clear(self) -> None:
        self._items.clear()


class MemoryBackend:
    """Sync in-memory storage backend with optional LRU eviction."""

    def __init__(self, max_items: int | None = None) -> None:
        self._store = _MemoryStore(max_items)
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Get a value by key."""
        with self._lock:
            return self._store.get(key)

    def set(self, key: str, value: Any, duration: int) -> None:
        """Store a value."""
        with self._lock:
            self._store.set(key, value, duration)

    def set_if_absent(self, key: str, value: Any, duration: int) -> bool:
        """Store a value only if the key is absent."""
        with self._lock:
            return self._store.set_if_absent(key, value, duration)

    def delete(self, *keys: str) -> Any | None:
        """Delete keys and return the last one's value."""
        with self._lock:
            return self._store.delete(*keys)

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._store.exists(key)

    def keys(self) -> list[str]:
        with self._lock:
            return self._store.keys()

    def size(self) -> int:
        with self._lock:
            return self._store.size()

    def data(self) -> dict[str, Any]:
        with self._lock:
            return self._store.data()

    def update(self, key: str, value: Any) -> tuple[Any | None, bool]:
        """Replace the value of an existing key, keeping its TTL."""
        with self._lock:
            return self._store.update(key, value)

    def get_ttl(self, key: str) -> int | None:
        with self._lock:
            return self._store.get_ttl(key)

    def set_ttl(self, key: str, duration: int) -> int | None:
        with self._lock:
            return self._store.set_ttl(key, duration)

    def clear(self) -> None:
        """Clear all entries."""
        with self._lock:
            self._store.clear()

    def disconnect(self) -> None:
        """Disconnect from the storage backend (no-op for memory)."""
        pass


class AsyncMemoryBackend:
    """Async in-memory storage backend with optional LRU eviction."""

    def __init__(self, max_items: int | None = None) -> None:
        self._store = _MemoryStore(max_items)
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        """Get a value by key."""
        async with self._lock:
            return self._store.get(key)

    async def set(self, key: str, value: Any, duration: int) -> None:
        """Store a value."""
        async with self._lock:
            self._store.set(key, value, duration)

    async def set_if_absent(self, key: str, value: Any, duration: int) -> bool:
        """Store a value only if the key is absent."""
        async with self._lock:
            return self._store.set_if_absent(key, value, duration)

    async def delete(self, *keys: str) -> Any | None:
        """Delete keys and return the last one's value."""
        async with self._lock:
            return self._store.delete(*keys)

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._store.exists(key)

    async def keys(self) -> list[str]:
        async with self._lock:
            return self._store.keys()

    async def size(self) -> int:
        async with self._lock:
            return self._store.size()

    async def data(self) -> dict[str, Any]:
        async with self._lock:
            return self._store.data()

    async def update(self, key: str, value: Any) -> tuple[Any | None, bool]:
        """Replace the value of an existing key, keeping its TTL."""
        async with self._lock:
            return self._store.update(key, value)

    async def get_ttl(self, key: str) -> int | None:
        async with self._lock:
            return self._store.get_ttl(key)

    async def set_ttl(self, key: str, duration: int) -> int | None:
        async with self._lock:
            return self._store.set_ttl(key, duration)

    async def clear(self) -> None:
        """Clear all entries."""
        async with self._lock:
            self._store.clear()

    async def disconnect(self) -> None:
        """Disconnect from the storage backend (no-op for memory)."""
        pass
