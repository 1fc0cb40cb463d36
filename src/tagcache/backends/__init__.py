"""Storage backends for tagcache."""

from contextlib import suppress

from tagcache.backends.base import (
    AsyncStorageBackend,
    StorageBackend,
)
from tagcache.backends.disk import AsyncDiskBackend, DiskBackend
from tagcache.backends.memory import AsyncMemoryBackend, MemoryBackend

# Optional backends - only available when dependencies are installed
with suppress(ImportError):
    from tagcache.backends.redis import AsyncRedisBackend, RedisBackend

__all__ = [
    "AsyncDiskBackend",
    "AsyncMemoryBackend",
    "AsyncRedisBackend",
    "AsyncStorageBackend",
    "DiskBackend",
    "MemoryBackend",
    "RedisBackend",
    "StorageBackend",
]
