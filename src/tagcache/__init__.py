"""tagcache - Tag-based invalidation on top of any key-value cache."""

from contextlib import suppress

from tagcache.async_client import AsyncTagCache

# Backends
from tagcache.backends import (
    AsyncDiskBackend,
    AsyncMemoryBackend,
    AsyncStorageBackend,
    DiskBackend,
    MemoryBackend,
    StorageBackend,
)
from tagcache.client import TagCache

# Duration parsing
from tagcache.duration import parse_duration
from tagcache.errors import (
    BackendError,
    TagCacheError,
    TagIndexDecodeError,
    TagLockTimeoutError,
)
from tagcache.tags import decode_members, encode_members, serialize_tag, tag_index_key

# Core types
from tagcache.types import NO_EXPIRY, Duration, Key, Tag

# Optional backend imports - only available when dependencies are installed
with suppress(ImportError):
    from tagcache.backends import AsyncRedisBackend, RedisBackend

__version__ = "0.1.0"

__all__ = [
    "NO_EXPIRY",
    "AsyncDiskBackend",
    "AsyncMemoryBackend",
    "AsyncRedisBackend",
    "AsyncStorageBackend",
    "AsyncTagCache",
    "BackendError",
    "DiskBackend",
    "Duration",
    "Key",
    "MemoryBackend",
    "RedisBackend",
    "StorageBackend",
    "Tag",
    "TagCache",
    "TagCacheError",
    "TagIndexDecodeError",
    "TagLockTimeoutError",
    "decode_members",
    "encode_members",
    "parse_duration",
    "serialize_tag",
    "tag_index_key",
]
