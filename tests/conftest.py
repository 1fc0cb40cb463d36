"""Shared pytest fixtures."""

from pathlib import Path

import pytest

from tagcache import (
    AsyncDiskBackend,
    AsyncMemoryBackend,
    AsyncTagCache,
    DiskBackend,
    MemoryBackend,
    TagCache,
)


@pytest.fixture
def backend() -> MemoryBackend:
    """Create a fresh MemoryBackend for each test."""
    return MemoryBackend()


@pytest.fixture
def async_backend() -> AsyncMemoryBackend:
    """Create a fresh AsyncMemoryBackend for each test."""
    return AsyncMemoryBackend()


@pytest.fixture
def disk_backend(tmp_path: Path):
    """Create a DiskBackend in a temporary directory."""
    backend = DiskBackend(tmp_path / "cache.db")
    yield backend
    backend.disconnect()


@pytest.fixture
async def async_disk_backend(tmp_path: Path):
    """Create an AsyncDiskBackend in a temporary directory."""
    backend = AsyncDiskBackend(tmp_path / "cache.db")
    yield backend
    await backend.disconnect()


@pytest.fixture
def cache(backend: MemoryBackend) -> TagCache:
    """Create a TagCache over a memory backend."""
    return TagCache(backend, prefix="test")


@pytest.fixture
def async_cache(async_backend: AsyncMemoryBackend) -> AsyncTagCache:
    """Create an AsyncTagCache over an async memory backend."""
    return AsyncTagCache(async_backend, prefix="test")
