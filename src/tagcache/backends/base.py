"""Base protocols for storage backends."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class StorageBackend(Protocol):
    """Sync storage backend interface.

    Durations are milliseconds: ``0`` means no expiry, a negative value
    deletes the key. Storing ``None`` also deletes the key.
    """

    def get(self, key: str) -> Any | None:
        """Get a value by key, ``None`` when absent or expired."""
        ...

    def set(self, key: str, value: Any, duration: int) -> None:
        """Store a value."""
        ...

    def set_if_absent(self, key: str, value: Any, duration: int) -> bool:
        """Store a value only if the key is absent. Returns whether it was stored."""
        ...

    def delete(self, *keys: str) -> Any | None:
        """Delete keys and return the value the last one held."""
        ...

    def exists(self, key: str) -> bool:
        """Check whether a key is present."""
        ...

    def keys(self) -> list[str]:
        """List all live keys."""
        ...

    def size(self) -> int:
        """Count all live keys."""
        ...

    def data(self) -> dict[str, Any]:
        """Copy of every live key/value pair."""
        ...

    def update(self, key: str, value: Any) -> tuple[Any | None, bool]:
        """Replace the value of an existing key, keeping its TTL."""
        ...

    def get_ttl(self, key: str) -> int | None:
        """Remaining TTL in ms, ``0`` for no expiry, ``None`` when absent."""
        ...

    def set_ttl(self, key: str, duration: int) -> int | None:
        """Change the TTL of a key and return the previous one."""
        ...

    def clear(self) -> None:
        """Remove every key."""
        ...

    def disconnect(self) -> None:
        """Release the underlying connection."""
        ...


@runtime_checkable
class AsyncStorageBackend(Protocol):
    """Async storage backend interface."""

    async def get(self, key: str) -> Any | None:
        """Get a value by key, ``None`` when absent or expired."""
        ...

    async def set(self, key: str, value: Any, duration: int) -> None:
        """Store a value."""
        ...

    async def set_if_absent(self, key: str, value: Any, duration: int) -> bool:
        """Store a value only if the key is absent. Returns whether it was stored."""
        ...

    async def delete(self, *keys: str) -> Any | None:
        """Delete keys and return the value the last one held."""
        ...

    async def exists(self, key: str) -> bool:
        """Check whether a key is present."""
        ...

    async def keys(self) -> list[str]:
        """List all live keys."""
        ...

    async def size(self) -> int:
        """Count all live keys."""
        ...

    async def data(self) -> dict[str, Any]:
        """Copy of every live key/value pair."""
        ...

    async def update(self, key: str, value: Any) -> tuple[Any | None, bool]:
        """Replace the value of an existing key, keeping its TTL."""
        ...

    async def get_ttl(self, key: str) -> int | None:
        """Remaining TTL in ms, ``0`` for no expiry, ``None`` when absent."""
        ...

    async def set_ttl(self, key: str, duration: int) -> int | None:
        """Change the TTL of a key and return the previous one."""
        ...

    async def clear(self) -> None:
        """Remove every key."""
        ...

    async def disconnect(self) -> None:
        """Release the underlying connection."""
        ...
