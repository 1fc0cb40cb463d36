"""Exceptions raised by tagcache."""


class TagCacheError(Exception):
    """Base class for every tagcache error."""


class BackendError(TagCacheError):
    """The underlying store failed (connectivity, serialization, timeout)."""


class TagIndexDecodeError(TagCacheError):
    """A stored tag index entry is not a member list."""

    def __init__(self, message: str, raw: object = None) -> None:
        super().__init__(message)
        self.raw = raw


class TagLockTimeoutError(TagCacheError):
    """The tag lock could not be acquired within the configured timeout."""
