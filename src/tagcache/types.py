"""Core types for tagcache."""

from collections.abc import Callable
from typing import Any, TypeAlias

# Duration type alias
Duration: TypeAlias = str | int  # "30s", "5m", "2h", "1d" or milliseconds

# Keys are opaque strings; tags may be any value except None
Key: TypeAlias = str
Tag: TypeAlias = Any

# Zero-argument producer used by get_or_set_func
Producer: TypeAlias = Callable[[], Any]

NO_EXPIRY = 0  # duration / TTL meaning "never expires"
