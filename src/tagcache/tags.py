"""Tag index keys and the member-list codec."""

import hashlib
import json
from typing import Any

from tagcache.errors import TagIndexDecodeError
from tagcache.types import Key, Tag

_ESCAPE_MAP = {"\\": "\\\\", ":": "\\:"}


def serialize_tag(tag: Tag) -> str:
    """Serialize a tag to the string that gets hashed into its index key.

    Tuples join their escaped parts with ``:``; any other value uses ``str()``.
    """
    if not isinstance(tag, tuple):
        return str(tag)

    def escape(part: str) -> str:
        result = part
        for char, escaped in _ESCAPE_MAP.items():
            result = result.replace(char, escaped)
        return result

    return ":".join(escape(str(p)) for p in tag)


def tag_index_key(prefix: str, tag: Tag) -> str:
    """Derive the backend key holding the member list of ``tag``."""
    digest = hashlib.md5(
        serialize_tag(tag).encode(), usedforsecurity=False
    ).hexdigest()
    return f"{prefix}_tag_{digest}"


def encode_members(members: list[Key]) -> str:
    """Encode a member list for storage."""
    return json.dumps(members)


def decode_members(raw: Any) -> list[Key]:
    """Decode a stored member list. ``None`` decodes to an empty list.

    Raises:
        TagIndexDecodeError: ``raw`` is not a JSON array of strings.
    """
    if raw is None:
        return []
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if not isinstance(raw, str):
        raise TagIndexDecodeError(
            f"Tag index entry must be a string, got {type(raw).__name__}", raw
        )
    try:
        members = json.loads(raw)
    except ValueError as err:
        raise TagIndexDecodeError(f"Malformed tag index entry: {err}", raw) from err
    if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
        raise TagIndexDecodeError("Tag index entry is not a list of keys", raw)
    return members


def merge_members(key: Key, members: list[Key]) -> list[Key]:
    """Put ``key`` first, followed by every other existing member."""
    return [key, *(m for m in members if m != key)]
