"""Tests for tag keys and the member codec."""

import hashlib

import pytest

from tagcache import (
    TagIndexDecodeError,
    decode_members,
    encode_members,
    serialize_tag,
    tag_index_key,
)
from tagcache.tags import merge_members


class TestSerializeTag:
    """Tests for serialize_tag function."""

    def test_string_tag(self) -> None:
        """Test that plain values use their string form."""
        assert serialize_tag("tag_person") == "tag_person"
        assert serialize_tag(42) == "42"

    def test_tuple_tag(self) -> None:
        """Test serializing a tuple tag."""
        assert serialize_tag(("user", "123", "posts")) == "user:123:posts"

    def test_escapes_colons(self) -> None:
        """Test that separators inside parts are escaped."""
        assert serialize_tag(("a:b", "c")) == "a\\:b:c"
        assert serialize_tag(("a", "b:c")) != serialize_tag(("a:b", "c"))

    def test_escapes_backslashes(self) -> None:
        """Test that backslashes are escaped."""
        assert serialize_tag(("a\\b",)) == "a\\\\b"


class TestTagIndexKey:
    """Tests for tag_index_key function."""

    def test_deterministic(self) -> None:
        """Test that the same tag and prefix give the same key."""
        assert tag_index_key("p", "T") == tag_index_key("p", "T")

    def test_format(self) -> None:
        """Test the key layout: prefix, marker, md5 hex digest."""
        digest = hashlib.md5(b"demo01").hexdigest()
        assert tag_index_key("prefix001", "demo01") == f"prefix001_tag_{digest}"

    def test_scoped_by_prefix(self) -> None:
        """Test that different prefixes never share a tag key."""
        assert tag_index_key("a", "T") != tag_index_key("b", "T")

    def test_bounded_length(self) -> None:
        """Test that long tags do not produce long keys."""
        assert len(tag_index_key("p", "x" * 10_000)) == len("p_tag_") + 32


class TestMemberCodec:
    """Tests for encode_members / decode_members."""

    def test_round_trip(self) -> None:
        """Test that an encoded list decodes unchanged."""
        assert decode_members(encode_members(["a", "b"])) == ["a", "b"]

    def test_none_is_empty(self) -> None:
        """Test that a missing entry decodes to an empty list."""
        assert decode_members(None) == []

    def test_bytes(self) -> None:
        """Test that raw bytes from a backend are accepted."""
        assert decode_members(b'["a"]') == ["a"]

    @pytest.mark.parametrize(
        "raw",
        ["not json", '{"a": 1}', "[1, 2]", '"a"', ["a"], 7],
    )
    def test_malformed(self, raw: object) -> None:
        """Test that anything but a JSON array of strings is rejected."""
        with pytest.raises(TagIndexDecodeError) as exc_info:
            decode_members(raw)
        assert exc_info.value.raw == raw


class TestMergeMembers:
    """Tests for merge_members function."""

    def test_key_first(self) -> None:
        """Test that the key leads the list."""
        assert merge_members("c", ["a", "b"]) == ["c", "a", "b"]

    def test_deduplicates_key(self) -> None:
        """Test that an existing occurrence of the key is dropped."""
        assert merge_members("b", ["a", "b", "c"]) == ["b", "a", "c"]

    def test_empty(self) -> None:
        """Test merging into an empty list."""
        assert merge_members("a", []) == ["a"]
