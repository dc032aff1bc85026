"""Contract tests run against every ObjectStore implementation.

Each test runs four times via the any_store fixture: in-memory, S3 client
over the fake bucket, and the encryption wrapper around each of those.

Covers:
- Empty bucket behaviour (list/head/get/delete)
- Listing by prefix and delimiter, ordering and the partition law
- Put/get/head round trips with metadata
- Batch delete limits and idempotence
"""

from __future__ import annotations

import io
import random

import pytest

from s3store.storage.context import OperationContext
from s3store.storage.errors import (
    BatchTooLargeError,
    InvalidKeyError,
    ObjectNotFoundError,
    OperationCancelledError,
)
from s3store.storage.object_store import MAX_DELETE_BATCH, ObjectStore

PHOTO_OBJECTS = {
    "sample.jpg": b"a",
    "photos/2006/January/sample.jpg": b"ab",
    "photos/2006/February/sample2.jpg": b"abc",
    "photos/2006/February/sample4.jpg": b"abcd",
    "photos/2006/February/sample5.jpg": b"abcde",
}


@pytest.fixture
def photo_store(any_store: ObjectStore) -> ObjectStore:
    """Store pre-loaded with the photo fixture objects."""
    for key, body in PHOTO_OBJECTS.items():
        any_store.put_object(key, None, body)
    return any_store


class TestEmptyBucket:
    """Tests for a bucket with no objects."""

    def test_list_everything_is_empty(self, any_store: ObjectStore) -> None:
        """list_objects("", "") on an empty bucket returns empty lists."""
        result = any_store.list_objects("", "")

        assert result.keys == []
        assert result.sizes == []
        assert result.common_prefixes == []

    def test_list_with_prefix_and_delimiter_is_empty(self, any_store: ObjectStore) -> None:
        result = any_store.list_objects("thing/", "/")

        assert result.keys == []
        assert result.sizes == []
        assert result.common_prefixes == []

    def test_head_missing_raises_not_found(self, any_store: ObjectStore) -> None:
        with pytest.raises(ObjectNotFoundError):
            any_store.head_object("thing")

    def test_get_missing_raises_not_found_and_writes_nothing(
        self, any_store: ObjectStore
    ) -> None:
        sink = io.BytesIO()

        with pytest.raises(ObjectNotFoundError):
            any_store.get_object("thing", sink)

        assert sink.getvalue() == b""

    def test_delete_missing_is_not_a_failure(self, any_store: ObjectStore) -> None:
        """Deleting an absent key succeeds and is never reported."""
        assert any_store.delete_objects(["thing"]) == []
        assert any_store.delete_objects(["thing", "other"]) == []

    def test_delete_zero_keys_is_noop(self, any_store: ObjectStore) -> None:
        assert any_store.delete_objects([]) == []


class TestListing:
    """Tests for prefix/delimiter listing semantics."""

    def test_list_all(self, photo_store: ObjectStore, envelope_overhead: int) -> None:
        result = photo_store.list_objects("", "")

        assert result.keys == [
            "photos/2006/February/sample2.jpg",
            "photos/2006/February/sample4.jpg",
            "photos/2006/February/sample5.jpg",
            "photos/2006/January/sample.jpg",
            "sample.jpg",
        ]
        assert result.sizes == [s + envelope_overhead for s in (3, 4, 5, 2, 1)]
        assert result.common_prefixes == []

    def test_list_by_prefix(self, photo_store: ObjectStore, envelope_overhead: int) -> None:
        result = photo_store.list_objects("photos/2006/", "")

        assert result.keys == [
            "photos/2006/February/sample2.jpg",
            "photos/2006/February/sample4.jpg",
            "photos/2006/February/sample5.jpg",
            "photos/2006/January/sample.jpg",
        ]
        assert result.sizes == [s + envelope_overhead for s in (3, 4, 5, 2)]
        assert result.common_prefixes == []

    def test_list_with_delimiter(self, photo_store: ObjectStore, envelope_overhead: int) -> None:
        result = photo_store.list_objects("", "/")

        assert result.keys == ["sample.jpg"]
        assert result.sizes == [1 + envelope_overhead]
        assert result.common_prefixes == ["photos/"]

    def test_list_with_prefix_and_delimiter(self, photo_store: ObjectStore) -> None:
        result = photo_store.list_objects("photos/2006/", "/")

        assert result.keys == []
        assert result.sizes == []
        assert result.common_prefixes == ["photos/2006/February/", "photos/2006/January/"]

    def test_nested_scenario(self, any_store: ObjectStore, envelope_overhead: int) -> None:
        """a/b/c.txt folds into a/b/ while a/x.txt stays flat."""
        any_store.put_object("a/b/c.txt", None, b"hi")
        any_store.put_object("a/x.txt", None, b"yo")

        result = any_store.list_objects("a/", "/")

        assert result.keys == ["a/x.txt"]
        assert result.sizes == [2 + envelope_overhead]
        assert result.common_prefixes == ["a/b/"]

    def test_prefix_that_is_not_a_path_segment(self, photo_store: ObjectStore) -> None:
        """Prefixes are plain string prefixes, not path segments."""
        result = photo_store.list_objects("photos/2006/Feb", "/")

        assert result.keys == []
        assert result.common_prefixes == ["photos/2006/February/"]

    def test_multi_character_delimiter(self, any_store: ObjectStore) -> None:
        for key in ("x--y--z", "x--w", "xq"):
            any_store.put_object(key, None, b"1")

        result = any_store.list_objects("x--", "--")

        assert result.keys == ["x--w"]
        assert result.common_prefixes == ["x--y--"]

    def test_partition_law_and_ordering(self, any_store: ObjectStore) -> None:
        """Flat keys and common prefixes partition the matching keys, each sorted."""
        rng = random.Random(1234)
        segments = ["a", "b", "c", "é", "Z", "0"]
        keys = {
            "/".join(rng.choice(segments) for _ in range(rng.randint(1, 4)))
            + f".{rng.randint(0, 9)}"
            for _ in range(40)
        }
        for key in keys:
            any_store.put_object(key, None, b"x")

        for prefix in ("", "a/", "b", "é/"):
            result = any_store.list_objects(prefix, "/")
            matching = {k for k in keys if k.startswith(prefix)}

            assert result.keys == sorted(result.keys)
            assert len(set(result.keys)) == len(result.keys)
            assert result.common_prefixes == sorted(set(result.common_prefixes))
            for key in result.keys:
                assert "/" not in key[len(prefix) :]
            for common in result.common_prefixes:
                assert common.endswith("/")
                assert any(
                    k.startswith(common) and "/" not in common[len(prefix) : -1]
                    for k in matching
                )
            folded = {k for k in matching if "/" in k[len(prefix) :]}
            assert set(result.keys) == matching - folded
            assert {
                prefix + k[len(prefix) :].split("/", 1)[0] + "/" for k in folded
            } == set(result.common_prefixes)

    def test_ordering_is_by_code_point(self, any_store: ObjectStore) -> None:
        for key in ("b", "B", "a", "é", "_"):
            any_store.put_object(key, None, b"")

        assert any_store.list_objects().keys == ["B", "_", "a", "b", "é"]


class TestRoundtrip:
    """Tests for put/get/head round trips."""

    def test_put_then_get_returns_identical_bytes(self, any_store: ObjectStore) -> None:
        body = bytes(range(256)) * 3
        any_store.put_object("bin/all-bytes", None, body)
        sink = io.BytesIO()

        metadata = any_store.get_object("bin/all-bytes", sink)

        assert sink.getvalue() == body
        assert metadata == {}

    def test_put_with_meta(self, any_store: ObjectStore, envelope_overhead: int) -> None:
        any_store.put_object("object/with/meta", {"a": "b"}, b"example")

        head = any_store.head_object("object/with/meta")
        assert head.size == 7 + envelope_overhead
        assert head.metadata["a"] == "b"

        sink = io.BytesIO()
        metadata = any_store.get_object("object/with/meta", sink)
        assert metadata == {"a": "b"}
        assert sink.getvalue() == b"example"

    def test_metadata_keys_are_lowercased(self, any_store: ObjectStore) -> None:
        any_store.put_object("meta/case", {"Content-Owner": "Alice"}, b"x")

        metadata = any_store.get_object("meta/case", io.BytesIO())

        assert metadata == {"content-owner": "Alice"}

    def test_put_replaces_body_and_metadata(self, any_store: ObjectStore) -> None:
        any_store.put_object("k", {"old": "1"}, b"first version")
        any_store.put_object("k", {"new": "2"}, b"second")
        sink = io.BytesIO()

        metadata = any_store.get_object("k", sink)

        assert sink.getvalue() == b"second"
        assert metadata == {"new": "2"}

    def test_put_accepts_stream(self, any_store: ObjectStore) -> None:
        any_store.put_object("stream", None, io.BytesIO(b"streamed body"))
        sink = io.BytesIO()

        any_store.get_object("stream", sink)

        assert sink.getvalue() == b"streamed body"

    def test_empty_body(self, any_store: ObjectStore, envelope_overhead: int) -> None:
        any_store.put_object("empty", None, b"")
        sink = io.BytesIO()

        any_store.get_object("empty", sink)

        assert sink.getvalue() == b""
        assert any_store.head_object("empty").size == envelope_overhead

    def test_returned_metadata_is_a_copy(self, any_store: ObjectStore) -> None:
        any_store.put_object("copy", {"a": "b"}, b"x")

        first = any_store.get_object("copy", io.BytesIO())
        first["a"] = "mutated"

        assert any_store.get_object("copy", io.BytesIO())["a"] == "b"

    def test_key_with_special_characters(self, any_store: ObjectStore) -> None:
        key = "dir with space/ü?#%+&=.txt"
        any_store.put_object(key, None, b"special")
        sink = io.BytesIO()

        any_store.get_object(key, sink)

        assert sink.getvalue() == b"special"
        assert any_store.list_objects("dir with space/").keys == [key]

    def test_dot_segment_keys_are_opaque(self, any_store: ObjectStore) -> None:
        """Keys with "." and ".." segments are stored as written, never resolved."""
        keys = ["a/./b.txt", "a/../b.txt", "../outside.txt", "dir/.", ".", "..", "a/b.txt"]
        for key in keys:
            any_store.put_object(key, None, key.encode())

        assert any_store.list_objects().keys == sorted(keys)
        for key in keys:
            sink = io.BytesIO()
            any_store.get_object(key, sink)
            assert sink.getvalue() == key.encode()

        assert any_store.delete_objects(["a/../b.txt"]) == []
        assert "a/../b.txt" not in any_store.list_objects().keys
        assert "a/b.txt" in any_store.list_objects().keys


class TestDelete:
    """Tests for batch delete semantics."""

    def test_delete_single_key(self, photo_store: ObjectStore) -> None:
        assert photo_store.delete_objects(["sample.jpg"]) == []

        with pytest.raises(ObjectNotFoundError):
            photo_store.head_object("sample.jpg")

    def test_delete_many_keys_with_some_missing(self, photo_store: ObjectStore) -> None:
        keys = ["sample.jpg", "photos/2006/January/sample.jpg", "does/not/exist"]

        assert photo_store.delete_objects(keys) == []
        assert photo_store.list_objects().keys == [
            "photos/2006/February/sample2.jpg",
            "photos/2006/February/sample4.jpg",
            "photos/2006/February/sample5.jpg",
        ]

    def test_delete_everything_listed(self, photo_store: ObjectStore) -> None:
        keys = photo_store.list_objects().keys

        assert photo_store.delete_objects(keys) == []
        assert photo_store.list_objects().keys == []

    def test_delete_max_batch_is_allowed(self, any_store: ObjectStore) -> None:
        keys = [f"k/{i:04d}" for i in range(MAX_DELETE_BATCH)]

        assert any_store.delete_objects(keys) == []

    def test_delete_over_limit_is_rejected_without_side_effects(
        self, photo_store: ObjectStore
    ) -> None:
        keys = ["sample.jpg"] + [f"k/{i:04d}" for i in range(MAX_DELETE_BATCH)]

        with pytest.raises(BatchTooLargeError) as exc_info:
            photo_store.delete_objects(keys)

        assert exc_info.value.key_count == 1000
        assert photo_store.head_object("sample.jpg").size > 0

    @pytest.mark.parametrize("bad_key", ["a\x01", "nul\x00ok", "x\ufffe"])
    def test_delete_key_with_xml_control_character_is_rejected(
        self, photo_store: ObjectStore, bad_key: str
    ) -> None:
        with pytest.raises(InvalidKeyError) as exc_info:
            photo_store.delete_objects([bad_key, "sample.jpg"])

        assert exc_info.value.key == bad_key
        assert photo_store.head_object("sample.jpg").size > 0

    def test_delete_key_with_xml_whitespace_is_allowed(self, any_store: ObjectStore) -> None:
        any_store.put_object("line\tone\nline two", None, b"x")

        assert any_store.delete_objects(["line\tone\nline two"]) == []
        assert any_store.list_objects().keys == []


class TestPreconditions:
    """Tests for argument validation and context handling."""

    def test_empty_key_rejected(self, any_store: ObjectStore) -> None:
        with pytest.raises(InvalidKeyError):
            any_store.put_object("", None, b"x")
        with pytest.raises(InvalidKeyError):
            any_store.get_object("", io.BytesIO())
        with pytest.raises(InvalidKeyError):
            any_store.head_object("")
        with pytest.raises(InvalidKeyError):
            any_store.delete_objects(["ok", ""])

    def test_cancelled_context_fails_fast(self, any_store: ObjectStore) -> None:
        any_store.put_object("k", None, b"v")
        ctx = OperationContext()
        ctx.cancel()

        with pytest.raises(OperationCancelledError):
            any_store.get_object("k", io.BytesIO(), ctx=ctx)
        with pytest.raises(OperationCancelledError):
            any_store.head_object("k", ctx=ctx)
        with pytest.raises(OperationCancelledError):
            any_store.list_objects(ctx=ctx)
        with pytest.raises(OperationCancelledError):
            any_store.put_object("k", None, b"other", ctx=ctx)
        with pytest.raises(OperationCancelledError):
            any_store.delete_objects(["k"], ctx=ctx)

        sink = io.BytesIO()
        assert any_store.get_object("k", sink) == {}
        assert sink.getvalue() == b"v"
