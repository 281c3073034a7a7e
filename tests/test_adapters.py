"""Contract tests run against every storage adapter.

Each test runs once per backend so that memory and filesystem adapters
behave identically for buckets, objects, listing, search and URLs.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from stowage.adapters.base import StorageAdapter
from stowage.adapters.filesystem import FilesystemAdapter
from stowage.adapters.memory import MemoryAdapter
from stowage.errors import (
    BucketAlreadyExistsError,
    BucketNotEmptyError,
    BucketNotFoundError,
    ObjectAlreadyExistsError,
    ObjectNotFoundError,
    ObjectNotPublicError,
    PathConflictError,
    PathTraversalError,
    PayloadDecodeError,
    StorageConflictError,
    StorageValidationError,
)
from stowage.models import BucketOptions, ResponseType, SignedUrlAction, SortField
from stowage.signing import verify_signed_url

SECRET = "adapter-test-secret"


@pytest.fixture(params=["memory", "filesystem"])
def adapter(request: pytest.FixtureRequest, tmp_path: Path) -> StorageAdapter:
    """Return each adapter in turn, with a "docs" bucket created."""
    instance: StorageAdapter
    if request.param == "memory":
        instance = MemoryAdapter(signing_secret=SECRET)
    else:
        instance = FilesystemAdapter(
            tmp_path / "store",
            public_base_url="https://cdn.example.com",
            signing_secret=SECRET,
        )
    asyncio.run(instance.create_bucket("docs", BucketOptions()))
    return instance


def _put(adapter: StorageAdapter, path: str, data: bytes = b"data", **kwargs: Any) -> Any:
    kwargs.setdefault("content_type", "text/plain")
    return asyncio.run(adapter.upload_file("docs", path, data, **kwargs))


class TestBuckets:
    """Bucket lifecycle."""

    def test_create_and_list(self, adapter: StorageAdapter) -> None:
        asyncio.run(adapter.create_bucket("images", BucketOptions(public=True)))

        buckets = asyncio.run(adapter.list_buckets())

        assert [b.name for b in buckets] == ["docs", "images"]
        assert buckets[1].public is True

    def test_duplicate_bucket(self, adapter: StorageAdapter) -> None:
        with pytest.raises(BucketAlreadyExistsError):
            asyncio.run(adapter.create_bucket("docs", BucketOptions()))

    def test_delete_non_empty_requires_force(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt")

        with pytest.raises(BucketNotEmptyError):
            asyncio.run(adapter.delete_bucket("docs"))

        assert asyncio.run(adapter.get_file_info("docs", "a.txt")).path == "a.txt"

    def test_force_delete_removes_contents(self, adapter: StorageAdapter) -> None:
        _put(adapter, "nested/deep/a.txt")

        assert asyncio.run(adapter.delete_bucket("docs", force=True)) is True
        assert asyncio.run(adapter.list_buckets()) == []

    def test_delete_missing_bucket(self, adapter: StorageAdapter) -> None:
        with pytest.raises(BucketNotFoundError):
            asyncio.run(adapter.delete_bucket("nope"))

    def test_upload_into_missing_bucket(self, adapter: StorageAdapter) -> None:
        with pytest.raises(BucketNotFoundError):
            asyncio.run(adapter.upload_file("nope", "a.txt", b"x", content_type="text/plain"))


class TestObjects:
    """Upload, download, info and delete."""

    def test_upload_download_roundtrip(self, adapter: StorageAdapter) -> None:
        data = bytes(range(256))
        info = _put(adapter, "bin/all.bin", data, content_type="application/octet-stream")

        result = asyncio.run(adapter.download_file("docs", "bin/all.bin"))

        assert result.data == data
        assert result.size == 256
        assert info.name == "all.bin"
        assert info.size == 256

    def test_system_metadata_stored(self, adapter: StorageAdapter) -> None:
        info = _put(adapter, "a.txt", b"abc", metadata={"title": "A", "size": 999})

        assert info.metadata["title"] == "A"
        assert info.metadata["size"] == 3
        assert info.metadata["contentType"] == "text/plain"
        assert "createdAt" in info.metadata
        assert "updatedAt" in info.metadata

    def test_empty_payload(self, adapter: StorageAdapter) -> None:
        _put(adapter, "empty.txt", b"")

        assert asyncio.run(adapter.download_file("docs", "empty.txt")).data == b""

    def test_conflict_without_upsert(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt", b"first")

        with pytest.raises(ObjectAlreadyExistsError):
            _put(adapter, "a.txt", b"second")

        assert asyncio.run(adapter.download_file("docs", "a.txt")).data == b"first"

    def test_upsert_keeps_identity(self, adapter: StorageAdapter) -> None:
        first = _put(adapter, "a.txt", b"first")

        second = _put(adapter, "a.txt", b"second!", upsert=True)

        assert second.id == first.id
        assert second.created_at == first.created_at
        assert second.size == 7
        assert asyncio.run(adapter.download_file("docs", "a.txt")).data == b"second!"

    @pytest.mark.parametrize(
        ("response_type", "expected"),
        [
            (ResponseType.TEXT, '{"k": [1, 2]}'),
            (ResponseType.JSON, {"k": [1, 2]}),
        ],
    )
    def test_response_types(
        self, adapter: StorageAdapter, response_type: ResponseType, expected: Any
    ) -> None:
        _put(adapter, "d.json", b'{"k": [1, 2]}', content_type="application/json")

        result = asyncio.run(adapter.download_file("docs", "d.json", response_type=response_type))

        assert result.data == expected
        assert result.content_type == "application/json"

    def test_stream_response(self, adapter: StorageAdapter) -> None:
        payload = b"x" * (200 * 1024)
        _put(adapter, "big.bin", payload)

        async def collect() -> bytes:
            result = await adapter.download_file(
                "docs", "big.bin", response_type=ResponseType.STREAM
            )
            return b"".join([chunk async for chunk in result.data])

        assert asyncio.run(collect()) == payload

    def test_invalid_json_payload(self, adapter: StorageAdapter) -> None:
        _put(adapter, "bad.json", b"{not json")

        with pytest.raises(PayloadDecodeError):
            asyncio.run(
                adapter.download_file("docs", "bad.json", response_type=ResponseType.JSON)
            )

    def test_invalid_utf8_payload(self, adapter: StorageAdapter) -> None:
        _put(adapter, "bad.txt", b"\xff\xfe\xfa")

        with pytest.raises(PayloadDecodeError):
            asyncio.run(
                adapter.download_file("docs", "bad.txt", response_type=ResponseType.TEXT)
            )

    def test_missing_object(self, adapter: StorageAdapter) -> None:
        with pytest.raises(ObjectNotFoundError):
            asyncio.run(adapter.get_file_info("docs", "missing.txt"))

    def test_delete(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a/b.txt")

        assert asyncio.run(adapter.delete_file("docs", "a/b.txt")) is True
        with pytest.raises(ObjectNotFoundError):
            asyncio.run(adapter.download_file("docs", "a/b.txt"))

    def test_delete_missing(self, adapter: StorageAdapter) -> None:
        with pytest.raises(ObjectNotFoundError):
            asyncio.run(adapter.delete_file("docs", "missing.txt"))

    @pytest.mark.parametrize("path", ["../escape.txt", "/abs.txt", "a/../../b.txt"])
    def test_traversal_rejected(self, adapter: StorageAdapter, path: str) -> None:
        with pytest.raises(PathTraversalError):
            _put(adapter, path)

    @pytest.mark.parametrize("path", ["dir//x.txt", "./x.txt", "dir/./x.txt", "dir/"])
    def test_empty_and_dot_segments_rejected(self, adapter: StorageAdapter, path: str) -> None:
        with pytest.raises(StorageValidationError, match="segments"):
            _put(adapter, path)


class TestPathConflicts:
    """An object path cannot also be the parent of another object."""

    def test_object_under_existing_object(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a", b"leaf")

        with pytest.raises(PathConflictError):
            _put(adapter, "a/b")

        assert asyncio.run(adapter.download_file("docs", "a")).data == b"leaf"

    def test_object_over_existing_parent(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a/b", b"child")

        with pytest.raises(PathConflictError):
            _put(adapter, "a")
        with pytest.raises(PathConflictError):
            _put(adapter, "a", upsert=True)

        page = asyncio.run(adapter.list_files("docs"))
        assert [f.path for f in page.files] == ["a/b"]

    def test_copy_onto_parent_of_existing(self, adapter: StorageAdapter) -> None:
        _put(adapter, "src.txt")
        _put(adapter, "dir/x.txt")

        with pytest.raises(PathConflictError):
            asyncio.run(adapter.copy_file("docs", "src.txt", "docs", "dir"))

    def test_conflict_is_a_storage_conflict(self) -> None:
        assert issubclass(PathConflictError, StorageConflictError)


class TestTransfer:
    """Copy and move."""

    def test_copy(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt", b"abc", metadata={"title": "A"})

        copied = asyncio.run(adapter.copy_file("docs", "a.txt", "docs", "b.txt"))

        assert copied.path == "b.txt"
        assert copied.metadata["title"] == "A"
        assert asyncio.run(adapter.download_file("docs", "a.txt")).data == b"abc"
        assert asyncio.run(adapter.download_file("docs", "b.txt")).data == b"abc"

    def test_copy_across_buckets(self, adapter: StorageAdapter) -> None:
        asyncio.run(adapter.create_bucket("archive", BucketOptions()))
        _put(adapter, "a.txt", b"abc")

        asyncio.run(adapter.copy_file("docs", "a.txt", "archive", "old/a.txt"))

        assert asyncio.run(adapter.download_file("archive", "old/a.txt")).data == b"abc"

    def test_copy_onto_existing_requires_overwrite(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt", b"a")
        _put(adapter, "b.txt", b"b")

        with pytest.raises(ObjectAlreadyExistsError):
            asyncio.run(adapter.copy_file("docs", "a.txt", "docs", "b.txt"))

        asyncio.run(adapter.copy_file("docs", "a.txt", "docs", "b.txt", overwrite=True))
        assert asyncio.run(adapter.download_file("docs", "b.txt")).data == b"a"

    def test_move(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt", b"abc")

        moved = asyncio.run(adapter.move_file("docs", "a.txt", "docs", "dir/c.txt"))

        assert moved.path == "dir/c.txt"
        with pytest.raises(ObjectNotFoundError):
            asyncio.run(adapter.get_file_info("docs", "a.txt"))

    def test_move_onto_itself(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt", b"abc")

        with pytest.raises(ObjectAlreadyExistsError):
            asyncio.run(adapter.move_file("docs", "a.txt", "docs", "a.txt"))

        assert asyncio.run(adapter.download_file("docs", "a.txt")).data == b"abc"

    def test_move_missing_source(self, adapter: StorageAdapter) -> None:
        with pytest.raises(ObjectNotFoundError):
            asyncio.run(adapter.move_file("docs", "nope.txt", "docs", "b.txt"))


class TestListing:
    """Prefix filtering, sorting and cursor pagination."""

    def test_prefix_filter(self, adapter: StorageAdapter) -> None:
        for path in ["img/a.png", "img/b.png", "txt/c.txt"]:
            _put(adapter, path)

        page = asyncio.run(adapter.list_files("docs", prefix="img/"))

        assert [f.path for f in page.files] == ["img/a.png", "img/b.png"]
        assert page.has_more is False
        assert page.cursor is None

    def test_pagination_visits_every_file_once(self, adapter: StorageAdapter) -> None:
        paths = [f"f{i:02d}.txt" for i in range(7)]
        for path in paths:
            _put(adapter, path)

        seen: list[str] = []
        cursor = None
        while True:
            page = asyncio.run(adapter.list_files("docs", limit=3, cursor=cursor))
            seen.extend(f.path for f in page.files)
            if not page.has_more:
                assert page.cursor is None
                break
            cursor = page.cursor

        assert seen == paths

    def test_sort_by_size_descending(self, adapter: StorageAdapter) -> None:
        _put(adapter, "small.txt", b"1")
        _put(adapter, "large.txt", b"123")
        _put(adapter, "medium.txt", b"12")

        page = asyncio.run(
            adapter.list_files("docs", sort_by=SortField.SIZE, sort_descending=True)
        )

        assert [f.path for f in page.files] == ["large.txt", "medium.txt", "small.txt"]

    def test_unknown_cursor(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt")

        with pytest.raises(StorageValidationError):
            asyncio.run(adapter.list_files("docs", cursor="not-an-id"))


class TestSearchAndMetadata:
    """Metadata replacement and conjunctive search."""

    def test_update_metadata_recomputes_system_keys(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt", b"abc", metadata={"old": 1})

        result = asyncio.run(
            adapter.update_metadata("docs", "a.txt", {"new": 2, "size": 999})
        )

        assert result["new"] == 2
        assert "old" not in result
        assert result["size"] == 3
        info = asyncio.run(adapter.get_file_info("docs", "a.txt"))
        assert info.metadata == result

    def test_search_is_conjunctive(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt", metadata={"team": "red", "year": 2024})
        _put(adapter, "b.txt", metadata={"team": "red", "year": 2023})
        _put(adapter, "c.txt", metadata={"team": "blue", "year": 2024})

        page = asyncio.run(
            adapter.search_files("docs", metadata={"team": "red", "year": 2024})
        )

        assert [f.path for f in page.files] == ["a.txt"]

    def test_search_with_prefix(self, adapter: StorageAdapter) -> None:
        _put(adapter, "x/a.txt", metadata={"team": "red"})
        _put(adapter, "y/b.txt", metadata={"team": "red"})

        page = asyncio.run(adapter.search_files("docs", prefix="y/", metadata={"team": "red"}))

        assert [f.path for f in page.files] == ["y/b.txt"]


class TestUrls:
    """Public and signed URLs."""

    def test_private_object_has_no_public_url(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt")

        with pytest.raises(ObjectNotPublicError):
            asyncio.run(adapter.get_file_url("docs", "a.txt"))

    def test_public_url(self, adapter: StorageAdapter) -> None:
        _put(adapter, "pics/a.png", public=True)

        url = asyncio.run(adapter.get_file_url("docs", "pics/a.png"))

        assert url.endswith("/docs/pics/a.png")

    def test_signed_url_verifies(self, adapter: StorageAdapter) -> None:
        _put(adapter, "a.txt")

        url = asyncio.run(adapter.get_signed_url("docs", "a.txt", expires_in=60))
        claims = verify_signed_url(url, SECRET)

        assert (claims.bucket, claims.path, claims.action) == (
            "docs",
            "a.txt",
            SignedUrlAction.READ,
        )

    def test_signed_read_url_requires_object(self, adapter: StorageAdapter) -> None:
        with pytest.raises(ObjectNotFoundError):
            asyncio.run(adapter.get_signed_url("docs", "missing.txt", expires_in=60))

    def test_signed_write_url_for_new_object(self, adapter: StorageAdapter) -> None:
        url = asyncio.run(
            adapter.get_signed_url(
                "docs", "incoming/new.txt", expires_in=60, action=SignedUrlAction.WRITE
            )
        )

        assert verify_signed_url(url, SECRET).action is SignedUrlAction.WRITE
