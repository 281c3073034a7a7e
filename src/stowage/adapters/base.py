"""Storage adapter contract.

Provides the StorageAdapter ABC that every backend implements, plus the
listing, search and decoding helpers adapters share so that every backend
paginates, filters and shapes payloads identically.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable, Mapping
from datetime import datetime
from typing import Any

from stowage.errors import PayloadDecodeError, StorageValidationError
from stowage.models import (
    BucketInfo,
    BucketOptions,
    DownloadResult,
    FileInfo,
    FileList,
    ResponseType,
    SignedUrlAction,
    SortField,
)

DEFAULT_CHUNK_SIZE = 64 * 1024


def system_metadata(
    *,
    content_type: str,
    size: int,
    created_at: datetime,
    updated_at: datetime,
) -> dict[str, Any]:
    """Return the system-owned metadata keys adapters store with every object."""
    return {
        "contentType": content_type,
        "size": size,
        "createdAt": created_at.isoformat(),
        "updatedAt": updated_at.isoformat(),
    }


def matches_metadata(metadata: Mapping[str, Any], criteria: Mapping[str, Any]) -> bool:
    """Check that every criteria key is present with an equal value."""
    return all(key in metadata and metadata[key] == value for key, value in criteria.items())


def find_path_conflict(path: str, existing: Iterable[str]) -> str | None:
    """Return an existing path that is an ancestor or descendant of path."""
    prefix = path + "/"
    for other in existing:
        if path.startswith(other + "/") or other.startswith(prefix):
            return other
    return None


def _sort_key(sort_by: SortField) -> Any:
    attribute = SortField(sort_by).value

    def key(info: FileInfo) -> tuple[Any, str]:
        return (getattr(info, attribute), info.path)

    return key


def paginate_files(
    files: Iterable[FileInfo],
    *,
    limit: int,
    cursor: str | None = None,
    sort_by: SortField = SortField.NAME,
    sort_descending: bool = False,
) -> FileList:
    """Sort files and cut one page.

    Ties on the sort field are broken by path, so ordering is deterministic.
    The cursor is the id of the last file of the previous page and is only
    returned when further items exist.

    Raises:
        StorageValidationError: If the cursor does not name a file in the listing.
    """
    ordered = sorted(files, key=_sort_key(sort_by), reverse=sort_descending)

    start = 0
    if cursor:
        for index, info in enumerate(ordered):
            if info.id == cursor:
                start = index + 1
                break
        else:
            raise StorageValidationError("Invalid pagination cursor")

    page = ordered[start : start + limit]
    has_more = start + limit < len(ordered)
    next_cursor = page[-1].id if has_more and page else None
    return FileList(files=page, cursor=next_cursor, has_more=has_more)


async def iter_chunks(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield a payload as consecutive chunks."""
    for offset in range(0, len(data), chunk_size):
        yield data[offset : offset + chunk_size]


def decode_payload(
    data: bytes,
    response_type: ResponseType,
    *,
    bucket: str | None = None,
    path: str | None = None,
) -> Any:
    """Shape stored bytes into the requested response type.

    Raises:
        PayloadDecodeError: If the bytes are not UTF-8 text or not valid JSON.
    """
    response_type = ResponseType(response_type)
    if response_type is ResponseType.BYTES:
        return data
    if response_type is ResponseType.STREAM:
        return iter_chunks(data)

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise PayloadDecodeError(
            "Object content is not valid UTF-8 text", bucket=bucket, path=path
        ) from e

    if response_type is ResponseType.TEXT:
        return text

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise PayloadDecodeError(
            "Object content is not valid JSON", bucket=bucket, path=path
        ) from e


class StorageAdapter(ABC):
    """Abstract base class for storage backends.

    The Storage Service depends only on this contract. Implementations must:
    - validate bucket names and object paths themselves (defense in depth)
    - refuse non-upsert writes onto existing paths with ObjectAlreadyExistsError
    - store system metadata keys (contentType, size, createdAt, updatedAt)
      over any caller-supplied values
    - raise the typed errors from stowage.errors, never backend-native ones

    Implementations:
    - MemoryAdapter: in-process dicts (tests, development)
    - FilesystemAdapter: local directory tree
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for observability (e.g., "memory")."""
        ...

    @abstractmethod
    async def create_bucket(self, name: str, options: BucketOptions) -> BucketInfo:
        """Create a bucket.

        Raises:
            InvalidBucketNameError: If the name is malformed.
            BucketAlreadyExistsError: If the bucket exists.
        """
        ...

    @abstractmethod
    async def list_buckets(self) -> list[BucketInfo]:
        """List all buckets ordered by name."""
        ...

    @abstractmethod
    async def delete_bucket(self, name: str, *, force: bool = False) -> bool:
        """Delete a bucket; with force, delete its contents too.

        Raises:
            BucketNotFoundError: If the bucket does not exist.
            BucketNotEmptyError: If the bucket has objects and force is False.
        """
        ...

    @abstractmethod
    async def upload_file(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str,
        metadata: Mapping[str, Any] | None = None,
        upsert: bool = False,
        public: bool = False,
    ) -> FileInfo:
        """Store an object.

        Raises:
            BucketNotFoundError: If the bucket does not exist.
            ObjectAlreadyExistsError: If the path exists and upsert is False.
            PathTraversalError: If the path is absolute or escapes the bucket.
            StorageBackendError: If the backend cannot complete the write.
        """
        ...

    @abstractmethod
    async def download_file(
        self,
        bucket: str,
        path: str,
        *,
        response_type: ResponseType = ResponseType.BYTES,
    ) -> DownloadResult:
        """Retrieve an object's payload and metadata.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            PayloadDecodeError: If the payload cannot be shaped as requested.
        """
        ...

    @abstractmethod
    async def get_file_info(self, bucket: str, path: str) -> FileInfo:
        """Return an object descriptor without the payload.

        Raises:
            BucketNotFoundError: If the bucket does not exist.
            ObjectNotFoundError: If the object does not exist.
        """
        ...

    @abstractmethod
    async def list_files(
        self,
        bucket: str,
        *,
        prefix: str = "",
        limit: int = 100,
        cursor: str | None = None,
        sort_by: SortField = SortField.NAME,
        sort_descending: bool = False,
    ) -> FileList:
        """List objects whose path starts with prefix, one page at a time."""
        ...

    @abstractmethod
    async def delete_file(self, bucket: str, path: str) -> bool:
        """Delete an object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """
        ...

    @abstractmethod
    async def copy_file(
        self,
        source_bucket: str,
        source_path: str,
        destination_bucket: str,
        destination_path: str,
        *,
        overwrite: bool = False,
    ) -> FileInfo:
        """Copy an object, keeping its user metadata and public flag.

        Raises:
            ObjectNotFoundError: If the source does not exist.
            ObjectAlreadyExistsError: If the destination exists and overwrite is False.
        """
        ...

    @abstractmethod
    async def move_file(
        self,
        source_bucket: str,
        source_path: str,
        destination_bucket: str,
        destination_path: str,
        *,
        overwrite: bool = False,
    ) -> FileInfo:
        """Move an object; the source is removed once the destination exists."""
        ...

    @abstractmethod
    async def get_file_url(self, bucket: str, path: str) -> str:
        """Return the public URL of an object.

        Raises:
            ObjectNotPublicError: If the object is not public.
        """
        ...

    @abstractmethod
    async def get_signed_url(
        self,
        bucket: str,
        path: str,
        *,
        expires_in: int,
        action: SignedUrlAction = SignedUrlAction.READ,
    ) -> str:
        """Return a time-limited URL granting action on one object."""
        ...

    @abstractmethod
    async def update_metadata(
        self,
        bucket: str,
        path: str,
        metadata: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Replace an object's user metadata; return the stored metadata.

        System keys are recomputed, with updatedAt set to now.
        """
        ...

    @abstractmethod
    async def search_files(
        self,
        bucket: str,
        *,
        prefix: str = "",
        metadata: Mapping[str, Any] | None = None,
        limit: int = 100,
        cursor: str | None = None,
    ) -> FileList:
        """Return objects matching prefix AND every metadata key exactly."""
        ...
