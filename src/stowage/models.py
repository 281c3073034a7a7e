"""Stowage data models.

Descriptors returned by adapters are frozen dataclasses with explicit
to_dict/from_dict for persistence. Per-operation request models are
pydantic models; the service validates them once on entry.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stowage.metadata import MetadataSchema

DEFAULT_FILE_SIZE_LIMIT = 100 * 1024 * 1024
DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 1000
DEFAULT_SIGNED_URL_EXPIRES_IN = 3600


class ResponseType(StrEnum):
    """Shape of the payload returned by a download."""

    BYTES = "bytes"
    TEXT = "text"
    JSON = "json"
    STREAM = "stream"


class SignedUrlAction(StrEnum):
    """Capability granted by a signed URL."""

    READ = "read"
    WRITE = "write"
    DELETE = "delete"


class SortField(StrEnum):
    """FileInfo attribute used to order listings."""

    NAME = "name"
    PATH = "path"
    SIZE = "size"
    CONTENT_TYPE = "content_type"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _parse_datetime(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, str):
        return datetime.fromisoformat(raw)
    return utcnow()


@dataclass(frozen=True)
class BucketInfo:
    """A bucket descriptor.

    Attributes:
        name: Unique bucket name matching [a-z0-9._-]+.
        public: Whether objects default to public.
        file_size_limit: Maximum payload size in bytes.
        allowed_mime_types: Allowed content types; empty means unrestricted.
        created_at: Creation timestamp (UTC).
    """

    name: str
    public: bool = False
    file_size_limit: int = DEFAULT_FILE_SIZE_LIMIT
    allowed_mime_types: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "name": self.name,
            "public": self.public,
            "file_size_limit": self.file_size_limit,
            "allowed_mime_types": list(self.allowed_mime_types),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BucketInfo:
        """Create a descriptor from a dict produced by to_dict."""
        return cls(
            name=str(data["name"]),
            public=bool(data.get("public", False)),
            file_size_limit=int(data.get("file_size_limit", DEFAULT_FILE_SIZE_LIMIT)),
            allowed_mime_types=tuple(data.get("allowed_mime_types") or ()),
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass(frozen=True)
class FileInfo:
    """An object descriptor (no payload).

    Attributes:
        id: Opaque unique identifier, also used as the pagination cursor.
        bucket: Owning bucket.
        path: Logical path within the bucket.
        name: Last path segment.
        size: Payload size in bytes.
        content_type: MIME type.
        metadata: User metadata plus system keys.
        public: Whether a public URL may be issued.
        created_at: Creation timestamp (UTC).
        updated_at: Last payload or metadata change (UTC).
        url: Access URL, filled in by the service where available.
    """

    id: str
    bucket: str
    path: str
    name: str
    size: int
    content_type: str
    metadata: dict[str, Any] = field(default_factory=dict)
    public: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "id": self.id,
            "bucket": self.bucket,
            "path": self.path,
            "name": self.name,
            "size": self.size,
            "content_type": self.content_type,
            "metadata": dict(self.metadata),
            "public": self.public,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileInfo:
        """Create a descriptor from a dict produced by to_dict."""
        path = str(data["path"])
        return cls(
            id=str(data["id"]),
            bucket=str(data["bucket"]),
            path=path,
            name=str(data.get("name") or path.rsplit("/", 1)[-1]),
            size=int(data.get("size", 0)),
            content_type=str(data.get("content_type") or "application/octet-stream"),
            metadata=dict(data.get("metadata") or {}),
            public=bool(data.get("public", False)),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
            url=data.get("url"),
        )


@dataclass(frozen=True)
class DownloadResult:
    """A downloaded payload.

    Attributes:
        data: bytes, str, parsed JSON or an async byte-chunk iterator,
            depending on the requested ResponseType.
        content_type: MIME type of the stored object.
        size: Stored payload size in bytes.
        metadata: Stored metadata including system keys.
    """

    data: bytes | str | Any | AsyncIterator[bytes]
    content_type: str
    size: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FileList:
    """One page of a listing or search."""

    files: list[FileInfo]
    cursor: str | None = None
    has_more: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "files": [f.to_dict() for f in self.files],
            "cursor": self.cursor,
            "has_more": self.has_more,
        }


class _RequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class BucketOptions(_RequestModel):
    """Policy for a new bucket."""

    public: bool = Field(default=False, description="Objects default to public")
    file_size_limit: int = Field(
        default=DEFAULT_FILE_SIZE_LIMIT, ge=0, description="Maximum payload size in bytes"
    )
    allowed_mime_types: list[str] = Field(
        default_factory=list, description="Allowed content types; empty = unrestricted"
    )
    metadata_schema: MetadataSchema | None = Field(
        default=None, description="Schema applied to user metadata on write"
    )


class UploadFileRequest(_RequestModel):
    """Input for StorageService.upload_file."""

    bucket: str | None = Field(default=None, description="Bucket; default bucket if None")
    path: str = Field(..., description="Logical object path")
    data: bytes = Field(..., description="Payload; str is UTF-8 encoded")
    content_type: str | None = Field(default=None, description="Explicit MIME type")
    metadata: dict[str, Any] = Field(default_factory=dict, description="User metadata")
    upsert: bool = Field(default=False, description="Overwrite an existing object")
    public: bool | None = Field(default=None, description="Defaults to the bucket policy")
    unique: bool = Field(default=False, description="Add a _N suffix instead of conflicting")
    rewrite_path: bool = Field(
        default=True, description="Apply the configured filename generator"
    )

    @field_validator("data", mode="before")
    @classmethod
    def coerce_data(cls, v: Any) -> bytes:
        """Accept bytes-like or str payloads; reject missing ones."""
        if v is None:
            raise ValueError("data is required")
        if isinstance(v, str):
            return v.encode("utf-8")
        if isinstance(v, bytes | bytearray | memoryview):
            return bytes(v)
        raise ValueError("data must be bytes, bytearray, memoryview or str")


class DownloadFileRequest(_RequestModel):
    """Input for StorageService.download_file."""

    bucket: str | None = None
    path: str
    response_type: ResponseType = ResponseType.BYTES


class FileRef(_RequestModel):
    """Addresses one object: input for info, delete and public URL operations."""

    bucket: str | None = None
    path: str


class ListFilesRequest(_RequestModel):
    """Input for StorageService.list_files."""

    bucket: str | None = None
    prefix: str = ""
    limit: int = Field(default=DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT)
    cursor: str | None = None
    sort_by: SortField = SortField.NAME
    sort_descending: bool = False


class TransferFileRequest(_RequestModel):
    """Input for StorageService.copy_file and move_file."""

    source_bucket: str | None = None
    source_path: str
    destination_bucket: str | None = Field(
        default=None, description="Defaults to the source bucket"
    )
    destination_path: str
    overwrite: bool = False


class SignedUrlRequest(_RequestModel):
    """Input for StorageService.get_signed_url."""

    bucket: str | None = None
    path: str
    expires_in: int = Field(default=DEFAULT_SIGNED_URL_EXPIRES_IN, gt=0)
    action: SignedUrlAction = SignedUrlAction.READ


class UpdateMetadataRequest(_RequestModel):
    """Input for StorageService.update_metadata."""

    bucket: str | None = None
    path: str
    metadata: dict[str, Any]
    merge: bool = Field(default=True, description="Merge with existing user metadata")


class SearchFilesRequest(_RequestModel):
    """Input for StorageService.search_files."""

    bucket: str | None = None
    prefix: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    limit: int = Field(default=DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT)
    cursor: str | None = None
