"""In-memory storage adapter.

Keeps buckets and objects in process-local dicts; suitable for tests and
development. Mutations contain no suspension points between the existence
check and the write, so non-upsert uploads are atomic within one event loop.
"""

from __future__ import annotations

import dataclasses
import logging
import secrets
import time
import uuid
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from stowage.adapters.base import (
    StorageAdapter,
    decode_payload,
    find_path_conflict,
    matches_metadata,
    paginate_files,
    system_metadata,
)
from stowage.adapters.tracing import traced_adapter_operation
from stowage.errors import (
    BucketAlreadyExistsError,
    BucketNotEmptyError,
    BucketNotFoundError,
    ObjectAlreadyExistsError,
    ObjectNotFoundError,
    ObjectNotPublicError,
    PathConflictError,
)
from stowage.models import (
    BucketInfo,
    BucketOptions,
    DownloadResult,
    FileInfo,
    FileList,
    ResponseType,
    SignedUrlAction,
    SortField,
    utcnow,
)
from stowage.paths import parse_path, validate_bucket_name, validate_object_path
from stowage.signing import sign_url

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_SIGNED_URL_BASE = "memory://signed"


@dataclasses.dataclass(frozen=True)
class _StoredObject:
    info: FileInfo
    data: bytes


class MemoryAdapter(StorageAdapter):
    """Dict-backed storage adapter.

    Args:
        signing_secret: Secret for signed URLs. Random per instance if None.
        signed_url_base: Base URL that signed URLs are issued under.
    """

    def __init__(
        self,
        signing_secret: str | None = None,
        signed_url_base: str = DEFAULT_MEMORY_SIGNED_URL_BASE,
    ) -> None:
        self._signing_secret = signing_secret or secrets.token_hex(32)
        self._signed_url_base = signed_url_base
        self._buckets: dict[str, BucketInfo] = {}
        self._objects: dict[str, dict[str, _StoredObject]] = {}

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "memory"

    def clear(self) -> None:
        """Drop every bucket and object."""
        self._buckets.clear()
        self._objects.clear()

    def _bucket_objects(self, bucket: str) -> dict[str, _StoredObject]:
        validate_bucket_name(bucket)
        objects = self._objects.get(bucket)
        if objects is None:
            raise BucketNotFoundError(bucket=bucket)
        return objects

    def _get_object(self, bucket: str, path: str) -> _StoredObject:
        objects = self._bucket_objects(bucket)
        validate_object_path(path, bucket=bucket)
        stored = objects.get(path)
        if stored is None:
            raise ObjectNotFoundError(bucket=bucket, path=path)
        return stored

    def _url(self, bucket: str, path: str) -> str:
        return f"memory://{quote(bucket)}/{quote(path)}"

    def _put(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str,
        metadata: Mapping[str, Any],
        upsert: bool,
        public: bool,
    ) -> FileInfo:
        objects = self._bucket_objects(bucket)
        validate_object_path(path, bucket=bucket)

        existing = objects.get(path)
        if existing is not None and not upsert:
            raise ObjectAlreadyExistsError(bucket=bucket, path=path)
        if existing is None and find_path_conflict(path, objects) is not None:
            raise PathConflictError(bucket=bucket, path=path)

        now = utcnow()
        created_at = existing.info.created_at if existing is not None else now
        stored_metadata = {
            **metadata,
            **system_metadata(
                content_type=content_type,
                size=len(data),
                created_at=created_at,
                updated_at=now,
            ),
        }
        info = FileInfo(
            id=existing.info.id if existing is not None else str(uuid.uuid4()),
            bucket=bucket,
            path=path,
            name=parse_path(path).base,
            size=len(data),
            content_type=content_type,
            metadata=stored_metadata,
            public=public,
            created_at=created_at,
            updated_at=now,
        )
        objects[path] = _StoredObject(info=info, data=bytes(data))
        return info

    @traced_adapter_operation("create_bucket")
    async def create_bucket(self, name: str, options: BucketOptions) -> BucketInfo:
        """Create a bucket."""
        validate_bucket_name(name)
        if name in self._buckets:
            raise BucketAlreadyExistsError(bucket=name)

        info = BucketInfo(
            name=name,
            public=options.public,
            file_size_limit=options.file_size_limit,
            allowed_mime_types=tuple(options.allowed_mime_types),
        )
        self._buckets[name] = info
        self._objects[name] = {}
        logger.debug("Created bucket: bucket=%s", name)
        return info

    @traced_adapter_operation("list_buckets")
    async def list_buckets(self) -> list[BucketInfo]:
        """List all buckets ordered by name."""
        return [self._buckets[name] for name in sorted(self._buckets)]

    @traced_adapter_operation("delete_bucket")
    async def delete_bucket(self, name: str, *, force: bool = False) -> bool:
        """Delete a bucket."""
        objects = self._bucket_objects(name)
        if objects and not force:
            raise BucketNotEmptyError(bucket=name)

        del self._buckets[name]
        del self._objects[name]
        logger.debug("Deleted bucket: bucket=%s objects=%d", name, len(objects))
        return True

    @traced_adapter_operation("upload_file")
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
        """Store an object."""
        return self._put(
            bucket,
            path,
            data,
            content_type=content_type,
            metadata=metadata or {},
            upsert=upsert,
            public=public,
        )

    @traced_adapter_operation("download_file")
    async def download_file(
        self,
        bucket: str,
        path: str,
        *,
        response_type: ResponseType = ResponseType.BYTES,
    ) -> DownloadResult:
        """Retrieve an object."""
        stored = self._get_object(bucket, path)
        return DownloadResult(
            data=decode_payload(stored.data, response_type, bucket=bucket, path=path),
            content_type=stored.info.content_type,
            size=stored.info.size,
            metadata=dict(stored.info.metadata),
        )

    @traced_adapter_operation("get_file_info")
    async def get_file_info(self, bucket: str, path: str) -> FileInfo:
        """Return an object descriptor."""
        return self._get_object(bucket, path).info

    @traced_adapter_operation("list_files")
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
        """List objects under a prefix."""
        objects = self._bucket_objects(bucket)
        candidates = [s.info for p, s in objects.items() if p.startswith(prefix)]
        return paginate_files(
            candidates,
            limit=limit,
            cursor=cursor,
            sort_by=sort_by,
            sort_descending=sort_descending,
        )

    @traced_adapter_operation("delete_file")
    async def delete_file(self, bucket: str, path: str) -> bool:
        """Delete an object."""
        self._get_object(bucket, path)
        del self._objects[bucket][path]
        return True

    @traced_adapter_operation("copy_file")
    async def copy_file(
        self,
        source_bucket: str,
        source_path: str,
        destination_bucket: str,
        destination_path: str,
        *,
        overwrite: bool = False,
    ) -> FileInfo:
        """Copy an object."""
        source = self._get_object(source_bucket, source_path)
        if (source_bucket, source_path) == (destination_bucket, destination_path):
            if not overwrite:
                raise ObjectAlreadyExistsError(bucket=destination_bucket, path=destination_path)
            return source.info

        return self._put(
            destination_bucket,
            destination_path,
            source.data,
            content_type=source.info.content_type,
            metadata=source.info.metadata,
            upsert=overwrite,
            public=source.info.public,
        )

    @traced_adapter_operation("move_file")
    async def move_file(
        self,
        source_bucket: str,
        source_path: str,
        destination_bucket: str,
        destination_path: str,
        *,
        overwrite: bool = False,
    ) -> FileInfo:
        """Move an object."""
        source = self._get_object(source_bucket, source_path)
        if (source_bucket, source_path) == (destination_bucket, destination_path):
            if not overwrite:
                raise ObjectAlreadyExistsError(bucket=destination_bucket, path=destination_path)
            return source.info

        info = self._put(
            destination_bucket,
            destination_path,
            source.data,
            content_type=source.info.content_type,
            metadata=source.info.metadata,
            upsert=overwrite,
            public=source.info.public,
        )
        del self._objects[source_bucket][source_path]
        return info

    @traced_adapter_operation("get_file_url")
    async def get_file_url(self, bucket: str, path: str) -> str:
        """Return the public URL of an object."""
        stored = self._get_object(bucket, path)
        if not stored.info.public:
            raise ObjectNotPublicError(bucket=bucket, path=path)
        return self._url(bucket, path)

    @traced_adapter_operation("get_signed_url")
    async def get_signed_url(
        self,
        bucket: str,
        path: str,
        *,
        expires_in: int,
        action: SignedUrlAction = SignedUrlAction.READ,
    ) -> str:
        """Return a signed URL for an object."""
        if SignedUrlAction(action) is SignedUrlAction.WRITE:
            self._bucket_objects(bucket)
            validate_object_path(path, bucket=bucket)
        else:
            self._get_object(bucket, path)

        expires_at = int(time.time()) + expires_in
        return sign_url(
            self._signed_url_base, bucket, path, action, expires_at, self._signing_secret
        )

    @traced_adapter_operation("update_metadata")
    async def update_metadata(
        self,
        bucket: str,
        path: str,
        metadata: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Replace an object's user metadata."""
        stored = self._get_object(bucket, path)
        now = utcnow()
        merged = {
            **metadata,
            **system_metadata(
                content_type=stored.info.content_type,
                size=stored.info.size,
                created_at=stored.info.created_at,
                updated_at=now,
            ),
        }
        info = dataclasses.replace(stored.info, metadata=merged, updated_at=now)
        self._objects[bucket][path] = _StoredObject(info=info, data=stored.data)
        return dict(merged)

    @traced_adapter_operation("search_files")
    async def search_files(
        self,
        bucket: str,
        *,
        prefix: str = "",
        metadata: Mapping[str, Any] | None = None,
        limit: int = 100,
        cursor: str | None = None,
    ) -> FileList:
        """Search objects by prefix and metadata."""
        objects = self._bucket_objects(bucket)
        criteria = metadata or {}
        candidates = [
            s.info
            for p, s in objects.items()
            if p.startswith(prefix) and matches_metadata(s.info.metadata, criteria)
        ]
        return paginate_files(candidates, limit=limit, cursor=cursor)
