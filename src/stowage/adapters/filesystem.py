"""Filesystem storage adapter.

Provides local directory storage with:
- One directory per bucket, payloads at {root}/{bucket}/{path}
- A hidden metadata tree keyed by SHA256 of the object path, so path
  characters never collide with record filenames
- Bucket/path validation plus a resolved-path containment check
- Exclusive-create writes for non-upsert uploads

Layout:
    {root}/{bucket}/{path}                          payload
    {root}/.metadata/{bucket}/bucket.json           BucketInfo record
    {root}/.metadata/{bucket}/objects/{sha256}.json FileInfo record

Blocking I/O runs in worker threads via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import json
import logging
import shutil
import time
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import quote

from stowage.adapters.base import (
    StorageAdapter,
    decode_payload,
    matches_metadata,
    paginate_files,
    system_metadata,
)
from stowage.adapters.tracing import traced_adapter_operation
from stowage.config import DEFAULT_SIGNED_URL_BASE
from stowage.errors import (
    BucketAlreadyExistsError,
    BucketNotEmptyError,
    BucketNotFoundError,
    InvalidBucketNameError,
    ObjectAlreadyExistsError,
    ObjectNotFoundError,
    ObjectNotPublicError,
    PathConflictError,
    PathTraversalError,
    StorageBackendError,
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

METADATA_DIR = ".metadata"
_BUCKET_RECORD = "bucket.json"
_OBJECTS_DIR = "objects"


def _record_name(path: str) -> str:
    """Return the metadata record filename for an object path."""
    return hashlib.sha256(path.encode("utf-8")).hexdigest() + ".json"


class FilesystemAdapter(StorageAdapter):
    """Filesystem-backed storage adapter.

    Args:
        root: Root directory; created on first bucket creation.
        public_base_url: Prefix for public URLs. When None, public URLs are
            file:// URIs of the payload.
        signing_secret: Secret for signed URLs.
        signed_url_base: Base URL that signed URLs are issued under.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        public_base_url: str | None = None,
        signing_secret: str,
        signed_url_base: str = DEFAULT_SIGNED_URL_BASE,
    ) -> None:
        self._root = Path(root).resolve()
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._signing_secret = signing_secret
        self._signed_url_base = signed_url_base
        logger.debug("FilesystemAdapter initialized with root=%s", self._root)

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "filesystem"

    @property
    def root(self) -> Path:
        """Return the root directory path."""
        return self._root

    # -- layout ---------------------------------------------------------

    def _bucket_dir(self, bucket: str) -> Path:
        validate_bucket_name(bucket)
        if bucket == METADATA_DIR:
            raise InvalidBucketNameError("Bucket name is reserved", bucket=bucket)
        return self._root / bucket

    def _bucket_meta_dir(self, bucket: str) -> Path:
        return self._root / METADATA_DIR / bucket

    def _require_bucket(self, bucket: str) -> Path:
        bucket_dir = self._bucket_dir(bucket)
        if not (self._bucket_meta_dir(bucket) / _BUCKET_RECORD).is_file():
            raise BucketNotFoundError(bucket=bucket)
        return bucket_dir

    def _object_file(self, bucket: str, path: str) -> Path:
        """Return the payload location for an object, validating inputs."""
        bucket_dir = self._require_bucket(bucket)
        validate_object_path(path, bucket=bucket)
        return self._ensure_resolved_within(bucket_dir / path, bucket_dir, bucket, path)

    def _record_file(self, bucket: str, path: str) -> Path:
        return self._bucket_meta_dir(bucket) / _OBJECTS_DIR / _record_name(path)

    def _ensure_resolved_within(self, target: Path, base: Path, bucket: str, path: str) -> Path:
        """Ensure a path resolves within its bucket directory (defense in depth)."""
        resolved = target.resolve()
        try:
            resolved.relative_to(base.resolve())
        except ValueError as e:
            raise PathTraversalError(
                "Path resolves outside bucket directory",
                bucket=bucket,
                path=path,
            ) from e
        return resolved

    # -- records --------------------------------------------------------

    def _write_json_atomic(self, target: Path, payload: dict[str, Any]) -> None:
        """Write a JSON record atomically via temp file + replace."""
        tmp_file = target.parent / f"{target.name}.{uuid.uuid4().hex}.tmp"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_file.replace(target)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise StorageBackendError(f"Failed to write record: {e}", cause=e) from e

    def _read_record(self, bucket: str, path: str) -> FileInfo | None:
        record = self._record_file(bucket, path)
        try:
            data = json.loads(record.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise StorageBackendError(
                f"Failed to read metadata record: {e}", bucket=bucket, path=path, cause=e
            ) from e
        return FileInfo.from_dict(data)

    def _iter_records(self, bucket: str) -> list[FileInfo]:
        objects_dir = self._bucket_meta_dir(bucket) / _OBJECTS_DIR
        if not objects_dir.is_dir():
            return []
        infos: list[FileInfo] = []
        try:
            for record in objects_dir.glob("*.json"):
                infos.append(FileInfo.from_dict(json.loads(record.read_text(encoding="utf-8"))))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageBackendError(
                f"Failed to read metadata records: {e}", bucket=bucket, cause=e
            ) from e
        return infos

    def _require_record(self, bucket: str, path: str) -> FileInfo:
        info = self._read_record(bucket, path)
        if info is None:
            raise ObjectNotFoundError(bucket=bucket, path=path)
        return info

    # -- payloads -------------------------------------------------------

    def _check_path_conflict(self, target: Path, bucket: str, path: str) -> None:
        """Reject a payload location that is a directory or sits under a file."""
        bucket_dir = self._bucket_dir(bucket).resolve()
        if target.is_dir():
            raise PathConflictError(bucket=bucket, path=path)
        for parent in target.parents:
            if parent == bucket_dir:
                return
            if parent.exists() and not parent.is_dir():
                raise PathConflictError(bucket=bucket, path=path)

    def _make_parent_dir(self, target: Path, bucket: str, path: str) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as e:
            raise PathConflictError(bucket=bucket, path=path) from e
        except OSError as e:
            raise StorageBackendError(
                f"Failed to create object directory: {e}", bucket=bucket, path=path, cause=e
            ) from e

    def _create_object(self, target: Path, data: bytes, record: Path, info: FileInfo) -> None:
        """Write a new payload with exclusive create, then its record."""
        bucket, path = info.bucket, info.path
        self._make_parent_dir(target, bucket, path)
        try:
            with target.open("xb") as fh:
                fh.write(data)
        except FileExistsError as e:
            if target.is_dir():
                raise PathConflictError(bucket=bucket, path=path) from e
            raise ObjectAlreadyExistsError(bucket=bucket, path=path) from e
        except IsADirectoryError as e:
            raise PathConflictError(bucket=bucket, path=path) from e
        except OSError as e:
            target.unlink(missing_ok=True)
            raise StorageBackendError(
                f"Failed to write content: {e}", bucket=bucket, path=path, cause=e
            ) from e

        try:
            self._write_json_atomic(record, info.to_dict())
        except StorageBackendError:
            target.unlink(missing_ok=True)
            raise

    def _replace_object(self, target: Path, data: bytes, record: Path, info: FileInfo) -> None:
        """Overwrite a payload and its record.

        Both are staged as temp files before either is swapped in, so a
        failed write leaves the previous payload and record in place.
        """
        bucket, path = info.bucket, info.path
        self._make_parent_dir(target, bucket, path)
        payload_tmp = target.parent / f".{target.name}.{uuid.uuid4().hex}.tmp"
        record_tmp = record.parent / f"{record.name}.{uuid.uuid4().hex}.tmp"
        try:
            record.parent.mkdir(parents=True, exist_ok=True)
            payload_tmp.write_bytes(data)
            record_tmp.write_text(json.dumps(info.to_dict(), indent=2), encoding="utf-8")
            payload_tmp.replace(target)
            record_tmp.replace(record)
        except IsADirectoryError as e:
            raise PathConflictError(bucket=bucket, path=path) from e
        except OSError as e:
            raise StorageBackendError(
                f"Failed to write content: {e}", bucket=bucket, path=path, cause=e
            ) from e
        finally:
            payload_tmp.unlink(missing_ok=True)
            record_tmp.unlink(missing_ok=True)

    def _remove_empty_parents(self, start: Path, stop: Path) -> None:
        current = start
        while current != stop and stop in current.parents:
            try:
                current.rmdir()
            except OSError:
                return
            current = current.parent

    # -- sync operations ------------------------------------------------

    def _create_bucket_sync(self, name: str, options: BucketOptions) -> BucketInfo:
        bucket_dir = self._bucket_dir(name)
        record = self._bucket_meta_dir(name) / _BUCKET_RECORD
        if record.exists():
            raise BucketAlreadyExistsError(bucket=name)

        info = BucketInfo(
            name=name,
            public=options.public,
            file_size_limit=options.file_size_limit,
            allowed_mime_types=tuple(options.allowed_mime_types),
        )
        try:
            bucket_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageBackendError(
                f"Failed to create bucket directory: {e}", bucket=name, cause=e
            ) from e
        self._write_json_atomic(record, info.to_dict())
        logger.debug("Created bucket: bucket=%s", name)
        return info

    def _list_buckets_sync(self) -> list[BucketInfo]:
        meta_root = self._root / METADATA_DIR
        if not meta_root.is_dir():
            return []
        buckets: list[BucketInfo] = []
        try:
            for record in sorted(meta_root.glob(f"*/{_BUCKET_RECORD}")):
                data = json.loads(record.read_text(encoding="utf-8"))
                buckets.append(BucketInfo.from_dict(data))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageBackendError(f"Failed to read bucket records: {e}", cause=e) from e
        return buckets

    def _delete_bucket_sync(self, name: str, force: bool) -> bool:
        bucket_dir = self._require_bucket(name)
        if not force and self._iter_records(name):
            raise BucketNotEmptyError(bucket=name)

        try:
            if bucket_dir.exists():
                shutil.rmtree(bucket_dir)
            shutil.rmtree(self._bucket_meta_dir(name))
        except OSError as e:
            raise StorageBackendError(
                f"Failed to delete bucket: {e}", bucket=name, cause=e
            ) from e
        logger.debug("Deleted bucket: bucket=%s force=%s", name, force)
        return True

    def _put_sync(
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
        target = self._object_file(bucket, path)
        existing = self._read_record(bucket, path)
        if existing is not None and not upsert:
            raise ObjectAlreadyExistsError(bucket=bucket, path=path)
        if existing is None:
            self._check_path_conflict(target, bucket, path)

        now = utcnow()
        created_at = existing.created_at if existing is not None else now
        info = FileInfo(
            id=existing.id if existing is not None else str(uuid.uuid4()),
            bucket=bucket,
            path=path,
            name=parse_path(path).base,
            size=len(data),
            content_type=content_type,
            metadata={
                **metadata,
                **system_metadata(
                    content_type=content_type,
                    size=len(data),
                    created_at=created_at,
                    updated_at=now,
                ),
            },
            public=public,
            created_at=created_at,
            updated_at=now,
        )
        record = self._record_file(bucket, path)
        if upsert:
            self._replace_object(target, data, record, info)
        else:
            self._create_object(target, data, record, info)
        logger.debug("Stored object: bucket=%s size=%d", bucket, info.size)
        return info

    def _read_payload_sync(self, bucket: str, path: str) -> tuple[FileInfo, bytes]:
        target = self._object_file(bucket, path)
        info = self._require_record(bucket, path)
        try:
            return info, target.read_bytes()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(
                "Object content not found", bucket=bucket, path=path
            ) from e
        except OSError as e:
            raise StorageBackendError(
                f"Failed to read content: {e}", bucket=bucket, path=path, cause=e
            ) from e

    def _get_info_sync(self, bucket: str, path: str) -> FileInfo:
        self._object_file(bucket, path)
        return self._require_record(bucket, path)

    def _delete_sync(self, bucket: str, path: str) -> bool:
        target = self._object_file(bucket, path)
        self._require_record(bucket, path)
        try:
            target.unlink(missing_ok=True)
            self._record_file(bucket, path).unlink(missing_ok=True)
        except OSError as e:
            raise StorageBackendError(
                f"Failed to delete object: {e}", bucket=bucket, path=path, cause=e
            ) from e
        self._remove_empty_parents(target.parent, self._root / bucket)
        return True

    def _transfer_sync(
        self,
        source_bucket: str,
        source_path: str,
        destination_bucket: str,
        destination_path: str,
        *,
        overwrite: bool,
        remove_source: bool,
    ) -> FileInfo:
        source, data = self._read_payload_sync(source_bucket, source_path)
        if (source_bucket, source_path) == (destination_bucket, destination_path):
            if not overwrite:
                raise ObjectAlreadyExistsError(bucket=destination_bucket, path=destination_path)
            return source

        info = self._put_sync(
            destination_bucket,
            destination_path,
            data,
            content_type=source.content_type,
            metadata=source.metadata,
            upsert=overwrite,
            public=source.public,
        )
        if remove_source:
            self._delete_sync(source_bucket, source_path)
        return info

    def _list_sync(self, bucket: str, prefix: str, criteria: Mapping[str, Any]) -> list[FileInfo]:
        self._require_bucket(bucket)
        return [
            info
            for info in self._iter_records(bucket)
            if info.path.startswith(prefix) and matches_metadata(info.metadata, criteria)
        ]

    def _update_metadata_sync(
        self, bucket: str, path: str, metadata: Mapping[str, Any]
    ) -> dict[str, Any]:
        self._object_file(bucket, path)
        info = self._require_record(bucket, path)
        now = utcnow()
        merged = {
            **metadata,
            **system_metadata(
                content_type=info.content_type,
                size=info.size,
                created_at=info.created_at,
                updated_at=now,
            ),
        }
        updated = dataclasses.replace(info, metadata=merged, updated_at=now)
        self._write_json_atomic(self._record_file(bucket, path), updated.to_dict())
        return dict(merged)

    # -- contract -------------------------------------------------------

    @traced_adapter_operation("create_bucket")
    async def create_bucket(self, name: str, options: BucketOptions) -> BucketInfo:
        """Create a bucket directory and its record."""
        return await asyncio.to_thread(self._create_bucket_sync, name, options)

    @traced_adapter_operation("list_buckets")
    async def list_buckets(self) -> list[BucketInfo]:
        """List all buckets ordered by name."""
        return await asyncio.to_thread(self._list_buckets_sync)

    @traced_adapter_operation("delete_bucket")
    async def delete_bucket(self, name: str, *, force: bool = False) -> bool:
        """Delete a bucket."""
        return await asyncio.to_thread(self._delete_bucket_sync, name, force)

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
        return await asyncio.to_thread(
            self._put_sync,
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
        info, data = await asyncio.to_thread(self._read_payload_sync, bucket, path)
        return DownloadResult(
            data=decode_payload(data, response_type, bucket=bucket, path=path),
            content_type=info.content_type,
            size=info.size,
            metadata=dict(info.metadata),
        )

    @traced_adapter_operation("get_file_info")
    async def get_file_info(self, bucket: str, path: str) -> FileInfo:
        """Return an object descriptor."""
        return await asyncio.to_thread(self._get_info_sync, bucket, path)

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
        candidates = await asyncio.to_thread(self._list_sync, bucket, prefix, {})
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
        return await asyncio.to_thread(self._delete_sync, bucket, path)

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
        return await asyncio.to_thread(
            self._transfer_sync,
            source_bucket,
            source_path,
            destination_bucket,
            destination_path,
            overwrite=overwrite,
            remove_source=False,
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
        return await asyncio.to_thread(
            self._transfer_sync,
            source_bucket,
            source_path,
            destination_bucket,
            destination_path,
            overwrite=overwrite,
            remove_source=True,
        )

    @traced_adapter_operation("get_file_url")
    async def get_file_url(self, bucket: str, path: str) -> str:
        """Return the public URL of an object."""
        info = await asyncio.to_thread(self._get_info_sync, bucket, path)
        if not info.public:
            raise ObjectNotPublicError(bucket=bucket, path=path)
        if self._public_base_url:
            return f"{self._public_base_url}/{quote(bucket)}/{quote(path)}"
        return (self._root / bucket / path).as_uri()

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
            await asyncio.to_thread(self._object_file, bucket, path)
        else:
            await asyncio.to_thread(self._get_info_sync, bucket, path)

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
        return await asyncio.to_thread(self._update_metadata_sync, bucket, path, metadata)

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
        candidates = await asyncio.to_thread(self._list_sync, bucket, prefix, metadata or {})
        return paginate_files(candidates, limit=limit, cursor=cursor)
