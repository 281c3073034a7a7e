"""StorageService - orchestration layer over a StorageAdapter.

Validates requests, enforces per-bucket policy, resolves content types and
collision-safe paths, prepares metadata, then delegates to the adapter and
decorates the result with computed fields (final path, content type, URL).

Failure policy:
- Validation and policy errors are raised locally, before any adapter call
  that could mutate state.
- Adapter errors (not found, conflict, backend) propagate unchanged.
- Nothing is retried.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from stowage.adapters import StorageAdapter, create_adapter
from stowage.config import StorageServiceConfig, StowageSettings, load_settings_from_env
from stowage.content_type import ContentTypeDetector
from stowage.errors import (
    ContentTypeNotAllowedError,
    FileTooLargeError,
    InvalidMetadataError,
    ObjectNotFoundError,
    ObjectNotPublicError,
    StorageValidationError,
)
from stowage.metadata import MetadataManager
from stowage.models import (
    BucketInfo,
    BucketOptions,
    DownloadFileRequest,
    DownloadResult,
    FileInfo,
    FileList,
    FileRef,
    ListFilesRequest,
    SearchFilesRequest,
    SignedUrlRequest,
    TransferFileRequest,
    UpdateMetadataRequest,
    UploadFileRequest,
    utcnow,
)
from stowage.paths import generate_unique_filename, validate_bucket_name, validate_object_path

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "request"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def validate_request(model: type[M], request: M | Mapping[str, Any] | None) -> M:
    """Coerce a request into its typed model.

    Raises:
        StorageValidationError: If the request does not validate.
    """
    if isinstance(request, model):
        return request
    try:
        return model.model_validate(request or {})
    except ValidationError as e:
        raise StorageValidationError(_format_validation_error(e)) from e


class StorageService:
    """Backend-agnostic object storage service.

    Holds no mutable state beyond the bucket policy table, so concurrent
    calls are serialized only by the adapter.

    Args:
        adapter: Backend implementing the StorageAdapter contract.
        config: Service configuration; defaults apply when None.
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        config: StorageServiceConfig | None = None,
    ) -> None:
        self._adapter = adapter
        self._config = config or StorageServiceConfig()
        self._policies: dict[str, BucketOptions] = dict(self._config.bucket_policies)
        self._metadata = MetadataManager(
            reserved_keys=self._config.reserved_metadata_keys,
            default_metadata=self._config.default_metadata,
            sanitize_key=self._config.sanitize_key,
            sanitize_value=self._config.sanitize_value,
        )
        self._detector = ContentTypeDetector(self._config.custom_content_types)

    @property
    def adapter(self) -> StorageAdapter:
        """Return the configured adapter."""
        return self._adapter

    @property
    def config(self) -> StorageServiceConfig:
        """Return the service configuration."""
        return self._config

    @property
    def metadata_manager(self) -> MetadataManager:
        """Return the metadata manager used on write paths."""
        return self._metadata

    @property
    def content_type_detector(self) -> ContentTypeDetector:
        """Return the content type detector used on upload."""
        return self._detector

    def get_bucket_policy(self, bucket: str) -> BucketOptions | None:
        """Return the policy for a bucket, or None when unrestricted."""
        return self._policies.get(bucket)

    async def sync_bucket_policies(self) -> int:
        """Seed the policy table from buckets the adapter already holds.

        Persistent backends outlive the process; without this, their buckets
        would be unrestricted after a restart. Existing entries are kept.

        Returns:
            Number of policies added.
        """
        added = 0
        for info in await self._adapter.list_buckets():
            if info.name not in self._policies:
                self._policies[info.name] = BucketOptions(
                    public=info.public,
                    file_size_limit=info.file_size_limit,
                    allowed_mime_types=list(info.allowed_mime_types),
                )
                added += 1
        return added

    # -- helpers --------------------------------------------------------

    def _resolve_bucket(self, bucket: str | None) -> str:
        resolved = bucket or self._config.default_bucket
        validate_bucket_name(resolved)
        return resolved

    async def _exists(self, bucket: str, path: str) -> bool:
        try:
            await self._adapter.get_file_info(bucket, path)
        except ObjectNotFoundError:
            return False
        return True

    def _check_metadata(self, bucket: str, path: str, metadata: Mapping[str, Any]) -> None:
        policy = self._policies.get(bucket)
        if policy is None or policy.metadata_schema is None:
            return
        result = self._metadata.validate_metadata(metadata, policy.metadata_schema)
        if not result.valid:
            raise InvalidMetadataError(
                result.error or "Metadata failed validation", bucket=bucket, path=path
            )

    def _enforce_policy(
        self,
        bucket: str,
        path: str,
        *,
        size: int,
        content_type: str,
        metadata: Mapping[str, Any],
    ) -> None:
        """Reject writes the bucket policy forbids. Unknown buckets are unrestricted."""
        policy = self._policies.get(bucket)
        if policy is None:
            return
        if size > policy.file_size_limit:
            raise FileTooLargeError(
                size=size, limit=policy.file_size_limit, bucket=bucket, path=path
            )
        if policy.allowed_mime_types and content_type not in policy.allowed_mime_types:
            raise ContentTypeNotAllowedError(content_type=content_type, bucket=bucket, path=path)
        self._check_metadata(bucket, path, metadata)

    async def _with_url(self, info: FileInfo) -> FileInfo:
        if not info.public:
            return info
        url = await self._adapter.get_file_url(info.bucket, info.path)
        return dataclasses.replace(info, url=url)

    # -- buckets --------------------------------------------------------

    async def create_bucket(
        self,
        name: str,
        options: BucketOptions | Mapping[str, Any] | None = None,
    ) -> BucketInfo:
        """Create a bucket and record its policy.

        Raises:
            InvalidBucketNameError: If the name is malformed.
            BucketAlreadyExistsError: If the bucket exists.
        """
        validate_bucket_name(name)
        opts = validate_request(BucketOptions, options)

        info = await self._adapter.create_bucket(name, opts)
        self._policies[name] = opts
        logger.info(
            "Created bucket: bucket=%s public=%s file_size_limit=%d",
            name,
            opts.public,
            opts.file_size_limit,
        )
        return info

    async def list_buckets(self) -> list[BucketInfo]:
        """List all buckets."""
        return await self._adapter.list_buckets()

    async def delete_bucket(self, name: str, *, force: bool = False) -> bool:
        """Delete a bucket.

        Raises:
            BucketNotFoundError: If the bucket does not exist.
            BucketNotEmptyError: If the bucket has objects and force is False.
        """
        validate_bucket_name(name)
        deleted = await self._adapter.delete_bucket(name, force=force)
        self._policies.pop(name, None)
        logger.info("Deleted bucket: bucket=%s force=%s", name, force)
        return deleted

    # -- objects --------------------------------------------------------

    async def upload_file(
        self, request: UploadFileRequest | Mapping[str, Any]
    ) -> FileInfo:
        """Upload an object.

        Path resolution: the filename generator rewrites the path when
        unique filenames are enabled and the request allows rewriting. With
        unique (and no upsert) a "_N" suffix is added until the path is free;
        otherwise an existing object is a conflict. Content type comes from
        the request, else from the path extension, else from the payload.

        Raises:
            StorageValidationError: If bucket, path or data are missing or malformed.
            FileTooLargeError: If the payload exceeds the bucket's size limit.
            ContentTypeNotAllowedError: If the content type is not allow-listed.
            InvalidMetadataError: If metadata fails the bucket's schema.
            ObjectAlreadyExistsError: If the path is taken and neither upsert nor
                unique was requested, or no free unique path could be found.
        """
        req = validate_request(UploadFileRequest, request)
        bucket = self._resolve_bucket(req.bucket)
        validate_object_path(req.path, bucket=bucket)

        path = req.path
        if self._config.generate_unique_filenames and req.rewrite_path:
            path = self._config.filename_generator(path)
            validate_object_path(path, bucket=bucket)

        content_type = req.content_type or self._detector.detect_content_type(path, req.data)
        size = len(req.data)
        self._enforce_policy(
            bucket,
            path,
            size=size,
            content_type=content_type,
            metadata=self._metadata.prepare_metadata(req.metadata),
        )

        if req.unique and not req.upsert:
            path = await generate_unique_filename(
                path,
                functools.partial(self._exists, bucket),
                max_attempts=self._config.max_unique_attempts,
            )

        metadata = self._metadata.prepare_metadata(
            req.metadata,
            {"contentType": content_type, "size": size, "uploadedAt": utcnow().isoformat()},
        )
        policy = self._policies.get(bucket)
        public = req.public if req.public is not None else bool(policy and policy.public)

        info = await self._adapter.upload_file(
            bucket,
            path,
            req.data,
            content_type=content_type,
            metadata=metadata,
            upsert=req.upsert,
            public=public,
        )
        logger.info(
            "Uploaded object: bucket=%s size=%d content_type=%s upsert=%s",
            bucket,
            size,
            content_type,
            req.upsert,
        )
        return await self._with_url(info)

    async def download_file(
        self, request: DownloadFileRequest | Mapping[str, Any]
    ) -> DownloadResult:
        """Download an object shaped as the requested response type."""
        req = validate_request(DownloadFileRequest, request)
        bucket = self._resolve_bucket(req.bucket)
        validate_object_path(req.path, bucket=bucket)
        logger.debug("Downloading object: bucket=%s response_type=%s", bucket, req.response_type)
        return await self._adapter.download_file(
            bucket, req.path, response_type=req.response_type
        )

    async def get_file_info(self, request: FileRef | Mapping[str, Any]) -> FileInfo:
        """Return an object descriptor, with its URL when public."""
        req = validate_request(FileRef, request)
        bucket = self._resolve_bucket(req.bucket)
        validate_object_path(req.path, bucket=bucket)
        info = await self._adapter.get_file_info(bucket, req.path)
        return await self._with_url(info)

    async def list_files(
        self, request: ListFilesRequest | Mapping[str, Any] | None = None
    ) -> FileList:
        """List objects one page at a time."""
        req = validate_request(ListFilesRequest, request)
        bucket = self._resolve_bucket(req.bucket)
        logger.debug("Listing objects: bucket=%s limit=%d", bucket, req.limit)
        return await self._adapter.list_files(
            bucket,
            prefix=req.prefix,
            limit=req.limit,
            cursor=req.cursor,
            sort_by=req.sort_by,
            sort_descending=req.sort_descending,
        )

    async def delete_file(self, request: FileRef | Mapping[str, Any]) -> bool:
        """Delete an object."""
        req = validate_request(FileRef, request)
        bucket = self._resolve_bucket(req.bucket)
        validate_object_path(req.path, bucket=bucket)
        deleted = await self._adapter.delete_file(bucket, req.path)
        logger.info("Deleted object: bucket=%s", bucket)
        return deleted

    async def _prepare_transfer(
        self, req: TransferFileRequest
    ) -> tuple[str, str, str, str]:
        source_bucket = self._resolve_bucket(req.source_bucket)
        destination_bucket = self._resolve_bucket(req.destination_bucket or source_bucket)
        validate_object_path(req.source_path, bucket=source_bucket)
        validate_object_path(req.destination_path, bucket=destination_bucket)

        source = await self._adapter.get_file_info(source_bucket, req.source_path)
        self._enforce_policy(
            destination_bucket,
            req.destination_path,
            size=source.size,
            content_type=source.content_type,
            metadata=self._metadata.extract_user_metadata(source.metadata),
        )
        return source_bucket, req.source_path, destination_bucket, req.destination_path

    async def copy_file(self, request: TransferFileRequest | Mapping[str, Any]) -> FileInfo:
        """Copy an object; the destination bucket's policy applies.

        Raises:
            ObjectNotFoundError: If the source does not exist.
            ObjectAlreadyExistsError: If the destination exists and overwrite is False.
        """
        req = validate_request(TransferFileRequest, request)
        src_bucket, src_path, dst_bucket, dst_path = await self._prepare_transfer(req)
        info = await self._adapter.copy_file(
            src_bucket, src_path, dst_bucket, dst_path, overwrite=req.overwrite
        )
        logger.info("Copied object: source_bucket=%s destination_bucket=%s", src_bucket, dst_bucket)
        return await self._with_url(info)

    async def move_file(self, request: TransferFileRequest | Mapping[str, Any]) -> FileInfo:
        """Move an object; the destination bucket's policy applies."""
        req = validate_request(TransferFileRequest, request)
        src_bucket, src_path, dst_bucket, dst_path = await self._prepare_transfer(req)
        info = await self._adapter.move_file(
            src_bucket, src_path, dst_bucket, dst_path, overwrite=req.overwrite
        )
        logger.info("Moved object: source_bucket=%s destination_bucket=%s", src_bucket, dst_bucket)
        return await self._with_url(info)

    async def get_file_url(self, request: FileRef | Mapping[str, Any]) -> str:
        """Return the public URL of an object.

        Raises:
            ObjectNotPublicError: If the object is not public.
        """
        req = validate_request(FileRef, request)
        bucket = self._resolve_bucket(req.bucket)
        validate_object_path(req.path, bucket=bucket)
        info = await self._adapter.get_file_info(bucket, req.path)
        if not info.public:
            raise ObjectNotPublicError(bucket=bucket, path=req.path)
        return await self._adapter.get_file_url(bucket, req.path)

    async def get_signed_url(self, request: SignedUrlRequest | Mapping[str, Any]) -> str:
        """Return a time-limited URL granting one action on one object."""
        req = validate_request(SignedUrlRequest, request)
        bucket = self._resolve_bucket(req.bucket)
        validate_object_path(req.path, bucket=bucket)
        logger.debug(
            "Issuing signed URL: bucket=%s action=%s expires_in=%d",
            bucket,
            req.action,
            req.expires_in,
        )
        return await self._adapter.get_signed_url(
            bucket, req.path, expires_in=req.expires_in, action=req.action
        )

    async def update_metadata(
        self, request: UpdateMetadataRequest | Mapping[str, Any]
    ) -> dict[str, Any]:
        """Update an object's user metadata.

        With merge (the default) new keys are laid over the existing user
        metadata; without it they replace it, on top of the default metadata.
        Reserved keys in the request are dropped; the adapter recomputes them.

        Raises:
            InvalidMetadataError: If the result fails the bucket's schema.
        """
        req = validate_request(UpdateMetadataRequest, request)
        bucket = self._resolve_bucket(req.bucket)
        validate_object_path(req.path, bucket=bucket)

        if req.merge:
            current = await self._adapter.get_file_info(bucket, req.path)
            base = self._metadata.extract_user_metadata(current.metadata)
            updated = {**base, **self._metadata.sanitize_metadata(req.metadata)}
        else:
            updated = self._metadata.prepare_metadata(req.metadata)

        self._check_metadata(bucket, req.path, updated)
        result = await self._adapter.update_metadata(bucket, req.path, updated)
        logger.info("Updated metadata: bucket=%s merge=%s keys=%d", bucket, req.merge, len(updated))
        return result

    async def search_files(
        self, request: SearchFilesRequest | Mapping[str, Any] | None = None
    ) -> FileList:
        """Return objects matching the prefix and every metadata key exactly."""
        req = validate_request(SearchFilesRequest, request)
        bucket = self._resolve_bucket(req.bucket)
        logger.debug("Searching objects: bucket=%s keys=%d", bucket, len(req.metadata))
        return await self._adapter.search_files(
            bucket,
            prefix=req.prefix,
            metadata=req.metadata,
            limit=req.limit,
            cursor=req.cursor,
        )


def create_service(settings: StowageSettings | None = None) -> StorageService:
    """Create a StorageService from deployment settings (env when None)."""
    settings = settings or load_settings_from_env()
    adapter = create_adapter(settings)
    logger.debug("Creating storage service: backend=%s", adapter.backend_name)
    return StorageService(adapter, settings.service_config())
