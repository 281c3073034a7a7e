"""Stowage error types.

Every failure surfaced by the storage layer is a subclass of
ObjectStorageError. The intermediate classes are the error *kinds* callers
branch on:

- StorageValidationError: malformed or missing input, raised locally.
- PolicyViolationError: bucket policy rejected the request before any
  adapter call.
- ResourceNotFoundError: bucket or object absent.
- StorageConflictError: the target already exists, or a bucket is not empty.
- AccessDeniedError: object not public, or a signed URL failed verification.
- StorageBackendError: the backend itself failed (I/O, permissions, ...).

Nothing in this package retries on any of these.
"""

from __future__ import annotations


class ObjectStorageError(Exception):
    """Base exception for object storage operations.

    Attributes:
        message: Human-readable error message.
        bucket: Bucket associated with the operation (if applicable).
        path: Object path associated with the operation (if applicable).
    """

    def __init__(
        self,
        message: str,
        *,
        bucket: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.bucket = bucket
        self.path = path

    def __str__(self) -> str:
        parts = [self.message]
        if self.bucket:
            parts.append(f"bucket={self.bucket}")
        if self.path:
            parts.append(f"path={self.path}")
        return " ".join(parts)


class StorageValidationError(ObjectStorageError):
    """Raised when a request is missing a required field or is malformed."""


class InvalidBucketNameError(StorageValidationError):
    """Raised when a bucket name does not match ``[a-z0-9._-]+``."""

    def __init__(
        self,
        message: str = "Bucket name can only contain lowercase letters, numbers, "
        "hyphens, underscores, and periods",
        *,
        bucket: str | None = None,
    ) -> None:
        super().__init__(message, bucket=bucket)


class PathTraversalError(StorageValidationError):
    """Raised when an object path is absolute or escapes its bucket.

    Covers leading slashes, ".." segments, backslashes and NUL bytes.
    """

    def __init__(
        self,
        message: str = "Invalid path: path traversal detected",
        *,
        bucket: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, bucket=bucket, path=path)


class PayloadDecodeError(StorageValidationError):
    """Raised when stored bytes cannot be decoded into the requested shape."""


class PolicyViolationError(ObjectStorageError):
    """Raised when a request violates the target bucket's policy."""


class FileTooLargeError(PolicyViolationError):
    """Raised when a payload exceeds the bucket's file size limit."""

    def __init__(
        self,
        *,
        size: int,
        limit: int,
        bucket: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(
            f"File size {size} exceeds limit of {limit} bytes",
            bucket=bucket,
            path=path,
        )
        self.size = size
        self.limit = limit


class ContentTypeNotAllowedError(PolicyViolationError):
    """Raised when a content type is outside the bucket's allow-list."""

    def __init__(
        self,
        *,
        content_type: str,
        bucket: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(
            f"Content type {content_type} is not allowed in this bucket",
            bucket=bucket,
            path=path,
        )
        self.content_type = content_type


class InvalidMetadataError(PolicyViolationError):
    """Raised when metadata fails the bucket's metadata schema."""


class ResourceNotFoundError(ObjectStorageError):
    """Raised when a bucket or object does not exist."""


class BucketNotFoundError(ResourceNotFoundError):
    """Raised when a bucket does not exist."""

    def __init__(self, message: str = "Bucket not found", *, bucket: str | None = None) -> None:
        super().__init__(message, bucket=bucket)


class ObjectNotFoundError(ResourceNotFoundError):
    """Raised when an object does not exist in its bucket."""

    def __init__(
        self,
        message: str = "Object not found",
        *,
        bucket: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, bucket=bucket, path=path)


class StorageConflictError(ObjectStorageError):
    """Raised when an operation collides with existing state."""


class BucketAlreadyExistsError(StorageConflictError):
    """Raised when creating a bucket that already exists."""

    def __init__(
        self, message: str = "Bucket already exists", *, bucket: str | None = None
    ) -> None:
        super().__init__(message, bucket=bucket)


class ObjectAlreadyExistsError(StorageConflictError):
    """Raised when writing to an existing path without upsert/overwrite."""

    def __init__(
        self,
        message: str = "Object already exists",
        *,
        bucket: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, bucket=bucket, path=path)


class BucketNotEmptyError(StorageConflictError):
    """Raised when deleting a non-empty bucket without force."""

    def __init__(
        self,
        message: str = "Bucket is not empty. Use force option to delete anyway.",
        *,
        bucket: str | None = None,
    ) -> None:
        super().__init__(message, bucket=bucket)


class PathConflictError(StorageConflictError):
    """Raised when a path is a parent or child of an existing object's path.

    "a" and "a/b" cannot both be objects: a directory-backed store cannot
    hold a file and a directory under the same name.
    """

    def __init__(
        self,
        message: str = "Path conflicts with an existing object",
        *,
        bucket: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, bucket=bucket, path=path)


class AccessDeniedError(ObjectStorageError):
    """Raised when access to an object is refused."""


class ObjectNotPublicError(AccessDeniedError):
    """Raised when a public URL is requested for a private object."""

    def __init__(
        self,
        message: str = "Object is not public",
        *,
        bucket: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, bucket=bucket, path=path)


class InvalidSignatureError(AccessDeniedError):
    """Raised when a signed URL is malformed or its signature does not match."""


class SignedUrlExpiredError(AccessDeniedError):
    """Raised when a signed URL is past its expiry."""


class StorageBackendError(ObjectStorageError):
    """Raised when the storage backend cannot complete an operation.

    This error indicates the backend itself failed (e.g., disk full,
    permission denied, I/O error) rather than a logical error like
    object not found.
    """

    def __init__(
        self,
        message: str = "Storage backend error",
        *,
        bucket: str | None = None,
        path: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, bucket=bucket, path=path)
        self.cause = cause
