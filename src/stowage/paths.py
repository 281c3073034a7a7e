"""Path utilities for logical object paths.

Pure functions over "/"-delimited strings; nothing here touches the
filesystem. Object paths are logical keys inside a bucket, so the rules are
POSIX-like regardless of the host OS.
"""

from __future__ import annotations

import inspect
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from stowage.errors import (
    InvalidBucketNameError,
    ObjectAlreadyExistsError,
    PathTraversalError,
    StorageValidationError,
)

BUCKET_NAME_PATTERN = re.compile(r"[a-z0-9._-]+")

DEFAULT_MAX_UNIQUE_ATTEMPTS = 1000

ExistsCheck = Callable[[str], bool | Awaitable[bool]]


@dataclass(frozen=True)
class ParsedPath:
    """Components of a logical path.

    Attributes:
        dir: Everything before the last slash ("" for top-level paths).
        base: Final segment including extension.
        name: Final segment without extension.
        ext: Extension including the dot, or "".
    """

    dir: str
    base: str
    name: str
    ext: str


def parse_path(path: str) -> ParsedPath:
    """Split a path into dir, base, name and ext.

    Only the final segment is inspected for an extension, and only its last
    dot counts. A leading dot (".env") is part of the name, not an extension.
    """
    if not path:
        return ParsedPath(dir="", base="", name="", ext="")

    normalized = path.replace("\\", "/")
    dir_part, slash, base = normalized.rpartition("/")
    if not slash:
        dir_part, base = "", normalized

    dot = base.rfind(".")
    if dot > 0:
        name, ext = base[:dot], base[dot:]
    else:
        name, ext = base, ""

    return ParsedPath(dir=dir_part, base=base, name=name, ext=ext)


def join_path(dir_part: str, base: str) -> str:
    """Join a directory and a base name with exactly one slash."""
    if not dir_part:
        return base
    if not base:
        return dir_part
    return f"{dir_part.rstrip('/')}/{base.lstrip('/')}"


def normalize_path(path: str) -> str:
    """Convert backslashes, collapse repeated slashes, strip a trailing slash."""
    if not path:
        return ""
    normalized = re.sub(r"/+", "/", path.replace("\\", "/"))
    return normalized.rstrip("/")


def get_parent_dir(path: str) -> str:
    """Return the directory component of a path ("" for top-level)."""
    return parse_path(path).dir


def _segments(path: str) -> list[str]:
    return [segment for segment in normalize_path(path).split("/") if segment]


def get_relative_path(from_path: str, to_path: str) -> str:
    """Return the POSIX-style relative path from one path to another.

    Identical paths yield ".", ancestors yield ".." segments.
    """
    from_parts = _segments(from_path)
    to_parts = _segments(to_path)

    common = 0
    for left, right in zip(from_parts, to_parts, strict=False):
        if left != right:
            break
        common += 1

    up = [".."] * (len(from_parts) - common)
    down = to_parts[common:]
    relative = "/".join(up + down)
    return relative or "."


def is_sub_path(parent: str, child: str) -> bool:
    """Check whether child is strictly nested under parent.

    Identical paths and partial-segment matches ("dir" vs "directory") are
    not sub-paths.
    """
    normalized_parent = normalize_path(parent)
    normalized_child = normalize_path(child)

    if not normalized_parent or normalized_parent == normalized_child:
        return False
    return normalized_child.startswith(normalized_parent + "/")


async def generate_unique_filename(
    path: str,
    exists_check: ExistsCheck | None = None,
    *,
    max_attempts: int = DEFAULT_MAX_UNIQUE_ATTEMPTS,
) -> str:
    """Return a path that exists_check reports as free.

    The original path is returned unchanged when it is free or when no
    predicate is given. Otherwise "_1", "_2", ... is inserted before the
    extension until a free name is found.

    The search is check-then-act: a concurrent writer may claim the returned
    name before the caller writes it. Adapters refuse non-upsert writes onto
    existing paths, so losing that race surfaces as a conflict.

    Args:
        path: Candidate path.
        exists_check: Predicate, sync or async, returning True if a path is taken.
        max_attempts: Number of suffixed candidates tried before giving up.

    Returns:
        A path for which exists_check returned False.

    Raises:
        ObjectAlreadyExistsError: If every candidate up to max_attempts is taken.
    """
    if exists_check is None:
        return path

    if not await _check(exists_check, path):
        return path

    parsed = parse_path(path)
    for counter in range(1, max_attempts + 1):
        candidate = join_path(parsed.dir, f"{parsed.name}_{counter}{parsed.ext}")
        if not await _check(exists_check, candidate):
            return candidate

    raise ObjectAlreadyExistsError(
        f"No free filename after {max_attempts} attempts",
        path=path,
    )


async def _check(exists_check: ExistsCheck, path: str) -> bool:
    result = exists_check(path)
    if inspect.isawaitable(result):
        result = await result
    return bool(result)


def get_path_depth(path: str) -> int:
    """Return the number of segments in a normalized path."""
    return len(_segments(path))


def get_path_segment(path: str, index: int) -> str:
    """Return the segment at index, or "" when out of range."""
    segments = _segments(path)
    if 0 <= index < len(segments):
        return segments[index]
    return ""


def validate_bucket_name(bucket: str) -> None:
    """Validate a bucket name.

    Raises:
        StorageValidationError: If the name is empty.
        InvalidBucketNameError: If the name has characters outside [a-z0-9._-]
            or is made of periods only ("." and ".." would escape the root).
    """
    if not bucket:
        raise StorageValidationError("Bucket name is required")
    if not BUCKET_NAME_PATTERN.fullmatch(bucket):
        raise InvalidBucketNameError(bucket=bucket)
    if not bucket.strip("."):
        raise InvalidBucketNameError("Bucket name cannot consist only of periods", bucket=bucket)


def validate_object_path(path: str, *, bucket: str | None = None) -> None:
    """Validate a logical object path.

    Raises:
        StorageValidationError: If the path is empty or has an empty or "."
            segment.
        PathTraversalError: If the path is absolute, contains a ".." segment,
            a backslash or a NUL byte.
    """
    if not path:
        raise StorageValidationError("File path is required", bucket=bucket)

    if "\x00" in path or "\\" in path:
        raise PathTraversalError(bucket=bucket, path=path)

    if path.startswith("/"):
        raise PathTraversalError(
            "Invalid path: absolute paths are not allowed",
            bucket=bucket,
            path=path,
        )

    if any(segment == ".." for segment in path.split("/")):
        raise PathTraversalError(bucket=bucket, path=path)

    if any(segment in ("", ".") for segment in path.split("/")):
        raise StorageValidationError(
            "Invalid path: empty or '.' segments are not allowed",
            bucket=bucket,
            path=path,
        )
