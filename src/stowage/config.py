"""Stowage configuration.

Two layers:
- StorageServiceConfig: explicit, typed construction-time configuration for
  StorageService. Nothing in the library reads global state.
- StowageSettings: deployment settings read from STOWAGE_* environment
  variables by the HTTP app and the CLI.

Environment Variables:
    STOWAGE_STORAGE_BACKEND: "memory" or "filesystem" (default: "memory")
    STOWAGE_FILESYSTEM_ROOT: Root directory for the filesystem backend
        (default: tempfile.gettempdir() / stowage)
    STOWAGE_PUBLIC_BASE_URL: Base URL for public object URLs (optional)
    STOWAGE_SIGNED_URL_BASE: Base URL for signed URLs
        (default: http://localhost:8000/v1/signed)
    STOWAGE_SIGNING_SECRET: Secret for signed URLs (default: random per process)
    STOWAGE_DEFAULT_BUCKET: Bucket used when a request names none (default: "default")
    STOWAGE_GENERATE_UNIQUE_FILENAMES: "1"/"0" (default: "1")
"""

from __future__ import annotations

import os
import re
import secrets
import tempfile
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from stowage.metadata import DEFAULT_RESERVED_KEYS
from stowage.models import BucketOptions, utcnow
from stowage.paths import DEFAULT_MAX_UNIQUE_ATTEMPTS, join_path, parse_path

DEFAULT_BUCKET = "default"
DEFAULT_SIGNED_URL_BASE = "http://localhost:8000/v1/signed"

FilenameGenerator = Callable[[str], str]


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def get_env_str(key: str, default: str = "") -> str:
    """Get string from environment variable."""
    return os.environ.get(key, default).strip()


def timestamped_filename(path: str, now: datetime | None = None) -> str:
    """Default filename generator: "dir/name_<ISO timestamp>.ext".

    Colons and dots in the timestamp are replaced with hyphens so the result
    is a safe single path segment with an unambiguous extension.
    """
    parsed = parse_path(path)
    moment = now or utcnow()
    stamp = re.sub(r"[:.]", "-", moment.isoformat(timespec="milliseconds"))
    stamp = stamp.replace("+00-00", "Z")
    return join_path(parsed.dir, f"{parsed.name}_{stamp}{parsed.ext}")


class StorageServiceConfig(BaseModel):
    """Construction-time configuration for StorageService.

    Attributes:
        default_bucket: Bucket used when a request does not name one.
        bucket_policies: Initial per-bucket policy table; create_bucket adds to it.
        generate_unique_filenames: Rewrite upload paths with filename_generator.
        filename_generator: Path -> path rewrite used when the toggle is on.
        max_unique_attempts: Bound on the collision-suffix loop.
        reserved_metadata_keys: System-owned metadata keys.
        default_metadata: Baseline metadata applied to every object.
        sanitize_key: Applied to every user metadata key (identity when None).
        sanitize_value: Applied to every user metadata value (identity when None).
        custom_content_types: Extra extension -> MIME type mappings.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    default_bucket: str = DEFAULT_BUCKET
    bucket_policies: dict[str, BucketOptions] = Field(default_factory=dict)
    generate_unique_filenames: bool = True
    filename_generator: FilenameGenerator = timestamped_filename
    max_unique_attempts: int = Field(default=DEFAULT_MAX_UNIQUE_ATTEMPTS, ge=1)
    reserved_metadata_keys: tuple[str, ...] = DEFAULT_RESERVED_KEYS
    default_metadata: dict[str, Any] = Field(default_factory=dict)
    sanitize_key: Callable[[str], str] | None = None
    sanitize_value: Callable[[Any], Any] | None = None
    custom_content_types: dict[str, str] = Field(default_factory=dict)


class StowageSettings(BaseModel):
    """Deployment settings for the HTTP app and the CLI."""

    model_config = ConfigDict(extra="forbid")

    backend: Literal["memory", "filesystem"] = "memory"
    filesystem_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "stowage"
    )
    public_base_url: str | None = None
    signed_url_base: str = DEFAULT_SIGNED_URL_BASE
    signing_secret: str = Field(default_factory=lambda: secrets.token_hex(32), repr=False)
    default_bucket: str = DEFAULT_BUCKET
    generate_unique_filenames: bool = True

    def service_config(self) -> StorageServiceConfig:
        """Build the service configuration these settings imply."""
        return StorageServiceConfig(
            default_bucket=self.default_bucket,
            generate_unique_filenames=self.generate_unique_filenames,
        )


def load_settings_from_env() -> StowageSettings:
    """Read StowageSettings from STOWAGE_* environment variables."""
    values: dict[str, Any] = {
        "backend": get_env_str("STOWAGE_STORAGE_BACKEND", "memory").lower(),
        "default_bucket": get_env_str("STOWAGE_DEFAULT_BUCKET", DEFAULT_BUCKET),
        "generate_unique_filenames": get_env_bool("STOWAGE_GENERATE_UNIQUE_FILENAMES", True),
        "signed_url_base": get_env_str("STOWAGE_SIGNED_URL_BASE", DEFAULT_SIGNED_URL_BASE),
    }
    root = get_env_str("STOWAGE_FILESYSTEM_ROOT")
    if root:
        values["filesystem_root"] = Path(root)
    public_base_url = get_env_str("STOWAGE_PUBLIC_BASE_URL")
    if public_base_url:
        values["public_base_url"] = public_base_url
    secret = get_env_str("STOWAGE_SIGNING_SECRET")
    if secret:
        values["signing_secret"] = secret
    return StowageSettings(**values)
