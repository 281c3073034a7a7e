"""Metadata preparation, sanitization and validation.

Metadata is a flat JSON map. Keys in ``reserved_keys`` belong to the system:
callers can never set them, and on every write path the system-computed
values overwrite whatever the caller supplied.

Precedence in prepare_metadata is strictly:
    default_metadata < sanitized user metadata < system metadata
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_RESERVED_KEYS: tuple[str, ...] = ("contentType", "size", "createdAt", "updatedAt")

MetadataType = Literal["string", "number", "boolean", "object", "array"]


class MetadataSchema(BaseModel):
    """Validation rules for user metadata.

    Each clause is optional; an absent clause accepts anything for that aspect.

    Attributes:
        required: Keys that must be present.
        types: Key -> expected JSON type.
        patterns: Key -> regular expression; applied to string values only.
        validators: Key -> predicate returning True, or an error string, or raising.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    required: list[str] = Field(default_factory=list)
    types: dict[str, MetadataType] = Field(default_factory=dict)
    patterns: dict[str, re.Pattern[str]] = Field(default_factory=dict)
    validators: dict[str, Callable[[Any], Any]] = Field(default_factory=dict)


@dataclass(frozen=True)
class MetadataValidationResult:
    """Outcome of validate_metadata; error is None when valid."""

    valid: bool
    error: str | None = None


def _matches_type(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        # bool is an int subclass but never a JSON number
        return isinstance(value, int | float) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "object":
        return isinstance(value, Mapping)
    if expected == "array":
        return isinstance(value, list | tuple)
    return True


def _identity(value: Any) -> Any:
    return value


class MetadataManager:
    """Prepares and validates object metadata.

    Args:
        reserved_keys: System-owned keys callers may never set.
        default_metadata: Baseline applied under every object's metadata.
        sanitize_key: Applied to every surviving user key.
        sanitize_value: Applied to every surviving user value.
    """

    def __init__(
        self,
        reserved_keys: Iterable[str] = DEFAULT_RESERVED_KEYS,
        default_metadata: Mapping[str, Any] | None = None,
        sanitize_key: Callable[[str], str] | None = None,
        sanitize_value: Callable[[Any], Any] | None = None,
    ) -> None:
        self._reserved_keys = frozenset(reserved_keys)
        self._default_metadata = dict(default_metadata or {})
        self._sanitize_key = sanitize_key or _identity
        self._sanitize_value = sanitize_value or _identity

    @property
    def reserved_keys(self) -> frozenset[str]:
        """Return the system-reserved keys."""
        return self._reserved_keys

    def sanitize_metadata(self, metadata: Mapping[str, Any] | None) -> dict[str, Any]:
        """Drop reserved keys, then sanitize the remaining keys and values."""
        sanitized: dict[str, Any] = {}
        for key, value in (metadata or {}).items():
            if key in self._reserved_keys:
                continue
            clean_key = self._sanitize_key(key)
            if clean_key in self._reserved_keys:
                continue
            sanitized[clean_key] = self._sanitize_value(value)
        return sanitized

    def prepare_metadata(
        self,
        metadata: Mapping[str, Any] | None = None,
        system_metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Merge defaults, sanitized user metadata and system metadata."""
        return {
            **self._default_metadata,
            **self.sanitize_metadata(metadata),
            **(system_metadata or {}),
        }

    def filter_public_metadata(
        self,
        metadata: Mapping[str, Any] | None,
        public_keys: Iterable[str] | None,
    ) -> dict[str, Any]:
        """Project metadata onto an explicit allow-list (empty list -> {})."""
        source = metadata or {}
        return {key: source[key] for key in (public_keys or ()) if key in source}

    def extract_system_metadata(self, metadata: Mapping[str, Any] | None) -> dict[str, Any]:
        """Return only the reserved keys."""
        return {k: v for k, v in (metadata or {}).items() if k in self._reserved_keys}

    def extract_user_metadata(self, metadata: Mapping[str, Any] | None) -> dict[str, Any]:
        """Return everything except the reserved keys."""
        return {k: v for k, v in (metadata or {}).items() if k not in self._reserved_keys}

    def validate_metadata(
        self,
        metadata: Mapping[str, Any] | None,
        schema: MetadataSchema | Mapping[str, Any] | None,
    ) -> MetadataValidationResult:
        """Validate metadata against a schema, stopping at the first failure.

        Clauses are checked in order: required, types, patterns, validators.
        """
        if schema is None:
            return MetadataValidationResult(valid=True)
        if not isinstance(schema, MetadataSchema):
            schema = MetadataSchema.model_validate(schema)

        values = metadata or {}

        for key in schema.required:
            if key not in values:
                return MetadataValidationResult(
                    valid=False, error=f"Missing required metadata field: {key}"
                )

        for key, expected in schema.types.items():
            if key in values and not _matches_type(values[key], expected):
                article = "an" if expected[0] in "aeiou" else "a"
                return MetadataValidationResult(
                    valid=False, error=f"Metadata field {key} must be {article} {expected}"
                )

        for key, pattern in schema.patterns.items():
            value = values.get(key)
            if isinstance(value, str) and not pattern.search(value):
                return MetadataValidationResult(
                    valid=False, error=f"Metadata field {key} does not match required pattern"
                )

        for key, validator in schema.validators.items():
            if key not in values:
                continue
            default_error = f"Metadata field {key} failed validation"
            try:
                outcome = validator(values[key])
            except Exception as e:
                return MetadataValidationResult(valid=False, error=str(e) or default_error)
            if outcome is not True:
                error = outcome if isinstance(outcome, str) and outcome else default_error
                return MetadataValidationResult(valid=False, error=error)

        return MetadataValidationResult(valid=True)
