"""Stowage storage adapters.

Provides the StorageAdapter contract and its implementations:
- MemoryAdapter: in-process dicts (tests, development)
- FilesystemAdapter: local directory tree
"""

from __future__ import annotations

from stowage.adapters.base import StorageAdapter
from stowage.adapters.filesystem import FilesystemAdapter
from stowage.adapters.memory import MemoryAdapter
from stowage.config import StowageSettings


def create_adapter(settings: StowageSettings) -> StorageAdapter:
    """Create the adapter selected by deployment settings."""
    if settings.backend == "filesystem":
        return FilesystemAdapter(
            settings.filesystem_root,
            public_base_url=settings.public_base_url,
            signing_secret=settings.signing_secret,
            signed_url_base=settings.signed_url_base,
        )
    return MemoryAdapter(
        signing_secret=settings.signing_secret,
        signed_url_base=settings.signed_url_base,
    )


__all__ = ["FilesystemAdapter", "MemoryAdapter", "StorageAdapter", "create_adapter"]
