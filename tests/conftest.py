"""Pytest configuration and fixtures for Stowage tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

import os

import pytest

from stowage.adapters.memory import MemoryAdapter
from stowage.config import StorageServiceConfig
from stowage.service import StorageService

TEST_SIGNING_SECRET = "test-signing-secret"


@pytest.fixture(autouse=True)
def isolate_stowage_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear STOWAGE_* variables so every test starts from the defaults.

    Tests that need a particular backend or tracing mode set the variables
    they care about explicitly.
    """
    for key in list(os.environ):
        if key.startswith("STOWAGE_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def memory_adapter() -> MemoryAdapter:
    """Return an empty in-memory adapter with a fixed signing secret."""
    return MemoryAdapter(signing_secret=TEST_SIGNING_SECRET)


@pytest.fixture
def service(memory_adapter: MemoryAdapter) -> StorageService:
    """Return a service over the memory adapter with path rewriting off."""
    return StorageService(
        memory_adapter,
        StorageServiceConfig(default_bucket="docs", generate_unique_filenames=False),
    )
