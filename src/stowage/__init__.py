"""Stowage - backend-agnostic object storage.

The StorageService validates requests, enforces bucket policy, resolves
content types and collision-safe paths, then delegates to a StorageAdapter
(in-memory or local filesystem). The same service backs the FastAPI app in
stowage.api.main and the CLI in stowage.cli.
"""

__version__ = "0.4.0"
