"""OpenTelemetry spans for storage adapter operations.

Span attributes are restricted to safe values:
    - bucket names and the SHA256 of object paths, never raw paths
    - never absolute filesystem locations, payloads or signed URLs
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from opentelemetry.trace import Span

from stowage.models import DownloadResult, FileInfo, FileList
from stowage.observability.tracing import get_tracer, is_tracing_enabled

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

_PATH_ARGUMENTS = ("path", "source_path", "destination_path")
_BUCKET_ARGUMENTS = ("bucket", "name", "source_bucket", "destination_bucket")


def path_sha256(path: str) -> str:
    """Return the hex SHA256 of an object path for span correlation."""
    return hashlib.sha256(path.encode("utf-8")).hexdigest()


def traced_adapter_operation(
    operation: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator to trace async adapter methods with OpenTelemetry.

    Emits a "stowage.adapter.<operation>" span when tracing is enabled.

    Args:
        operation: Operation name (e.g., "upload_file", "list_files").
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            if not is_tracing_enabled():
                return await func(*args, **kwargs)

            bound = signature.bind_partial(*args, **kwargs).arguments
            tracer = get_tracer()

            with tracer.start_as_current_span(f"stowage.adapter.{operation}") as span:
                adapter = bound.get("self")
                span.set_attribute("storage.backend", getattr(adapter, "backend_name", "unknown"))
                for name in _BUCKET_ARGUMENTS:
                    value = bound.get(name)
                    if isinstance(value, str):
                        span.set_attribute(f"stowage.{name}", value)
                for name in _PATH_ARGUMENTS:
                    value = bound.get(name)
                    if isinstance(value, str):
                        span.set_attribute(f"stowage.{name}_sha256", path_sha256(value))

                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

                _add_result_attributes(span, result)
                return result

        return wrapper

    return decorator


def _add_result_attributes(span: Span, result: Any) -> None:
    """Add size/content-type/count attributes from an adapter result."""
    if isinstance(result, FileInfo | DownloadResult):
        span.set_attribute("stowage.object_size_bytes", result.size)
        span.set_attribute("stowage.object_content_type", result.content_type)
    elif isinstance(result, FileList):
        span.set_attribute("stowage.file_count", len(result.files))
        span.set_attribute("stowage.has_more", result.has_more)
    elif isinstance(result, list):
        span.set_attribute("stowage.result_count", len(result))
