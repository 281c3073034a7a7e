"""OpenTelemetry tracing configuration for Stowage.

Tracing is off unless explicitly enabled, so library users pay nothing for it.

Environment Variables:
    STOWAGE_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    STOWAGE_REQUIRE_OTEL: Set to "1" to fail startup if tracing cannot initialize
    STOWAGE_OTEL_SERVICE_NAME: Service name for spans (default: "stowage")
    STOWAGE_OTEL_EXPORTER: "console" or "none" (default: "console")
    STOWAGE_OTEL_RESOURCE_ATTRS: Comma-separated k=v pairs for resource attributes
    STOWAGE_OTEL_TEST_CAPTURE: Set to "1" to use in-memory exporter for tests

Span attributes never carry payloads, raw object paths, filesystem
locations or signing secrets.
"""

from __future__ import annotations

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from stowage.config import get_env_bool, get_env_str

logger = logging.getLogger(__name__)

OTEL_ENABLED_ENV = "STOWAGE_OTEL_ENABLED"

_tracer_provider: TracerProvider | None = None
_is_configured: bool = False
_test_exporter: InMemorySpanExporter | None = None


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and STOWAGE_REQUIRE_OTEL=1."""


def is_tracing_enabled() -> bool:
    """Check if OpenTelemetry tracing is enabled."""
    return get_env_bool(OTEL_ENABLED_ENV, False)


def _parse_resource_attrs(attrs_str: str) -> dict[str, str]:
    """Parse comma-separated k=v resource attributes."""
    result: dict[str, str] = {}
    if not attrs_str:
        return result
    for pair in attrs_str.split(","):
        pair = pair.strip()
        if "=" in pair:
            k, v = pair.split("=", 1)
            result[k.strip()] = v.strip()
    return result


def configure_tracing() -> bool:
    """Configure OpenTelemetry tracing for Stowage.

    Idempotent - safe to call multiple times.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If STOWAGE_REQUIRE_OTEL=1 and configuration fails.
    """
    global _tracer_provider, _is_configured, _test_exporter

    enabled = is_tracing_enabled()
    require_otel = get_env_bool("STOWAGE_REQUIRE_OTEL", False)
    test_capture = get_env_bool("STOWAGE_OTEL_TEST_CAPTURE", False)

    if not enabled:
        _is_configured = True
        logger.debug("OpenTelemetry tracing disabled (%s not set)", OTEL_ENABLED_ENV)
        return False

    # The global provider cannot be replaced once set; reuse the capture exporter.
    if _test_exporter is not None and test_capture:
        return True

    if _is_configured and _tracer_provider is not None:
        return True

    _is_configured = True

    service_name = get_env_str("STOWAGE_OTEL_SERVICE_NAME", "stowage")
    exporter_type = get_env_str("STOWAGE_OTEL_EXPORTER", "console")

    try:
        resource_attrs = {"service.name": service_name}
        resource_attrs.update(_parse_resource_attrs(get_env_str("STOWAGE_OTEL_RESOURCE_ATTRS")))
        provider = TracerProvider(resource=Resource.create(resource_attrs))

        if test_capture:
            _test_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
        elif exporter_type == "console":
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        elif exporter_type != "none":
            raise TracingConfigError(f"Unknown exporter type: {exporter_type}")

        trace.set_tracer_provider(provider)
        _tracer_provider = provider
    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if require_otel:
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False

    logger.info(
        "OpenTelemetry tracing configured: service=%s, exporter=%s",
        service_name,
        "in-memory" if test_capture else exporter_type,
    )
    return True


def get_tracer() -> trace.Tracer:
    """Return the tracer used for storage spans."""
    return trace.get_tracer("stowage")


def instrument_fastapi(app: Any) -> None:
    """Instrument FastAPI application with OpenTelemetry.

    Args:
        app: FastAPI application instance.
    """
    if not is_tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
        logger.debug("FastAPI instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


def get_test_spans() -> list[ReadableSpan]:
    """Get captured spans from in-memory exporter (for testing).

    Returns:
        List of captured spans if STOWAGE_OTEL_TEST_CAPTURE=1, else empty list.
    """
    if _test_exporter is not None:
        return list(_test_exporter.get_finished_spans())
    return []


def clear_test_spans() -> None:
    """Clear captured spans from in-memory exporter (for testing)."""
    if _test_exporter is not None:
        _test_exporter.clear()


def reset_tracing() -> None:
    """Reset tracing configuration (for testing).

    The TracerProvider cannot be replaced once set, so the capture exporter
    is kept and only its spans are cleared.
    """
    global _is_configured

    clear_test_spans()
    _is_configured = False
