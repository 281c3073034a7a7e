"""Stowage FastAPI application factory.

This module provides the create_app() factory for the Stowage HTTP surface.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from stowage import __version__
from stowage.api.errors import (
    StowageHttpError,
    generic_exception_handler,
    http_exception_handler,
    request_validation_error_handler,
    storage_error_handler,
    stowage_http_error_handler,
)
from stowage.api.middleware.request_id import RequestIdMiddleware
from stowage.api.routes.buckets import router as buckets_router
from stowage.api.routes.health import router as health_router
from stowage.api.routes.objects import router as objects_router
from stowage.api.routes.signed import router as signed_router
from stowage.config import StowageSettings, load_settings_from_env
from stowage.errors import ObjectStorageError
from stowage.observability.tracing import configure_tracing, instrument_fastapi
from stowage.service import StorageService, create_service

logger = logging.getLogger(__name__)


def create_app(
    service: StorageService | None = None,
    settings: StowageSettings | None = None,
    signing_secret: str | None = None,
) -> FastAPI:
    """Create and configure the Stowage FastAPI application.

    This factory:
    - Builds the StorageService from settings unless one is injected
    - Registers the request ID middleware and tracing instrumentation
    - Registers exception handlers mapping storage errors to HTTP statuses
    - Mounts the health, bucket, object and signed URL routers

    Args:
        service: Optional StorageService for testing. If None, built from settings.
        settings: Optional deployment settings. If None, read from STOWAGE_* env vars.
        signing_secret: Secret the signed URL routes verify against. Must match
            the secret the service's adapter signs with. Defaults to
            settings.signing_secret.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or load_settings_from_env()
    if service is None:
        service = create_service(settings)

    app = FastAPI(
        title="Stowage API",
        description="Backend-agnostic object storage",
        version=__version__,
    )

    app.state.storage_service = service
    app.state.signing_secret = signing_secret or settings.signing_secret

    configure_tracing()

    app.add_middleware(RequestIdMiddleware)

    instrument_fastapi(app)

    @app.on_event("startup")
    async def startup_event() -> None:
        """Load bucket policies persisted by the backend."""
        count = await service.sync_bucket_policies()
        logger.info(
            "Stowage API started: backend=%s buckets=%d",
            service.adapter.backend_name,
            count,
        )

    app.add_exception_handler(ObjectStorageError, storage_error_handler)
    app.add_exception_handler(StowageHttpError, stowage_http_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(buckets_router)
    app.include_router(objects_router)
    app.include_router(signed_router)

    return app
