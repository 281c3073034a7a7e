"""Request-scoped dependencies for Stowage API routes."""

from typing import Annotated

from fastapi import Depends, Request

from stowage.service import StorageService


def get_storage_service(request: Request) -> StorageService:
    """Return the StorageService attached to the application."""
    service: StorageService = request.app.state.storage_service
    return service


Service = Annotated[StorageService, Depends(get_storage_service)]


def request_media_type(request: Request) -> str | None:
    """Return the request's Content-Type without parameters such as charset."""
    media_type = request.headers.get("content-type", "").split(";")[0].strip()
    return media_type or None
