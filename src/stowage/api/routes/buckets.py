"""Bucket routes for the Stowage API.

- GET /v1/buckets (listBuckets)
- POST /v1/buckets (createBucket)
- DELETE /v1/buckets/{bucket} (deleteBucket)
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict, Field

from stowage.api.deps import Service
from stowage.models import DEFAULT_FILE_SIZE_LIMIT, BucketOptions

router = APIRouter(prefix="/v1", tags=["Buckets"])


class CreateBucketRequest(BaseModel):
    """Request body for POST /v1/buckets."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1)]
    public: bool = False
    file_size_limit: Annotated[int, Field(ge=0)] = DEFAULT_FILE_SIZE_LIMIT
    allowed_mime_types: list[str] = Field(default_factory=list)


class BucketListResponse(BaseModel):
    """Response for GET /v1/buckets."""

    items: list[dict[str, Any]]


@router.get("/buckets", response_model=BucketListResponse)
async def list_buckets(service: Service) -> BucketListResponse:
    """List all buckets."""
    buckets = await service.list_buckets()
    return BucketListResponse(items=[b.to_dict() for b in buckets])


@router.post("/buckets", status_code=201)
async def create_bucket(body: CreateBucketRequest, service: Service) -> dict[str, Any]:
    """Create a bucket with its policy."""
    options = BucketOptions(
        public=body.public,
        file_size_limit=body.file_size_limit,
        allowed_mime_types=body.allowed_mime_types,
    )
    info = await service.create_bucket(body.name, options)
    return info.to_dict()


@router.delete("/buckets/{bucket}")
async def delete_bucket(
    bucket: str,
    service: Service,
    force: Annotated[bool, Query()] = False,
) -> dict[str, Any]:
    """Delete a bucket; force also deletes its contents."""
    deleted = await service.delete_bucket(bucket, force=force)
    return {"deleted": deleted}
