"""Object routes for the Stowage API.

- PUT /v1/buckets/{bucket}/objects/{path} (uploadFile; raw body)
- GET /v1/buckets/{bucket}/objects/{path} (downloadFile)
- DELETE /v1/buckets/{bucket}/objects/{path} (deleteFile)
- GET /v1/buckets/{bucket}/objects (listFiles)
- GET /v1/buckets/{bucket}/info/{path} (getFileInfo)
- POST /v1/buckets/{bucket}/copy (copyFile)
- POST /v1/buckets/{bucket}/move (moveFile)
- PATCH /v1/buckets/{bucket}/metadata/{path} (updateMetadata)
- POST /v1/buckets/{bucket}/search (searchFiles)
- GET /v1/buckets/{bucket}/url/{path} (getFileUrl)
- POST /v1/buckets/{bucket}/signed-url/{path} (getSignedUrl)

Upload metadata travels as a JSON object in the X-Object-Metadata header.
"""

from __future__ import annotations

import json
from typing import Annotated, Any

from fastapi import APIRouter, Header, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from stowage.api.deps import Service, request_media_type
from stowage.api.errors import StowageHttpError
from stowage.models import (
    DEFAULT_LIST_LIMIT,
    DEFAULT_SIGNED_URL_EXPIRES_IN,
    MAX_LIST_LIMIT,
    DownloadFileRequest,
    FileRef,
    ListFilesRequest,
    SearchFilesRequest,
    SignedUrlAction,
    SignedUrlRequest,
    SortField,
    TransferFileRequest,
    UpdateMetadataRequest,
    UploadFileRequest,
)

router = APIRouter(prefix="/v1/buckets/{bucket}", tags=["Objects"])

METADATA_HEADER = "X-Object-Metadata"


def parse_metadata_header(raw: str | None) -> dict[str, Any]:
    """Parse the X-Object-Metadata header into a dict."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StowageHttpError(
            400, "INVALID_METADATA_HEADER", f"{METADATA_HEADER} is not valid JSON"
        ) from e
    if not isinstance(parsed, dict):
        raise StowageHttpError(
            400, "INVALID_METADATA_HEADER", f"{METADATA_HEADER} must be a JSON object"
        )
    return parsed


class TransferBody(BaseModel):
    """Request body for copy and move."""

    model_config = ConfigDict(extra="forbid")

    source_path: Annotated[str, Field(min_length=1)]
    destination_bucket: str | None = None
    destination_path: Annotated[str, Field(min_length=1)]
    overwrite: bool = False


class MetadataBody(BaseModel):
    """Request body for PATCH metadata."""

    model_config = ConfigDict(extra="forbid")

    metadata: dict[str, Any]
    merge: bool = True


class SearchBody(BaseModel):
    """Request body for search."""

    model_config = ConfigDict(extra="forbid")

    prefix: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    limit: Annotated[int, Field(ge=1, le=MAX_LIST_LIMIT)] = DEFAULT_LIST_LIMIT
    cursor: str | None = None


class SignedUrlBody(BaseModel):
    """Request body for signed URL issuance."""

    model_config = ConfigDict(extra="forbid")

    expires_in: Annotated[int, Field(gt=0)] = DEFAULT_SIGNED_URL_EXPIRES_IN
    action: SignedUrlAction = SignedUrlAction.READ


@router.put("/objects/{path:path}", status_code=201)
async def upload_object(
    bucket: str,
    path: str,
    request: Request,
    service: Service,
    upsert: Annotated[bool, Query()] = False,
    public: Annotated[bool | None, Query()] = None,
    unique: Annotated[bool, Query()] = False,
    x_object_metadata: Annotated[str | None, Header(alias=METADATA_HEADER)] = None,
) -> dict[str, Any]:
    """Upload the raw request body as an object."""
    body = await request.body()
    info = await service.upload_file(
        UploadFileRequest(
            bucket=bucket,
            path=path,
            data=body,
            content_type=request_media_type(request),
            metadata=parse_metadata_header(x_object_metadata),
            upsert=upsert,
            public=public,
            unique=unique,
        )
    )
    return info.to_dict()


@router.get("/objects/{path:path}")
async def download_object(bucket: str, path: str, service: Service) -> Response:
    """Download an object's raw bytes."""
    result = await service.download_file(DownloadFileRequest(bucket=bucket, path=path))
    return Response(
        content=result.data,
        media_type=result.content_type,
        headers={METADATA_HEADER: json.dumps(result.metadata)},
    )


@router.delete("/objects/{path:path}")
async def delete_object(bucket: str, path: str, service: Service) -> dict[str, Any]:
    """Delete an object."""
    deleted = await service.delete_file(FileRef(bucket=bucket, path=path))
    return {"deleted": deleted}


@router.get("/objects")
async def list_objects(
    bucket: str,
    service: Service,
    prefix: Annotated[str, Query()] = "",
    limit: Annotated[int, Query(ge=1, le=MAX_LIST_LIMIT)] = DEFAULT_LIST_LIMIT,
    cursor: Annotated[str | None, Query()] = None,
    sort_by: Annotated[SortField, Query()] = SortField.NAME,
    sort_descending: Annotated[bool, Query()] = False,
) -> dict[str, Any]:
    """List objects one page at a time."""
    page = await service.list_files(
        ListFilesRequest(
            bucket=bucket,
            prefix=prefix,
            limit=limit,
            cursor=cursor,
            sort_by=sort_by,
            sort_descending=sort_descending,
        )
    )
    return page.to_dict()


@router.get("/info/{path:path}")
async def get_object_info(bucket: str, path: str, service: Service) -> dict[str, Any]:
    """Return an object descriptor."""
    info = await service.get_file_info(FileRef(bucket=bucket, path=path))
    return info.to_dict()


@router.post("/copy", status_code=201)
async def copy_object(bucket: str, body: TransferBody, service: Service) -> dict[str, Any]:
    """Copy an object, possibly into another bucket."""
    info = await service.copy_file(
        TransferFileRequest(source_bucket=bucket, **body.model_dump())
    )
    return info.to_dict()


@router.post("/move")
async def move_object(bucket: str, body: TransferBody, service: Service) -> dict[str, Any]:
    """Move an object, possibly into another bucket."""
    info = await service.move_file(
        TransferFileRequest(source_bucket=bucket, **body.model_dump())
    )
    return info.to_dict()


@router.patch("/metadata/{path:path}")
async def update_object_metadata(
    bucket: str, path: str, body: MetadataBody, service: Service
) -> dict[str, Any]:
    """Merge or replace an object's user metadata."""
    metadata = await service.update_metadata(
        UpdateMetadataRequest(bucket=bucket, path=path, metadata=body.metadata, merge=body.merge)
    )
    return {"metadata": metadata}


@router.post("/search")
async def search_objects(bucket: str, body: SearchBody, service: Service) -> dict[str, Any]:
    """Search objects by prefix and exact metadata matches."""
    page = await service.search_files(SearchFilesRequest(bucket=bucket, **body.model_dump()))
    return page.to_dict()


@router.get("/url/{path:path}")
async def get_object_url(bucket: str, path: str, service: Service) -> dict[str, str]:
    """Return the public URL of a public object."""
    url = await service.get_file_url(FileRef(bucket=bucket, path=path))
    return {"url": url}


@router.post("/signed-url/{path:path}")
async def create_signed_url(
    bucket: str, path: str, body: SignedUrlBody, service: Service
) -> dict[str, Any]:
    """Issue a time-limited URL for one object."""
    url = await service.get_signed_url(
        SignedUrlRequest(
            bucket=bucket, path=path, expires_in=body.expires_in, action=body.action
        )
    )
    return {"url": url, "expires_in": body.expires_in, "action": body.action.value}
