"""Signed URL routes for the Stowage API.

Serves the capability a signed URL grants, without any other credential:
- GET /v1/signed/{bucket}/{path} (action=read)
- PUT /v1/signed/{bucket}/{path} (action=write; raw body, overwrites)
- DELETE /v1/signed/{bucket}/{path} (action=delete)
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Query, Request, Response

from stowage.api.deps import Service, request_media_type
from stowage.api.errors import StowageHttpError
from stowage.models import DownloadFileRequest, FileRef, SignedUrlAction, UploadFileRequest
from stowage.signing import SignedUrlClaims, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/signed", tags=["Signed URLs"])


def _verify(
    request: Request,
    bucket: str,
    path: str,
    *,
    action: str,
    expires: str,
    signature: str,
    required: SignedUrlAction,
) -> SignedUrlClaims:
    secret: str = request.app.state.signing_secret
    claims = verify_signature(secret, bucket, path, action, expires, signature)
    if claims.action is not required:
        raise StowageHttpError(
            403,
            "ACTION_NOT_GRANTED",
            f"Signed URL grants '{claims.action.value}', not '{required.value}'",
        )
    logger.debug("Signed URL accepted: bucket=%s action=%s", bucket, claims.action.value)
    return claims


@router.get("/{bucket}/{path:path}")
async def signed_download(
    bucket: str,
    path: str,
    request: Request,
    service: Service,
    action: Annotated[str, Query()],
    expires: Annotated[str, Query()],
    signature: Annotated[str, Query()],
) -> Response:
    """Download an object through a read URL."""
    _verify(
        request,
        bucket,
        path,
        action=action,
        expires=expires,
        signature=signature,
        required=SignedUrlAction.READ,
    )
    result = await service.download_file(DownloadFileRequest(bucket=bucket, path=path))
    return Response(content=result.data, media_type=result.content_type)


@router.put("/{bucket}/{path:path}", status_code=201)
async def signed_upload(
    bucket: str,
    path: str,
    request: Request,
    service: Service,
    action: Annotated[str, Query()],
    expires: Annotated[str, Query()],
    signature: Annotated[str, Query()],
) -> dict[str, Any]:
    """Write an object through a write URL; the signed path is used as-is."""
    _verify(
        request,
        bucket,
        path,
        action=action,
        expires=expires,
        signature=signature,
        required=SignedUrlAction.WRITE,
    )
    info = await service.upload_file(
        UploadFileRequest(
            bucket=bucket,
            path=path,
            data=await request.body(),
            content_type=request_media_type(request),
            upsert=True,
            rewrite_path=False,
        )
    )
    return info.to_dict()


@router.delete("/{bucket}/{path:path}")
async def signed_delete(
    bucket: str,
    path: str,
    request: Request,
    service: Service,
    action: Annotated[str, Query()],
    expires: Annotated[str, Query()],
    signature: Annotated[str, Query()],
) -> dict[str, Any]:
    """Delete an object through a delete URL."""
    _verify(
        request,
        bucket,
        path,
        action=action,
        expires=expires,
        signature=signature,
        required=SignedUrlAction.DELETE,
    )
    deleted = await service.delete_file(FileRef(bucket=bucket, path=path))
    return {"deleted": deleted}
