import logging
import re
import time

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from ats_api.core.auth import Action, Principal
from ats_api.core.config import Settings, get_settings
from ats_api.core.security import (
    authorize,
    get_access_resolver,
    get_current_principal,
    require_active_subscription,
)
from ats_api.schemas.storage import SignedUrlOut, SignedUrlRequest, UploadOut
from ats_api.services.repository import get_repository
from ats_api.services.storage import (
    ALLOWED_BUCKETS,
    PUBLIC_BUCKETS,
    StorageError,
    StorageUnavailableError,
    get_storage,
)

router = APIRouter()
logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@router.post("/upload", response_model=UploadOut, response_model_exclude_none=True)
async def upload(
    file: UploadFile = File(),
    bucket: str = Form(),
    folder: str | None = Form(default=None),
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
    storage=Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> UploadOut:
    if bucket not in ALLOWED_BUCKETS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid bucket")

    decision = await authorize(resolver, principal, org_id=None, action=Action.DOCUMENTS_UPLOAD)
    await require_active_subscription(repository, decision)

    content_type = file.content_type or "application/octet-stream"
    if bucket in PUBLIC_BUCKETS and not content_type.startswith("image/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only image files are allowed")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is empty")
    if len(content) > settings.upload_max_bytes:
        limit_mb = settings.upload_max_bytes // (1024 * 1024)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File size must be less than {limit_mb}MB")

    path = build_object_path(decision.org_id, folder, file.filename)
    try:
        await storage.upload(bucket=bucket, path=path, content=content, content_type=content_type)
        if bucket in PUBLIC_BUCKETS:
            return UploadOut(path=path, bucket=bucket, public_url=storage.public_url(bucket=bucket, path=path))
        signed_url = await storage.create_signed_url(
            bucket=bucket,
            path=path,
            expires_in=settings.signed_url_ttl_seconds,
        )
    except StorageUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except StorageError as exc:
        logger.error("upload failed bucket=%s path=%s: %s", bucket, path, exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Upload failed") from exc

    return UploadOut(path=path, bucket=bucket, signed_url=signed_url)


@router.post("/signed-url", response_model=SignedUrlOut)
async def signed_url(
    payload: SignedUrlRequest,
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
    storage=Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> SignedUrlOut:
    if payload.bucket not in ALLOWED_BUCKETS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid bucket")

    segments = payload.path.strip("/").split("/")
    if len(segments) < 2 or any(segment in {"", ".", ".."} for segment in segments):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid path")

    # Objects are stored under "<org_id>/..."; the prefix decides whose documents these are.
    decision = await authorize(resolver, principal, org_id=segments[0], action=Action.DOCUMENTS_ACCESS)
    await require_active_subscription(repository, decision)

    try:
        url = await storage.create_signed_url(
            bucket=payload.bucket,
            path="/".join(segments),
            expires_in=settings.signed_url_ttl_seconds,
        )
    except StorageUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found") from exc

    return SignedUrlOut(signed_url=url, expires_in=settings.signed_url_ttl_seconds)


def build_object_path(org_id: str, folder: str | None, filename: str | None) -> str:
    parts = [org_id]
    for segment in (folder or "").split("/"):
        cleaned = _UNSAFE_NAME_CHARS.sub("-", segment).strip(".-")
        if cleaned:
            parts.append(cleaned)
    name = _UNSAFE_NAME_CHARS.sub("-", filename or "file").strip(".-") or "file"
    parts.append(f"{int(time.time() * 1000)}-{name}")
    return "/".join(parts)
