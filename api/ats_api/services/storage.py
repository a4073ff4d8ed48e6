from __future__ import annotations

import logging
from functools import lru_cache
from urllib.parse import quote

import httpx

from ats_api.core.config import get_settings

logger = logging.getLogger(__name__)

PUBLIC_BUCKETS = frozenset({"organization-assets"})
PRIVATE_BUCKETS = frozenset({"resumes", "documents", "attachments"})
ALLOWED_BUCKETS = PUBLIC_BUCKETS | PRIVATE_BUCKETS


class StorageError(Exception):
    """Raised when the object store rejects or fails a request."""


class StorageUnavailableError(StorageError):
    """Raised when object storage is not configured."""


class SupabaseStorage:
    def __init__(self, base_url: str | None, service_key: str | None, timeout_seconds: float) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.service_key = service_key
        self.timeout_seconds = timeout_seconds

    async def upload(self, *, bucket: str, path: str, content: bytes, content_type: str) -> str:
        base_url = self._require_base_url()
        url = f"{base_url}/storage/v1/object/{bucket}/{_quote_path(path)}"
        headers = self._headers() | {"Content-Type": content_type or "application/octet-stream", "x-upsert": "true"}
        response = await self._send("POST", url, headers=headers, content=content)
        if response.status_code >= 400:
            logger.error("storage upload failed bucket=%s status=%s body=%s", bucket, response.status_code, response.text)
            raise StorageError(f"upload failed with status {response.status_code}")
        return path

    def public_url(self, *, bucket: str, path: str) -> str:
        return f"{self._require_base_url()}/storage/v1/object/public/{bucket}/{_quote_path(path)}"

    async def create_signed_url(self, *, bucket: str, path: str, expires_in: int) -> str:
        base_url = self._require_base_url()
        url = f"{base_url}/storage/v1/object/sign/{bucket}/{_quote_path(path)}"
        response = await self._send("POST", url, headers=self._headers(), json={"expiresIn": expires_in})
        if response.status_code == 404:
            raise StorageError("object not found")
        if response.status_code >= 400:
            logger.error("signed url failed bucket=%s status=%s body=%s", bucket, response.status_code, response.text)
            raise StorageError(f"signing failed with status {response.status_code}")

        signed_path = response.json().get("signedURL")
        if not isinstance(signed_path, str) or not signed_path:
            raise StorageError("storage returned no signed URL")
        return f"{base_url}/storage/v1{signed_path}"

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:  # pragma: no cover - network dependent
            raise StorageError("object storage unavailable") from exc

    def _require_base_url(self) -> str:
        if not self.base_url or not self.service_key:
            raise StorageUnavailableError("Supabase storage is not configured")
        return self.base_url

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key or "",
        }


def _quote_path(path: str) -> str:
    return quote(path.lstrip("/"), safe="/")


@lru_cache
def get_storage() -> SupabaseStorage:
    settings = get_settings()
    return SupabaseStorage(
        base_url=settings.supabase_url,
        service_key=settings.supabase_service_role_key,
        timeout_seconds=settings.storage_timeout_seconds,
    )
