import logging
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, Request, status

from ats_api.core.auth import AccessDecision, Principal
from ats_api.core.config import Settings, get_settings
from ats_api.core.telemetry import record_access_decision
from ats_api.services.access import AccessControlResolver
from ats_api.services.repository import RepositoryUnavailableError, get_repository
from ats_api.services.subscription import (
    RESTRICTED_MESSAGE,
    SUBSCRIPTION_INACTIVE_CODE,
    check_subscription_access,
)

logger = logging.getLogger(__name__)

UNAUTHORIZED = "Unauthorized"


async def get_current_principal(
    request: Request,
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    token = _extract_token(authorization, request.cookies.get(settings.session_cookie_name))
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)

    email = user.get("email")
    return Principal(user_id=user_id, email=email if isinstance(email, str) else None)


async def get_optional_principal(
    request: Request,
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal | None:
    """Like get_current_principal, but a missing or rejected session yields None."""
    try:
        return await get_current_principal(request, settings, authorization)
    except HTTPException as exc:
        if exc.status_code != status.HTTP_401_UNAUTHORIZED:
            raise
        return None


def get_access_resolver(repository=Depends(get_repository)) -> AccessControlResolver:
    return AccessControlResolver(repository)


async def authorize(
    resolver: AccessControlResolver,
    principal: Principal,
    *,
    org_id: str | None,
    action: str,
) -> AccessDecision:
    try:
        decision = await resolver.resolve(user_id=principal.user_id, organization_id=org_id, action=action)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    record_access_decision(action, decision)

    if not decision.authorized:
        logger.info(
            "access denied user_id=%s org_id=%s action=%s reason=%s",
            principal.user_id,
            org_id,
            action,
            decision.reason,
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.reason or "Not authorized")
    return decision


def _extract_token(authorization: str | None, cookie_token: str | None) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", maxsplit=1)[1].strip()
        if token:
            return token
    if cookie_token and cookie_token.strip():
        return cookie_token.strip()
    return None


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )

    return response.json()


async def require_active_subscription(repository, decision: AccessDecision) -> None:
    try:
        access = await check_subscription_access(
            repository, roles=decision.roles or {decision.role}, org_id=decision.org_id
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not access.allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "Access restricted",
                "message": RESTRICTED_MESSAGE,
                "code": SUBSCRIPTION_INACTIVE_CODE,
            },
        )
