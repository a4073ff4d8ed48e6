"""Organization-level OAuth for calendar and meeting providers.

The organization's own client credentials (stored encrypted) drive the flow.
The ``state`` parameter is base64-encoded JSON carrying who started the flow and
where to send them afterwards. Token exchange is a single attempt.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT = "/org/settings/integrations"


class OAuthError(Exception):
    """Raised when an OAuth step fails."""


class OAuthStateError(OAuthError):
    """Raised when the state parameter cannot be decoded."""


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    name: str
    authorize_url: str
    token_url: str
    profile_url: str
    scopes: tuple[str, ...] = ()
    basic_auth: bool = False
    extra_authorize_params: tuple[tuple[str, str], ...] = ()
    email_keys: tuple[str, ...] = ("email",)


PROVIDERS: dict[str, ProviderConfig] = {
    "google": ProviderConfig(
        name="google",
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        profile_url="https://www.googleapis.com/oauth2/v2/userinfo",
        scopes=(
            "https://www.googleapis.com/auth/calendar",
            "https://www.googleapis.com/auth/calendar.events",
        ),
        extra_authorize_params=(("access_type", "offline"), ("prompt", "consent")),
    ),
    "zoom": ProviderConfig(
        name="zoom",
        authorize_url="https://zoom.us/oauth/authorize",
        token_url="https://zoom.us/oauth/token",
        profile_url="https://api.zoom.us/v2/users/me",
        basic_auth=True,
    ),
    "microsoft": ProviderConfig(
        name="microsoft",
        authorize_url="https://login.microsoftonline.com/{tenant}/oauth2/v2.0/authorize",
        token_url="https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token",
        profile_url="https://graph.microsoft.com/v1.0/me",
        scopes=(
            "https://graph.microsoft.com/Calendars.ReadWrite",
            "https://graph.microsoft.com/OnlineMeetings.ReadWrite",
            "offline_access",
        ),
        extra_authorize_params=(("response_mode", "query"),),
        email_keys=("mail", "userPrincipalName"),
    ),
}


@dataclass(slots=True)
class OAuthState:
    user_id: str
    redirect_to: str
    org_id: str | None = None
    provider: str | None = None

    def encode(self) -> str:
        payload: dict[str, str] = {"userId": self.user_id, "redirectTo": self.redirect_to}
        if self.org_id:
            payload["orgId"] = self.org_id
        if self.provider:
            payload["provider"] = self.provider
        return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, raw: str) -> "OAuthState":
        try:
            payload = json.loads(base64.b64decode(raw, validate=True).decode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise OAuthStateError("invalid state") from exc
        if not isinstance(payload, dict):
            raise OAuthStateError("invalid state")

        user_id = payload.get("userId")
        if not isinstance(user_id, str) or not user_id:
            raise OAuthStateError("state is missing userId")
        org_id = payload.get("orgId")
        provider = payload.get("provider")
        return cls(
            user_id=user_id,
            redirect_to=safe_redirect_path(payload.get("redirectTo")),
            org_id=org_id if isinstance(org_id, str) and org_id else None,
            provider=provider if isinstance(provider, str) and provider else None,
        )


@dataclass(slots=True)
class TokenSet:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    email: str | None = None

    def to_metadata(self, existing: dict[str, Any] | None, *, connected_by: str) -> dict[str, Any]:
        previous = dict(existing or {})
        expiry_ms = int((time.time() + self.expires_in) * 1000) if self.expires_in else None
        return previous | {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token or previous.get("refresh_token"),
            "expiry_date": expiry_ms,
            "email": self.email or previous.get("email"),
            "connected_at": datetime.now(timezone.utc).isoformat(),
            "connected_by": connected_by,
        }


def safe_redirect_path(value: Any) -> str:
    """Only same-site absolute paths are honoured; anything else falls back."""
    if not isinstance(value, str):
        return DEFAULT_REDIRECT
    candidate = value.strip()
    if not candidate.startswith("/") or candidate.startswith("//") or "\\" in candidate:
        return DEFAULT_REDIRECT
    return candidate


def get_provider(name: str) -> ProviderConfig:
    try:
        return PROVIDERS[name]
    except KeyError as exc:
        raise OAuthError(f"Provider not supported: {name}") from exc


def build_authorization_url(
    provider: ProviderConfig,
    *,
    credentials: dict[str, str],
    callback_url: str,
    state: OAuthState,
) -> str:
    client_id = credentials.get("client_id")
    if not client_id:
        raise OAuthError(f"{provider.name} credentials are missing client_id")

    params: list[tuple[str, str]] = [
        ("client_id", client_id),
        ("redirect_uri", callback_url),
        ("response_type", "code"),
    ]
    if provider.scopes:
        params.append(("scope", " ".join(provider.scopes)))
    params.extend(provider.extra_authorize_params)
    params.append(("state", state.encode()))
    return f"{_resolve_url(provider.authorize_url, credentials)}?{urlencode(params)}"


async def exchange_code(
    provider: ProviderConfig,
    *,
    code: str,
    credentials: dict[str, str],
    callback_url: str,
    timeout_seconds: float,
) -> TokenSet:
    form = {
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": callback_url,
    }
    auth: tuple[str, str] | None = None
    if provider.basic_auth:
        auth = (credentials.get("client_id", ""), credentials.get("client_secret", ""))
    else:
        form["client_id"] = credentials.get("client_id", "")
        form["client_secret"] = credentials.get("client_secret", "")
    if provider.scopes and provider.name == "microsoft":
        form["scope"] = " ".join(provider.scopes)

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.post(_resolve_url(provider.token_url, credentials), data=form, auth=auth)
            if response.status_code != 200:
                raise OAuthError(f"{provider.name} token exchange failed: {response.text}")
            data = response.json()
            access_token = data.get("access_token")
            if not isinstance(access_token, str) or not access_token:
                raise OAuthError(f"{provider.name} token response has no access_token")

            email = await _fetch_account_email(client, provider, access_token)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise OAuthError(f"{provider.name} token exchange unavailable") from exc

    expires_in = data.get("expires_in")
    return TokenSet(
        access_token=access_token,
        refresh_token=data.get("refresh_token"),
        expires_in=int(expires_in) if isinstance(expires_in, (int, float)) else None,
        email=email,
    )


async def _fetch_account_email(client: httpx.AsyncClient, provider: ProviderConfig, access_token: str) -> str | None:
    # The account email is display-only; a failed lookup keeps the connection.
    try:
        response = await client.get(provider.profile_url, headers={"Authorization": f"Bearer {access_token}"})
    except httpx.HTTPError:
        logger.warning("account email lookup failed provider=%s", provider.name)
        return None
    if response.status_code != 200:
        return None
    profile = response.json()
    for key in provider.email_keys:
        value = profile.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _resolve_url(template: str, credentials: dict[str, str]) -> str:
    return template.format(tenant=credentials.get("tenant_id") or "common")
