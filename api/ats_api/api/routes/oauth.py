import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from ats_api.core.auth import Action, Principal
from ats_api.core.config import Settings, get_settings
from ats_api.core.security import authorize, get_access_resolver, get_current_principal, get_optional_principal
from ats_api.core.telemetry import record_access_decision
from ats_api.schemas.integrations import MeetingProvider
from ats_api.services.crypto import CredentialDecryptionError, get_credential_cipher
from ats_api.services.oauth import (
    DEFAULT_REDIRECT,
    OAuthError,
    OAuthState,
    OAuthStateError,
    build_authorization_url,
    exchange_code,
    get_provider,
    safe_redirect_path,
)
from ats_api.services.repository import RepositoryError, RepositoryUnavailableError, get_repository
from ats_api.services.transforms import coerce_json_dict

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/connect")
async def connect(
    request: Request,
    provider: MeetingProvider = Query(),
    redirect: str | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> RedirectResponse:
    decision = await authorize(resolver, principal, org_id=None, action=Action.INTEGRATIONS_MANAGE)
    try:
        integration = await repository.get_integration(org_id=decision.org_id, provider=provider)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not integration or not integration.get("credentials_encrypted"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{provider} credentials have not been configured for this organization",
        )
    credentials = _decrypt_or_500(integration["credentials_encrypted"])

    state = OAuthState(
        user_id=principal.user_id,
        org_id=decision.org_id,
        provider=provider,
        redirect_to=safe_redirect_path(redirect),
    )
    try:
        url = build_authorization_url(
            get_provider(provider),
            credentials=credentials,
            callback_url=_callback_url(request),
            state=state,
        )
    except OAuthError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.get("/callback", name="oauth_callback")
async def callback(
    request: Request,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    principal: Principal | None = Depends(get_optional_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    # The provider sends the browser here; a lost session goes back through login.
    if principal is None:
        return _redirect(settings, "/login")
    if error:
        return _redirect(settings, DEFAULT_REDIRECT, error=error)
    if not code or not state:
        return _redirect(settings, DEFAULT_REDIRECT, error="missing_code")

    try:
        oauth_state = OAuthState.decode(state)
    except OAuthStateError:
        return _redirect(settings, DEFAULT_REDIRECT, error="invalid_state")

    if oauth_state.user_id != principal.user_id or not oauth_state.org_id or not oauth_state.provider:
        logger.warning("oauth state mismatch user_id=%s", principal.user_id)
        return _redirect(settings, DEFAULT_REDIRECT, error="invalid_state")

    try:
        decision = await resolver.resolve(
            user_id=principal.user_id, organization_id=oauth_state.org_id, action=Action.INTEGRATIONS_MANAGE
        )
    except RepositoryUnavailableError:
        logger.exception("oauth callback could not check access org_id=%s", oauth_state.org_id)
        return _redirect(settings, oauth_state.redirect_to, error="connection_failed")
    record_access_decision(Action.INTEGRATIONS_MANAGE, decision)
    if not decision.authorized:
        logger.warning(
            "oauth callback denied user_id=%s org_id=%s reason=%s",
            principal.user_id,
            oauth_state.org_id,
            decision.reason,
        )
        return _redirect(settings, oauth_state.redirect_to, error="forbidden")

    try:
        provider = get_provider(oauth_state.provider)
        integration = await repository.get_integration(org_id=oauth_state.org_id, provider=provider.name)
        if not integration or not integration.get("credentials_encrypted"):
            return _redirect(settings, oauth_state.redirect_to, error="not_configured")

        credentials = get_credential_cipher().decrypt_credentials(integration["credentials_encrypted"])
        tokens = await exchange_code(
            provider,
            code=code,
            credentials=credentials,
            callback_url=_callback_url(request),
            timeout_seconds=settings.oauth_timeout_seconds,
        )
        await repository.store_integration_tokens(
            org_id=oauth_state.org_id,
            provider=provider.name,
            provider_metadata=tokens.to_metadata(
                coerce_json_dict(integration.get("provider_metadata")), connected_by=principal.user_id
            ),
            actor_user_id=principal.user_id,
        )
    except (OAuthError, CredentialDecryptionError, RepositoryError, ValueError):
        logger.exception("oauth callback failed provider=%s org_id=%s", oauth_state.provider, oauth_state.org_id)
        return _redirect(settings, oauth_state.redirect_to, error="connection_failed")

    logger.info("oauth connected provider=%s org_id=%s", provider.name, oauth_state.org_id)
    return _redirect(settings, oauth_state.redirect_to, connected=provider.name)


def _callback_url(request: Request) -> str:
    return str(request.url_for("oauth_callback"))


def _redirect(settings: Settings, path: str, **params: str) -> RedirectResponse:
    target = f"{settings.app_base_url.rstrip('/')}{path}"
    if params:
        separator = "&" if "?" in path else "?"
        target = f"{target}{separator}{urlencode(params)}"
    return RedirectResponse(target, status_code=status.HTTP_307_TEMPORARY_REDIRECT)



def _decrypt_or_500(encrypted: str) -> dict[str, str]:
    try:
        return get_credential_cipher().decrypt_credentials(encrypted)
    except (CredentialDecryptionError, ValueError) as exc:
        logger.error("stored integration credentials could not be decrypted: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stored credentials could not be read; save them again",
        ) from exc
