import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ats_api.core.auth import Action, Principal
from ats_api.core.security import authorize, get_access_resolver, get_current_principal
from ats_api.schemas.base import SuccessOut
from ats_api.schemas.integrations import (
    CredentialsSaveRequest,
    IntegrationDisconnectRequest,
    IntegrationSettingsOut,
    IntegrationsOut,
    IntegrationTargetRequest,
    IntegrationToggleRequest,
    MaskedCredentialsOut,
    MeetingProvider,
    PromotedDefaultOut,
)
from ats_api.services.crypto import CredentialDecryptionError, get_credential_cipher, mask_credentials
from ats_api.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)
from ats_api.services.transforms import (
    to_ai_config_view,
    to_domain_record_view,
    to_email_config_view,
    to_integration_view,
    to_meeting_provider_view,
)

router = APIRouter()
logger = logging.getLogger(__name__)

REQUIRED_CREDENTIAL_KEYS = ("client_id", "client_secret")


@router.get("", response_model=IntegrationsOut)
async def list_integrations(
    org_id: str | None = Query(default=None, alias="orgId"),
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> IntegrationsOut:
    decision = await authorize(resolver, principal, org_id=org_id, action=Action.INTEGRATIONS_MANAGE)
    try:
        rows = await repository.list_integrations(decision.org_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return IntegrationsOut(
        integrations=[to_integration_view(row) for row in rows],
        meeting_providers=[to_meeting_provider_view(row) for row in rows if row.get("is_verified")],
    )


@router.get("/settings", response_model=IntegrationSettingsOut)
async def integration_settings(
    org_id: str | None = Query(default=None, alias="orgId"),
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> IntegrationSettingsOut:
    decision = await authorize(resolver, principal, org_id=org_id, action=Action.INTEGRATIONS_MANAGE)
    try:
        ai_rows = await repository.list_ai_configs(decision.org_id)
        email_row = await repository.get_email_config(decision.org_id)
        record_rows = await repository.list_email_domain_records(decision.org_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return IntegrationSettingsOut(
        ai_configs=[to_ai_config_view(row) for row in ai_rows],
        email_config=to_email_config_view(email_row) if email_row else None,
        domain_records=[to_domain_record_view(row) for row in record_rows],
    )


@router.get("/credentials", response_model=MaskedCredentialsOut)
async def get_credentials(
    provider: MeetingProvider = Query(),
    org_id: str = Query(alias="orgId"),
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> MaskedCredentialsOut:
    await authorize(resolver, principal, org_id=org_id, action=Action.INTEGRATION_CREDENTIALS_MANAGE)
    try:
        integration = await repository.get_integration(org_id=org_id, provider=provider)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not integration or not integration.get("credentials_encrypted"):
        return MaskedCredentialsOut(provider=provider)

    try:
        credentials = get_credential_cipher().decrypt_credentials(integration["credentials_encrypted"])
    except (CredentialDecryptionError, ValueError) as exc:
        logger.error("stored credentials unreadable org_id=%s provider=%s: %s", org_id, provider, exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to read credentials") from exc
    return MaskedCredentialsOut(provider=provider, credentials=mask_credentials(credentials))


@router.post("/credentials", response_model=SuccessOut)
async def save_credentials(
    payload: CredentialsSaveRequest,
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> SuccessOut:
    await authorize(resolver, principal, org_id=payload.org_id, action=Action.INTEGRATION_CREDENTIALS_MANAGE)

    missing = [key for key in REQUIRED_CREDENTIAL_KEYS if not payload.credentials.get(key, "").strip()]
    if missing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{', '.join(missing)} required")

    try:
        encrypted = get_credential_cipher().encrypt_credentials(
            {key: value.strip() for key, value in payload.credentials.items()}
        )
    except ValueError as exc:
        logger.error("credential encryption is not configured: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save credentials") from exc

    try:
        await repository.upsert_integration_credentials(
            org_id=payload.org_id,
            provider=payload.provider,
            credentials_encrypted=encrypted,
            actor_user_id=principal.user_id,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info("integration credentials saved org_id=%s provider=%s", payload.org_id, payload.provider)
    return SuccessOut(message=f"{payload.provider} credentials saved")


@router.post("/toggle", response_model=SuccessOut)
async def toggle_integration(
    payload: IntegrationToggleRequest,
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> SuccessOut:
    await authorize(resolver, principal, org_id=payload.org_id, action=Action.INTEGRATIONS_MANAGE)
    try:
        await repository.set_integration_enabled(
            org_id=payload.org_id,
            provider=payload.provider,
            enabled=payload.enabled,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return SuccessOut()


@router.post("/default", response_model=SuccessOut)
async def set_default_provider(
    payload: IntegrationTargetRequest,
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> SuccessOut:
    await authorize(resolver, principal, org_id=payload.org_id, action=Action.INTEGRATIONS_MANAGE)
    try:
        integration = await repository.get_integration(org_id=payload.org_id, provider=payload.provider)
        if not integration:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{payload.provider} integration not found")
        if not integration.get("is_verified") or not integration.get("is_enabled"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Integration must be connected and enabled to be the default",
            )
        await repository.set_default_meeting_provider(org_id=payload.org_id, provider=payload.provider)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return SuccessOut()


@router.delete("", response_model=PromotedDefaultOut)
async def delete_integration(
    payload: IntegrationTargetRequest,
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> PromotedDefaultOut:
    await authorize(resolver, principal, org_id=payload.org_id, action=Action.INTEGRATIONS_MANAGE)
    try:
        promoted = await repository.delete_integration(org_id=payload.org_id, provider=payload.provider)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    if promoted:
        logger.info("default meeting provider promoted org_id=%s provider=%s", payload.org_id, promoted)
    return PromotedDefaultOut(new_default_provider=promoted)


@router.post("/disconnect", response_model=SuccessOut)
async def disconnect_integration(
    payload: IntegrationDisconnectRequest,
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> SuccessOut:
    decision = await authorize(resolver, principal, org_id=None, action=Action.INTEGRATIONS_MANAGE)
    try:
        await repository.clear_integration_tokens(org_id=decision.org_id, provider=payload.provider)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return SuccessOut(message=f"{payload.provider} disconnected")
