import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status

from ats_api.core.auth import Action, Principal
from ats_api.core.config import Settings, get_settings
from ats_api.core.security import authorize, get_access_resolver, get_current_principal
from ats_api.schemas.billing import CheckoutOut, CheckoutRequest, TiersOut
from ats_api.services.billing import (
    BillingError,
    BillingNotConfiguredError,
    StripeClient,
    WebhookSignatureError,
    apply_stripe_event,
    verify_webhook_event,
)
from ats_api.services.repository import RepositoryError, RepositoryUnavailableError, get_repository
from ats_api.services.transforms import to_subscription_tier_view

public_router = APIRouter()
router = APIRouter()
logger = logging.getLogger(__name__)

TIERS_CACHE_CONTROL = "public, max-age=300, stale-while-revalidate=600"


@public_router.get("/tiers", response_model=TiersOut)
async def list_tiers(response: Response, repository=Depends(get_repository)) -> TiersOut:
    response.headers["Cache-Control"] = TIERS_CACHE_CONTROL
    try:
        rows = await repository.list_subscription_tiers()
    except RepositoryError:
        # The pricing page renders without tiers rather than failing.
        logger.exception("failed to load subscription tiers")
        return TiersOut(tiers=[])
    return TiersOut(tiers=[to_subscription_tier_view(row) for row in rows])


async def _configured_secret(repository, configured: str | None, setting_key: str) -> str | None:
    # Environment configuration wins over the value stored in platform_settings.
    if configured:
        return configured
    try:
        stored = await repository.get_platform_setting(setting_key)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return stored if isinstance(stored, str) and stored else None


async def get_stripe_client(
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> StripeClient:
    secret_key = await _configured_secret(repository, settings.stripe_secret_key, "stripe_secret_key")
    return StripeClient(secret_key=secret_key, api_base=settings.stripe_api_base)


@router.post("/checkout", response_model=CheckoutOut)
async def create_checkout(
    payload: CheckoutRequest,
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
    stripe: StripeClient = Depends(get_stripe_client),
    settings: Settings = Depends(get_settings),
) -> CheckoutOut:
    await authorize(resolver, principal, org_id=payload.org_id, action=Action.BILLING_MANAGE)
    try:
        org = await repository.get_organization(payload.org_id)
        if not org:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
        tier = await repository.get_subscription_tier(payload.tier_id)
        if not tier:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription tier not found")

        customer_id = org.get("stripe_customer_id")
        if not customer_id:
            customer_id = await stripe.create_customer(name=org.get("name") or "", org_id=org["id"], org_slug=org.get("slug"))
            await repository.set_stripe_customer_id(org_id=org["id"], customer_id=customer_id)

        session = await stripe.create_checkout_session(
            customer_id=customer_id,
            org_id=org["id"],
            tier=tier,
            billing_cycle=payload.billing_cycle,
            return_base_url=settings.app_base_url.rstrip("/"),
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except BillingNotConfiguredError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except BillingError as exc:
        logger.error("checkout session failed org_id=%s tier_id=%s: %s", payload.org_id, payload.tier_id, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to create checkout session") from exc

    logger.info("checkout session created org_id=%s tier_id=%s cycle=%s", org["id"], tier["id"], payload.billing_cycle)
    return CheckoutOut(url=session["url"], session_id=session["id"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> dict[str, bool]:
    secret = await _configured_secret(repository, settings.stripe_webhook_secret, "stripe_webhook_secret")
    if not secret:
        logger.error("stripe webhook received but no signing secret is configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Stripe webhook is not configured"
        )

    payload = await request.body()
    try:
        event = verify_webhook_event(payload, stripe_signature, secret)
    except WebhookSignatureError as exc:
        logger.warning("stripe webhook signature rejected: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature") from exc

    try:
        await apply_stripe_event(repository, event)
    except RepositoryError as exc:
        logger.exception("stripe webhook processing failed event_id=%s type=%s", event.get("id"), event.get("type"))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook processing failed"
        ) from exc
    return {"received": True}
