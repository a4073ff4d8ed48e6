from fastapi import APIRouter, Depends, HTTPException, Query, status

from ats_api.core.auth import Action, Principal
from ats_api.core.security import authorize, get_access_resolver, get_current_principal
from ats_api.schemas.billing import GateOut, OrganizationSubscriptionOut
from ats_api.services.repository import RepositoryUnavailableError, get_repository
from ats_api.services.subscription import evaluate_gate, get_subscription_status
from ats_api.services.transforms import to_subscription_tier_view

router = APIRouter()


@router.get("", response_model=OrganizationSubscriptionOut)
async def get_subscription(
    org_id: str | None = Query(default=None, alias="orgId"),
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> OrganizationSubscriptionOut:
    decision = await authorize(resolver, principal, org_id=org_id, action=Action.SUBSCRIPTION_VIEW)
    try:
        org = await repository.get_organization(decision.org_id)
        tiers = await repository.list_subscription_tiers()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not org:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    return OrganizationSubscriptionOut(
        org_id=org["id"],
        name=org.get("name") or "",
        tier_id=org.get("tier_id"),
        subscription=get_subscription_status(org).to_out(),
        available_tiers=[to_subscription_tier_view(row) for row in tiers],
    )


@router.get("/gate", response_model=GateOut)
async def get_gate(
    route: str = Query(default="/org"),
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> GateOut:
    decision = await authorize(resolver, principal, org_id=None, action=Action.SUBSCRIPTION_VIEW)
    try:
        org = await repository.get_organization(decision.org_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not org:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    subscription = get_subscription_status(org)
    state = evaluate_gate(subscription_active=subscription.is_active, role=decision.role, route=route)
    return GateOut(state=state.value, route=route, role=decision.role, subscription=subscription.to_out())
