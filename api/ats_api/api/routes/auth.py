from fastapi import APIRouter, Depends, HTTPException, status

from ats_api.core.auth import Principal
from ats_api.core.security import UNAUTHORIZED, get_current_principal
from ats_api.schemas.auth import MeOut
from ats_api.services.repository import RepositoryUnavailableError, get_repository

router = APIRouter()


@router.get("/me", response_model=MeOut)
async def me(
    principal: Principal = Depends(get_current_principal),
    repository=Depends(get_repository),
) -> MeOut:
    try:
        profile = await repository.get_profile(principal.user_id)
        if not profile:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)
        role = await repository.get_user_role(principal.user_id)
        membership_role = None
        if profile.get("org_id"):
            membership_role = await repository.get_membership_role(
                user_id=principal.user_id, org_id=profile["org_id"]
            )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return MeOut(
        user_id=principal.user_id,
        email=principal.email or profile.get("email"),
        org_id=profile.get("org_id"),
        full_name=profile.get("full_name"),
        role=role,
        membership_role=membership_role,
    )
