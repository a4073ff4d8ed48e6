from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ats_api.core.auth import Action, Principal
from ats_api.core.security import (
    authorize,
    get_access_resolver,
    get_current_principal,
    require_active_subscription,
)
from ats_api.schemas.scorecards import (
    ScorecardCreateRequest,
    ScorecardEnvelope,
    ScorecardTemplatesOut,
    ScorecardUpdateRequest,
)
from ats_api.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)
from ats_api.services.transforms import to_scorecard_out, to_scorecard_template_view

templates_router = APIRouter()
router = APIRouter()


@templates_router.get("", response_model=ScorecardTemplatesOut)
async def list_templates(
    org_id: str | None = Query(default=None, alias="orgId"),
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> ScorecardTemplatesOut:
    decision = await authorize(resolver, principal, org_id=org_id, action=Action.SCORECARD_TEMPLATES_READ)
    await require_active_subscription(repository, decision)
    try:
        rows = await repository.list_scorecard_templates(decision.org_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ScorecardTemplatesOut(templates=[to_scorecard_template_view(row) for row in rows])


@router.post("", response_model=ScorecardEnvelope, status_code=status.HTTP_201_CREATED)
async def create_scorecard(
    payload: ScorecardCreateRequest,
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> ScorecardEnvelope:
    decision = await authorize(resolver, principal, org_id=payload.org_id, action=Action.SCORECARDS_SUBMIT)
    await require_active_subscription(repository, decision)

    fields = payload.model_dump(exclude={"interview_id", "org_id", "template_id"}, mode="json")
    fields["submitted_at"] = _submitted_at(payload.status, payload.submitted_at)
    try:
        interview_org_id = await repository.get_interview_org_id(payload.interview_id)
        if interview_org_id != payload.org_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Interview not found")
        row = await repository.create_scorecard(
            interview_id=payload.interview_id,
            org_id=payload.org_id,
            interviewer_id=principal.user_id,
            template_id=payload.template_id,
            fields=fields,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return ScorecardEnvelope(scorecard=to_scorecard_out(row))


@router.put("/{scorecard_id}", response_model=ScorecardEnvelope)
async def update_scorecard(
    scorecard_id: str,
    payload: ScorecardUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> ScorecardEnvelope:
    fields = payload.model_dump(exclude_unset=True, mode="json")
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    try:
        existing = await repository.get_scorecard(scorecard_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not existing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scorecard not found")

    decision = await authorize(resolver, principal, org_id=existing["org_id"], action=Action.SCORECARDS_SUBMIT)
    if existing.get("interviewer_id") != principal.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the interviewer can update this scorecard")
    await require_active_subscription(repository, decision)

    if fields.get("status") == "submitted" and not existing.get("submitted_at"):
        fields["submitted_at"] = _submitted_at("submitted", payload.submitted_at)
    elif "submitted_at" in fields:
        fields["submitted_at"] = payload.submitted_at

    try:
        row = await repository.update_scorecard(scorecard_id=scorecard_id, fields=fields)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return ScorecardEnvelope(scorecard=to_scorecard_out(row))


def _submitted_at(status_value: str | None, submitted_at: datetime | None) -> datetime | None:
    if status_value != "submitted":
        return submitted_at
    return submitted_at or datetime.now(timezone.utc)
