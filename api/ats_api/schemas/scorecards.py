from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from ats_api.schemas.base import ApiModel

Recommendation = Literal["strong_yes", "yes", "neutral", "no", "strong_no"]
ScorecardStatus = Literal["draft", "submitted"]


class ScorecardTemplateView(ApiModel):
    id: str
    org_id: str | None = None
    name: str
    description: str | None = None
    criteria: list[dict[str, Any]] = Field(default_factory=list)
    rating_scale: int | None = None
    is_default: bool
    is_active: bool
    created_at: str | None = None


class ScorecardTemplatesOut(ApiModel):
    templates: list[ScorecardTemplateView] = Field(default_factory=list)


class CriterionScore(ApiModel):
    criterion_id: str
    score: float = Field(ge=0)
    notes: str | None = None


class ScorecardCreateRequest(ApiModel):
    interview_id: str = Field(min_length=1)
    org_id: str = Field(min_length=1)
    template_id: str | None = None
    criteria_scores: list[CriterionScore] = Field(default_factory=list)
    overall_score: float | None = Field(default=None, ge=0)
    weighted_score: float | None = Field(default=None, ge=0)
    recommendation: Recommendation | None = None
    strengths: str | None = None
    weaknesses: str | None = None
    additional_notes: str | None = None
    status: ScorecardStatus = "draft"
    submitted_at: datetime | None = None


class ScorecardUpdateRequest(ApiModel):
    criteria_scores: list[CriterionScore] | None = None
    overall_score: float | None = Field(default=None, ge=0)
    weighted_score: float | None = Field(default=None, ge=0)
    recommendation: Recommendation | None = None
    strengths: str | None = None
    weaknesses: str | None = None
    additional_notes: str | None = None
    status: ScorecardStatus | None = None
    submitted_at: datetime | None = None


class ScorecardOut(ApiModel):
    id: str
    interview_id: str
    template_id: str | None = None
    interviewer_id: str
    org_id: str
    criteria_scores: list[dict[str, Any]] = Field(default_factory=list)
    overall_score: float | None = None
    weighted_score: float | None = None
    recommendation: str | None = None
    strengths: str | None = None
    weaknesses: str | None = None
    additional_notes: str | None = None
    status: str
    submitted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ScorecardEnvelope(ApiModel):
    scorecard: ScorecardOut
