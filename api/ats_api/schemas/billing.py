from typing import Any, Literal

from pydantic import Field

from ats_api.schemas.base import ApiModel

SubscriptionState = Literal["active", "trial", "expired", "cancelled"]
GateState = Literal["full_access", "banner_only", "restricted"]
BillingCycle = Literal["monthly", "quarterly", "annually"]


class SubscriptionTierView(ApiModel):
    id: str
    name: str
    name_ar: str | None = None
    description: str | None = None
    description_ar: str | None = None
    price_monthly: float
    price_yearly: float | None = None
    currency: str
    max_jobs: int | None = None
    max_users: int | None = None
    max_candidates: int | None = None
    features: list[Any] = Field(default_factory=list)
    sort_order: int


class TiersOut(ApiModel):
    tiers: list[SubscriptionTierView] = Field(default_factory=list)


class SubscriptionStatusOut(ApiModel):
    is_active: bool
    state: SubscriptionState
    trial_days_remaining: int
    trial_expired: bool
    trial_end_date: str


class OrganizationSubscriptionOut(ApiModel):
    org_id: str
    name: str
    tier_id: str | None = None
    subscription: SubscriptionStatusOut
    available_tiers: list[SubscriptionTierView] = Field(default_factory=list)


class GateOut(ApiModel):
    state: GateState
    route: str
    role: str | None = None
    subscription: SubscriptionStatusOut | None = None


class CheckoutRequest(ApiModel):
    org_id: str = Field(min_length=1)
    tier_id: str = Field(min_length=1)
    billing_cycle: BillingCycle = "monthly"


class CheckoutOut(ApiModel):
    url: str
    session_id: str
