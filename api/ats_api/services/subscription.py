"""Subscription status and the access gate derived from it.

An organization is active while it has a live paid subscription or is inside
its 14-day trial. When it is not, the gate decides per viewer whether the
application shell renders normally, with an informational banner, or behind
the restriction modal.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable

from ats_api.core.auth import BILLING_ADMIN_ROLES, Role
from ats_api.schemas.billing import SubscriptionStatusOut

logger = logging.getLogger(__name__)

TRIAL_DURATION_DAYS = 14
# The organization dashboard stays reachable so users can read the restriction notice.
ALWAYS_ACCESSIBLE_ROUTES = frozenset({"/org"})
SUBSCRIPTION_INACTIVE_CODE = "SUBSCRIPTION_INACTIVE"
RESTRICTED_MESSAGE = "Your organization's access is currently restricted. Please contact your administrator."
SUBSCRIPTION_EXEMPT_ROLES = BILLING_ADMIN_ROLES | {Role.SUPER_ADMIN.value}


class GateState(str, Enum):
    FULL_ACCESS = "full_access"
    BANNER_ONLY = "banner_only"
    RESTRICTED = "restricted"


@dataclass(slots=True)
class SubscriptionStatus:
    is_active: bool
    state: str
    trial_days_remaining: int
    trial_expired: bool
    trial_end_date: datetime

    def to_out(self) -> SubscriptionStatusOut:
        return SubscriptionStatusOut(
            is_active=self.is_active,
            state=self.state,
            trial_days_remaining=self.trial_days_remaining,
            trial_expired=self.trial_expired,
            trial_end_date=self.trial_end_date.date().isoformat(),
        )


@dataclass(slots=True)
class SubscriptionAccess:
    allowed: bool
    subscription: SubscriptionStatus | None = None


def get_subscription_status(org: dict[str, Any], now: datetime | None = None) -> SubscriptionStatus:
    now = now or datetime.now(timezone.utc)
    status = org.get("subscription_status") or "trial"

    created_at = _as_datetime(org.get("created_at")) or now
    trial_end_date = created_at + timedelta(days=TRIAL_DURATION_DAYS)
    trial_days_remaining = max(0, math.ceil((trial_end_date - now).total_seconds() / 86400))
    trial_expired = trial_days_remaining == 0

    if status == "active":
        end_date = _as_datetime(org.get("subscription_end_date"))
        if end_date is None or end_date > now:
            return SubscriptionStatus(True, "active", trial_days_remaining, trial_expired, trial_end_date)
        return SubscriptionStatus(False, "expired", 0, True, trial_end_date)

    if status == "cancelled":
        return SubscriptionStatus(False, "cancelled", 0, True, trial_end_date)

    if not trial_expired:
        return SubscriptionStatus(True, "trial", trial_days_remaining, trial_expired, trial_end_date)

    return SubscriptionStatus(False, "expired", 0, True, trial_end_date)


def evaluate_gate(*, subscription_active: bool, role: str | None, route: str) -> GateState:
    """Re-evaluated on every navigation; no state is carried between calls."""
    if subscription_active or role == Role.SUPER_ADMIN.value:
        return GateState.FULL_ACCESS
    if role in BILLING_ADMIN_ROLES:
        return GateState.BANNER_ONLY
    if _normalize_route(route) in ALWAYS_ACCESSIBLE_ROUTES:
        return GateState.FULL_ACCESS
    return GateState.RESTRICTED


async def check_subscription_access(
    repository: Any, *, roles: Iterable[str | None], org_id: str | None
) -> SubscriptionAccess:
    """Server-side counterpart of the gate for API routes.

    super_admin and the billing admins (owner, admin, org_admin) always pass so
    billing can be fixed; any one of the caller's roles is enough. Everyone else
    is blocked while the subscription is inactive. An organization that cannot
    be found is let through and left to the handler.
    """
    if SUBSCRIPTION_EXEMPT_ROLES.intersection(role for role in roles if role):
        return SubscriptionAccess(allowed=True)
    if not org_id:
        return SubscriptionAccess(allowed=True)

    org = await repository.get_organization(org_id)
    if not org:
        logger.warning("subscription check skipped; organization not found org_id=%s", org_id)
        return SubscriptionAccess(allowed=True)

    subscription = get_subscription_status(org)
    return SubscriptionAccess(allowed=subscription.is_active, subscription=subscription)


def _normalize_route(route: str) -> str:
    path = route.split("?", maxsplit=1)[0].strip() or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/")
    return path


def _as_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
