from __future__ import annotations

import logging
from typing import Any

from ats_api.core.auth import MEMBERSHIP_ROLES, PERMISSIONS, AccessDecision, Role, permitted_roles

logger = logging.getLogger(__name__)


class AccessControlResolver:
    """Answers "may this user perform this action in this organization?".

    Every call re-reads the profile, platform role, and membership rows. Any
    missing row denies.
    """

    def __init__(self, repository: Any) -> None:
        self.repository = repository

    async def resolve(self, *, user_id: str, organization_id: str | None, action: str) -> AccessDecision:
        action_name = str(getattr(action, "value", action))
        if action_name not in PERMISSIONS:
            logger.error("access check for unknown action=%s user_id=%s", action_name, user_id)
            return AccessDecision.deny("unknown action")
        allowed = permitted_roles(action_name)

        profile = await self.repository.get_profile(user_id)
        if not profile:
            return AccessDecision.deny("User not found")

        profile_org_id = profile.get("org_id")
        org_id = organization_id or profile_org_id
        if not org_id:
            return AccessDecision.deny("Not a member of any organization")

        platform_role = await self.repository.get_user_role(user_id)
        if platform_role == Role.SUPER_ADMIN.value and platform_role in allowed:
            return AccessDecision(authorized=True, role=platform_role, org_id=org_id, roles=frozenset({platform_role}))

        membership_role = await self.repository.get_membership_role(user_id=user_id, org_id=org_id)
        if membership_role not in MEMBERSHIP_ROLES:
            membership_role = None

        if profile_org_id != org_id and membership_role is None:
            return AccessDecision.deny("Not authorized for this organization", role=platform_role, org_id=org_id)

        effective_roles = {role for role in (platform_role, membership_role) if role}
        # Platform roles only count inside the user's own organization.
        if profile_org_id != org_id:
            effective_roles.discard(platform_role)

        if not effective_roles:
            return AccessDecision.deny("Insufficient permissions", org_id=org_id)

        # Role declaration order runs from most to least privileged.
        matched = [role.value for role in Role if role.value in effective_roles & allowed]
        if not matched:
            return AccessDecision.deny("Insufficient permissions", role=platform_role or membership_role, org_id=org_id)

        return AccessDecision(authorized=True, role=matched[0], org_id=org_id, roles=frozenset(effective_roles))
