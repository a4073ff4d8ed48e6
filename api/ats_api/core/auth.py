from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    ORG_ADMIN = "org_admin"
    SUPER_ADMIN = "super_admin"
    HR_MANAGER = "hr_manager"
    RECRUITER = "recruiter"
    HIRING_MANAGER = "hiring_manager"
    INTERVIEWER = "interviewer"
    CANDIDATE = "candidate"


class Action(str, Enum):
    BILLING_MANAGE = "billing.manage"
    INTEGRATION_CREDENTIALS_MANAGE = "integrations.credentials.manage"
    INTEGRATIONS_MANAGE = "integrations.manage"
    CAREER_PAGE_EDIT = "career_page.edit"
    SUBSCRIPTION_VIEW = "subscription.view"
    DOCUMENTS_ACCESS = "documents.access"
    DOCUMENTS_UPLOAD = "documents.upload"
    SCORECARDS_SUBMIT = "scorecards.submit"
    SCORECARD_TEMPLATES_READ = "scorecard_templates.read"


ALL_ROLES: frozenset[str] = frozenset(role.value for role in Role)
# Organization-membership roles (organization_members.role); everything else is a platform role (user_roles.role).
MEMBERSHIP_ROLES: frozenset[str] = frozenset({Role.OWNER.value, Role.ADMIN.value})
BILLING_ADMIN_ROLES: frozenset[str] = frozenset({Role.OWNER.value, Role.ADMIN.value, Role.ORG_ADMIN.value})

_STAFF_ROLES = {
    Role.SUPER_ADMIN.value,
    Role.ORG_ADMIN.value,
    Role.HR_MANAGER.value,
    Role.RECRUITER.value,
    Role.HIRING_MANAGER.value,
    Role.INTERVIEWER.value,
}

PERMISSIONS: dict[str, frozenset[str]] = {
    Action.BILLING_MANAGE.value: frozenset({Role.OWNER.value, Role.ADMIN.value}),
    Action.INTEGRATION_CREDENTIALS_MANAGE.value: frozenset({Role.OWNER.value, Role.ADMIN.value}),
    Action.INTEGRATIONS_MANAGE.value: frozenset({Role.ORG_ADMIN.value, Role.SUPER_ADMIN.value}),
    Action.CAREER_PAGE_EDIT.value: frozenset({Role.ORG_ADMIN.value, Role.SUPER_ADMIN.value}),
    Action.SUBSCRIPTION_VIEW.value: frozenset(_STAFF_ROLES | MEMBERSHIP_ROLES),
    Action.DOCUMENTS_ACCESS.value: frozenset(_STAFF_ROLES - {Role.ORG_ADMIN.value}),
    Action.DOCUMENTS_UPLOAD.value: frozenset(ALL_ROLES - {Role.CANDIDATE.value}),
    Action.SCORECARDS_SUBMIT.value: frozenset(_STAFF_ROLES),
    Action.SCORECARD_TEMPLATES_READ.value: frozenset(_STAFF_ROLES),
}


@dataclass(slots=True)
class Principal:
    user_id: str
    email: str | None = None


@dataclass(slots=True)
class AccessDecision:
    authorized: bool
    reason: str | None = None
    role: str | None = None
    org_id: str | None = None
    roles: frozenset[str] = frozenset()

    @classmethod
    def deny(cls, reason: str, *, role: str | None = None, org_id: str | None = None) -> "AccessDecision":
        return cls(authorized=False, reason=reason, role=role, org_id=org_id)


def permitted_roles(action: str) -> frozenset[str]:
    return PERMISSIONS.get(str(getattr(action, "value", action)), frozenset())


def role_permits(roles: set[str], action: str) -> bool:
    allowed = permitted_roles(action)
    return bool(allowed) and not allowed.isdisjoint(roles)
