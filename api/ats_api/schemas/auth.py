from ats_api.schemas.base import ApiModel


class MeOut(ApiModel):
    user_id: str
    email: str | None = None
    org_id: str | None = None
    full_name: str | None = None
    role: str | None = None
    membership_role: str | None = None
