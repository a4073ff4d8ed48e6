from typing import Any, Literal

from pydantic import Field

from ats_api.schemas.base import ApiModel

MeetingProvider = Literal["google", "zoom", "microsoft"]
EmailProvider = Literal["resend", "smtp", "sendgrid", "mailgun"]


class IntegrationView(ApiModel):
    id: str
    provider: str
    is_enabled: bool
    is_configured: bool
    is_verified: bool
    is_default_meeting_provider: bool
    provider_metadata: dict[str, Any] | None = None
    verified_at: str | None = None


class MeetingProviderView(ApiModel):
    provider: str
    is_default_meeting_provider: bool


class AIConfigView(ApiModel):
    id: str
    provider: str
    is_enabled: bool
    is_configured: bool
    is_verified: bool
    is_default_provider: bool
    settings: Any = None
    provider_metadata: Any = None
    verified_at: str | None = None
    last_used_at: str | None = None


class EmailConfigView(ApiModel):
    id: str | None = None
    org_id: str
    email_provider: EmailProvider
    from_email: str
    from_name: str
    reply_to_email: str | None = None
    smtp_host: str | None = None
    smtp_port: int | None = None
    smtp_username: str | None = None
    smtp_encryption: str | None = None
    mailgun_domain: str | None = None
    mailgun_region: str | None = None
    imap_enabled: bool
    imap_host: str | None = None
    imap_port: int | None = None
    imap_username: str | None = None
    imap_encryption: str | None = None
    imap_mailbox: str | None = None
    track_opens: bool
    track_clicks: bool
    domain: str | None = None
    domain_verified: bool
    spf_verified: bool
    dkim_verified: bool
    dmarc_verified: bool
    is_enabled: bool
    is_verified: bool
    is_configured: bool


class DomainRecordView(ApiModel):
    id: str
    record_type: str
    record_name: str
    record_value: str
    is_verified: bool
    last_checked_at: str | None = None


class CredentialsSaveRequest(ApiModel):
    org_id: str = Field(min_length=1)
    provider: MeetingProvider
    credentials: dict[str, str] = Field(min_length=1)


class IntegrationToggleRequest(ApiModel):
    org_id: str = Field(min_length=1)
    provider: MeetingProvider
    enabled: bool


class IntegrationTargetRequest(ApiModel):
    org_id: str = Field(min_length=1)
    provider: MeetingProvider


class IntegrationDisconnectRequest(ApiModel):
    provider: MeetingProvider


class IntegrationsOut(ApiModel):
    integrations: list[IntegrationView] = Field(default_factory=list)
    meeting_providers: list[MeetingProviderView] = Field(default_factory=list)


class IntegrationSettingsOut(ApiModel):
    ai_configs: list[AIConfigView] = Field(default_factory=list)
    email_config: EmailConfigView | None = None
    domain_records: list[DomainRecordView] = Field(default_factory=list)


class PromotedDefaultOut(ApiModel):
    success: bool = True
    new_default_provider: str | None = None


class MaskedCredentialsOut(ApiModel):
    provider: MeetingProvider
    credentials: dict[str, str] = Field(default_factory=dict)
