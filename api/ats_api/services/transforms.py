"""Row transforms from database columns to application-facing views.

Every function is total: missing or null columns fall back to a default instead
of raising, and feeding a view's ``model_dump()`` back in yields an equal view.
Pages and API handlers both go through these so the wire shape is identical.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, get_args

from ats_api.schemas.billing import SubscriptionTierView
from ats_api.schemas.careers import BlockType, CareerPageBlock
from ats_api.schemas.integrations import (
    AIConfigView,
    DomainRecordView,
    EmailConfigView,
    IntegrationView,
    MeetingProviderView,
)
from ats_api.schemas.scorecards import ScorecardOut, ScorecardTemplateView

EMAIL_PROVIDERS = {"resend", "smtp", "sendgrid", "mailgun"}
BLOCK_TYPES = set(get_args(BlockType))


def coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "t", "1", "yes"}
    if isinstance(value, (int, float)):
        return value != 0
    return False


def coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def coerce_timestamp(value: Any) -> str | None:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return coerce_text(value)


def coerce_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return value


def coerce_json_dict(value: Any) -> dict[str, Any] | None:
    parsed = coerce_json(value)
    return dict(parsed) if isinstance(parsed, Mapping) else None


def coerce_json_list(value: Any) -> list[Any]:
    parsed = coerce_json(value)
    return list(parsed) if isinstance(parsed, list) else []


def to_integration_view(row: Mapping[str, Any]) -> IntegrationView:
    return IntegrationView(
        id=coerce_text(row.get("id")) or "",
        provider=coerce_text(row.get("provider")) or "",
        is_enabled=coerce_bool(row.get("is_enabled")),
        is_configured=coerce_bool(row.get("is_configured")),
        is_verified=coerce_bool(row.get("is_verified")),
        is_default_meeting_provider=coerce_bool(row.get("is_default_meeting_provider")),
        provider_metadata=_public_metadata(coerce_json_dict(row.get("provider_metadata"))),
        verified_at=coerce_timestamp(row.get("verified_at")),
    )


def to_meeting_provider_view(row: Mapping[str, Any]) -> MeetingProviderView:
    return MeetingProviderView(
        provider=coerce_text(row.get("provider")) or "",
        is_default_meeting_provider=coerce_bool(row.get("is_default_meeting_provider")),
    )


def to_ai_config_view(row: Mapping[str, Any]) -> AIConfigView:
    return AIConfigView(
        id=coerce_text(row.get("id")) or "",
        provider=coerce_text(row.get("provider")) or "",
        is_enabled=coerce_bool(row.get("is_enabled")),
        is_configured=coerce_bool(row.get("is_configured")),
        is_verified=coerce_bool(row.get("is_verified")),
        is_default_provider=coerce_bool(row.get("is_default_provider")),
        settings=coerce_json(row.get("settings")),
        provider_metadata=coerce_json(row.get("provider_metadata")),
        verified_at=coerce_timestamp(row.get("verified_at")),
        last_used_at=coerce_timestamp(row.get("last_used_at")),
    )


def to_email_config_view(row: Mapping[str, Any]) -> EmailConfigView:
    provider = coerce_text(row.get("email_provider"))
    return EmailConfigView(
        id=coerce_text(row.get("id")),
        org_id=coerce_text(row.get("org_id")) or "",
        email_provider=provider if provider in EMAIL_PROVIDERS else "resend",
        from_email=coerce_text(row.get("from_email")) or "",
        from_name=coerce_text(row.get("from_name")) or "",
        reply_to_email=coerce_text(row.get("reply_to_email")),
        smtp_host=coerce_text(row.get("smtp_host")),
        smtp_port=coerce_int(row.get("smtp_port")),
        smtp_username=coerce_text(row.get("smtp_username")),
        smtp_encryption=coerce_text(row.get("smtp_encryption")),
        mailgun_domain=coerce_text(row.get("mailgun_domain")),
        mailgun_region=coerce_text(row.get("mailgun_region")),
        imap_enabled=coerce_bool(row.get("imap_enabled")),
        imap_host=coerce_text(row.get("imap_host")),
        imap_port=coerce_int(row.get("imap_port")),
        imap_username=coerce_text(row.get("imap_username")),
        imap_encryption=coerce_text(row.get("imap_encryption")),
        imap_mailbox=coerce_text(row.get("imap_mailbox")),
        track_opens=coerce_bool(row.get("track_opens")),
        track_clicks=coerce_bool(row.get("track_clicks")),
        domain=coerce_text(row.get("domain")),
        domain_verified=coerce_bool(row.get("domain_verified")),
        spf_verified=coerce_bool(row.get("spf_verified")),
        dkim_verified=coerce_bool(row.get("dkim_verified")),
        dmarc_verified=coerce_bool(row.get("dmarc_verified")),
        is_enabled=coerce_bool(row.get("is_enabled")),
        is_verified=coerce_bool(row.get("is_verified")),
        is_configured=coerce_bool(row.get("is_configured")),
    )


def to_domain_record_view(row: Mapping[str, Any]) -> DomainRecordView:
    return DomainRecordView(
        id=coerce_text(row.get("id")) or "",
        record_type=coerce_text(row.get("record_type")) or "",
        record_name=coerce_text(row.get("record_name")) or "",
        record_value=coerce_text(row.get("record_value")) or "",
        is_verified=coerce_bool(row.get("is_verified")),
        last_checked_at=coerce_timestamp(row.get("last_checked_at")),
    )


def to_scorecard_template_view(row: Mapping[str, Any]) -> ScorecardTemplateView:
    return ScorecardTemplateView(
        id=coerce_text(row.get("id")) or "",
        org_id=coerce_text(row.get("org_id")),
        name=coerce_text(row.get("name")) or "",
        description=coerce_text(row.get("description")),
        criteria=[item for item in coerce_json_list(row.get("criteria")) if isinstance(item, dict)],
        rating_scale=coerce_int(row.get("rating_scale")),
        is_default=coerce_bool(row.get("is_default")),
        is_active=coerce_bool(row.get("is_active")),
        created_at=coerce_timestamp(row.get("created_at")),
    )


def to_subscription_tier_view(row: Mapping[str, Any]) -> SubscriptionTierView:
    return SubscriptionTierView(
        id=coerce_text(row.get("id")) or "",
        name=coerce_text(row.get("name")) or "",
        name_ar=coerce_text(row.get("name_ar")),
        description=coerce_text(row.get("description")),
        description_ar=coerce_text(row.get("description_ar")),
        price_monthly=coerce_float(row.get("price_monthly")) or 0.0,
        price_yearly=coerce_float(row.get("price_yearly")),
        currency=coerce_text(row.get("currency")) or "USD",
        max_jobs=coerce_int(row.get("max_jobs")),
        max_users=coerce_int(row.get("max_users")),
        max_candidates=coerce_int(row.get("max_candidates")),
        features=coerce_json_list(row.get("features")),
        sort_order=coerce_int(row.get("sort_order")) or 0,
    )


def _public_metadata(metadata: dict[str, Any] | None) -> dict[str, Any] | None:
    # OAuth tokens live in provider_metadata and never leave the server.
    if metadata is None:
        return None
    return {key: value for key, value in metadata.items() if key not in {"access_token", "refresh_token"}}


def to_career_page_block(row: Mapping[str, Any]) -> CareerPageBlock:
    block_type = coerce_text(row.get("block_type") or row.get("type"))
    order = row.get("block_order", row.get("order"))
    enabled = row.get("is_enabled", row.get("enabled"))
    return CareerPageBlock(
        id=coerce_text(row.get("id")),
        type=block_type if block_type in BLOCK_TYPES else "custom",
        order=coerce_int(order) or 0,
        enabled=True if enabled is None else coerce_bool(enabled),
        content=coerce_json_dict(row.get("content")) or {},
        styles=coerce_json_dict(row.get("styles")) or {},
    )


def to_scorecard_out(row: Mapping[str, Any]) -> ScorecardOut:
    return ScorecardOut(
        id=coerce_text(row.get("id")) or "",
        interview_id=coerce_text(row.get("interview_id")) or "",
        template_id=coerce_text(row.get("template_id")),
        interviewer_id=coerce_text(row.get("interviewer_id")) or "",
        org_id=coerce_text(row.get("org_id")) or "",
        criteria_scores=[item for item in coerce_json_list(row.get("criteria_scores")) if isinstance(item, dict)],
        overall_score=coerce_float(row.get("overall_score")),
        weighted_score=coerce_float(row.get("weighted_score")),
        recommendation=coerce_text(row.get("recommendation")),
        strengths=coerce_text(row.get("strengths")),
        weaknesses=coerce_text(row.get("weaknesses")),
        additional_notes=coerce_text(row.get("additional_notes")),
        status=coerce_text(row.get("status")) or "draft",
        submitted_at=row.get("submitted_at"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )
