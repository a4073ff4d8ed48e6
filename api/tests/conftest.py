from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

os.environ.setdefault("ATS_OTEL_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

import ats_api.core.security as security
from ats_api.core.config import get_settings
from ats_api.main import app
from ats_api.services.crypto import get_credential_cipher
from ats_api.services.email import get_mailer
from ats_api.services.repository import (
    MEETING_PROVIDERS,
    OAUTH_TOKEN_KEYS,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)
from ats_api.services.storage import StorageError, get_storage

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"

# user id -> (profile org, platform role)
USERS: dict[str, tuple[str, str | None]] = {
    "owner-1": (ORG_ID, None),
    "org-admin-1": (ORG_ID, "org_admin"),
    "hr-1": (ORG_ID, "hr_manager"),
    "recruiter-1": (ORG_ID, "recruiter"),
    "interviewer-1": (ORG_ID, "interviewer"),
    "interviewer-2": (ORG_ID, "interviewer"),
    "candidate-1": (ORG_ID, "candidate"),
    "super-1": (OTHER_ORG_ID, "super_admin"),
    "outsider-1": (OTHER_ORG_ID, "recruiter"),
}


class FakeAtsRepository:
    def __init__(self) -> None:
        now = datetime.now(timezone.utc)
        self.ping_error: Exception | None = None
        self.profiles = {
            user_id: {"id": user_id, "org_id": org_id, "full_name": user_id.title(), "email": f"{user_id}@example.com"}
            for user_id, (org_id, _) in USERS.items()
        }
        self.user_roles = {user_id: role for user_id, (_, role) in USERS.items() if role}
        self.memberships: dict[tuple[str, str], str] = {("owner-1", ORG_ID): "owner"}
        self.organizations: dict[str, dict[str, Any]] = {
            ORG_ID: _organization(ORG_ID, "acme", created_at=now - timedelta(days=3)),
            OTHER_ORG_ID: _organization(OTHER_ORG_ID, "globex", created_at=now - timedelta(days=40)),
        }
        self.tiers: list[dict[str, Any]] = [
            {
                "id": "tier-pro",
                "name": "Pro",
                "description": "For growing teams",
                "price_monthly": 99,
                "price_yearly": None,
                "currency": "SAR",
                "features": '["unlimited jobs"]',
                "sort_order": 2,
            },
            {"id": "tier-basic", "name": "Basic", "price_monthly": 49, "currency": "USD", "sort_order": 1},
        ]
        self.platform_settings: dict[str, Any] = {}
        self.integrations: dict[tuple[str, str], dict[str, Any]] = {}
        self.templates: list[dict[str, Any]] = [
            {
                "id": "template-1",
                "org_id": ORG_ID,
                "name": "Engineering",
                "criteria": '[{"id": "c1", "name": "Problem solving", "weight": 50}]',
                "rating_scale": 5,
                "is_default": True,
                "is_active": True,
            }
        ]
        self.interviews = {"interview-1": ORG_ID, "interview-2": OTHER_ORG_ID}
        self.scorecards: dict[str, dict[str, Any]] = {}
        self.blocks: dict[str, list[dict[str, Any]]] = {}
        self.jobs: list[dict[str, Any]] = [
            {"id": "job-1", "org_id": ORG_ID, "title": "Backend Engineer", "status": "published", "location": "Riyadh"},
            {"id": "job-2", "org_id": ORG_ID, "title": "Draft Role", "status": "draft"},
        ]
        self.candidates: dict[str, dict[str, Any]] = {}
        self.applications: list[dict[str, Any]] = []

    async def ping(self) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    async def get_platform_setting(self, key: str) -> Any:
        return self.platform_settings.get(key)

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        profile = self.profiles.get(user_id)
        return dict(profile) if profile else None

    async def get_user_role(self, user_id: str) -> str | None:
        return self.user_roles.get(user_id)

    async def get_membership_role(self, *, user_id: str, org_id: str) -> str | None:
        return self.memberships.get((user_id, org_id))

    async def get_organization(self, org_id: str) -> dict[str, Any] | None:
        org = self.organizations.get(org_id)
        return dict(org) if org else None

    async def get_organization_by_slug(self, slug: str) -> dict[str, Any] | None:
        for org in self.organizations.values():
            if org["slug"] == slug:
                return dict(org)
        return None

    async def list_subscription_tiers(self) -> list[dict[str, Any]]:
        return sorted(self.tiers, key=lambda tier: tier["sort_order"])

    async def get_subscription_tier(self, tier_id: str) -> dict[str, Any] | None:
        return next((dict(tier) for tier in self.tiers if tier["id"] == tier_id), None)

    async def set_stripe_customer_id(self, *, org_id: str, customer_id: str) -> None:
        self.organizations[org_id]["stripe_customer_id"] = customer_id

    async def get_organization_by_stripe_subscription(self, subscription_id: str) -> dict[str, Any] | None:
        for org in self.organizations.values():
            if org.get("stripe_subscription_id") == subscription_id:
                return dict(org)
        return None

    async def activate_subscription(
        self,
        *,
        org_id: str,
        tier_id: str | None,
        stripe_subscription_id: str | None,
        start_date: date,
        end_date: date,
        limits: dict[str, Any],
    ) -> None:
        org = self.organizations.get(org_id)
        if org is None:
            raise RepositoryNotFoundError("organization not found")
        org.update(
            subscription_status="active",
            subscription_start_date=start_date,
            subscription_end_date=end_date,
            stripe_subscription_id=stripe_subscription_id,
        )
        if tier_id:
            org["tier_id"] = tier_id
        org.update({column: value for column, value in limits.items() if value is not None})

    async def extend_subscription(self, *, org_id: str, end_date: date) -> None:
        self.organizations[org_id].update(subscription_status="active", subscription_end_date=end_date)

    async def cancel_subscription(self, *, org_id: str) -> None:
        self.organizations[org_id].update(subscription_status="cancelled", stripe_subscription_id=None)


    async def list_integrations(self, org_id: str) -> list[dict[str, Any]]:
        return [dict(row) for (row_org, _), row in sorted(self.integrations.items()) if row_org == org_id]

    async def get_integration(self, *, org_id: str, provider: str) -> dict[str, Any] | None:
        row = self.integrations.get((org_id, provider))
        return dict(row) if row else None

    async def upsert_integration_credentials(
        self,
        *,
        org_id: str,
        provider: str,
        credentials_encrypted: str,
        actor_user_id: str,
    ) -> None:
        row = self.integrations.setdefault(
            (org_id, provider),
            {
                "id": f"{org_id}-{provider}",
                "org_id": org_id,
                "provider": provider,
                "is_enabled": False,
                "is_default_meeting_provider": False,
                "provider_metadata": None,
                "verified_at": None,
            },
        )
        row.update(
            credentials_encrypted=credentials_encrypted,
            is_configured=True,
            is_verified=False,
            updated_by=actor_user_id,
        )

    async def set_integration_enabled(self, *, org_id: str, provider: str, enabled: bool) -> None:
        self._integration(org_id, provider)["is_enabled"] = enabled

    async def set_default_meeting_provider(self, *, org_id: str, provider: str) -> None:
        target = self._integration(org_id, provider)
        for (row_org, row_provider), row in self.integrations.items():
            if row_org == org_id and row_provider in MEETING_PROVIDERS:
                row["is_default_meeting_provider"] = False
        target["is_default_meeting_provider"] = True

    async def delete_integration(self, *, org_id: str, provider: str) -> str | None:
        deleted = self._integration(org_id, provider)
        del self.integrations[(org_id, provider)]
        if not deleted.get("is_default_meeting_provider"):
            return None
        for (row_org, row_provider), row in sorted(self.integrations.items()):
            if row_org == org_id and row.get("is_verified") and row.get("is_enabled"):
                row["is_default_meeting_provider"] = True
                return row_provider
        return None

    async def store_integration_tokens(
        self,
        *,
        org_id: str,
        provider: str,
        provider_metadata: dict[str, Any],
        actor_user_id: str,
    ) -> None:
        row = self._integration(org_id, provider)
        row.update(provider_metadata=provider_metadata, is_verified=True, is_enabled=True, verified_by=actor_user_id)

    async def clear_integration_tokens(self, *, org_id: str, provider: str) -> None:
        row = self._integration(org_id, provider)
        metadata = {key: value for key, value in (row.get("provider_metadata") or {}).items() if key not in OAUTH_TOKEN_KEYS}
        row.update(provider_metadata=metadata, is_verified=False, is_default_meeting_provider=False, verified_at=None)

    async def list_ai_configs(self, org_id: str) -> list[dict[str, Any]]:
        return [{"id": "ai-1", "provider": "openai", "is_enabled": True, "settings": '{"model": "gpt"}'}]

    async def get_email_config(self, org_id: str) -> dict[str, Any] | None:
        return {"id": "email-1", "org_id": org_id, "email_provider": "resend", "from_email": "jobs@acme.test"}

    async def list_email_domain_records(self, org_id: str) -> list[dict[str, Any]]:
        return [{"id": "rec-1", "record_type": "TXT", "record_name": "@", "record_value": "v=spf1"}]

    async def list_scorecard_templates(self, org_id: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self.templates if row["org_id"] == org_id]

    async def get_interview_org_id(self, interview_id: str) -> str | None:
        return self.interviews.get(interview_id)

    async def create_scorecard(
        self,
        *,
        interview_id: str,
        org_id: str,
        interviewer_id: str,
        template_id: str | None,
        fields: dict[str, Any],
    ) -> dict[str, Any]:
        for row in self.scorecards.values():
            if row["interview_id"] == interview_id and row["interviewer_id"] == interviewer_id:
                raise RepositoryConflictError("scorecard already submitted for this interview")
        scorecard_id = f"scorecard-{len(self.scorecards) + 1}"
        now = datetime.now(timezone.utc)
        row = {
            "id": scorecard_id,
            "interview_id": interview_id,
            "org_id": org_id,
            "interviewer_id": interviewer_id,
            "template_id": template_id,
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        self.scorecards[scorecard_id] = row
        return dict(row)

    async def get_scorecard(self, scorecard_id: str) -> dict[str, Any] | None:
        row = self.scorecards.get(scorecard_id)
        return dict(row) if row else None

    async def update_scorecard(self, *, scorecard_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        row = self.scorecards.get(scorecard_id)
        if row is None:
            raise RepositoryNotFoundError("scorecard not found")
        row.update(fields, updated_at=datetime.now(timezone.utc))
        return dict(row)

    async def list_career_page_blocks(self, org_id: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self.blocks.get(org_id, [])]

    async def save_career_page(
        self,
        *,
        org_id: str,
        config: dict[str, Any],
        published: bool,
        blocks: list[dict[str, Any]],
    ) -> None:
        if org_id not in self.organizations:
            raise RepositoryNotFoundError("organization not found")
        self.organizations[org_id].update(career_page_config=config, career_page_published=published)
        self.blocks[org_id] = [
            {"id": f"block-{index}", "block_order": index, **block} for index, block in enumerate(blocks)
        ]

    async def list_published_jobs(self, org_id: str) -> list[dict[str, Any]]:
        return [
            {key: job.get(key) for key in ("id", "title", "location", "employment_type", "department", "published_at")}
            for job in self.jobs
            if job["org_id"] == org_id and job["status"] == "published"
        ]

    async def get_published_job(self, job_id: str) -> dict[str, Any] | None:
        for job in self.jobs:
            if job["id"] == job_id and job["status"] == "published":
                org = self.organizations[job["org_id"]]
                return {"id": job["id"], "title": job["title"], "org_id": job["org_id"], "organization_name": org["name"]}
        return None

    async def find_candidate_id(self, *, org_id: str, email: str) -> str | None:
        for candidate_id, row in self.candidates.items():
            if row["org_id"] == org_id and row["email"].lower() == email.lower():
                return candidate_id
        return None

    async def create_candidate(self, *, org_id: str, **fields: Any) -> str:
        candidate_id = f"candidate-{len(self.candidates) + 1}"
        self.candidates[candidate_id] = {"id": candidate_id, "org_id": org_id, "resume_url": None, **fields}
        return candidate_id

    async def set_candidate_resume_url(self, *, candidate_id: str, resume_url: str) -> None:
        self.candidates[candidate_id]["resume_url"] = resume_url

    async def application_exists(self, *, candidate_id: str, job_id: str) -> bool:
        return any(row["candidate_id"] == candidate_id and row["job_id"] == job_id for row in self.applications)

    async def create_application(self, *, org_id: str, candidate_id: str, job_id: str, cover_letter: str | None) -> str:
        application_id = f"application-{len(self.applications) + 1}"
        self.applications.append(
            {
                "id": application_id,
                "org_id": org_id,
                "candidate_id": candidate_id,
                "job_id": job_id,
                "cover_letter": cover_letter,
            }
        )
        return application_id

    def _integration(self, org_id: str, provider: str) -> dict[str, Any]:
        row = self.integrations.get((org_id, provider))
        if row is None:
            raise RepositoryNotFoundError(f"{provider} integration not found")
        return row


class UnavailableRepository:
    async def ping(self) -> None:
        raise RepositoryUnavailableError("database unavailable")

    async def list_subscription_tiers(self) -> list[dict[str, Any]]:
        raise RepositoryUnavailableError("database unavailable")


@dataclass
class FakeStorage:
    fail_uploads: bool = False
    uploads: list[dict[str, Any]] = field(default_factory=list)

    async def upload(self, *, bucket: str, path: str, content: bytes, content_type: str) -> str:
        if self.fail_uploads:
            raise StorageError("upload failed with status 500")
        self.uploads.append({"bucket": bucket, "path": path, "size": len(content), "content_type": content_type})
        return path

    def public_url(self, *, bucket: str, path: str) -> str:
        return f"https://storage.test/public/{bucket}/{path}"

    async def create_signed_url(self, *, bucket: str, path: str, expires_in: int) -> str:
        return f"https://storage.test/sign/{bucket}/{path}?expires={expires_in}"


@dataclass
class FakeMailer:
    sent: list[dict[str, str]] = field(default_factory=list)

    async def send(self, *, to: str, subject: str, html: str) -> str | None:
        self.sent.append({"to": to, "subject": subject, "html": html})
        return "email-1"


def _organization(org_id: str, slug: str, *, created_at: datetime) -> dict[str, Any]:
    return {
        "id": org_id,
        "name": slug.title(),
        "slug": slug,
        "logo_url": None,
        "primary_color": "#123456",
        "secondary_color": None,
        "subscription_status": "trial",
        "subscription_start_date": None,
        "subscription_end_date": None,
        "tier_id": None,
        "stripe_customer_id": None,
        "stripe_subscription_id": None,
        "max_jobs": None,
        "max_candidates": None,
        "max_users": None,
        "career_page_config": None,
        "career_page_published": False,
        "created_at": created_at,
    }


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}


@pytest.fixture
def fake_repo() -> FakeAtsRepository:
    return FakeAtsRepository()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def fake_mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def client(
    monkeypatch: pytest.MonkeyPatch,
    fake_repo: FakeAtsRepository,
    fake_storage: FakeStorage,
    fake_mailer: FakeMailer,
) -> Iterator[TestClient]:
    monkeypatch.setenv("ATS_SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("ATS_SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("ATS_ENCRYPTION_SECRET", "test-encryption-secret")
    monkeypatch.setenv("ATS_APP_BASE_URL", "https://app.example.com")
    get_settings.cache_clear()
    get_credential_cipher.cache_clear()

    async def _fake_fetch(*, token: str, **_: Any) -> dict[str, Any]:
        # Bearer tokens in tests are the user ids themselves.
        return {"id": token, "email": f"{token}@example.com"}

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)
    app.dependency_overrides[get_repository] = lambda: fake_repo
    app.dependency_overrides[get_storage] = lambda: fake_storage
    app.dependency_overrides[get_mailer] = lambda: fake_mailer

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    get_settings.cache_clear()
    get_credential_cipher.cache_clear()
