from __future__ import annotations

import json
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from ats_api.core.config import get_settings


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation conflicts with existing rows."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


MEETING_PROVIDERS = ("google", "zoom", "microsoft")
OAUTH_TOKEN_KEYS = ("access_token", "refresh_token", "expiry_date", "connected_at", "connected_by")
SCORECARD_MUTABLE_FIELDS = (
    "criteria_scores",
    "overall_score",
    "weighted_score",
    "recommendation",
    "strengths",
    "weaknesses",
    "additional_notes",
    "status",
    "submitted_at",
)
SCORECARD_JSON_FIELDS = {"criteria_scores"}
ORGANIZATION_COLUMNS = """
  id::text as id,
  name,
  slug,
  logo_url,
  primary_color,
  secondary_color,
  subscription_status,
  subscription_start_date,
  subscription_end_date,
  tier_id::text as tier_id,
  stripe_customer_id,
  stripe_subscription_id,
  career_page_config,
  career_page_published,
  created_at
"""
TIER_COLUMNS = """
  id::text as id,
  name,
  name_ar,
  description,
  description_ar,
  price_monthly,
  price_yearly,
  currency,
  max_jobs,
  max_users,
  max_candidates,
  features,
  sort_order
"""
INTEGRATION_COLUMNS = """
  id::text as id,
  org_id::text as org_id,
  provider,
  is_enabled,
  is_configured,
  is_verified,
  is_default_meeting_provider,
  credentials_encrypted,
  provider_metadata,
  verified_at
"""
SCORECARD_COLUMNS = """
  id::text as id,
  interview_id::text as interview_id,
  template_id::text as template_id,
  interviewer_id::text as interviewer_id,
  org_id::text as org_id,
  criteria_scores,
  overall_score,
  weighted_score,
  recommendation,
  strengths,
  weaknesses,
  additional_notes,
  status,
  submitted_at,
  created_at,
  updated_at
"""


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        pool = await self._get_pool()
        try:
            await pool.fetchval("select key from platform_settings limit 1")
        except (OSError, pg_exc.PostgresError, asyncpg.InterfaceError) as exc:
            raise RepositoryUnavailableError("database check failed") from exc

    async def get_platform_setting(self, key: str) -> Any:
        pool = await self._get_pool()
        value = await pool.fetchval("select value from platform_settings where key = $1", key)
        if isinstance(value, str):
            # jsonb string values arrive JSON-quoted
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return value

    # identity

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select id::text as id, org_id::text as org_id, full_name, email
            from profiles
            where id::text = $1
            """,
            user_id,
        )
        return dict(row) if row else None

    async def get_user_role(self, user_id: str) -> str | None:
        # limit 1 instead of a single-row assertion: duplicate rows resolve to the primary one
        pool = await self._get_pool()
        return await pool.fetchval(
            """
            select role
            from user_roles
            where user_id::text = $1
            order by is_primary desc nulls last, created_at asc
            limit 1
            """,
            user_id,
        )

    async def get_membership_role(self, *, user_id: str, org_id: str) -> str | None:
        pool = await self._get_pool()
        return await pool.fetchval(
            """
            select role
            from organization_members
            where user_id::text = $1 and org_id::text = $2
            limit 1
            """,
            user_id,
            org_id,
        )

    # organizations and billing

    async def get_organization(self, org_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {ORGANIZATION_COLUMNS} from organizations where id::text = $1",
            org_id,
        )
        return dict(row) if row else None

    async def get_organization_by_slug(self, slug: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {ORGANIZATION_COLUMNS} from organizations where slug = $1",
            slug,
        )
        return dict(row) if row else None

    async def list_subscription_tiers(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {TIER_COLUMNS}
            from subscription_tiers
            where is_active = true
            order by sort_order asc
            """
        )
        return [dict(row) for row in rows]

    async def get_subscription_tier(self, tier_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {TIER_COLUMNS} from subscription_tiers where id::text = $1",
            tier_id,
        )
        return dict(row) if row else None

    async def set_stripe_customer_id(self, *, org_id: str, customer_id: str) -> None:
        pool = await self._get_pool()
        await pool.execute(
            "update organizations set stripe_customer_id = $2 where id::text = $1",
            org_id,
            customer_id,
        )

    async def get_organization_by_stripe_subscription(self, subscription_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {ORGANIZATION_COLUMNS} from organizations where stripe_subscription_id = $1 limit 1",
            subscription_id,
        )
        return dict(row) if row else None

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
        pool = await self._get_pool()
        try:
            status = await pool.execute(
                """
                update organizations
                set
                  subscription_status = 'active',
                  subscription_start_date = $2,
                  subscription_end_date = $3,
                  stripe_subscription_id = $4,
                  tier_id = coalesce($5::uuid, tier_id),
                  max_jobs = coalesce($6, max_jobs),
                  max_candidates = coalesce($7, max_candidates),
                  max_users = coalesce($8, max_users)
                where id::text = $1
                """,
                org_id,
                start_date,
                end_date,
                stripe_subscription_id,
                tier_id,
                limits.get("max_jobs"),
                limits.get("max_candidates"),
                limits.get("max_users"),
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid tier id or subscription dates") from exc
        if status.endswith(" 0"):
            raise RepositoryNotFoundError("organization not found")

    async def extend_subscription(self, *, org_id: str, end_date: date) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            update organizations
            set subscription_status = 'active', subscription_end_date = $2
            where id::text = $1
            """,
            org_id,
            end_date,
        )

    async def cancel_subscription(self, *, org_id: str) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            update organizations
            set subscription_status = 'cancelled', stripe_subscription_id = null
            where id::text = $1
            """,
            org_id,
        )


    # integrations

    async def list_integrations(self, org_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {INTEGRATION_COLUMNS}
            from organization_integrations
            where org_id::text = $1
            order by provider asc
            """,
            org_id,
        )
        return [dict(row) for row in rows]

    async def get_integration(self, *, org_id: str, provider: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            select {INTEGRATION_COLUMNS}
            from organization_integrations
            where org_id::text = $1 and provider = $2
            """,
            org_id,
            provider,
        )
        return dict(row) if row else None

    async def upsert_integration_credentials(
        self,
        *,
        org_id: str,
        provider: str,
        credentials_encrypted: str,
        actor_user_id: str,
    ) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into organization_integrations (
                  org_id,
                  provider,
                  credentials_encrypted,
                  is_configured,
                  is_verified,
                  updated_at,
                  updated_by
                )
                values ($1::uuid, $2, $3, true, false, now(), $4::uuid)
                on conflict (org_id, provider) do update
                set
                  credentials_encrypted = excluded.credentials_encrypted,
                  is_configured = true,
                  is_verified = false,
                  updated_at = now(),
                  updated_by = excluded.updated_by
                """,
                org_id,
                provider,
                credentials_encrypted,
                actor_user_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid organization or user id") from exc

    async def set_integration_enabled(self, *, org_id: str, provider: str, enabled: bool) -> None:
        pool = await self._get_pool()
        status = await pool.execute(
            """
            update organization_integrations
            set is_enabled = $3, updated_at = now()
            where org_id::text = $1 and provider = $2
            """,
            org_id,
            provider,
            bool(enabled),
        )
        if status.endswith(" 0"):
            raise RepositoryNotFoundError(f"{provider} integration not found")

    async def set_default_meeting_provider(self, *, org_id: str, provider: str) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    update organization_integrations
                    set is_default_meeting_provider = false
                    where org_id::text = $1 and provider = any($2::text[])
                    """,
                    org_id,
                    list(MEETING_PROVIDERS),
                )
                status = await conn.execute(
                    """
                    update organization_integrations
                    set is_default_meeting_provider = true, updated_at = now()
                    where org_id::text = $1 and provider = $2
                    """,
                    org_id,
                    provider,
                )
                if status.endswith(" 0"):
                    raise RepositoryNotFoundError(f"{provider} integration not found")

    async def delete_integration(self, *, org_id: str, provider: str) -> str | None:
        """Delete an integration; returns the provider promoted to default, if any."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                deleted = await conn.fetchrow(
                    """
                    delete from organization_integrations
                    where org_id::text = $1 and provider = $2
                    returning is_default_meeting_provider
                    """,
                    org_id,
                    provider,
                )
                if not deleted:
                    raise RepositoryNotFoundError(f"{provider} integration not found")
                if not deleted["is_default_meeting_provider"]:
                    return None

                return await conn.fetchval(
                    """
                    update organization_integrations
                    set is_default_meeting_provider = true
                    where id = (
                      select id
                      from organization_integrations
                      where org_id::text = $1 and is_verified = true and is_enabled = true
                      order by provider asc
                      limit 1
                    )
                    returning provider
                    """,
                    org_id,
                )

    async def store_integration_tokens(
        self,
        *,
        org_id: str,
        provider: str,
        provider_metadata: dict[str, Any],
        actor_user_id: str,
    ) -> None:
        pool = await self._get_pool()
        try:
            status = await pool.execute(
                """
                update organization_integrations
                set
                  provider_metadata = $3::jsonb,
                  is_verified = true,
                  is_enabled = true,
                  verified_at = now(),
                  verified_by = $4::uuid,
                  updated_at = now()
                where org_id::text = $1 and provider = $2
                """,
                org_id,
                provider,
                json.dumps(provider_metadata, default=str),
                actor_user_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid user id") from exc
        if status.endswith(" 0"):
            raise RepositoryNotFoundError(f"{provider} integration not found")

    async def clear_integration_tokens(self, *, org_id: str, provider: str) -> None:
        pool = await self._get_pool()
        status = await pool.execute(
            """
            update organization_integrations
            set
              provider_metadata = coalesce(provider_metadata, '{}'::jsonb) - $3::text[],
              is_verified = false,
              is_default_meeting_provider = false,
              verified_at = null,
              updated_at = now()
            where org_id::text = $1 and provider = $2
            """,
            org_id,
            provider,
            list(OAUTH_TOKEN_KEYS),
        )
        if status.endswith(" 0"):
            raise RepositoryNotFoundError(f"{provider} integration not found")

    async def list_ai_configs(self, org_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              id::text as id,
              provider,
              is_enabled,
              is_configured,
              is_verified,
              is_default_provider,
              settings,
              provider_metadata,
              verified_at,
              last_used_at
            from organization_ai_config
            where org_id::text = $1
            order by provider asc
            """,
            org_id,
        )
        return [dict(row) for row in rows]

    async def get_email_config(self, org_id: str) -> dict[str, Any] | None:
        # secrets (api keys, smtp/imap passwords) are never selected
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              id::text as id,
              org_id::text as org_id,
              email_provider,
              from_email,
              from_name,
              reply_to_email,
              smtp_host,
              smtp_port,
              smtp_username,
              smtp_encryption,
              mailgun_domain,
              mailgun_region,
              imap_enabled,
              imap_host,
              imap_port,
              imap_username,
              imap_encryption,
              imap_mailbox,
              track_opens,
              track_clicks,
              domain,
              domain_verified,
              spf_verified,
              dkim_verified,
              dmarc_verified,
              is_enabled,
              is_verified,
              is_configured
            from organization_email_config
            where org_id::text = $1
            """,
            org_id,
        )
        return dict(row) if row else None

    async def list_email_domain_records(self, org_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              id::text as id,
              record_type,
              record_name,
              record_value,
              is_verified,
              last_checked_at
            from email_domain_records
            where org_id::text = $1
            order by record_type asc
            """,
            org_id,
        )
        return [dict(row) for row in rows]

    # interviews and scorecards

    async def list_scorecard_templates(self, org_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              id::text as id,
              org_id::text as org_id,
              name,
              description,
              criteria,
              rating_scale,
              is_default,
              is_active,
              created_at
            from scorecard_templates
            where org_id::text = $1 and is_active = true
            order by created_at desc
            """,
            org_id,
        )
        return [dict(row) for row in rows]

    async def get_interview_org_id(self, interview_id: str) -> str | None:
        pool = await self._get_pool()
        return await pool.fetchval(
            "select org_id::text from interviews where id::text = $1",
            interview_id,
        )

    async def create_scorecard(
        self,
        *,
        interview_id: str,
        org_id: str,
        interviewer_id: str,
        template_id: str | None,
        fields: dict[str, Any],
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                insert into interview_scorecards (
                  interview_id,
                  template_id,
                  interviewer_id,
                  org_id,
                  criteria_scores,
                  overall_score,
                  weighted_score,
                  recommendation,
                  strengths,
                  weaknesses,
                  additional_notes,
                  status,
                  submitted_at
                )
                values ($1::uuid, $2::uuid, $3::uuid, $4::uuid, $5::jsonb, $6, $7, $8, $9, $10, $11, $12, $13)
                returning {SCORECARD_COLUMNS}
                """,
                interview_id,
                template_id,
                interviewer_id,
                org_id,
                json.dumps(fields.get("criteria_scores") or []),
                fields.get("overall_score"),
                fields.get("weighted_score"),
                fields.get("recommendation"),
                fields.get("strengths"),
                fields.get("weaknesses"),
                fields.get("additional_notes"),
                fields.get("status") or "draft",
                fields.get("submitted_at"),
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("scorecard already submitted for this interview") from exc
        except pg_exc.ForeignKeyViolationError as exc:
            raise RepositoryValidationError("interview or template does not exist") from exc
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid interview, template or interviewer id") from exc
        if not row:
            raise RepositoryConflictError("failed to create scorecard")
        return dict(row)

    async def get_scorecard(self, scorecard_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {SCORECARD_COLUMNS} from interview_scorecards where id::text = $1",
            scorecard_id,
        )
        return dict(row) if row else None

    async def update_scorecard(self, *, scorecard_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        assignments: list[str] = []
        params: list[Any] = [scorecard_id]
        for name in SCORECARD_MUTABLE_FIELDS:
            if name not in fields:
                continue
            value = fields[name]
            if name in SCORECARD_JSON_FIELDS:
                params.append(json.dumps(value if value is not None else []))
                assignments.append(f"{name} = ${len(params)}::jsonb")
            else:
                params.append(value)
                assignments.append(f"{name} = ${len(params)}")
        assignments.append("updated_at = now()")

        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                update interview_scorecards
                set {", ".join(assignments)}
                where id::text = $1
                returning {SCORECARD_COLUMNS}
                """,
                *params,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid scorecard field value") from exc
        if not row:
            raise RepositoryNotFoundError("scorecard not found")
        return dict(row)

    # career page and applications

    async def list_career_page_blocks(self, org_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              id::text as id,
              block_type,
              block_order,
              content,
              styles,
              is_enabled
            from career_page_blocks
            where org_id::text = $1
            order by block_order asc
            """,
            org_id,
        )
        return [dict(row) for row in rows]

    async def save_career_page(
        self,
        *,
        org_id: str,
        config: dict[str, Any],
        published: bool,
        blocks: list[dict[str, Any]],
    ) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    status = await conn.execute(
                        """
                        update organizations
                        set career_page_config = $2::jsonb, career_page_published = $3
                        where id::text = $1
                        """,
                        org_id,
                        json.dumps(config),
                        bool(published),
                    )
                    if status.endswith(" 0"):
                        raise RepositoryNotFoundError("organization not found")
                    await conn.execute("delete from career_page_blocks where org_id::text = $1", org_id)
                    if blocks:
                        await conn.executemany(
                            """
                            insert into career_page_blocks (org_id, block_type, block_order, content, styles, is_enabled)
                            values ($1::uuid, $2, $3, $4::jsonb, $5::jsonb, $6)
                            """,
                            [
                                (
                                    org_id,
                                    block["block_type"],
                                    index,
                                    json.dumps(block.get("content") or {}),
                                    json.dumps(block.get("styles") or {}),
                                    bool(block.get("is_enabled", True)),
                                )
                                for index, block in enumerate(blocks)
                            ],
                        )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid career page content") from exc

    async def list_published_jobs(self, org_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              id::text as id,
              title,
              location,
              employment_type,
              department,
              published_at
            from jobs
            where org_id::text = $1 and status = 'published'
            order by published_at desc nulls last
            """,
            org_id,
        )
        return [dict(row) for row in rows]

    async def get_published_job(self, job_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select j.id::text as id, j.title, j.org_id::text as org_id, o.name as organization_name
            from jobs j
            join organizations o on o.id = j.org_id
            where j.id::text = $1 and j.status = 'published'
            """,
            job_id,
        )
        return dict(row) if row else None

    async def find_candidate_id(self, *, org_id: str, email: str) -> str | None:
        pool = await self._get_pool()
        return await pool.fetchval(
            """
            select id::text
            from candidates
            where org_id::text = $1 and lower(email) = lower($2)
            limit 1
            """,
            org_id,
            email,
        )

    async def create_candidate(
        self,
        *,
        org_id: str,
        first_name: str,
        last_name: str,
        email: str,
        phone: str | None,
        linkedin_url: str | None,
    ) -> str:
        pool = await self._get_pool()
        try:
            candidate_id = await pool.fetchval(
                """
                insert into candidates (org_id, first_name, last_name, email, phone, linkedin_url, source, overall_status)
                values ($1::uuid, $2, $3, $4, $5, $6, 'website', 'new')
                returning id::text
                """,
                org_id,
                first_name,
                last_name,
                email,
                phone,
                linkedin_url,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid organization id") from exc
        if not candidate_id:
            raise RepositoryConflictError("failed to create candidate profile")
        return candidate_id

    async def set_candidate_resume_url(self, *, candidate_id: str, resume_url: str) -> None:
        pool = await self._get_pool()
        await pool.execute(
            "update candidates set resume_url = $2 where id::text = $1",
            candidate_id,
            resume_url,
        )

    async def application_exists(self, *, candidate_id: str, job_id: str) -> bool:
        pool = await self._get_pool()
        found = await pool.fetchval(
            """
            select exists(
              select 1 from applications where candidate_id::text = $1 and job_id::text = $2
            )
            """,
            candidate_id,
            job_id,
        )
        return bool(found)

    async def create_application(
        self,
        *,
        org_id: str,
        candidate_id: str,
        job_id: str,
        cover_letter: str | None,
    ) -> str:
        pool = await self._get_pool()
        try:
            application_id = await pool.fetchval(
                """
                insert into applications (org_id, candidate_id, job_id, stage_id, status, source, cover_letter, applied_at)
                values (
                  $1::uuid,
                  $2::uuid,
                  $3::uuid,
                  (
                    select id from hiring_stages
                    where org_id::text = $1
                    order by sort_order asc
                    limit 1
                  ),
                  'new',
                  'website',
                  $4,
                  $5
                )
                returning id::text
                """,
                org_id,
                candidate_id,
                job_id,
                cover_letter,
                datetime.now(timezone.utc),
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("You have already applied to this position") from exc
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid organization, candidate or job id") from exc
        if not application_id:
            raise RepositoryConflictError("failed to submit application")
        return application_id

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("ATS_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
