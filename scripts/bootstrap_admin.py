#!/usr/bin/env python3
"""Emit deterministic SQL that grants an ATS role to an existing user."""

from __future__ import annotations

import argparse

PLATFORM_ROLES = (
    "super_admin",
    "org_admin",
    "hr_manager",
    "recruiter",
    "hiring_manager",
    "interviewer",
    "candidate",
)
MEMBERSHIP_ROLES = ("owner", "admin")


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, user_id: str | None, email: str | None, org_id: str | None) -> str:
    if role in MEMBERSHIP_ROLES and not org_id:
        raise ValueError(f"--org-id is required for the {role} role")

    if user_id:
        target_where = f"id = {_quote_sql(user_id)}::uuid"
    else:
        assert email is not None
        target_where = f"lower(email) = lower({_quote_sql(email)})"
    target = f"(select id from auth.users where {target_where})"
    role_value = _quote_sql(role)

    statements = [
        "-- ATS role bootstrap SQL",
        "-- Run this in the Supabase SQL editor (or equivalent privileged Postgres session).",
        "",
    ]
    if org_id:
        statements.append(f"update profiles\nset org_id = {_quote_sql(org_id)}::uuid\nwhere id = {target};\n")

    if role in MEMBERSHIP_ROLES:
        statements.append(
            "insert into organization_members (org_id, user_id, role)\n"
            f"select {_quote_sql(org_id or '')}::uuid, id, {role_value} from auth.users where {target_where}\n"
            "on conflict (org_id, user_id) do update set role = excluded.role;\n"
        )
    else:
        statements.append(
            "insert into user_roles (user_id, role, is_primary)\n"
            f"select id, {role_value}, true from auth.users where {target_where}\n"
            "on conflict (user_id, role) do update set is_primary = true;\n"
        )
    return "\n".join(statements)


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to grant an ATS role to a Supabase user.")
    parser.add_argument(
        "--role",
        choices=[*PLATFORM_ROLES, *MEMBERSHIP_ROLES],
        default="super_admin",
        help="Platform role (user_roles) or organization membership role (organization_members)",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    parser.add_argument("--org-id", help="Organization to attach the user to (required for owner/admin)")
    args = parser.parse_args()

    try:
        sql = render_sql(role=args.role, user_id=args.user_id, email=args.email, org_id=args.org_id)
    except ValueError as exc:
        parser.error(str(exc))
    print(sql)


if __name__ == "__main__":
    main()
