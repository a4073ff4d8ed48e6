#!/usr/bin/env python3
"""Local stand-in for Supabase ``GET /auth/v1/user``.

Roles live in the ATS database (user_roles / organization_members), so the mock
only maps fixed bearer tokens to user ids; seed matching rows with
scripts/bootstrap_admin.py.
"""

from __future__ import annotations

import argparse
import json
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

MOCK_USERS: dict[str, tuple[str, str]] = {
    "super-admin-token": ("11111111-1111-1111-1111-111111111111", "super.admin@example.com"),
    "org-admin-token": ("22222222-2222-2222-2222-222222222222", "org.admin@example.com"),
    "owner-token": ("33333333-3333-3333-3333-333333333333", "owner@example.com"),
    "recruiter-token": ("44444444-4444-4444-4444-444444444444", "recruiter@example.com"),
    "interviewer-token": ("55555555-5555-5555-5555-555555555555", "interviewer@example.com"),
    "candidate-token": ("66666666-6666-6666-6666-666666666666", "candidate@example.com"),
}


def _user_payload_for_token(token: str) -> dict[str, object] | None:
    user = MOCK_USERS.get(token)
    if user is None:
        return None
    user_id, email = user
    return {
        "id": user_id,
        "email": email,
        "aud": "authenticated",
        "app_metadata": {},
        "user_metadata": {},
    }


def parse_extra_user(spec: str) -> tuple[str, tuple[str, str]]:
    """Parse ``token=user_id:email`` from the command line."""
    token, _, identity = spec.partition("=")
    user_id, _, email = identity.partition(":")
    if not token or not user_id or not email:
        raise argparse.ArgumentTypeError(f"expected token=user_id:email, got {spec!r}")
    return token, (user_id, email)


class MockSupabaseHandler(BaseHTTPRequestHandler):
    server_version = "MockSupabaseAuth/1.0"

    def do_GET(self) -> None:  # noqa: N802 - stdlib handler signature
        route = self.path.partition("?")[0].rstrip("/")
        if route == "/healthz":
            self._respond(HTTPStatus.OK, {"status": "ok", "users": len(MOCK_USERS)})
        elif route != "/auth/v1/user":
            self._respond(HTTPStatus.NOT_FOUND, {"msg": "not found"})
        elif not self.headers.get("apikey"):
            # Supabase rejects user lookups without the project's anon key.
            self._respond(HTTPStatus.UNAUTHORIZED, {"msg": "No API key found in request"})
        else:
            self._respond_with_user(self.headers.get("Authorization", ""))

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        print(f"mock-supabase: {format % args}", flush=True)

    def _respond_with_user(self, authorization: str) -> None:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            self._respond(HTTPStatus.UNAUTHORIZED, {"msg": "This endpoint requires a Bearer token"})
            return
        user = _user_payload_for_token(token.strip())
        if user is None:
            self._respond(HTTPStatus.FORBIDDEN, {"msg": "invalid JWT: unable to parse or verify signature"})
            return
        self._respond(HTTPStatus.OK, user)

    def _respond(self, status: HTTPStatus, payload: dict[str, object]) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status.value)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve a fake Supabase /auth/v1/user for local ATS runs.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=54321)
    parser.add_argument(
        "--user",
        action="append",
        default=[],
        type=parse_extra_user,
        metavar="TOKEN=USER_ID:EMAIL",
        help="Register an extra bearer token (repeatable).",
    )
    args = parser.parse_args()
    MOCK_USERS.update(args.user)

    server = ThreadingHTTPServer((args.host, args.port), MockSupabaseHandler)
    print(f"mock-supabase serving {len(MOCK_USERS)} users on http://{args.host}:{args.port}", flush=True)
    with server:
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            print("mock-supabase stopped", flush=True)


if __name__ == "__main__":
    main()
