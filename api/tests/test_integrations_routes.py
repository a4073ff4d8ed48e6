from __future__ import annotations

import base64
import json
from typing import Any
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

import ats_api.api.routes.oauth as oauth_routes
from ats_api.services.crypto import get_credential_cipher
from ats_api.services.oauth import OAuthError, OAuthState, TokenSet
from ats_api.services.repository import RepositoryValidationError
from conftest import ORG_ID, FakeAtsRepository, auth_headers

CREDENTIALS = {"client_id": "zoom-client", "client_secret": "zoom-secret"}


def _save(client: TestClient, user_id: str | None, payload: dict[str, Any]):
    headers = auth_headers(user_id) if user_id else {}
    return client.post("/org/integrations/credentials", json=payload, headers=headers)


def _seed_integration(repo: FakeAtsRepository, provider: str, **fields: Any) -> dict[str, Any]:
    row = {
        "id": f"{ORG_ID}-{provider}",
        "org_id": ORG_ID,
        "provider": provider,
        "is_enabled": True,
        "is_configured": True,
        "is_verified": True,
        "is_default_meeting_provider": False,
        "credentials_encrypted": None,
        "provider_metadata": None,
        "verified_at": None,
    }
    row.update(fields)
    repo.integrations[(ORG_ID, provider)] = row
    return row


def test_save_credentials_requires_a_session(client: TestClient) -> None:
    response = _save(client, None, {"orgId": ORG_ID, "provider": "zoom", "credentials": CREDENTIALS})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_save_credentials_accepts_session_cookie(client: TestClient) -> None:
    client.cookies.set("sb-access-token", "owner-1")

    response = client.post(
        "/org/integrations/credentials",
        json={"orgId": ORG_ID, "provider": "zoom", "credentials": CREDENTIALS},
    )

    assert response.status_code == 200


@pytest.mark.parametrize("user_id", ["recruiter-1", "org-admin-1", "outsider-1"])
def test_save_credentials_denies_non_admins(client: TestClient, user_id: str) -> None:
    response = _save(client, user_id, {"orgId": ORG_ID, "provider": "zoom", "credentials": CREDENTIALS})

    assert response.status_code == 403
    assert "error" in response.json()


def test_save_credentials_encrypts_and_marks_configured(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    response = _save(client, "owner-1", {"orgId": ORG_ID, "provider": "zoom", "credentials": CREDENTIALS})

    assert response.status_code == 200
    assert response.json()["success"] is True
    row = fake_repo.integrations[(ORG_ID, "zoom")]
    assert row["is_configured"] is True
    assert row["is_verified"] is False
    assert "zoom-secret" not in row["credentials_encrypted"]
    assert get_credential_cipher().decrypt_credentials(row["credentials_encrypted"]) == CREDENTIALS


def test_save_credentials_resets_verification(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    _seed_integration(fake_repo, "zoom", is_verified=True)

    _save(client, "owner-1", {"orgId": ORG_ID, "provider": "zoom", "credentials": CREDENTIALS})

    assert fake_repo.integrations[(ORG_ID, "zoom")]["is_verified"] is False


def test_save_credentials_reports_missing_field(client: TestClient) -> None:
    response = _save(client, "owner-1", {"provider": "zoom", "credentials": CREDENTIALS})

    assert response.status_code == 400
    assert response.json() == {"error": "orgId is required"}


def test_save_credentials_rejects_incomplete_credentials(client: TestClient) -> None:
    response = _save(client, "owner-1", {"orgId": ORG_ID, "provider": "zoom", "credentials": {"client_id": "x"}})

    assert response.status_code == 400
    assert "client_secret" in response.json()["error"]


def test_save_credentials_rejects_unknown_provider(client: TestClient) -> None:
    response = _save(client, "owner-1", {"orgId": ORG_ID, "provider": "webex", "credentials": CREDENTIALS})

    assert response.status_code == 400
    assert response.json()["error"].startswith("provider:")


def test_list_integrations_hides_tokens(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    _seed_integration(fake_repo, "google", provider_metadata={"email": "ops@acme.test", "access_token": "secret"})
    _seed_integration(fake_repo, "zoom", is_verified=False)

    response = client.get("/org/integrations", headers=auth_headers("org-admin-1"))

    assert response.status_code == 200
    body = response.json()
    assert [row["provider"] for row in body["integrations"]] == ["google", "zoom"]
    assert body["integrations"][0]["providerMetadata"] == {"email": "ops@acme.test"}
    assert [row["provider"] for row in body["meetingProviders"]] == ["google"]


def test_integration_settings_lists_ai_and_email_configuration(client: TestClient) -> None:
    response = client.get("/org/integrations/settings", headers=auth_headers("org-admin-1"))

    assert response.status_code == 200
    body = response.json()
    assert body["aiConfigs"][0]["settings"] == {"model": "gpt"}
    assert body["emailConfig"]["fromEmail"] == "jobs@acme.test"
    assert body["domainRecords"][0]["recordType"] == "TXT"


def test_toggle_integration(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    _seed_integration(fake_repo, "zoom", is_enabled=True)

    response = client.post(
        "/org/integrations/toggle",
        json={"orgId": ORG_ID, "provider": "zoom", "enabled": False},
        headers=auth_headers("org-admin-1"),
    )

    assert response.status_code == 200
    assert fake_repo.integrations[(ORG_ID, "zoom")]["is_enabled"] is False


def test_toggle_missing_integration_is_not_found(client: TestClient) -> None:
    response = client.post(
        "/org/integrations/toggle",
        json={"orgId": ORG_ID, "provider": "zoom", "enabled": True},
        headers=auth_headers("org-admin-1"),
    )

    assert response.status_code == 404


def test_only_one_default_meeting_provider(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    _seed_integration(fake_repo, "google", is_default_meeting_provider=True)
    _seed_integration(fake_repo, "zoom")

    response = client.post(
        "/org/integrations/default",
        json={"orgId": ORG_ID, "provider": "zoom"},
        headers=auth_headers("org-admin-1"),
    )

    assert response.status_code == 200
    defaults = [provider for (_, provider), row in fake_repo.integrations.items() if row["is_default_meeting_provider"]]
    assert defaults == ["zoom"]


def test_unverified_integration_cannot_be_default(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    _seed_integration(fake_repo, "zoom", is_verified=False)

    response = client.post(
        "/org/integrations/default",
        json={"orgId": ORG_ID, "provider": "zoom"},
        headers=auth_headers("org-admin-1"),
    )

    assert response.status_code == 400


def test_deleting_default_promotes_another_provider(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    _seed_integration(fake_repo, "google", is_default_meeting_provider=True)
    _seed_integration(fake_repo, "microsoft")

    response = client.request(
        "DELETE",
        "/org/integrations",
        json={"orgId": ORG_ID, "provider": "google"},
        headers=auth_headers("super-1"),
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "newDefaultProvider": "microsoft"}
    assert (ORG_ID, "google") not in fake_repo.integrations
    assert fake_repo.integrations[(ORG_ID, "microsoft")]["is_default_meeting_provider"] is True


def test_disconnect_clears_tokens_on_callers_organization(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    _seed_integration(
        fake_repo,
        "google",
        is_default_meeting_provider=True,
        provider_metadata={"access_token": "a", "refresh_token": "r", "email": "ops@acme.test"},
    )

    response = client.post("/org/integrations/disconnect", json={"provider": "google"}, headers=auth_headers("org-admin-1"))

    assert response.status_code == 200
    row = fake_repo.integrations[(ORG_ID, "google")]
    assert row["provider_metadata"] == {"email": "ops@acme.test"}
    assert row["is_verified"] is False
    assert row["is_default_meeting_provider"] is False


def test_connect_redirects_to_provider_with_state(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    _seed_integration(
        fake_repo,
        "zoom",
        is_verified=False,
        credentials_encrypted=get_credential_cipher().encrypt_credentials(CREDENTIALS),
    )

    response = client.get(
        "/org/integrations/connect",
        params={"provider": "zoom", "redirect": "/org/settings/integrations"},
        headers=auth_headers("org-admin-1"),
        follow_redirects=False,
    )

    assert response.status_code == 307
    location = response.headers["location"]
    assert location.startswith("https://zoom.us/oauth/authorize?")
    state = json.loads(base64.b64decode(parse_qs(urlsplit(location).query)["state"][0]))
    assert state == {
        "userId": "org-admin-1",
        "orgId": ORG_ID,
        "provider": "zoom",
        "redirectTo": "/org/settings/integrations",
    }


def test_connect_without_credentials_is_rejected(client: TestClient) -> None:
    response = client.get(
        "/org/integrations/connect",
        params={"provider": "google"},
        headers=auth_headers("org-admin-1"),
        follow_redirects=False,
    )

    assert response.status_code == 400


def _callback_state(user_id: str = "org-admin-1", org_id: str = ORG_ID) -> str:
    return OAuthState(user_id=user_id, org_id=org_id, provider="zoom", redirect_to="/org/settings/integrations").encode()


def test_callback_stores_tokens_and_redirects(
    client: TestClient,
    fake_repo: FakeAtsRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _seed_integration(
        fake_repo,
        "zoom",
        is_verified=False,
        credentials_encrypted=get_credential_cipher().encrypt_credentials(CREDENTIALS),
    )
    calls: list[dict[str, Any]] = []

    async def _fake_exchange(provider, **kwargs: Any) -> TokenSet:
        calls.append({"provider": provider.name, **kwargs})
        return TokenSet(access_token="access", refresh_token="refresh", expires_in=3600, email="host@acme.test")

    monkeypatch.setattr(oauth_routes, "exchange_code", _fake_exchange)

    response = client.get(
        "/org/integrations/callback",
        params={"code": "auth-code", "state": _callback_state()},
        headers=auth_headers("org-admin-1"),
        follow_redirects=False,
    )

    assert response.status_code == 307
    assert response.headers["location"] == "https://app.example.com/org/settings/integrations?connected=zoom"
    assert len(calls) == 1
    assert calls[0]["code"] == "auth-code"
    assert calls[0]["credentials"] == CREDENTIALS
    row = fake_repo.integrations[(ORG_ID, "zoom")]
    assert row["is_verified"] is True
    assert row["provider_metadata"]["refresh_token"] == "refresh"
    assert row["provider_metadata"]["email"] == "host@acme.test"


def test_callback_rejects_state_from_another_user(client: TestClient) -> None:
    response = client.get(
        "/org/integrations/callback",
        params={"code": "auth-code", "state": _callback_state(user_id="someone-else")},
        headers=auth_headers("org-admin-1"),
        follow_redirects=False,
    )

    assert response.status_code == 307
    assert response.headers["location"].endswith("?error=invalid_state")


def test_callback_reports_exchange_failure(
    client: TestClient,
    fake_repo: FakeAtsRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _seed_integration(
        fake_repo,
        "zoom",
        is_verified=False,
        credentials_encrypted=get_credential_cipher().encrypt_credentials(CREDENTIALS),
    )

    async def _failing_exchange(provider, **_: Any) -> TokenSet:
        raise OAuthError("zoom token exchange failed")

    monkeypatch.setattr(oauth_routes, "exchange_code", _failing_exchange)

    response = client.get(
        "/org/integrations/callback",
        params={"code": "auth-code", "state": _callback_state()},
        headers=auth_headers("org-admin-1"),
        follow_redirects=False,
    )

    assert response.status_code == 307
    assert response.headers["location"].endswith("?error=connection_failed")
    assert fake_repo.integrations[(ORG_ID, "zoom")]["is_verified"] is False


def test_callback_refuses_state_for_an_organization_the_user_cannot_manage(
    client: TestClient,
    fake_repo: FakeAtsRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _seed_integration(
        fake_repo,
        "zoom",
        credentials_encrypted=get_credential_cipher().encrypt_credentials(CREDENTIALS),
        provider_metadata={"access_token": "existing-token"},
    )
    calls: list[str] = []

    async def _fake_exchange(provider, **_: Any) -> TokenSet:
        calls.append(provider.name)
        return TokenSet(access_token="attacker-token")

    monkeypatch.setattr(oauth_routes, "exchange_code", _fake_exchange)

    response = client.get(
        "/org/integrations/callback",
        params={"code": "auth-code", "state": _callback_state(user_id="outsider-1", org_id=ORG_ID)},
        headers=auth_headers("outsider-1"),
        follow_redirects=False,
    )

    assert response.status_code == 307
    assert response.headers["location"].endswith("?error=forbidden")
    assert calls == []
    assert fake_repo.integrations[(ORG_ID, "zoom")]["provider_metadata"] == {"access_token": "existing-token"}


def test_callback_without_a_session_redirects_to_login(client: TestClient) -> None:
    response = client.get(
        "/org/integrations/callback",
        params={"code": "auth-code", "state": _callback_state()},
        follow_redirects=False,
    )

    assert response.status_code == 307
    assert response.headers["location"] == "https://app.example.com/login"


def test_super_admin_manages_other_organization_integrations(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    _seed_integration(fake_repo, "zoom")

    response = client.get("/org/integrations", params={"orgId": ORG_ID}, headers=auth_headers("super-1"))
    own = client.get("/org/integrations", headers=auth_headers("super-1"))

    assert response.status_code == 200
    assert len(response.json()["integrations"]) == 1
    assert own.status_code == 200
    assert own.json()["integrations"] == []


def test_read_credentials_returns_masked_values(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    _save(client, "owner-1", {"orgId": ORG_ID, "provider": "zoom", "credentials": CREDENTIALS})

    response = client.get(
        "/org/integrations/credentials",
        params={"orgId": ORG_ID, "provider": "zoom"},
        headers=auth_headers("owner-1"),
    )

    assert response.status_code == 200
    credentials = response.json()["credentials"]
    assert credentials["client_id"].endswith("ient")
    assert "zoom-client" not in credentials["client_id"]
    assert credentials["client_secret"].endswith("cret")


def test_read_credentials_without_saved_values_is_empty(client: TestClient) -> None:
    response = client.get(
        "/org/integrations/credentials",
        params={"orgId": ORG_ID, "provider": "google"},
        headers=auth_headers("owner-1"),
    )

    assert response.status_code == 200
    assert response.json() == {"provider": "google", "credentials": {}}


def test_read_credentials_denies_recruiters(client: TestClient) -> None:
    response = client.get(
        "/org/integrations/credentials",
        params={"orgId": ORG_ID, "provider": "zoom"},
        headers=auth_headers("recruiter-1"),
    )

    assert response.status_code == 403


def test_credentials_for_a_malformed_organization_id_are_rejected(
    client: TestClient, fake_repo: FakeAtsRepository, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def _reject(**_: Any) -> None:
        raise RepositoryValidationError("invalid organization or user id")

    monkeypatch.setattr(fake_repo, "upsert_integration_credentials", _reject)

    response = _save(client, "owner-1", {"orgId": ORG_ID, "provider": "zoom", "credentials": CREDENTIALS})

    assert response.status_code == 400
    assert response.json() == {"error": "invalid organization or user id"}
