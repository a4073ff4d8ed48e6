from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from conftest import ORG_ID, FakeAtsRepository, auth_headers

SCORECARD = {
    "interviewId": "interview-1",
    "orgId": ORG_ID,
    "templateId": "template-1",
    "criteriaScores": [{"criterionId": "c1", "score": 4, "notes": "clear reasoning"}],
    "overallScore": 4,
    "recommendation": "yes",
}


def _create(client: TestClient, user_id: str = "interviewer-1", **overrides: Any):
    return client.post("/scorecards", json={**SCORECARD, **overrides}, headers=auth_headers(user_id))


def test_templates_are_listed_for_callers_organization(client: TestClient) -> None:
    response = client.get("/scorecard-templates", headers=auth_headers("interviewer-1"))

    assert response.status_code == 200
    templates = response.json()["templates"]
    assert [template["id"] for template in templates] == ["template-1"]
    assert templates[0]["criteria"] == [{"id": "c1", "name": "Problem solving", "weight": 50}]
    assert templates[0]["ratingScale"] == 5


def test_candidates_cannot_read_templates(client: TestClient) -> None:
    response = client.get("/scorecard-templates", headers=auth_headers("candidate-1"))

    assert response.status_code == 403


def test_create_scorecard_records_the_caller_as_interviewer(client: TestClient) -> None:
    response = _create(client)

    assert response.status_code == 201
    scorecard = response.json()["scorecard"]
    assert scorecard["interviewerId"] == "interviewer-1"
    assert scorecard["interviewId"] == "interview-1"
    assert scorecard["status"] == "draft"
    assert scorecard["submittedAt"] is None
    assert scorecard["criteriaScores"][0]["criterion_id"] == "c1"


def test_submitted_scorecard_gets_a_submission_time(client: TestClient) -> None:
    response = _create(client, status="submitted")

    assert response.status_code == 201
    assert response.json()["scorecard"]["submittedAt"] is not None


def test_interview_from_another_organization_is_not_found(client: TestClient) -> None:
    response = _create(client, interviewId="interview-2")

    assert response.status_code == 404
    assert response.json() == {"error": "Interview not found"}


def test_second_scorecard_for_same_interview_conflicts(client: TestClient) -> None:
    assert _create(client).status_code == 201

    response = _create(client)

    assert response.status_code == 409


def test_create_scorecard_validates_recommendation(client: TestClient) -> None:
    response = _create(client, recommendation="maybe")

    assert response.status_code == 400
    assert response.json()["error"].startswith("recommendation")


def test_only_the_interviewer_can_update(client: TestClient) -> None:
    scorecard_id = _create(client).json()["scorecard"]["id"]

    response = client.put(
        f"/scorecards/{scorecard_id}",
        json={"strengths": "rewritten"},
        headers=auth_headers("interviewer-2"),
    )

    assert response.status_code == 403
    assert response.json() == {"error": "Only the interviewer can update this scorecard"}


def test_submitting_an_update_sets_submission_time(client: TestClient, fake_repo: FakeAtsRepository) -> None:
    scorecard_id = _create(client).json()["scorecard"]["id"]

    response = client.put(
        f"/scorecards/{scorecard_id}",
        json={"status": "submitted", "strengths": "systems thinking"},
        headers=auth_headers("interviewer-1"),
    )

    assert response.status_code == 200
    scorecard = response.json()["scorecard"]
    assert scorecard["status"] == "submitted"
    assert scorecard["strengths"] == "systems thinking"
    assert scorecard["submittedAt"] is not None
    assert fake_repo.scorecards[scorecard_id]["submitted_at"] is not None


def test_empty_update_is_rejected(client: TestClient) -> None:
    scorecard_id = _create(client).json()["scorecard"]["id"]

    response = client.put(f"/scorecards/{scorecard_id}", json={}, headers=auth_headers("interviewer-1"))

    assert response.status_code == 400
    assert response.json() == {"error": "No fields to update"}


def test_updating_missing_scorecard_is_not_found(client: TestClient) -> None:
    response = client.put("/scorecards/nope", json={"strengths": "x"}, headers=auth_headers("interviewer-1"))

    assert response.status_code == 404
