"""
HTTP contract tests for the AI routes.
"""

import json
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from sprintpilot.core.exceptions import ServiceUnavailableError
from sprintpilot.models import Issue, Project, Sprint

SCOPE_ANALYSIS = json.dumps({
    "severity": "High",
    "scope_creep_detected": True,
    "added_work": ["Reporting page"],
    "impact_analysis": "Goal at risk",
    "recommendations": ["Move reporting to next sprint"],
})

RISKS = json.dumps({
    "overall_risk_level": "Medium",
    "risks": [],
    "recommendations": ["Unblock checkout"],
})


def _plan_body(seed, priority="P1"):
    return {
        "board_id": seed.board.id,
        "name": "Payments sprint",
        "goal": "Take card payments",
        "start_date": "2024-03-04",
        "end_date": "2024-03-15",
        "capacity_story_points": 20,
        "status": "Planning",
        "created_by": seed.user.id,
        "issues": [{
            "board_id": seed.board.id,
            "title": "Integrate Stripe",
            "description": "Card payments",
            "issue_type": "Story",
            "status": "To Do",
            "priority": priority,
            "story_points": 8,
            "original_estimate": 40,
            "reporter_id": seed.user.id,
            "assignee_id": None,
        }],
    }


@pytest.mark.asyncio
async def test_requires_authentication(async_client: AsyncClient, seed) -> None:
    response = await async_client.get(
        f"/api/v1/projects/{seed.project.id}/ai/quota",
        headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401
    assert response.json()["code"] == "AUTHENTICATION_ERROR"


@pytest.mark.asyncio
async def test_quota_status(async_client: AsyncClient, seed, auth_headers) -> None:
    response = await async_client.get(f"/api/v1/projects/{seed.project.id}/ai/quota", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {
        "quota_limit": 50,
        "quota_remaining": 50,
        "quota_used": 0,
        "reset_date": date.today().isoformat(),
        "ai_service_available": True,
    }


@pytest.mark.asyncio
async def test_non_member_is_forbidden(async_client: AsyncClient, seed, outsider_headers, llm) -> None:
    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/sprint-plan", json={}, headers=outsider_headers
    )

    assert response.status_code == 403
    assert response.json()["code"] == "ACCESS_DENIED"
    assert llm.calls == []


@pytest.mark.asyncio
async def test_unavailable_ai_returns_503(async_client: AsyncClient, seed, auth_headers, llm) -> None:
    llm.ready = False

    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/risk-assessment", json={}, headers=auth_headers
    )

    assert response.status_code == 503
    assert response.json()["detail"] == "AI service not available"


@pytest.mark.asyncio
async def test_failed_completion_returns_503_without_using_quota(
    async_client: AsyncClient, db, seed, auth_headers, llm
) -> None:
    llm.error = ServiceUnavailableError("AI service request failed")

    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/risk-assessment", json={}, headers=auth_headers
    )

    assert response.status_code == 503
    assert response.json()["detail"] == "AI service request failed"
    stmt = select(Project.ai_requests_count).where(Project.id == seed.project.id)
    assert (await db.execute(stmt)).scalar() == 0


@pytest.mark.asyncio
async def test_exhausted_quota_returns_429(async_client: AsyncClient, db, seed, auth_headers, llm) -> None:
    seed.project.ai_requests_count = 50
    await db.commit()

    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/sprint-plan", json={"capacity": 20}, headers=auth_headers
    )

    assert response.status_code == 429
    body = response.json()
    assert body["code"] == "QUOTA_EXCEEDED"
    assert body["quota_remaining"] == 0
    assert body["reset_date"] == date.today().isoformat()
    assert llm.calls == []


@pytest.mark.asyncio
async def test_sprint_plan_response_shape(async_client: AsyncClient, seed, auth_headers, llm, make_issue) -> None:
    issue = await make_issue(title="Integrate Stripe", story_points=8, priority="P1")
    llm.queue(json.dumps({
        "recommended_issues": [issue.id],
        "priority_order": [issue.id],
        "risks": [],
        "suggestions": [],
        "capacity_analysis": "Fits",
    }))

    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/sprint-plan",
        json={"sprintGoal": "Payments", "capacity": 20, "duration": 2},
        headers=auth_headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["sprint_plan"]["recommended_issues"] == [issue.id]
    assert body["input_data"]["sprint_goal"] == "Payments"
    assert [i["id"] for i in body["input_data"]["issues"]] == [issue.id]
    assert body["metadata"]["quota_remaining"] == 49
    assert body["metadata"]["model"] == "fake-model"


@pytest.mark.asyncio
async def test_invalid_body_is_400(async_client: AsyncClient, seed, auth_headers) -> None:
    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/sprint-plan",
        json={"duration": 12},
        headers=auth_headers
    )

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert any(detail["field"].endswith("duration") for detail in body["details"])


@pytest.mark.asyncio
async def test_scope_creep_response_shape(async_client: AsyncClient, seed, auth_headers, llm, make_sprint) -> None:
    sprint = await make_sprint(name="Sprint 4", status="Active", baseline_points=10)
    llm.queue(SCOPE_ANALYSIS)

    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/scope-creep",
        json={"sprintId": sprint.id},
        headers=auth_headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["scope_analysis"]["severity"] == "High"
    assert body["sprint_info"] == {"id": sprint.id, "name": "Sprint 4", "goal": None, "status": "Active"}


@pytest.mark.asyncio
async def test_scope_creep_unknown_sprint(async_client: AsyncClient, seed, auth_headers) -> None:
    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/scope-creep",
        json={"sprintId": 9999},
        headers=auth_headers
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_risk_assessment_with_heatmap(async_client: AsyncClient, seed, auth_headers, llm, make_issue) -> None:
    await make_issue(assignee_id=seed.teammate.id, story_points=8, status="Blocked", blocked_reason="Vendor")
    llm.queue(RISKS)

    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/risk-assessment",
        json={"includeHeatmap": True},
        headers=auth_headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["risk_assessment"]["overall_risk_level"] == "Medium"
    assert body["project_summary"] == {"total_issues": 1, "total_sprints": 0, "blocked_issues": 1, "team_size": 2}
    members = {m["id"]: m for m in body["heatmap_data"]["teamMembers"]}
    assert members[seed.teammate.id]["issueBreakdown"]["blocked"] == 1
    assert members[seed.user.id]["workload"]["assigned"] == 0


@pytest.mark.asyncio
async def test_parse_failure_is_returned_as_data(async_client: AsyncClient, seed, auth_headers, llm) -> None:
    llm.queue('{"overall_risk_level": "High", "risks": [')

    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/risk-assessment", headers=auth_headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["risk_assessment"]["error_kind"] == "truncated_response"
    assert "heatmap_data" not in body


@pytest.mark.asyncio
async def test_retrospective_response_shape(async_client: AsyncClient, seed, auth_headers, llm, make_sprint, make_issue) -> None:
    sprint = await make_sprint(goal="Checkout", status="Completed")
    await make_issue(sprint_id=sprint.id, story_points=5, status="Done")
    await make_issue(sprint_id=sprint.id, story_points=3)
    llm.queue(json.dumps({
        "performance_analysis": "Solid",
        "productivity_insights": [],
        "improvement_suggestions": [],
        "action_items": [],
        "overall_rating": "Good",
    }))

    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/retrospective",
        json={"sprintId": sprint.id, "teamFeedback": {"wentWell": "Pairing"}},
        headers=auth_headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["retrospective_insights"]["overall_rating"] == "Good"
    assert body["sprint_summary"] == {
        "goal": "Checkout",
        "plannedPoints": 8,
        "completedPoints": 5,
        "completedIssues": 1,
        "totalIssues": 2,
    }


@pytest.mark.asyncio
async def test_generate_then_create_sprint(async_client: AsyncClient, db, seed, auth_headers, llm) -> None:
    llm.queue(json.dumps(_plan_body(seed)))

    generated = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/generate-sprint-plan",
        json={
            "boardId": seed.board.id,
            "startDate": "2024-03-04",
            "endDate": "2024-03-15",
            "totalStoryPoints": 20,
            "tasksList": ["Critical: integrate Stripe"],
        },
        headers=auth_headers
    )
    assert generated.status_code == 200
    assert (await db.execute(select(func.count(Sprint.id)))).scalar() == 0

    created = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/create-sprint",
        json=generated.json(),
        headers=auth_headers
    )

    assert created.status_code == 201
    body = created.json()
    assert body["sprint"]["name"] == "Payments sprint"
    assert body["summary"]["total_story_points"] == 8
    assert len(body["issues"]) == 1
    assert (await db.execute(select(func.count(Issue.id)))).scalar() == 1


@pytest.mark.asyncio
async def test_generate_sprint_plan_rejects_bad_dates(async_client: AsyncClient, seed, auth_headers) -> None:
    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/generate-sprint-plan",
        json={
            "boardId": seed.board.id,
            "startDate": "2024-03-15",
            "endDate": "2024-03-04",
            "totalStoryPoints": 20,
            "tasksList": ["Integrate Stripe"],
        },
        headers=auth_headers
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_sprint_rejects_p4_plan(async_client: AsyncClient, db, seed, auth_headers) -> None:
    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/create-sprint",
        json=_plan_body(seed, priority="P4"),
        headers=auth_headers
    )

    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "issues.0.priority"
    assert (await db.execute(select(func.count(Sprint.id)))).scalar() == 0


@pytest.mark.asyncio
async def test_create_sprint_does_not_consume_quota(async_client: AsyncClient, db, seed, auth_headers, llm) -> None:
    llm.ready = False

    response = await async_client.post(
        f"/api/v1/projects/{seed.project.id}/ai/create-sprint",
        json=_plan_body(seed),
        headers=auth_headers
    )

    assert response.status_code == 201
    stmt = select(Project.ai_requests_count).where(Project.id == seed.project.id)
    assert (await db.execute(stmt)).scalar() == 0


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
