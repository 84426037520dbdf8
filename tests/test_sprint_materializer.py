"""
Tests for persisting AI sprint plans.
"""

from datetime import date

import pytest
from sqlalchemy import func, select

from sprintpilot.core.exceptions import ConflictError, PersistenceError, ValidationError
from sprintpilot.models import Issue, Sprint, UserActivity
from sprintpilot.schemas.ai import SprintPlan
from sprintpilot.services.scope_service import ScopeService
from sprintpilot.services.sprint_materializer import SprintMaterializer


def _plan(seed, reporter_ids=None, status="Planning") -> SprintPlan:
    reporter_ids = reporter_ids or [seed.user.id] * 3
    issues = [
        {
            "board_id": seed.board.id,
            "title": title,
            "description": f"{title} details",
            "issue_type": issue_type,
            "status": "To Do",
            "priority": priority,
            "story_points": points,
            "original_estimate": points * 5,
            "reporter_id": reporter_id,
            "assignee_id": seed.teammate.id,
        }
        for (title, issue_type, priority, points), reporter_id in zip(
            [
                ("Integrate Stripe", "Story", "P1", 8),
                ("Fix guest checkout", "Bug", "P1", 3),
                ("Export orders", "Task", "P3", 2),
            ],
            reporter_ids,
        )
    ]
    return SprintPlan.model_validate({
        "board_id": seed.board.id,
        "name": "Payments sprint",
        "goal": "Take card payments",
        "start_date": date(2024, 3, 4),
        "end_date": date(2024, 3, 15),
        "capacity_story_points": 20,
        "status": status,
        "created_by": seed.user.id,
        "issues": issues,
    })


async def _count(db, model) -> int:
    return (await db.execute(select(func.count(model.id)))).scalar()


@pytest.mark.asyncio
async def test_materializes_sprint_and_issues(db, seed, audit) -> None:
    materializer = SprintMaterializer(db, audit=audit)

    result = await materializer.create_sprint_from_plan(seed.project.id, seed.user.id, _plan(seed))

    assert result.sprint["name"] == "Payments sprint"
    assert result.sprint["baseline_points"] == 13
    assert [issue.title for issue in result.issues] == ["Integrate Stripe", "Fix guest checkout", "Export orders"]
    assert result.summary == {
        "total_issues": 3,
        "total_story_points": 13,
        "capacity_story_points": 20,
        "capacity_utilization": 65,
    }

    assert await _count(db, Sprint) == 1
    assert await _count(db, Issue) == 3

    status = await ScopeService(db).get_scope_status(result.sprint["id"])
    assert status.current_points == 13
    assert status.scope_alerted is False

    activity = (await db.execute(select(UserActivity))).scalars().all()
    assert [(a.action, a.resource_type) for a in activity] == [("create", "sprint")]


@pytest.mark.asyncio
async def test_estimates_seed_remaining_time(db, seed) -> None:
    result = await SprintMaterializer(db).create_sprint_from_plan(seed.project.id, seed.user.id, _plan(seed))

    issue = await db.get(Issue, result.issues[0].id)
    assert issue.original_estimate == 40
    assert issue.time_remaining == 40
    assert issue.sprint_id == result.sprint["id"]


@pytest.mark.asyncio
async def test_failed_insert_rolls_back_everything(db, seed) -> None:
    """A bad reporter on the second issue leaves no sprint and no issues behind."""
    plan = _plan(seed, reporter_ids=[seed.user.id, 9999, seed.user.id])

    with pytest.raises(PersistenceError):
        await SprintMaterializer(db).create_sprint_from_plan(seed.project.id, seed.user.id, plan)

    assert await _count(db, Sprint) == 0
    assert await _count(db, Issue) == 0


@pytest.mark.asyncio
async def test_board_must_belong_to_project(db, seed) -> None:
    with pytest.raises(ValidationError):
        await SprintMaterializer(db).create_sprint_from_plan(seed.project.id + 1, seed.user.id, _plan(seed))

    assert await _count(db, Sprint) == 0


@pytest.mark.asyncio
async def test_active_plan_conflicts_with_active_sprint(db, seed, make_sprint) -> None:
    await make_sprint(status="Active")

    with pytest.raises(ConflictError):
        await SprintMaterializer(db).create_sprint_from_plan(
            seed.project.id, seed.user.id, _plan(seed, status="Active")
        )


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_materialization(db, seed, broken_audit, caplog) -> None:
    materializer = SprintMaterializer(db, audit=broken_audit)

    result = await materializer.create_sprint_from_plan(seed.project.id, seed.user.id, _plan(seed))

    assert result.summary["total_issues"] == 3
    assert await _count(db, Sprint) == 1
    assert await _count(db, Issue) == 3
    assert "Failed to log create sprint activity" in caplog.text
