"""
Tests for the sprint lifecycle.
"""

from datetime import date

import pytest

from sprintpilot.core.exceptions import ConflictError, NotFoundError, ValidationError
from sprintpilot.services.sprint_service import (
    InvalidStatusTransitionError,
    SprintService,
    SprintStatus,
)


@pytest.mark.asyncio
async def test_create_sprint(db, seed) -> None:
    sprint = await SprintService(db, scope_threshold_pct=0.3).create_sprint(
        board_id=seed.board.id,
        name="Sprint 1",
        start_date=date(2024, 3, 4),
        end_date=date(2024, 3, 15),
        goal="Checkout",
        capacity_story_points=30,
        creator_id=seed.user.id
    )

    assert sprint.id is not None
    assert sprint.status == "Planning"
    assert sprint.baseline_points == 0
    assert sprint.scope_threshold_pct == 0.3
    assert sprint.scope_alerted is False
    assert sprint.created_at is not None


@pytest.mark.asyncio
async def test_create_sprint_validates_fields(db, seed) -> None:
    with pytest.raises(ValidationError) as exc_info:
        await SprintService(db).create_sprint(
            board_id=seed.board.id,
            name=" ",
            start_date=date(2024, 3, 15),
            end_date=date(2024, 3, 4),
            capacity_story_points=-1
        )

    fields = {detail["field"] for detail in exc_info.value.details}
    assert fields == {"name", "end_date", "capacity_story_points"}


@pytest.mark.asyncio
async def test_create_sprint_unknown_board(db, seed) -> None:
    with pytest.raises(NotFoundError):
        await SprintService(db).create_sprint(board_id=9999, name="Sprint 1")


@pytest.mark.asyncio
async def test_cannot_create_completed_sprint(db, seed) -> None:
    with pytest.raises(ValidationError):
        await SprintService(db).create_sprint(board_id=seed.board.id, name="Old", status=SprintStatus.COMPLETED)


@pytest.mark.asyncio
async def test_one_active_sprint_per_board(db, seed, make_sprint) -> None:
    await make_sprint(name="Running", status="Active")

    with pytest.raises(ConflictError):
        await SprintService(db).create_sprint(board_id=seed.board.id, name="Second", status=SprintStatus.ACTIVE)

    planned = await make_sprint(name="Next")
    with pytest.raises(ConflictError):
        await SprintService(db).start_sprint(planned.id)


@pytest.mark.asyncio
async def test_start_sprint_snapshots_baseline(db, make_sprint, make_issue) -> None:
    sprint = await make_sprint()
    await make_issue(sprint_id=sprint.id, story_points=8)
    await make_issue(sprint_id=sprint.id, story_points=5)

    started = await SprintService(db).start_sprint(sprint.id)

    assert started.status == "Active"
    assert started.start_date == date.today()
    assert started.baseline_points == 13


@pytest.mark.asyncio
async def test_start_sprint_keeps_existing_baseline(db, make_sprint, make_issue) -> None:
    sprint = await make_sprint(baseline_points=10, start_date=date(2024, 3, 4))
    await make_issue(sprint_id=sprint.id, story_points=13)

    started = await SprintService(db).start_sprint(sprint.id)

    assert started.baseline_points == 10
    assert started.start_date == date(2024, 3, 4)


@pytest.mark.asyncio
async def test_status_transitions(db, make_sprint) -> None:
    sprint = await make_sprint()
    service = SprintService(db)

    await service.start_sprint(sprint.id)
    completed = await service.complete_sprint(sprint.id)
    assert completed.status == "Completed"
    assert completed.end_date == date.today()

    with pytest.raises(InvalidStatusTransitionError):
        await service.start_sprint(sprint.id)


@pytest.mark.asyncio
async def test_abandoned_planning_sprint_can_be_completed(db, make_sprint) -> None:
    sprint = await make_sprint(name="Abandoned")
    service = SprintService(db)

    completed = await service.complete_sprint(sprint.id)

    assert completed.status == "Completed"
    assert completed.end_date == date.today()
    assert completed.baseline_points == 0
    with pytest.raises(InvalidStatusTransitionError):
        await service.complete_sprint(sprint.id)


@pytest.mark.asyncio
async def test_update_sprint(db, make_sprint) -> None:
    sprint = await make_sprint(start_date=date(2024, 3, 4), end_date=date(2024, 3, 15))
    service = SprintService(db)

    updated = await service.update_sprint(sprint.id, {"goal": "New goal", "capacity_story_points": 25})
    assert updated.goal == "New goal"
    assert updated.capacity_story_points == 25

    with pytest.raises(ValidationError):
        await service.update_sprint(sprint.id, {"end_date": date(2024, 3, 1)})


@pytest.mark.asyncio
async def test_delete_sprint_guard(db, make_sprint, make_issue) -> None:
    busy = await make_sprint(name="Busy")
    await make_issue(sprint_id=busy.id, story_points=3)
    empty = await make_sprint(name="Empty")
    service = SprintService(db)

    with pytest.raises(ConflictError):
        await service.delete_sprint(busy.id)

    await service.delete_sprint(empty.id)
    with pytest.raises(NotFoundError):
        await service.get_sprint(empty.id)


@pytest.mark.asyncio
async def test_sprint_report(db, make_sprint, make_issue) -> None:
    sprint = await make_sprint(baseline_points=10, capacity_story_points=20)
    await make_issue(sprint_id=sprint.id, story_points=5, status="Done")
    await make_issue(sprint_id=sprint.id, story_points=3, status="In Progress")
    await make_issue(sprint_id=sprint.id, story_points=2, status="Blocked", blocked_reason="Vendor")
    await make_issue(sprint_id=sprint.id, story_points=3)

    report = await SprintService(db).get_sprint_report(sprint.id)

    assert report.total_issues == 4
    assert report.completed_issues == 1
    assert report.in_progress_issues == 1
    assert report.blocked_issues == 1
    assert report.total_points == 13
    assert report.completed_points == 5
    assert report.remaining_points == 8
    assert report.completion_rate == 25.0
    assert report.scope.creep_ratio == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_board_sprints_filter(db, seed, make_sprint) -> None:
    await make_sprint(name="Done", status="Completed")
    await make_sprint(name="Next")

    sprints = await SprintService(db).get_board_sprints(seed.board.id, SprintStatus.PLANNING)
    assert [sprint.name for sprint in sprints] == ["Next"]
