"""
Tests for issue CRUD, comments and time tracking.
"""

from datetime import date

import pytest
from sqlalchemy import func, select

from sprintpilot.core.exceptions import NotFoundError, ValidationError
from sprintpilot.models import Comment, TimeLog
from sprintpilot.services.issue_service import IssueService
from sprintpilot.services.scope_service import ScopeService


@pytest.mark.asyncio
async def test_create_issue_defaults(db, seed) -> None:
    issue = await IssueService(db).create_issue(
        seed.board.id, seed.user.id, {"title": "Add CSV export", "original_estimate": 10}
    )

    assert issue.issue_type == "Task"
    assert issue.status == "To Do"
    assert issue.priority == "P3"
    assert issue.time_remaining == 10
    assert issue.time_spent == 0
    assert issue.reporter_id == seed.user.id


@pytest.mark.asyncio
async def test_create_issue_accepts_p4(db, seed) -> None:
    issue = await IssueService(db).create_issue(seed.board.id, seed.user.id, {"title": "Dark mode", "priority": "P4"})
    assert issue.priority == "P4"


@pytest.mark.asyncio
async def test_create_issue_validation(db, seed) -> None:
    with pytest.raises(ValidationError) as exc_info:
        await IssueService(db).create_issue(
            seed.board.id,
            seed.user.id,
            {"title": "", "priority": "P5", "story_points": 101, "original_estimate": -1}
        )

    fields = {detail["field"] for detail in exc_info.value.details}
    assert fields == {"title", "priority", "story_points", "original_estimate", "time_remaining"}


@pytest.mark.asyncio
async def test_blocked_issue_requires_reason(db, seed, make_issue) -> None:
    service = IssueService(db)

    with pytest.raises(ValidationError):
        await service.create_issue(seed.board.id, seed.user.id, {"title": "Checkout", "status": "Blocked"})

    issue = await make_issue()
    with pytest.raises(ValidationError):
        await service.update_status(issue.id, "Blocked")

    blocked = await service.update_status(issue.id, "Blocked", "Waiting on vendor")
    assert blocked.blocked_reason == "Waiting on vendor"

    unblocked = await service.update_status(issue.id, "In Progress")
    assert unblocked.blocked_reason is None


@pytest.mark.asyncio
async def test_issue_sprint_must_share_board(db, seed, make_sprint) -> None:
    sprint = await make_sprint()
    service = IssueService(db)

    with pytest.raises(NotFoundError):
        await service.create_issue(seed.board.id, seed.user.id, {"title": "Orphan", "sprint_id": 9999})

    issue = await service.create_issue(seed.board.id, seed.user.id, {"title": "Planned", "sprint_id": sprint.id})
    assert issue.sprint_id == sprint.id


@pytest.mark.asyncio
async def test_adding_issue_to_sprint_triggers_scope_alert(db, seed, make_sprint) -> None:
    sprint = await make_sprint(status="Active", baseline_points=10)
    service = IssueService(db)
    await service.create_issue(seed.board.id, seed.user.id, {"title": "Base", "sprint_id": sprint.id, "story_points": 10})

    await service.create_issue(seed.board.id, seed.user.id, {"title": "Extra", "sprint_id": sprint.id, "story_points": 3})

    status = await ScopeService(db).get_scope_status(sprint.id)
    assert status.current_points == 13
    assert status.scope_alerted is True


@pytest.mark.asyncio
async def test_delete_issue_recomputes_sprint(db, make_sprint, make_issue) -> None:
    sprint = await make_sprint(baseline_points=10)
    await make_issue(sprint_id=sprint.id, story_points=10)
    extra = await make_issue(sprint_id=sprint.id, story_points=5)
    service = IssueService(db)

    await service.delete_issue(extra.id)

    with pytest.raises(NotFoundError):
        await service.get_issue(extra.id)
    assert (await ScopeService(db).get_scope_status(sprint.id)).current_points == 10


@pytest.mark.asyncio
async def test_comments(db, seed, make_issue) -> None:
    issue = await make_issue()
    service = IssueService(db)

    await service.add_comment(issue.id, seed.user.id, "  First look  ")
    await service.add_comment(issue.id, seed.teammate.id, "Agreed")

    comments = await service.list_comments(issue.id)
    assert [c.comment for c in comments] == ["First look", "Agreed"]

    with pytest.raises(ValidationError):
        await service.add_comment(issue.id, seed.user.id, "   ")


@pytest.mark.asyncio
async def test_log_time_burns_down_estimate(db, seed, make_issue) -> None:
    issue = await make_issue(original_estimate=10, time_remaining=10)
    service = IssueService(db)

    entry = await service.log_time(issue.id, seed.user.id, 4, description="Spike", logged_date=date(2024, 3, 5))
    await service.log_time(issue.id, seed.user.id, 8)

    refreshed = await service.get_issue(issue.id)
    assert entry.logged_date == date(2024, 3, 5)
    assert refreshed.time_spent == 12
    assert refreshed.time_remaining == 0
    assert len(await service.list_time_logs(issue.id)) == 2

    with pytest.raises(ValidationError):
        await service.log_time(issue.id, seed.user.id, 0)


@pytest.mark.asyncio
async def test_delete_issue_removes_comments_and_time_logs(db, seed, make_issue) -> None:
    issue = await make_issue()
    service = IssueService(db)
    await service.add_comment(issue.id, seed.user.id, "Note")
    await service.log_time(issue.id, seed.user.id, 1)

    await service.delete_issue(issue.id)

    comments = (await db.execute(select(func.count(Comment.id)))).scalar()
    time_logs = (await db.execute(select(func.count(TimeLog.id)))).scalar()
    assert (comments, time_logs) == (0, 0)


@pytest.mark.asyncio
async def test_issue_changes_survive_failed_scope_recompute(db, seed, make_sprint, broken_scope_recompute) -> None:
    sprint = await make_sprint(status="Active", baseline_points=10)
    service = IssueService(db)

    created = await service.create_issue(
        seed.board.id, seed.user.id, {"title": "Extra", "sprint_id": sprint.id, "story_points": 5}
    )
    updated = await service.update_issue(created.id, {"story_points": 13})

    assert created.to_dict()["title"] == "Extra"
    assert updated.to_dict()["story_points"] == 13
    assert seed.board.name == "SHOP board"
