from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError, ValidationError
from ..models.issue import Comment, Issue, TimeLog
from ..models.sprint import Sprint
from .scope_service import ScopeService, sprints_to_recompute

ISSUE_TYPES = ("Story", "Bug", "Task", "Epic")
ISSUE_STATUSES = ("To Do", "In Progress", "Done", "Blocked")
ISSUE_PRIORITIES = ("P1", "P2", "P3", "P4")
MAX_STORY_POINTS = 100

EDITABLE_FIELDS = (
    "title",
    "description",
    "issue_type",
    "status",
    "priority",
    "story_points",
    "original_estimate",
    "time_remaining",
    "assignee_id",
    "sprint_id",
    "blocked_reason",
)


class IssueService:
    """Issue CRUD. Every change that moves points in or out of a sprint re-checks its scope."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.scope = ScopeService(db)
        self._logger = logging.getLogger(__name__)

    async def create_issue(self, board_id: int, reporter_id: int, fields: Dict[str, Any]) -> Issue:
        values = {field: fields.get(field) for field in EDITABLE_FIELDS}
        values["issue_type"] = values["issue_type"] or "Task"
        values["status"] = values["status"] or "To Do"
        values["priority"] = values["priority"] or "P3"
        if values["time_remaining"] is None:
            values["time_remaining"] = values["original_estimate"]

        self._validate(values)
        await self._validate_sprint_on_board(values["sprint_id"], board_id)

        issue = Issue(board_id=board_id, reporter_id=reporter_id, time_spent=0, **values)
        self.db.add(issue)
        try:
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to create issue on board %d: %s", board_id, str(e))
            raise
        await self.db.refresh(issue)

        self._logger.info("Created issue %d on board %d", issue.id, board_id)
        await self.scope.recompute_many(
            sprints_to_recompute(None, issue.sprint_id, None, issue.story_points)
        )
        return issue

    async def get_issue(self, issue_id: int) -> Issue:
        stmt = select(Issue).where(Issue.id == issue_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        issue = result.scalar_one_or_none()
        if issue is None:
            raise NotFoundError("Issue", issue_id)
        return issue

    async def list_sprint_issues(self, sprint_id: int) -> List[Issue]:
        stmt = select(Issue).where(Issue.sprint_id == sprint_id).order_by(Issue.priority, Issue.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def update_issue(self, issue_id: int, changes: Dict[str, Any]) -> Issue:
        """Apply a partial update, then recompute every sprint the change touched."""

        issue = await self.get_issue(issue_id)
        old_sprint_id = issue.sprint_id
        old_points = issue.story_points

        values = {field: getattr(issue, field) for field in EDITABLE_FIELDS}
        values.update({k: v for k, v in changes.items() if k in EDITABLE_FIELDS})
        if values["status"] != "Blocked" and "blocked_reason" not in changes:
            values["blocked_reason"] = None

        self._validate(values)
        if values["sprint_id"] != old_sprint_id:
            await self._validate_sprint_on_board(values["sprint_id"], issue.board_id)

        for field, value in values.items():
            setattr(issue, field, value)

        try:
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to update issue %d: %s", issue_id, str(e))
            raise
        await self.db.refresh(issue)

        await self.scope.recompute_many(
            sprints_to_recompute(old_sprint_id, issue.sprint_id, old_points, issue.story_points)
        )
        return issue

    async def update_status(self, issue_id: int, status: str, blocked_reason: Optional[str] = None) -> Issue:
        changes: Dict[str, Any] = {"status": status}
        if status == "Blocked":
            changes["blocked_reason"] = blocked_reason
        return await self.update_issue(issue_id, changes)

    async def delete_issue(self, issue_id: int) -> None:
        issue = await self.get_issue(issue_id)
        sprint_id = issue.sprint_id

        await self.db.delete(issue)
        await self.db.commit()
        self._logger.info("Deleted issue %d", issue_id)

        await self.scope.recompute_many(sprints_to_recompute(sprint_id, None, None, None))

    async def add_comment(self, issue_id: int, user_id: int, text: str) -> Comment:
        await self.get_issue(issue_id)
        if not text or not text.strip():
            raise ValidationError("Comment text is required")

        comment = Comment(issue_id=issue_id, user_id=user_id, comment=text.strip())
        self.db.add(comment)
        await self.db.commit()
        await self.db.refresh(comment)
        return comment

    async def list_comments(self, issue_id: int) -> List[Comment]:
        await self.get_issue(issue_id)
        stmt = select(Comment).where(Comment.issue_id == issue_id).order_by(Comment.created_at, Comment.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def log_time(
        self,
        issue_id: int,
        user_id: int,
        hours: float,
        description: Optional[str] = None,
        logged_date=None
    ) -> TimeLog:
        """Record hours against an issue and burn down its remaining estimate."""

        issue = await self.get_issue(issue_id)
        if hours is None or hours <= 0:
            raise ValidationError("Hours logged must be greater than zero")

        entry = TimeLog(issue_id=issue_id, user_id=user_id, hours_logged=hours, description=description)
        if logged_date is not None:
            entry.logged_date = logged_date
        self.db.add(entry)

        issue.time_spent = (issue.time_spent or 0) + hours
        if issue.time_remaining is not None:
            issue.time_remaining = max(0.0, issue.time_remaining - hours)

        await self.db.commit()
        await self.db.refresh(entry)
        return entry

    async def list_time_logs(self, issue_id: int) -> List[TimeLog]:
        await self.get_issue(issue_id)
        stmt = select(TimeLog).where(TimeLog.issue_id == issue_id).order_by(TimeLog.logged_date, TimeLog.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # Private methods

    def _validate(self, values: Dict[str, Any]) -> None:
        errors: List[Dict[str, str]] = []

        title = values.get("title")
        if not title or not str(title).strip():
            errors.append({"field": "title", "message": "Title is required"})
        elif len(title) > 500:
            errors.append({"field": "title", "message": "Title must be 500 characters or less"})

        description = values.get("description")
        if description and len(description) > 5000:
            errors.append({"field": "description", "message": "Description must be 5000 characters or less"})

        if values.get("issue_type") not in ISSUE_TYPES:
            errors.append({"field": "issue_type", "message": f"Issue type must be one of {', '.join(ISSUE_TYPES)}"})
        if values.get("status") not in ISSUE_STATUSES:
            errors.append({"field": "status", "message": f"Status must be one of {', '.join(ISSUE_STATUSES)}"})
        if values.get("priority") not in ISSUE_PRIORITIES:
            errors.append({"field": "priority", "message": f"Priority must be one of {', '.join(ISSUE_PRIORITIES)}"})

        points = values.get("story_points")
        if points is not None and not 0 <= points <= MAX_STORY_POINTS:
            errors.append({"field": "story_points", "message": f"Story points must be between 0 and {MAX_STORY_POINTS}"})

        for field in ("original_estimate", "time_remaining"):
            if values.get(field) is not None and values[field] < 0:
                errors.append({"field": field, "message": "Estimates cannot be negative"})

        if values.get("status") == "Blocked" and not values.get("blocked_reason"):
            errors.append({"field": "blocked_reason", "message": "Blocked reason is required when status is Blocked"})

        if errors:
            raise ValidationError("Invalid issue", details=errors)

    async def _validate_sprint_on_board(self, sprint_id: Optional[int], board_id: int) -> None:
        if sprint_id is None:
            return
        result = await self.db.execute(select(Sprint.board_id).where(Sprint.id == sprint_id))
        sprint_board_id = result.scalar_one_or_none()
        if sprint_board_id is None:
            raise NotFoundError("Sprint", sprint_id)
        if sprint_board_id != board_id:
            raise ValidationError("Sprint must belong to the same board as the issue")
