from __future__ import annotations

from typing import (
    Any,
    Dict,
    List,
    Optional,
)
from datetime import date
from enum import Enum
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, func, desc, case
from pydantic import BaseModel

from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..models.board import Board
from ..models.issue import Issue
from ..models.sprint import Sprint
from .scope_service import ScopeService, ScopeStatus, DEFAULT_SCOPE_THRESHOLD

# Type aliases
BoardId = int
SprintId = int
UserId = int
StoryPoints = int

# Enums
class SprintStatus(str, Enum):
    PLANNING = "Planning"
    ACTIVE = "Active"
    COMPLETED = "Completed"

# Pydantic models
class SprintReport(BaseModel):
    sprint_id: SprintId
    sprint_name: str
    status: str
    start_date: Optional[date]
    end_date: Optional[date]
    total_issues: int
    completed_issues: int
    in_progress_issues: int
    blocked_issues: int
    total_points: StoryPoints
    completed_points: StoryPoints
    remaining_points: StoryPoints
    completion_rate: float
    capacity_story_points: Optional[StoryPoints]
    scope: ScopeStatus

# Custom exceptions
class InvalidStatusTransitionError(ConflictError):
    def __init__(self, current: str, new: str) -> None:
        super().__init__(f"Invalid transition from {current} to {new}")

# Main service class
class SprintService:
    """
    Sprint lifecycle: creation, start, completion and deletion.

    A board never has more than one Active sprint. Starting a sprint
    snapshots its scope baseline when none was recorded yet.
    """

    def __init__(self, db: AsyncSession, scope_threshold_pct: float = DEFAULT_SCOPE_THRESHOLD) -> None:
        self.db = db
        self.scope_threshold_pct = scope_threshold_pct
        self._logger = logging.getLogger(__name__)

    async def create_sprint(
        self,
        board_id: BoardId,
        name: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        goal: Optional[str] = None,
        capacity_story_points: Optional[StoryPoints] = None,
        status: SprintStatus = SprintStatus.PLANNING,
        creator_id: Optional[UserId] = None
    ) -> Sprint:
        """Create a new sprint with validation."""

        self._logger.info("Creating sprint '%s' for board %d", name, board_id)

        self._validate_sprint_fields(name, goal, start_date, end_date, capacity_story_points)
        await self._validate_board_exists(board_id)

        if status == SprintStatus.COMPLETED:
            raise ValidationError("A sprint cannot be created as Completed")
        if status == SprintStatus.ACTIVE:
            await self._validate_no_active_sprint(board_id)

        try:
            sprint = Sprint(
                board_id=board_id,
                name=name,
                goal=goal,
                start_date=start_date,
                end_date=end_date,
                status=status.value,
                capacity_story_points=capacity_story_points,
                created_by=creator_id,
                baseline_points=0,
                scope_threshold_pct=self.scope_threshold_pct,
                scope_alerted=False
            )

            self.db.add(sprint)
            await self.db.commit()
            await self.db.refresh(sprint)

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to create sprint: %s", str(e))
            raise

        self._logger.info("Created sprint %d", sprint.id)
        return sprint

    async def get_sprint(self, sprint_id: SprintId) -> Sprint:
        """Get sprint by ID."""

        stmt = select(Sprint).where(Sprint.id == sprint_id).execution_options(populate_existing=True)

        result = await self.db.execute(stmt)
        sprint = result.scalar_one_or_none()

        if sprint is None:
            raise NotFoundError("Sprint", sprint_id)

        return sprint

    async def get_board_sprints(
        self,
        board_id: BoardId,
        status: Optional[SprintStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Sprint]:
        """Get sprints for a board."""

        stmt = select(Sprint).where(Sprint.board_id == board_id)

        if status is not None:
            stmt = stmt.where(Sprint.status == status.value)

        stmt = stmt.order_by(desc(Sprint.created_at), desc(Sprint.id)).limit(limit).offset(offset)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def update_sprint(self, sprint_id: SprintId, changes: Dict[str, Any]) -> Sprint:
        """Update editable sprint fields."""

        sprint = await self.get_sprint(sprint_id)
        editable = ("name", "goal", "start_date", "end_date", "capacity_story_points")

        merged = {field: changes.get(field, getattr(sprint, field)) for field in editable}
        self._validate_sprint_fields(**merged)

        for field in editable:
            if field in changes:
                setattr(sprint, field, changes[field])

        await self.db.commit()
        await self.db.refresh(sprint)

        self._logger.info("Updated sprint %d", sprint_id)
        return sprint

    async def start_sprint(self, sprint_id: SprintId) -> Sprint:
        """Move a Planning sprint to Active."""

        sprint = await self._transition(sprint_id, SprintStatus.ACTIVE)
        await self._validate_no_active_sprint(sprint.board_id, exclude_id=sprint.id)

        sprint.status = SprintStatus.ACTIVE.value
        if sprint.start_date is None:
            sprint.start_date = date.today()

        await self.db.commit()

        if not sprint.baseline_points:
            await ScopeService(self.db).snapshot_baseline(sprint_id)

        await self.db.refresh(sprint)
        self._logger.info("Started sprint %d", sprint_id)
        return sprint

    async def complete_sprint(self, sprint_id: SprintId) -> Sprint:
        """Close a sprint. A Planning sprint that never ran can be closed too."""

        sprint = await self._transition(sprint_id, SprintStatus.COMPLETED)

        sprint.status = SprintStatus.COMPLETED.value
        if sprint.end_date is None:
            sprint.end_date = date.today()

        await self.db.commit()
        await self.db.refresh(sprint)

        self._logger.info("Completed sprint %d", sprint_id)
        return sprint

    async def delete_sprint(self, sprint_id: SprintId) -> None:
        """Delete a sprint that no issue references."""

        sprint = await self.get_sprint(sprint_id)

        stmt = select(func.count(Issue.id)).where(Issue.sprint_id == sprint_id)
        issue_count = (await self.db.execute(stmt)).scalar() or 0
        if issue_count > 0:
            raise ConflictError(
                f"Cannot delete sprint with {issue_count} assigned issues. Move or remove them first."
            )

        await self.db.delete(sprint)
        await self.db.commit()
        self._logger.info("Deleted sprint %d", sprint_id)

    async def get_sprint_report(self, sprint_id: SprintId) -> SprintReport:
        """Progress statistics plus scope status."""

        sprint = await self.get_sprint(sprint_id)

        stmt = select(
            func.count(Issue.id),
            func.coalesce(func.sum(case((Issue.status == "Done", 1), else_=0)), 0),
            func.coalesce(func.sum(case((Issue.status == "In Progress", 1), else_=0)), 0),
            func.coalesce(func.sum(case((Issue.status == "Blocked", 1), else_=0)), 0),
            func.coalesce(func.sum(Issue.story_points), 0),
            func.coalesce(func.sum(case((Issue.status == "Done", Issue.story_points), else_=0)), 0),
        ).where(Issue.sprint_id == sprint_id)

        total, done, in_progress, blocked, points, done_points = (await self.db.execute(stmt)).one()
        scope = await ScopeService(self.db).get_scope_status(sprint_id)

        return SprintReport(
            sprint_id=sprint.id,
            sprint_name=sprint.name,
            status=sprint.status,
            start_date=sprint.start_date,
            end_date=sprint.end_date,
            total_issues=total,
            completed_issues=done,
            in_progress_issues=in_progress,
            blocked_issues=blocked,
            total_points=points,
            completed_points=done_points,
            remaining_points=points - done_points,
            completion_rate=round(done / total * 100, 1) if total else 0.0,
            capacity_story_points=sprint.capacity_story_points,
            scope=scope
        )

    # Private methods

    async def _transition(self, sprint_id: SprintId, new: SprintStatus) -> Sprint:
        sprint = await self.get_sprint(sprint_id)
        current = SprintStatus(sprint.status)

        if not self._is_valid_status_transition(current, new):
            raise InvalidStatusTransitionError(current.value, new.value)

        return sprint

    async def _validate_board_exists(self, board_id: BoardId) -> None:
        """Validate board exists."""

        result = await self.db.execute(select(Board.id).where(Board.id == board_id))
        if result.scalar_one_or_none() is None:
            raise NotFoundError("Board", board_id)

    def _validate_sprint_fields(
        self,
        name: Optional[str],
        goal: Optional[str],
        start_date: Optional[date],
        end_date: Optional[date],
        capacity_story_points: Optional[StoryPoints]
    ) -> None:
        """Validate sprint fields."""

        errors: List[Dict[str, str]] = []

        if not name or not name.strip():
            errors.append({"field": "name", "message": "Sprint name is required"})
        elif len(name) > 255:
            errors.append({"field": "name", "message": "Sprint name must be 255 characters or less"})

        if goal and len(goal) > 1000:
            errors.append({"field": "goal", "message": "Sprint goal must be 1000 characters or less"})

        if start_date and end_date and end_date <= start_date:
            errors.append({"field": "end_date", "message": "End date must be after start date"})

        if capacity_story_points is not None and capacity_story_points < 0:
            errors.append({"field": "capacity_story_points", "message": "Capacity cannot be negative"})

        if errors:
            raise ValidationError("Invalid sprint", details=errors)

    async def _validate_no_active_sprint(self, board_id: BoardId, exclude_id: Optional[SprintId] = None) -> None:
        """Validate the board has no other Active sprint."""

        stmt = select(Sprint).where(
            and_(
                Sprint.board_id == board_id,
                Sprint.status == SprintStatus.ACTIVE.value
            )
        )
        if exclude_id is not None:
            stmt = stmt.where(Sprint.id != exclude_id)

        result = await self.db.execute(stmt)
        existing = result.scalars().first()

        if existing is not None:
            raise ConflictError(f"Another sprint is already active on this board: {existing.name}")

    def _is_valid_status_transition(self, current: SprintStatus, new: SprintStatus) -> bool:
        """Check valid status transitions."""

        valid_transitions: Dict[SprintStatus, List[SprintStatus]] = {
            SprintStatus.PLANNING: [SprintStatus.ACTIVE, SprintStatus.COMPLETED],
            SprintStatus.ACTIVE: [SprintStatus.COMPLETED],
            SprintStatus.COMPLETED: []
        }

        return new in valid_transitions.get(current, [])
