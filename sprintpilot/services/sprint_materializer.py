from typing import Any, Dict, List, Optional
import logging

from fastapi import BackgroundTasks
from pydantic import BaseModel
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, PersistenceError, ValidationError
from ..models.board import Board
from ..models.issue import Issue
from ..models.sprint import Sprint
from ..schemas.ai import SprintPlan
from .activity_service import ActivityLogger
from .scope_service import ScopeService, DEFAULT_SCOPE_THRESHOLD


class IssueSummary(BaseModel):
    id: int
    title: str
    issue_type: str
    priority: str
    story_points: Optional[int] = None


class MaterializedSprint(BaseModel):
    sprint: Dict[str, Any]
    issues: List[IssueSummary]
    summary: Dict[str, Any]


class SprintMaterializer:
    """Persists a validated AI sprint plan as one sprint plus its issues, atomically."""

    def __init__(
        self,
        db: AsyncSession,
        audit: Optional[ActivityLogger] = None,
        background_tasks: Optional[BackgroundTasks] = None,
        scope_threshold_pct: float = DEFAULT_SCOPE_THRESHOLD
    ) -> None:
        self.db = db
        self.audit = audit
        self.background_tasks = background_tasks
        self.scope_threshold_pct = scope_threshold_pct
        self._logger = logging.getLogger(__name__)

    async def create_sprint_from_plan(
        self,
        project_id: int,
        user_id: int,
        plan: SprintPlan
    ) -> MaterializedSprint:
        """Insert the sprint and every issue in one transaction, then track scope."""

        await self._validate_board(project_id, plan)

        self._logger.info(
            "Materializing sprint '%s' with %d issues on board %d",
            plan.name, len(plan.issues), plan.board_id
        )

        try:
            sprint = Sprint(
                board_id=plan.board_id,
                name=plan.name,
                goal=plan.goal,
                start_date=plan.start_date,
                end_date=plan.end_date,
                status=plan.status,
                capacity_story_points=plan.capacity_story_points,
                created_by=plan.created_by,
                baseline_points=plan.total_points,
                scope_threshold_pct=self.scope_threshold_pct,
                scope_alerted=False
            )
            self.db.add(sprint)
            await self.db.flush()

            issues: List[Issue] = []
            for draft in plan.issues:
                issue = Issue(
                    board_id=plan.board_id,
                    sprint_id=sprint.id,
                    title=draft.title,
                    description=draft.description,
                    issue_type=draft.issue_type,
                    status=draft.status,
                    priority=draft.priority,
                    story_points=draft.story_points,
                    original_estimate=draft.original_estimate,
                    time_remaining=draft.original_estimate,
                    reporter_id=draft.reporter_id,
                    assignee_id=draft.assignee_id,
                    blocked_reason=draft.blocked_reason
                )
                self.db.add(issue)
                await self.db.flush()
                issues.append(issue)

            await self.db.commit()

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to materialize sprint '%s': %s", plan.name, str(e))
            raise PersistenceError(f"Sprint creation failed: {str(e)}")

        self._logger.info("Created sprint %d with %d issues", sprint.id, len(issues))

        issue_summaries = [
            IssueSummary(
                id=issue.id,
                title=issue.title,
                issue_type=issue.issue_type,
                priority=issue.priority,
                story_points=issue.story_points
            )
            for issue in issues
        ]

        result = MaterializedSprint(
            sprint={
                "id": sprint.id,
                "board_id": sprint.board_id,
                "name": sprint.name,
                "goal": sprint.goal,
                "start_date": sprint.start_date.isoformat(),
                "end_date": sprint.end_date.isoformat(),
                "status": sprint.status,
                "capacity_story_points": sprint.capacity_story_points,
                "baseline_points": sprint.baseline_points,
                "created_by": sprint.created_by,
            },
            issues=issue_summaries,
            summary={
                "total_issues": len(issues),
                "total_story_points": plan.total_points,
                "capacity_story_points": plan.capacity_story_points,
                "capacity_utilization": (
                    round(plan.total_points / plan.capacity_story_points * 100)
                    if plan.capacity_story_points else None
                ),
            }
        )

        await ScopeService(self.db).recompute_scope(result.sprint["id"])
        await self._record_activity(user_id, result.sprint, len(issues))

        return result

    async def _validate_board(self, project_id: int, plan: SprintPlan) -> None:
        result = await self.db.execute(select(Board.project_id).where(Board.id == plan.board_id))
        board_project_id = result.scalar_one_or_none()

        if board_project_id is None or board_project_id != project_id:
            raise ValidationError(f"Board {plan.board_id} does not belong to project {project_id}")

        if plan.status == "Active":
            stmt = select(Sprint.id).where(
                and_(Sprint.board_id == plan.board_id, Sprint.status == "Active")
            )
            if (await self.db.execute(stmt)).first() is not None:
                raise ConflictError("Another sprint is already active on this board")

    async def _record_activity(self, user_id: int, sprint: Dict[str, Any], issue_count: int) -> None:
        if self.audit is None:
            return
        details = {"name": sprint["name"], "issue_count": issue_count, "source": "ai_plan"}
        if self.background_tasks is not None:
            self.background_tasks.add_task(
                self.audit.log_activity, user_id, "create", "sprint", sprint["id"], details
            )
        else:
            await self.audit.log_activity(user_id, "create", "sprint", sprint["id"], details)
