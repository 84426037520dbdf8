from fastapi import APIRouter, Depends, BackgroundTasks, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import date
from pydantic import BaseModel, Field

from ...config import Settings
from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...services.activity_service import ActivityLogger
from ...services.project_service import ProjectService
from ...services.scope_service import ScopeService
from ...services.sprint_service import SprintService, SprintStatus
from ..deps import get_activity_logger, get_app_settings

router = APIRouter()

class SprintCreateRequest(BaseModel):
    name: str
    goal: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    capacity_story_points: Optional[int] = None
    status: SprintStatus = SprintStatus.PLANNING

class SprintUpdateRequest(BaseModel):
    name: Optional[str] = None
    goal: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    capacity_story_points: Optional[int] = Field(default=None, ge=0)


async def _require_sprint_access(db: AsyncSession, user_id: int, sprint_id: int) -> int:
    projects = ProjectService(db)
    project_id = await projects.project_id_for_sprint(sprint_id)
    await projects.require_member(user_id, project_id)
    return project_id


@router.get("/boards/{board_id}/sprints")
async def list_board_sprints(
    board_id: int,
    status_filter: Optional[SprintStatus] = None,
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List sprints on a board, newest first"""

    projects = ProjectService(db)
    await projects.require_member(current_user.id, await projects.project_id_for_board(board_id))

    sprints = await SprintService(db).get_board_sprints(board_id, status_filter, limit, offset)
    return [sprint.to_dict() for sprint in sprints]


@router.post("/boards/{board_id}/sprints", status_code=status.HTTP_201_CREATED)
async def create_sprint(
    board_id: int,
    request: SprintCreateRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    app_settings: Settings = Depends(get_app_settings),
    current_user: User = Depends(get_current_user)
):
    """Create a sprint on a board"""

    projects = ProjectService(db)
    await projects.require_member(current_user.id, await projects.project_id_for_board(board_id))

    sprint_service = SprintService(db, scope_threshold_pct=app_settings.scope_threshold_pct)
    sprint = await sprint_service.create_sprint(
        board_id=board_id,
        name=request.name,
        start_date=request.start_date,
        end_date=request.end_date,
        goal=request.goal,
        capacity_story_points=request.capacity_story_points,
        status=request.status,
        creator_id=current_user.id
    )

    background_tasks.add_task(
        audit.log_activity, current_user.id, "created", "sprint", sprint.id, {"name": sprint.name}
    )
    return sprint.to_dict()


@router.get("/sprints/{sprint_id}")
async def get_sprint(
    sprint_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get sprint details"""

    await _require_sprint_access(db, current_user.id, sprint_id)
    sprint = await SprintService(db).get_sprint(sprint_id)
    return sprint.to_dict()


@router.put("/sprints/{sprint_id}")
async def update_sprint(
    sprint_id: int,
    request: SprintUpdateRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Update sprint name, goal, dates or capacity"""

    await _require_sprint_access(db, current_user.id, sprint_id)

    changes = request.model_dump(exclude_unset=True)
    sprint = await SprintService(db).update_sprint(sprint_id, changes)

    background_tasks.add_task(
        audit.log_activity, current_user.id, "updated", "sprint", sprint_id, {"fields": sorted(changes)}
    )
    return sprint.to_dict()


@router.delete("/sprints/{sprint_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sprint(
    sprint_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Delete a sprint with no issues"""

    await _require_sprint_access(db, current_user.id, sprint_id)
    await SprintService(db).delete_sprint(sprint_id)

    background_tasks.add_task(audit.log_activity, current_user.id, "deleted", "sprint", sprint_id)


@router.post("/sprints/{sprint_id}/start")
async def start_sprint(
    sprint_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Start a sprint and snapshot its scope baseline"""

    await _require_sprint_access(db, current_user.id, sprint_id)
    sprint = await SprintService(db).start_sprint(sprint_id)

    background_tasks.add_task(audit.log_activity, current_user.id, "started", "sprint", sprint_id)
    return sprint.to_dict()


@router.post("/sprints/{sprint_id}/complete")
async def complete_sprint(
    sprint_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Complete an active sprint"""

    await _require_sprint_access(db, current_user.id, sprint_id)
    sprint = await SprintService(db).complete_sprint(sprint_id)

    background_tasks.add_task(audit.log_activity, current_user.id, "completed", "sprint", sprint_id)
    return sprint.to_dict()


@router.get("/sprints/{sprint_id}/issues")
async def get_sprint_issues(
    sprint_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> List[dict]:
    """Issues committed to a sprint"""

    await _require_sprint_access(db, current_user.id, sprint_id)
    issues = await ProjectService(db).get_sprint_issues(sprint_id)
    return [issue.model_dump() for issue in issues]


@router.get("/sprints/{sprint_id}/scope")
async def get_sprint_scope(
    sprint_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Baseline, live points and scope alert state"""

    await _require_sprint_access(db, current_user.id, sprint_id)
    scope = await ScopeService(db).get_scope_status(sprint_id)
    return scope.model_dump()


@router.post("/sprints/{sprint_id}/scope/reset")
async def reset_sprint_scope(
    sprint_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Acknowledge a scope alert and re-baseline the sprint"""

    await _require_sprint_access(db, current_user.id, sprint_id)
    scope = await ScopeService(db).reset_scope_alert(sprint_id)

    background_tasks.add_task(
        audit.log_activity, current_user.id, "scope_reset", "sprint", sprint_id,
        {"baseline_points": scope.baseline_points}
    )
    return scope.model_dump()


@router.get("/sprints/{sprint_id}/report")
async def get_sprint_report(
    sprint_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Sprint progress report"""

    await _require_sprint_access(db, current_user.id, sprint_id)
    report = await SprintService(db).get_sprint_report(sprint_id)
    return report.model_dump()
