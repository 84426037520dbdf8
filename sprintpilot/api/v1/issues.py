from fastapi import APIRouter, Depends, BackgroundTasks, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Literal, Optional
from datetime import date
from pydantic import BaseModel, Field

from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...services.activity_service import ActivityLogger
from ...services.issue_service import IssueService
from ...services.project_service import ProjectService
from ..deps import get_activity_logger

router = APIRouter()

IssueType = Literal["Story", "Bug", "Task", "Epic"]
IssueStatus = Literal["To Do", "In Progress", "Done", "Blocked"]
IssuePriority = Literal["P1", "P2", "P3", "P4"]

class IssueCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    issue_type: Optional[IssueType] = None
    status: Optional[IssueStatus] = None
    priority: Optional[IssuePriority] = None
    story_points: Optional[int] = None
    original_estimate: Optional[float] = None
    time_remaining: Optional[float] = None
    assignee_id: Optional[int] = None
    sprint_id: Optional[int] = None
    blocked_reason: Optional[str] = None

class IssueUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    issue_type: Optional[IssueType] = None
    status: Optional[IssueStatus] = None
    priority: Optional[IssuePriority] = None
    story_points: Optional[int] = None
    original_estimate: Optional[float] = None
    time_remaining: Optional[float] = None
    assignee_id: Optional[int] = None
    sprint_id: Optional[int] = None
    blocked_reason: Optional[str] = None

class IssueStatusRequest(BaseModel):
    status: IssueStatus
    blocked_reason: Optional[str] = None

class CommentRequest(BaseModel):
    comment: str = Field(min_length=1, max_length=5000)

class TimeLogRequest(BaseModel):
    hours_logged: float = Field(gt=0)
    description: Optional[str] = None
    logged_date: Optional[date] = None


async def _require_issue_access(db: AsyncSession, user_id: int, issue_id: int) -> None:
    projects = ProjectService(db)
    await projects.require_member(user_id, await projects.project_id_for_issue(issue_id))


@router.post("/boards/{board_id}/issues", status_code=status.HTTP_201_CREATED)
async def create_issue(
    board_id: int,
    request: IssueCreateRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Create an issue on a board, optionally inside a sprint"""

    projects = ProjectService(db)
    await projects.require_member(current_user.id, await projects.project_id_for_board(board_id))

    issue = await IssueService(db).create_issue(board_id, current_user.id, request.model_dump())

    background_tasks.add_task(
        audit.log_activity, current_user.id, "created", "issue", issue.id, {"title": issue.title}
    )
    return issue.to_dict()


@router.get("/issues/{issue_id}")
async def get_issue(
    issue_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get issue details"""

    await _require_issue_access(db, current_user.id, issue_id)
    issue = await IssueService(db).get_issue(issue_id)
    return issue.to_dict()


@router.put("/issues/{issue_id}")
async def update_issue(
    issue_id: int,
    request: IssueUpdateRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Partially update an issue. Moving it between sprints re-checks both sprints' scope."""

    await _require_issue_access(db, current_user.id, issue_id)

    changes = request.model_dump(exclude_unset=True)
    issue = await IssueService(db).update_issue(issue_id, changes)

    background_tasks.add_task(
        audit.log_activity, current_user.id, "updated", "issue", issue_id, {"fields": sorted(changes)}
    )
    return issue.to_dict()


@router.patch("/issues/{issue_id}/status")
async def update_issue_status(
    issue_id: int,
    request: IssueStatusRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Move an issue across the board"""

    await _require_issue_access(db, current_user.id, issue_id)
    issue = await IssueService(db).update_status(issue_id, request.status, request.blocked_reason)

    background_tasks.add_task(
        audit.log_activity, current_user.id, "status_changed", "issue", issue_id, {"status": issue.status}
    )
    return issue.to_dict()


@router.delete("/issues/{issue_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_issue(
    issue_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Delete an issue with its comments and time logs"""

    await _require_issue_access(db, current_user.id, issue_id)
    await IssueService(db).delete_issue(issue_id)

    background_tasks.add_task(audit.log_activity, current_user.id, "deleted", "issue", issue_id)


@router.get("/issues/{issue_id}/comments")
async def list_comments(
    issue_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await _require_issue_access(db, current_user.id, issue_id)
    comments = await IssueService(db).list_comments(issue_id)
    return [comment.to_dict() for comment in comments]


@router.post("/issues/{issue_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    issue_id: int,
    request: CommentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await _require_issue_access(db, current_user.id, issue_id)
    comment = await IssueService(db).add_comment(issue_id, current_user.id, request.comment)
    return comment.to_dict()


@router.get("/issues/{issue_id}/time-logs")
async def list_time_logs(
    issue_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await _require_issue_access(db, current_user.id, issue_id)
    entries = await IssueService(db).list_time_logs(issue_id)
    return [entry.to_dict() for entry in entries]


@router.post("/issues/{issue_id}/time-logs", status_code=status.HTTP_201_CREATED)
async def log_time(
    issue_id: int,
    request: TimeLogRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Log hours against an issue and burn down its remaining estimate"""

    await _require_issue_access(db, current_user.id, issue_id)
    entry = await IssueService(db).log_time(
        issue_id,
        current_user.id,
        request.hours_logged,
        description=request.description,
        logged_date=request.logged_date
    )
    return entry.to_dict()
