from fastapi import APIRouter, Depends, BackgroundTasks, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Literal, Optional
from pydantic import BaseModel, Field

from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...services.activity_service import ActivityLogger
from ...services.project_service import MANAGER_ROLES, ProjectService
from ..deps import get_activity_logger

router = APIRouter()

ProjectRole = Literal["Admin", "Project Manager", "Developer"]


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)


class BoardCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)


class TeamMemberInviteRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    role: ProjectRole = "Developer"


class TeamMemberRoleRequest(BaseModel):
    role: ProjectRole


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    request: ProjectCreateRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Create a project. The creator becomes its Admin and gets a default board."""

    project = await ProjectService(db).create_project(current_user.id, request.name, request.description)

    background_tasks.add_task(
        audit.log_activity, current_user.id, "created", "project", project.id, {"name": project.name}
    )
    return project.to_dict()


@router.get("")
async def list_projects(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List the projects the current user belongs to"""

    projects = await ProjectService(db).list_user_projects(current_user.id)
    return [project.to_dict() for project in projects]


@router.get("/{project_id}")
async def get_project(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    projects = ProjectService(db)
    await projects.require_member(current_user.id, project_id)

    project = await projects.get_project(project_id)
    response = project.to_dict()
    response["user_role"] = await projects.get_member_role(current_user.id, project_id)
    return response


@router.get("/{project_id}/team")
async def list_team(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    projects = ProjectService(db)
    await projects.require_member(current_user.id, project_id)
    return await projects.list_team(project_id)


@router.post("/{project_id}/team", status_code=status.HTTP_201_CREATED)
async def add_team_member(
    project_id: int,
    request: TeamMemberInviteRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Add an existing user to the project. Admins and Project Managers only."""

    projects = ProjectService(db)
    await projects.require_role(current_user.id, project_id, MANAGER_ROLES)

    member = await projects.add_member(project_id, request.email, request.role)

    background_tasks.add_task(
        audit.log_activity, current_user.id, "added_member", "project", project_id,
        {"user_id": member["id"], "role": member["role"]}
    )
    return member


@router.delete("/{project_id}/team/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_team_member(
    project_id: int,
    user_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Remove a member from the project. The owner cannot be removed."""

    projects = ProjectService(db)
    await projects.require_role(current_user.id, project_id, MANAGER_ROLES)
    await projects.remove_member(project_id, user_id)

    background_tasks.add_task(
        audit.log_activity, current_user.id, "removed_member", "project", project_id, {"user_id": user_id}
    )


@router.put("/{project_id}/team/{user_id}")
async def update_team_member_role(
    project_id: int,
    user_id: int,
    request: TeamMemberRoleRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Change a member's role. Admins only."""

    projects = ProjectService(db)
    await projects.require_role(current_user.id, project_id, ("Admin",))

    member = await projects.update_member_role(project_id, user_id, request.role)

    background_tasks.add_task(
        audit.log_activity, current_user.id, "changed_role", "project", project_id, member
    )
    return member


@router.get("/{project_id}/boards")
async def list_boards(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    projects = ProjectService(db)
    await projects.require_member(current_user.id, project_id)

    boards = await projects.list_boards(project_id)
    return [board.to_dict() for board in boards]


@router.post("/{project_id}/boards", status_code=status.HTTP_201_CREATED)
async def create_board(
    project_id: int,
    request: BoardCreateRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    current_user: User = Depends(get_current_user)
):
    """Create a board in a project"""

    projects = ProjectService(db)
    await projects.require_member(current_user.id, project_id)

    board = await projects.create_board(project_id, current_user.id, request.name, request.description)

    background_tasks.add_task(
        audit.log_activity, current_user.id, "created", "board", board.id, {"name": board.name}
    )
    return board.to_dict()
