from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
import logging
import re

from sqlalchemy import and_, case, desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import AccessError, ConflictError, NotFoundError, ValidationError
from ..models.board import Board
from ..models.issue import Issue
from ..models.sprint import Sprint
from ..models.user import Project, ProjectMember, User
from ..schemas.ai import IssueDigest, SprintDigest, TeamMemberDigest

ProjectId = int
UserId = int

BACKLOG_LIMIT = 20
RISK_ISSUE_LIMIT = 50
HIGH_PRIORITIES = ("P1", "P2")

PROJECT_ROLES = ("Admin", "Project Manager", "Developer")
MANAGER_ROLES = ("Admin", "Project Manager")
DEFAULT_BOARD_NAME = "Main Board"


def issue_digest(issue: Issue, assignee: Optional[str] = None) -> IssueDigest:
    return IssueDigest(
        id=issue.id,
        title=issue.title,
        issue_type=issue.issue_type,
        status=issue.status,
        priority=issue.priority,
        story_points=issue.story_points,
        blocked_reason=issue.blocked_reason,
        assignee=assignee
    )


class ProjectService:
    """Project membership checks and the data the AI features read."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._logger = logging.getLogger(__name__)

    async def user_has_access(self, user_id: UserId, project_id: ProjectId) -> bool:
        """Check if user is an active member of the project."""

        stmt = select(ProjectMember.id).where(
            and_(
                ProjectMember.user_id == user_id,
                ProjectMember.project_id == project_id,
                ProjectMember.deleted_at.is_(None)
            )
        )

        result = await self.db.execute(stmt)
        return result.first() is not None

    async def require_member(self, user_id: UserId, project_id: ProjectId) -> None:
        if not await self.user_has_access(user_id, project_id):
            self._logger.info("User %d denied access to project %d", user_id, project_id)
            raise AccessError()

    async def get_board(self, board_id: int) -> Board:
        result = await self.db.execute(select(Board).where(Board.id == board_id))
        board = result.scalar_one_or_none()
        if board is None:
            raise NotFoundError("Board", board_id)
        return board

    async def get_board_in_project(self, board_id: int, project_id: ProjectId) -> Board:
        board = await self.get_board(board_id)
        if board.project_id != project_id:
            raise NotFoundError("Board", board_id)
        return board

    async def get_sprint_in_project(self, sprint_id: int, project_id: ProjectId) -> Sprint:
        stmt = (
            select(Sprint)
            .join(Board, Sprint.board_id == Board.id)
            .where(Sprint.id == sprint_id, Board.project_id == project_id)
        )
        result = await self.db.execute(stmt)
        sprint = result.scalar_one_or_none()
        if sprint is None:
            raise NotFoundError("Sprint", sprint_id)
        return sprint

    async def get_team_members(self, project_id: ProjectId) -> List[TeamMemberDigest]:
        stmt = (
            select(User, ProjectMember.role)
            .join(ProjectMember, ProjectMember.user_id == User.id)
            .where(
                ProjectMember.project_id == project_id,
                ProjectMember.deleted_at.is_(None),
                User.is_active == True
            )
            .order_by(User.id)
        )
        result = await self.db.execute(stmt)
        return [
            TeamMemberDigest(id=user.id, name=user.full_name, role=role)
            for user, role in result.all()
        ]

    async def count_team_members(self, project_id: ProjectId) -> int:
        stmt = select(func.count(ProjectMember.id)).where(
            ProjectMember.project_id == project_id,
            ProjectMember.deleted_at.is_(None)
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def get_backlog_issues(
        self,
        project_id: ProjectId,
        issue_ids: Optional[List[int]] = None
    ) -> List[IssueDigest]:
        """Candidate issues for sprint planning: the given ids, or the top unplanned To Do issues"""

        stmt = select(Issue).join(Board, Issue.board_id == Board.id).where(Board.project_id == project_id)

        if issue_ids:
            stmt = stmt.where(Issue.id.in_(issue_ids)).order_by(Issue.priority, Issue.created_at, Issue.id)
        else:
            stmt = (
                stmt.where(Issue.status == "To Do", Issue.sprint_id.is_(None))
                .order_by(Issue.priority, Issue.created_at, Issue.id)
                .limit(BACKLOG_LIMIT)
            )

        result = await self.db.execute(stmt)
        return [issue_digest(issue) for issue in result.scalars().all()]

    async def get_sprint_issues(self, sprint_id: int) -> List[IssueDigest]:
        stmt = (
            select(Issue, User.first_name, User.last_name)
            .outerjoin(User, Issue.assignee_id == User.id)
            .where(Issue.sprint_id == sprint_id)
            .order_by(Issue.id)
        )
        result = await self.db.execute(stmt)
        digests = []
        for issue, first_name, last_name in result.all():
            assignee = f"{first_name} {last_name}" if first_name else None
            digests.append(issue_digest(issue, assignee))
        return digests

    async def get_risk_data(self, project_id: ProjectId) -> Dict[str, Any]:
        """Recent issues, sprints, blocked issues and team size for risk assessment"""

        issues_stmt = (
            select(Issue)
            .join(Board, Issue.board_id == Board.id)
            .where(Board.project_id == project_id)
            .order_by(desc(Issue.created_at), desc(Issue.id))
            .limit(RISK_ISSUE_LIMIT)
        )
        sprints_stmt = (
            select(Sprint)
            .join(Board, Sprint.board_id == Board.id)
            .where(Board.project_id == project_id)
            .order_by(Sprint.id)
        )
        blocked_stmt = (
            select(Issue)
            .join(Board, Issue.board_id == Board.id)
            .where(Board.project_id == project_id, Issue.status == "Blocked")
            .order_by(Issue.id)
        )

        issues = (await self.db.execute(issues_stmt)).scalars().all()
        sprints = (await self.db.execute(sprints_stmt)).scalars().all()
        blocked = (await self.db.execute(blocked_stmt)).scalars().all()

        return {
            "issues": [issue_digest(issue) for issue in issues],
            "sprints": [SprintDigest(id=s.id, name=s.name, status=s.status) for s in sprints],
            "blocked_issues": [issue_digest(issue) for issue in blocked],
            "team_size": await self.count_team_members(project_id),
        }

    async def get_member_workloads(self, project_id: ProjectId) -> List[Dict[str, Any]]:
        """Per-member open work across the project, for the workload heatmap"""

        open_issue = Issue.status != "Done"
        stmt = (
            select(
                User.id,
                User.first_name,
                User.last_name,
                ProjectMember.role,
                func.coalesce(func.sum(case((open_issue, Issue.story_points), else_=0)), 0).label("active_story_points"),
                func.count(Issue.id).label("total_issues"),
                func.coalesce(func.sum(case((Issue.status == "In Progress", 1), else_=0)), 0).label("in_progress_issues"),
                func.coalesce(func.sum(case((Issue.status == "Blocked", 1), else_=0)), 0).label("blocked_issues"),
                func.coalesce(
                    func.sum(case((and_(open_issue, Issue.priority.in_(HIGH_PRIORITIES)), 1), else_=0)), 0
                ).label("high_priority_issues"),
            )
            .join(ProjectMember, ProjectMember.user_id == User.id)
            .outerjoin(
                Board,
                Board.project_id == ProjectMember.project_id
            )
            .outerjoin(
                Issue,
                and_(Issue.board_id == Board.id, Issue.assignee_id == User.id)
            )
            .where(
                ProjectMember.project_id == project_id,
                ProjectMember.deleted_at.is_(None)
            )
            .group_by(User.id, User.first_name, User.last_name, ProjectMember.role)
            .order_by(User.id)
        )

        result = await self.db.execute(stmt)
        return [dict(row._mapping) for row in result.all()]

    async def project_id_for_board(self, board_id: int) -> ProjectId:
        result = await self.db.execute(select(Board.project_id).where(Board.id == board_id))
        project_id = result.scalar_one_or_none()
        if project_id is None:
            raise NotFoundError("Board", board_id)
        return project_id

    async def project_id_for_sprint(self, sprint_id: int) -> ProjectId:
        stmt = select(Board.project_id).join(Sprint, Sprint.board_id == Board.id).where(Sprint.id == sprint_id)
        project_id = (await self.db.execute(stmt)).scalar_one_or_none()
        if project_id is None:
            raise NotFoundError("Sprint", sprint_id)
        return project_id

    async def project_id_for_issue(self, issue_id: int) -> ProjectId:
        stmt = select(Board.project_id).join(Issue, Issue.board_id == Board.id).where(Issue.id == issue_id)
        project_id = (await self.db.execute(stmt)).scalar_one_or_none()
        if project_id is None:
            raise NotFoundError("Issue", issue_id)
        return project_id

    # Projects, boards and team

    async def generate_project_key(self, name: str) -> str:
        """Up to six letters and digits of the name, numbered until unique."""

        base_key = re.sub(r"[^A-Z0-9]", "", name.upper())[:6]
        if len(base_key) < 2:
            base_key = "PROJ"

        project_key = base_key
        counter = 1
        while await self._project_key_taken(project_key):
            project_key = f"{base_key}{counter}"
            counter += 1
        return project_key

    async def create_project(self, owner_id: UserId, name: str, description: Optional[str] = None) -> Project:
        """Create a project with its owner as Admin and a default board."""

        name = (name or "").strip()
        if not name:
            raise ValidationError("Invalid project", details=[{"field": "name", "message": "Project name is required"}])

        project = Project(
            name=name,
            description=description.strip() if description else None,
            project_key=await self.generate_project_key(name),
            owner_id=owner_id,
            is_active=True,
            ai_requests_count=0,
            ai_requests_reset_date=date.today()
        )
        self.db.add(project)

        try:
            await self.db.flush()
            self.db.add_all([
                ProjectMember(user_id=owner_id, project_id=project.id, role="Admin"),
                Board(
                    project_id=project.id,
                    name=DEFAULT_BOARD_NAME,
                    description="Default board for project",
                    is_default=True,
                    created_by=owner_id
                ),
            ])
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            self._logger.error("Failed to create project '%s': %s", name, str(e))
            raise ConflictError("Project with similar name already exists. Please try a different name.")

        await self.db.refresh(project)
        self._logger.info("Created project %d (%s) for user %d", project.id, project.project_key, owner_id)
        return project

    async def get_project(self, project_id: ProjectId) -> Project:
        stmt = select(Project).where(Project.id == project_id, Project.is_active == True)
        project = (await self.db.execute(stmt)).scalar_one_or_none()
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    async def list_user_projects(self, user_id: UserId) -> List[Project]:
        stmt = (
            select(Project)
            .join(ProjectMember, ProjectMember.project_id == Project.id)
            .where(
                ProjectMember.user_id == user_id,
                ProjectMember.deleted_at.is_(None),
                Project.is_active == True
            )
            .order_by(desc(Project.created_at), desc(Project.id))
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_boards(self, project_id: ProjectId) -> List[Board]:
        stmt = select(Board).where(Board.project_id == project_id).order_by(desc(Board.is_default), Board.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create_board(
        self,
        project_id: ProjectId,
        user_id: UserId,
        name: str,
        description: Optional[str] = None
    ) -> Board:
        await self.get_project(project_id)

        name = (name or "").strip()
        if not name:
            raise ValidationError("Invalid board", details=[{"field": "name", "message": "Board name is required"}])

        board = Board(project_id=project_id, name=name, description=description, is_default=False, created_by=user_id)
        self.db.add(board)
        await self.db.commit()
        await self.db.refresh(board)

        self._logger.info("Created board %d in project %d", board.id, project_id)
        return board

    async def get_member_role(self, user_id: UserId, project_id: ProjectId) -> Optional[str]:
        membership = await self._get_membership(user_id, project_id)
        return membership.role if membership is not None else None

    async def require_role(self, user_id: UserId, project_id: ProjectId, roles: Sequence[str]) -> None:
        role = await self.get_member_role(user_id, project_id)
        if role is None:
            raise AccessError()
        if role not in roles:
            self._logger.info("User %d (%s) lacks role %s in project %d", user_id, role, roles, project_id)
            raise AccessError("Insufficient permissions for this project")

    async def list_team(self, project_id: ProjectId) -> List[Dict[str, Any]]:
        stmt = (
            select(User, ProjectMember.role, ProjectMember.created_at)
            .join(ProjectMember, ProjectMember.user_id == User.id)
            .where(ProjectMember.project_id == project_id, ProjectMember.deleted_at.is_(None))
            .order_by(User.id)
        )
        result = await self.db.execute(stmt)
        return [
            {
                "id": user.id,
                "email": user.email,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "role": role,
                "joined_at": joined_at,
            }
            for user, role, joined_at in result.all()
        ]

    async def add_member(self, project_id: ProjectId, email: str, role: str = "Developer") -> Dict[str, Any]:
        """Add an existing user to the project by email."""

        self._validate_role(role)
        await self.get_project(project_id)

        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        user = (await self.db.execute(stmt)).scalar_one_or_none()
        if user is None:
            raise NotFoundError("User")

        membership = await self._get_membership(user.id, project_id, include_removed=True)
        if membership is not None and membership.deleted_at is None:
            raise ConflictError("User is already a member of this project")

        # one row per user and project: a removed member is re-activated
        if membership is None:
            self.db.add(ProjectMember(user_id=user.id, project_id=project_id, role=role))
        else:
            membership.deleted_at = None
            membership.role = role
        await self.db.commit()

        self._logger.info("Added user %d to project %d as %s", user.id, project_id, role)
        return {
            "id": user.id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "role": role,
        }

    async def remove_member(self, project_id: ProjectId, user_id: UserId) -> None:
        project = await self.get_project(project_id)
        if user_id == project.owner_id:
            raise ValidationError("Cannot remove project owner from team")

        membership = await self._get_membership(user_id, project_id)
        if membership is None:
            raise NotFoundError("Project member", user_id)

        membership.deleted_at = datetime.now(timezone.utc)
        await self.db.commit()
        self._logger.info("Removed user %d from project %d", user_id, project_id)

    async def update_member_role(self, project_id: ProjectId, user_id: UserId, role: str) -> Dict[str, Any]:
        self._validate_role(role)
        project = await self.get_project(project_id)
        if user_id == project.owner_id:
            raise ValidationError("Cannot change project owner role")

        membership = await self._get_membership(user_id, project_id)
        if membership is None:
            raise NotFoundError("Project member", user_id)

        membership.role = role
        await self.db.commit()
        self._logger.info("User %d is now %s in project %d", user_id, role, project_id)
        return {"id": user_id, "role": role}

    # Private methods

    async def _project_key_taken(self, project_key: str) -> bool:
        result = await self.db.execute(select(Project.id).where(Project.project_key == project_key))
        return result.first() is not None

    async def _get_membership(
        self,
        user_id: UserId,
        project_id: ProjectId,
        include_removed: bool = False
    ) -> Optional[ProjectMember]:
        stmt = select(ProjectMember).where(
            ProjectMember.user_id == user_id,
            ProjectMember.project_id == project_id
        )
        if not include_removed:
            stmt = stmt.where(ProjectMember.deleted_at.is_(None))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    def _validate_role(self, role: str) -> None:
        if role not in PROJECT_ROLES:
            raise ValidationError(
                "Invalid role",
                details=[{"field": "role", "message": f"Role must be one of {', '.join(PROJECT_ROLES)}"}]
            )
