from .base import Base, BaseModel
from .user import User, Project, ProjectMember
from .board import Board
from .sprint import Sprint
from .issue import Issue, Comment, TimeLog
from .ai_request import AIRequest
from .activity import UserActivity

__all__ = [
    "Base",
    "BaseModel",
    "User",
    "Project",
    "ProjectMember",
    "Board",
    "Sprint",
    "Issue",
    "Comment",
    "TimeLog",
    "AIRequest",
    "UserActivity",
]
