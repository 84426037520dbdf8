from sqlalchemy import Column, String, Boolean, ForeignKey, Text, Integer, Date, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import date
from .base import BaseModel


class User(BaseModel):
    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True)

    # Relationships
    project_memberships = relationship("ProjectMember", back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Project(BaseModel):
    __tablename__ = "projects"

    name = Column(String(255), nullable=False)
    project_key = Column(String(10), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_active = Column(Boolean, default=True)

    # AI quota counter
    ai_requests_count = Column(Integer, default=0, nullable=False)
    ai_requests_reset_date = Column(Date, default=date.today, nullable=True)

    # Relationships
    members = relationship("ProjectMember", back_populates="project")
    boards = relationship("Board", back_populates="project")


class ProjectMember(BaseModel):
    __tablename__ = "user_projects"
    __table_args__ = (UniqueConstraint("user_id", "project_id", name="uq_user_project"),)

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(50), default="Developer")  # Admin, Project Manager, Developer
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="project_memberships")
    project = relationship("Project", back_populates="members")
