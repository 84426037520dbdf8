from sqlalchemy import Column, String, Integer, Text, ForeignKey, Float, Date
from sqlalchemy.orm import relationship
from datetime import date
from .base import BaseModel


class Issue(BaseModel):
    __tablename__ = "issues"

    # Core fields
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    issue_type = Column(String(20), default="Task", nullable=False)  # Story, Bug, Task, Epic
    status = Column(String(20), default="To Do", nullable=False)  # To Do, In Progress, Done, Blocked
    priority = Column(String(2), default="P3", nullable=False)  # P1..P4
    story_points = Column(Integer, nullable=True)
    blocked_reason = Column(Text, nullable=True)

    # Time tracking (hours)
    original_estimate = Column(Float, nullable=True)
    time_spent = Column(Float, default=0)
    time_remaining = Column(Float, nullable=True)

    # Relationships
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    sprint_id = Column(Integer, ForeignKey("sprints.id"), nullable=True, index=True)
    assignee_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    reporter_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    board = relationship("Board", back_populates="issues")
    sprint = relationship("Sprint", back_populates="issues")
    comments = relationship("Comment", back_populates="issue", cascade="all, delete-orphan")
    time_logs = relationship("TimeLog", back_populates="issue", cascade="all, delete-orphan")


class Comment(BaseModel):
    __tablename__ = "issue_comments"

    issue_id = Column(Integer, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    comment = Column(Text, nullable=False)

    issue = relationship("Issue", back_populates="comments")


class TimeLog(BaseModel):
    __tablename__ = "time_logs"

    issue_id = Column(Integer, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    hours_logged = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    logged_date = Column(Date, default=date.today, nullable=False)

    issue = relationship("Issue", back_populates="time_logs")
