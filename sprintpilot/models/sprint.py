from sqlalchemy import Column, String, Integer, Date, ForeignKey, Float, Text, Boolean
from sqlalchemy.orm import relationship
from .base import BaseModel


class Sprint(BaseModel):
    __tablename__ = "sprints"

    name = Column(String(255), nullable=False)
    goal = Column(Text, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), default="Planning", nullable=False)  # Planning, Active, Completed
    capacity_story_points = Column(Integer, nullable=True)

    # Scope tracking
    baseline_points = Column(Integer, default=0, nullable=False)
    scope_threshold_pct = Column(Float, default=0.20, nullable=False)
    scope_alerted = Column(Boolean, default=False, nullable=False)

    # Foreign keys
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Relationships
    board = relationship("Board", back_populates="sprints")
    issues = relationship("Issue", back_populates="sprint")
