from sqlalchemy import Column, String, Integer, ForeignKey, JSON
from .base import BaseModel


class AIRequest(BaseModel):
    __tablename__ = "ai_requests"

    feature = Column(String(50), nullable=False)  # sprint_planning, scope_creep_detection, risk_assessment, ...

    # Input/output
    request_data = Column(JSON, nullable=True)
    response_data = Column(JSON, nullable=True)

    # Foreign keys
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True)
