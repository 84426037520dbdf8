from sqlalchemy import Column, String, Integer, ForeignKey, JSON
from .base import BaseModel


class UserActivity(BaseModel):
    __tablename__ = "user_activities"

    action = Column(String(50), nullable=False)  # create, update, delete, ai_request, ...
    resource_type = Column(String(50), nullable=False)  # sprint, issue, project, ...
    resource_id = Column(Integer, nullable=True)
    details = Column(JSON, default=dict)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
