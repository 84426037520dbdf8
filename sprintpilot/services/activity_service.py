from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.activity import UserActivity
from ..models.ai_request import AIRequest
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ActivityLogger:
    """
    Best-effort writer for the ``ai_requests`` and ``user_activities`` tables.

    Each call opens its own session so it can run after the request session
    is gone. Failures are logged and dropped.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def log_ai_request(
        self,
        user_id: Optional[int],
        project_id: Optional[int],
        feature: str,
        request_data: Dict[str, Any],
        response_data: Dict[str, Any]
    ) -> None:
        try:
            async with self._session_factory() as session:
                session.add(AIRequest(
                    user_id=user_id,
                    project_id=project_id,
                    feature=feature,
                    request_data=request_data,
                    response_data=response_data
                ))
                await session.commit()
        except Exception:
            logger.exception("Failed to log AI request %s for project %s", feature, project_id)

    async def log_activity(
        self,
        user_id: Optional[int],
        action: str,
        resource_type: str,
        resource_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        try:
            async with self._session_factory() as session:
                session.add(UserActivity(
                    user_id=user_id,
                    action=action,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    details=details or {}
                ))
                await session.commit()
        except Exception:
            logger.exception("Failed to log %s %s activity", action, resource_type)
