from datetime import date
from typing import Callable
import logging

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..models.user import Project

ProjectId = int


class QuotaStatus(BaseModel):
    limit: int
    used: int
    remaining: int
    reset_date: date


class QuotaService:
    """
    Per-project monthly AI request quota.

    The counter lives on the ``projects`` row and is mutated with single-row
    UPDATE statements only. Two concurrent requests may both pass the check
    before either increments, so a project can overshoot its limit by the
    number of in-flight requests.
    """

    def __init__(
        self,
        db: AsyncSession,
        quota_limit: int = 50,
        quota_reset_days: int = 30,
        today: Callable[[], date] = date.today
    ) -> None:
        self.db = db
        self.quota_limit = quota_limit
        self.quota_reset_days = quota_reset_days
        self._today = today
        self._logger = logging.getLogger(__name__)

    async def check_quota(self, project_id: ProjectId) -> QuotaStatus:
        """Report remaining quota, resetting the counter when the period expired."""

        stmt = select(
            Project.ai_requests_count,
            Project.ai_requests_reset_date
        ).where(Project.id == project_id)
        row = (await self.db.execute(stmt)).one_or_none()

        if row is None:
            raise NotFoundError("Project", project_id)

        today = self._today()
        reset_date = row.ai_requests_reset_date

        if reset_date is None or (today - reset_date).days >= self.quota_reset_days:
            await self.db.execute(
                update(Project)
                .where(Project.id == project_id)
                .values(ai_requests_count=0, ai_requests_reset_date=today)
            )
            await self.db.commit()
            self._logger.info("AI quota reset for project %d", project_id)
            return QuotaStatus(
                limit=self.quota_limit,
                used=0,
                remaining=self.quota_limit,
                reset_date=today
            )

        used = row.ai_requests_count or 0
        return QuotaStatus(
            limit=self.quota_limit,
            used=used,
            remaining=max(0, self.quota_limit - used),
            reset_date=reset_date
        )

    async def increment_quota(self, project_id: ProjectId) -> None:
        await self.db.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(ai_requests_count=Project.ai_requests_count + 1)
        )
        await self.db.commit()
        self._logger.debug("AI quota incremented for project %d", project_id)
