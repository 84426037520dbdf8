"""
Sprint scope tracking.

A sprint commits to ``baseline_points``. Every time an issue enters, leaves
or is re-estimated inside the sprint the live point total is compared with
the baseline; once the relative growth reaches ``scope_threshold_pct`` the
sprint's ``scope_alerted`` flag latches on. Recomputation never clears the
flag: ``reset_scope_alert`` is the only way back.
"""
from typing import List, Optional
import logging

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..models.issue import Issue
from ..models.sprint import Sprint

SprintId = int

DEFAULT_SCOPE_THRESHOLD = 0.20


class ScopeStatus(BaseModel):
    sprint_id: SprintId
    baseline_points: int
    current_points: int
    threshold_pct: float
    creep_ratio: Optional[float]
    scope_alerted: bool


def compute_creep_ratio(baseline_points: int, current_points: int) -> Optional[float]:
    """Fractional growth of current points over baseline, None without a baseline"""
    if not baseline_points:
        return None
    return (current_points - baseline_points) / baseline_points


def should_raise_alert(creep_ratio: Optional[float], threshold: float, already_alerted: bool) -> bool:
    if creep_ratio is None or already_alerted:
        return False
    return creep_ratio >= threshold


def sprints_to_recompute(
    old_sprint_id: Optional[SprintId],
    new_sprint_id: Optional[SprintId],
    old_points: Optional[int],
    new_points: Optional[int]
) -> List[SprintId]:
    """Sprints whose scope is affected by an issue moving or being re-estimated"""
    if old_sprint_id != new_sprint_id:
        return [sprint_id for sprint_id in (old_sprint_id, new_sprint_id) if sprint_id is not None]
    if new_sprint_id is not None and (old_points or 0) != (new_points or 0):
        return [new_sprint_id]
    return []


class ScopeService:
    """Scope creep latch backed by the sprints table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._logger = logging.getLogger(__name__)

    async def current_points(self, sprint_id: SprintId, session: Optional[AsyncSession] = None) -> int:
        stmt = select(func.coalesce(func.sum(Issue.story_points), 0)).where(
            Issue.sprint_id == sprint_id
        )
        result = await (session or self.db).execute(stmt)
        return int(result.scalar() or 0)

    async def recompute_scope(self, sprint_id: Optional[SprintId]) -> None:
        """
        Re-evaluate the scope alert for one sprint. Never raises.

        Runs on a session of its own so a failure leaves the caller's
        session and loaded objects untouched.
        """

        if sprint_id is None:
            return

        try:
            async with AsyncSession(self.db.bind, expire_on_commit=False) as session:
                await self._recompute(session, sprint_id)
        except Exception:
            self._logger.exception("Scope recompute failed for sprint %d", sprint_id)

    async def _recompute(self, session: AsyncSession, sprint_id: SprintId) -> None:
        stmt = select(
            Sprint.baseline_points,
            Sprint.scope_threshold_pct,
            Sprint.scope_alerted
        ).where(Sprint.id == sprint_id)
        row = (await session.execute(stmt)).one_or_none()

        if row is None:
            self._logger.warning("Scope recompute skipped, sprint %d not found", sprint_id)
            return

        if not row.baseline_points:
            self._logger.debug("Sprint %d has no baseline, skipping scope check", sprint_id)
            return

        current = await self.current_points(sprint_id, session)
        ratio = compute_creep_ratio(row.baseline_points, current)
        threshold = row.scope_threshold_pct
        if threshold is None:
            threshold = DEFAULT_SCOPE_THRESHOLD

        if should_raise_alert(ratio, threshold, bool(row.scope_alerted)):
            await session.execute(
                update(Sprint)
                .where(Sprint.id == sprint_id, Sprint.scope_alerted == False)
                .values(scope_alerted=True)
            )
            await session.commit()
            self._logger.warning(
                "Scope creep alert raised for sprint %d: %d -> %d points (%.0f%%)",
                sprint_id, row.baseline_points, current, ratio * 100
            )

    async def recompute_many(self, sprint_ids: List[SprintId]) -> None:
        for sprint_id in sprint_ids:
            await self.recompute_scope(sprint_id)

    async def get_scope_status(self, sprint_id: SprintId) -> ScopeStatus:
        sprint = await self._get_sprint(sprint_id)
        current = await self.current_points(sprint_id)
        threshold = sprint.scope_threshold_pct
        if threshold is None:
            threshold = DEFAULT_SCOPE_THRESHOLD

        return ScopeStatus(
            sprint_id=sprint.id,
            baseline_points=sprint.baseline_points or 0,
            current_points=current,
            threshold_pct=threshold,
            creep_ratio=compute_creep_ratio(sprint.baseline_points or 0, current),
            scope_alerted=bool(sprint.scope_alerted)
        )

    async def snapshot_baseline(self, sprint_id: SprintId, points: Optional[int] = None) -> int:
        """Record the committed point total, defaulting to the live total"""
        if points is None:
            points = await self.current_points(sprint_id)

        await self.db.execute(
            update(Sprint).where(Sprint.id == sprint_id).values(baseline_points=points)
        )
        await self.db.commit()
        self._logger.info("Baseline for sprint %d set to %d points", sprint_id, points)
        return points

    async def reset_scope_alert(self, sprint_id: SprintId) -> ScopeStatus:
        """Clear the latch and accept the current scope as the new baseline."""
        await self._get_sprint(sprint_id)
        current = await self.current_points(sprint_id)

        await self.db.execute(
            update(Sprint)
            .where(Sprint.id == sprint_id)
            .values(scope_alerted=False, baseline_points=current)
        )
        await self.db.commit()
        self._logger.info("Scope alert reset for sprint %d, new baseline %d", sprint_id, current)

        return await self.get_scope_status(sprint_id)

    async def _get_sprint(self, sprint_id: SprintId) -> Sprint:
        stmt = select(Sprint).where(Sprint.id == sprint_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        sprint = result.scalar_one_or_none()
        if sprint is None:
            raise NotFoundError("Sprint", sprint_id)
        return sprint
