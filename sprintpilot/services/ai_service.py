from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging

from fastapi import BackgroundTasks
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..core.exceptions import QuotaExceededError, ServiceUnavailableError
from ..schemas.ai import (
    FeatureInput,
    GenerateSprintPlanRequest,
    RetrospectiveInput,
    RetrospectiveRequest,
    RetrospectiveSummary,
    RiskAssessmentInput,
    ScopeCreepInput,
    ScopeCreepRequest,
    SprintCreationInput,
    SprintPlanningInput,
    SprintPlanRequest,
)
from .activity_service import ActivityLogger
from .llm_provider import LLMProvider
from .project_service import ProjectService
from .prompt_builder import build_prompt, system_prompt_for
from .quota_service import QuotaService, QuotaStatus
from .response_parser import (
    ParseFailure,
    ParseResult,
    parse_retrospective_response,
    parse_risk_assessment_response,
    parse_scope_creep_response,
    parse_sprint_creation_response,
    parse_sprint_planning_response,
)
from .scope_service import ScopeService

ProjectId = int
UserId = int

Parser = Callable[[Optional[str]], ParseResult]


class FeatureResult(BaseModel):
    payload: Dict[str, Any]
    succeeded: bool
    metadata: Dict[str, Any]


class AIService:
    """
    Runs every AI feature through the same protocol:

    readiness -> quota check -> prompt -> completion -> quota increment -> parse -> audit

    Quota is only consumed by completions that actually returned. Parse
    failures are returned as the payload instead of being raised, and the
    audit row is written after the response by its own session.
    """

    def __init__(
        self,
        db: AsyncSession,
        llm: LLMProvider,
        settings: Settings,
        audit: ActivityLogger,
        background_tasks: Optional[BackgroundTasks] = None
    ) -> None:
        self.db = db
        self.llm = llm
        self.settings = settings
        self.audit = audit
        self.background_tasks = background_tasks
        self.quota = QuotaService(
            db,
            quota_limit=settings.ai_quota_limit,
            quota_reset_days=settings.ai_quota_reset_days
        )
        self.projects = ProjectService(db)
        self._logger = logging.getLogger(__name__)

    def ensure_available(self) -> None:
        if not self.llm.is_ready():
            raise ServiceUnavailableError()

    async def get_quota(self, project_id: ProjectId) -> QuotaStatus:
        return await self.quota.check_quota(project_id)

    # Feature entry points

    async def generate_sprint_plan(
        self, project_id: ProjectId, user_id: UserId, data: SprintPlanningInput
    ) -> FeatureResult:
        return await self._run_feature(project_id, user_id, data, parse_sprint_planning_response)

    async def detect_scope_creep(
        self, project_id: ProjectId, user_id: UserId, data: ScopeCreepInput
    ) -> FeatureResult:
        return await self._run_feature(project_id, user_id, data, parse_scope_creep_response)

    async def assess_risks(
        self, project_id: ProjectId, user_id: UserId, data: RiskAssessmentInput
    ) -> FeatureResult:
        return await self._run_feature(project_id, user_id, data, parse_risk_assessment_response)

    async def generate_retrospective_insights(
        self, project_id: ProjectId, user_id: UserId, data: RetrospectiveInput
    ) -> FeatureResult:
        return await self._run_feature(project_id, user_id, data, parse_retrospective_response)

    async def generate_sprint_creation_plan(
        self, project_id: ProjectId, user_id: UserId, data: SprintCreationInput
    ) -> FeatureResult:
        return await self._run_feature(
            project_id,
            user_id,
            data,
            parse_sprint_creation_response,
            max_tokens=self.settings.ai_plan_max_tokens
        )

    # Input assembly

    async def sprint_planning_input(
        self, project_id: ProjectId, request: SprintPlanRequest
    ) -> SprintPlanningInput:
        return SprintPlanningInput(
            sprint_goal=request.sprint_goal,
            capacity=request.capacity,
            duration=request.duration,
            issues=await self.projects.get_backlog_issues(project_id, request.issue_ids),
            team_members=await self.projects.get_team_members(project_id)
        )

    async def scope_creep_input(
        self, project_id: ProjectId, request: ScopeCreepRequest
    ) -> ScopeCreepInput:
        sprint = await self.projects.get_sprint_in_project(request.sprint_id, project_id)
        current_issues = await self.projects.get_sprint_issues(sprint.id)

        # Without an explicit original scope every current issue counts as committed
        if request.original_scope is not None:
            committed = set(request.original_scope)
            original_issues = [issue for issue in current_issues if issue.id in committed]
        else:
            original_issues = current_issues

        return ScopeCreepInput(
            sprint_name=sprint.name,
            sprint_goal=sprint.goal,
            start_date=sprint.start_date,
            end_date=sprint.end_date,
            baseline_points=sprint.baseline_points or 0,
            current_points=await ScopeService(self.db).current_points(sprint.id),
            original_issues=original_issues,
            current_issues=current_issues,
            team_members=await self.projects.get_team_members(project_id)
        )

    async def risk_assessment_input(self, project_id: ProjectId) -> RiskAssessmentInput:
        risk_data = await self.projects.get_risk_data(project_id)
        return RiskAssessmentInput(
            team_members=await self.projects.get_team_members(project_id),
            **risk_data
        )

    async def retrospective_input(
        self, project_id: ProjectId, request: RetrospectiveRequest
    ) -> RetrospectiveInput:
        sprint = await self.projects.get_sprint_in_project(request.sprint_id, project_id)
        issues = await self.projects.get_sprint_issues(sprint.id)
        completed = [issue for issue in issues if issue.status == "Done"]

        return RetrospectiveInput(
            sprint=RetrospectiveSummary(
                goal=sprint.goal,
                planned_points=sum(issue.story_points or 0 for issue in issues),
                completed_points=sum(issue.story_points or 0 for issue in completed),
                completed_issues=len(completed),
                total_issues=len(issues)
            ),
            team_feedback=request.team_feedback,
            metrics=request.metrics,
            team_members=await self.projects.get_team_members(project_id)
        )

    async def sprint_creation_input(
        self, project_id: ProjectId, user_id: UserId, request: GenerateSprintPlanRequest
    ) -> SprintCreationInput:
        await self.projects.get_board_in_project(request.board_id, project_id)
        return SprintCreationInput(
            project_id=project_id,
            board_id=request.board_id,
            created_by=user_id,
            start_date=request.start_date,
            end_date=request.end_date,
            total_story_points=request.total_story_points,
            tasks=request.tasks_list,
            team_members=await self.projects.get_team_members(project_id)
        )

    # Protocol

    async def _run_feature(
        self,
        project_id: ProjectId,
        user_id: UserId,
        data: FeatureInput,
        parser: Parser,
        max_tokens: Optional[int] = None
    ) -> FeatureResult:
        feature = data.feature
        self.ensure_available()

        quota = await self.quota.check_quota(project_id)
        if quota.remaining <= 0:
            self._logger.info("AI quota exhausted for project %d", project_id)
            raise QuotaExceededError(reset_date=quota.reset_date)

        prompt = build_prompt(data)
        self._logger.info("Running AI feature %s for project %d", feature, project_id)

        completion = await self.llm.generate_completion(
            prompt,
            system_prompt=system_prompt_for(feature),
            max_tokens=max_tokens or self.settings.max_tokens,
            temperature=self.settings.openai_temperature
        )

        await self.quota.increment_quota(project_id)

        parsed = parser(completion.text)
        succeeded = not isinstance(parsed, ParseFailure)
        payload = parsed if succeeded else parsed.to_dict()
        if not succeeded:
            self._logger.warning(
                "AI feature %s returned an unusable response: %s", feature, parsed.kind.value
            )

        await self._record_request(
            user_id,
            project_id,
            feature,
            data.model_dump(mode="json"),
            {
                "response": completion.text,
                "parsed": succeeded,
                "model": completion.model,
                "tokens_used": completion.tokens_used,
            }
        )

        return FeatureResult(
            payload=payload,
            succeeded=succeeded,
            metadata={
                "feature": feature,
                "model": completion.model,
                "provider": completion.provider,
                "tokens_used": completion.tokens_used,
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "quota_remaining": max(0, quota.remaining - 1),
            }
        )

    async def _record_request(
        self,
        user_id: UserId,
        project_id: ProjectId,
        feature: str,
        request_data: Dict[str, Any],
        response_data: Dict[str, Any]
    ) -> None:
        if self.background_tasks is not None:
            self.background_tasks.add_task(
                self.audit.log_ai_request, user_id, project_id, feature, request_data, response_data
            )
        else:
            await self.audit.log_ai_request(user_id, project_id, feature, request_data, response_data)
