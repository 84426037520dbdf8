from fastapi import APIRouter, BackgroundTasks, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional

from ...config import Settings
from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...schemas.ai import (
    GenerateSprintPlanRequest,
    RetrospectiveRequest,
    RiskAssessmentRequest,
    ScopeCreepRequest,
    SprintPlanRequest,
)
from ...services.activity_service import ActivityLogger
from ...services.ai_service import AIService
from ...services.project_service import ProjectService
from ...services.response_parser import validate_sprint_plan
from ...services.risk_heatmap import build_workload_heatmap
from ...services.sprint_materializer import SprintMaterializer
from ..deps import get_activity_logger, get_ai_service, get_app_settings

router = APIRouter()


def _input_data(data) -> Dict[str, Any]:
    return data.model_dump(mode="json", exclude={"feature"})


@router.get("/{project_id}/ai/quota")
async def get_quota_status(
    project_id: int,
    ai_service: AIService = Depends(get_ai_service),
    current_user: User = Depends(get_current_user)
):
    """Get AI quota status for a project"""

    await ai_service.projects.require_member(current_user.id, project_id)

    quota = await ai_service.get_quota(project_id)

    return {
        "quota_limit": quota.limit,
        "quota_remaining": quota.remaining,
        "quota_used": quota.used,
        "reset_date": quota.reset_date.isoformat(),
        "ai_service_available": ai_service.llm.is_ready()
    }


@router.post("/{project_id}/ai/sprint-plan")
async def generate_sprint_plan(
    project_id: int,
    request: SprintPlanRequest,
    ai_service: AIService = Depends(get_ai_service),
    current_user: User = Depends(get_current_user)
):
    """Generate AI sprint planning suggestions from the backlog"""

    await ai_service.projects.require_member(current_user.id, project_id)
    ai_service.ensure_available()

    data = await ai_service.sprint_planning_input(project_id, request)
    result = await ai_service.generate_sprint_plan(project_id, current_user.id, data)

    return {
        "sprint_plan": result.payload,
        "input_data": _input_data(data),
        "metadata": result.metadata
    }


@router.post("/{project_id}/ai/scope-creep")
async def detect_scope_creep(
    project_id: int,
    request: ScopeCreepRequest,
    ai_service: AIService = Depends(get_ai_service),
    current_user: User = Depends(get_current_user)
):
    """Analyze a sprint for scope creep"""

    await ai_service.projects.require_member(current_user.id, project_id)
    ai_service.ensure_available()

    sprint = await ai_service.projects.get_sprint_in_project(request.sprint_id, project_id)
    sprint_info = {
        "id": sprint.id,
        "name": sprint.name,
        "goal": sprint.goal,
        "status": sprint.status
    }

    data = await ai_service.scope_creep_input(project_id, request)
    result = await ai_service.detect_scope_creep(project_id, current_user.id, data)

    return {
        "scope_analysis": result.payload,
        "sprint_info": sprint_info,
        "metadata": result.metadata
    }


@router.post("/{project_id}/ai/risk-assessment")
async def assess_risks(
    project_id: int,
    request: Optional[RiskAssessmentRequest] = None,
    ai_service: AIService = Depends(get_ai_service),
    app_settings: Settings = Depends(get_app_settings),
    current_user: User = Depends(get_current_user)
):
    """Assess project risks, optionally with a team workload heatmap"""

    await ai_service.projects.require_member(current_user.id, project_id)
    ai_service.ensure_available()

    data = await ai_service.risk_assessment_input(project_id)
    result = await ai_service.assess_risks(project_id, current_user.id, data)

    response = {
        "risk_assessment": result.payload,
        "project_summary": {
            "total_issues": len(data.issues),
            "total_sprints": len(data.sprints),
            "blocked_issues": len(data.blocked_issues),
            "team_size": data.team_size
        },
        "metadata": result.metadata
    }

    if request is not None and request.include_heatmap:
        workloads = await ai_service.projects.get_member_workloads(project_id)
        response["heatmap_data"] = build_workload_heatmap(workloads, app_settings.member_capacity_points)

    return response


@router.post("/{project_id}/ai/retrospective")
async def generate_retrospective_insights(
    project_id: int,
    request: RetrospectiveRequest,
    ai_service: AIService = Depends(get_ai_service),
    current_user: User = Depends(get_current_user)
):
    """Generate sprint retrospective insights"""

    await ai_service.projects.require_member(current_user.id, project_id)
    ai_service.ensure_available()

    data = await ai_service.retrospective_input(project_id, request)
    result = await ai_service.generate_retrospective_insights(project_id, current_user.id, data)

    return {
        "retrospective_insights": result.payload,
        "sprint_summary": data.sprint.to_response(),
        "metadata": result.metadata
    }


@router.post("/{project_id}/ai/generate-sprint-plan")
async def generate_sprint_creation_plan(
    project_id: int,
    request: GenerateSprintPlanRequest,
    ai_service: AIService = Depends(get_ai_service),
    current_user: User = Depends(get_current_user)
):
    """Draft a complete sprint from a task list. Nothing is persisted."""

    await ai_service.projects.require_member(current_user.id, project_id)
    ai_service.ensure_available()

    data = await ai_service.sprint_creation_input(project_id, current_user.id, request)
    result = await ai_service.generate_sprint_creation_plan(project_id, current_user.id, data)

    return {
        "sprint_plan": result.payload,
        "input_data": _input_data(data),
        "metadata": result.metadata
    }


@router.post("/{project_id}/ai/create-sprint", status_code=status.HTTP_201_CREATED)
async def create_sprint_from_plan(
    project_id: int,
    background_tasks: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    audit: ActivityLogger = Depends(get_activity_logger),
    app_settings: Settings = Depends(get_app_settings),
    current_user: User = Depends(get_current_user)
):
    """Persist a reviewed AI sprint plan as a sprint with its issues"""

    await ProjectService(db).require_member(current_user.id, project_id)

    # Accept the plan itself or the whole generate-sprint-plan response
    if isinstance(payload.get("sprint_plan"), dict):
        payload = payload["sprint_plan"]

    plan = validate_sprint_plan(payload)

    materializer = SprintMaterializer(
        db,
        audit=audit,
        background_tasks=background_tasks,
        scope_threshold_pct=app_settings.scope_threshold_pct
    )
    result = await materializer.create_sprint_from_plan(project_id, current_user.id, plan)

    return result.model_dump()
