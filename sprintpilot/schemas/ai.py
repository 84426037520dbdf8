"""
Pydantic models for the AI features.

Three groups live here:
    * request bodies accepted by the ``/projects/{project_id}/ai`` routes (camelCase on the wire)
    * tagged feature inputs handed to the prompt builder, one variant per feature
    * response contracts the completion output is validated against
"""
from datetime import date
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Feature names, shared by prompts, audit rows and parsers
SPRINT_PLANNING = "sprint_planning"
SCOPE_CREEP = "scope_creep_detection"
RISK_ASSESSMENT = "risk_assessment"
RETROSPECTIVE = "retrospective_insights"
SPRINT_CREATION = "sprint_creation"

RiskLevel = Literal["Low", "Medium", "High"]
PlanIssueType = Literal["Story", "Task", "Bug", "Epic"]
PlanIssueStatus = Literal["To Do", "In Progress", "Done", "Blocked"]
# Narrower than the P1..P4 issue priorities on purpose
PlanPriority = Literal["P1", "P2", "P3"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Request bodies

class SprintPlanRequest(CamelModel):
    sprint_goal: Optional[str] = Field(default=None, max_length=1000)
    capacity: Optional[int] = Field(default=None, ge=0)
    duration: Optional[int] = Field(default=None, ge=1, le=8)  # weeks
    issue_ids: Optional[List[int]] = None


class ScopeCreepRequest(CamelModel):
    sprint_id: int
    original_scope: Optional[List[int]] = None  # issue ids committed at sprint start


class RiskAssessmentRequest(CamelModel):
    include_heatmap: bool = False


class TeamFeedback(CamelModel):
    went_well: Optional[str] = None
    improvements: Optional[str] = None
    previous_actions: Optional[str] = None


class RetrospectiveMetrics(CamelModel):
    velocity: Optional[float] = None
    cycle_time: Optional[float] = None
    burndown_trend: Optional[str] = None


class RetrospectiveRequest(CamelModel):
    sprint_id: int
    team_feedback: TeamFeedback = Field(default_factory=TeamFeedback)
    metrics: RetrospectiveMetrics = Field(default_factory=RetrospectiveMetrics)


class GenerateSprintPlanRequest(CamelModel):
    board_id: int
    start_date: date
    end_date: date
    total_story_points: int = Field(ge=1, le=500)
    tasks_list: List[str] = Field(min_length=1, max_length=50)

    @model_validator(mode="after")
    def check_dates(self) -> "GenerateSprintPlanRequest":
        if self.end_date <= self.start_date:
            raise ValueError("endDate must be after startDate")
        return self


# Digests embedded in prompts

class IssueDigest(BaseModel):
    id: Optional[int] = None
    title: str
    issue_type: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    story_points: Optional[int] = None
    blocked_reason: Optional[str] = None
    assignee: Optional[str] = None


class TeamMemberDigest(BaseModel):
    id: int
    name: str
    role: Optional[str] = None


class SprintDigest(BaseModel):
    id: int
    name: str
    status: str


class RetrospectiveSummary(BaseModel):
    goal: Optional[str] = None
    planned_points: int = 0
    completed_points: int = 0
    completed_issues: int = 0
    total_issues: int = 0

    def to_response(self) -> Dict[str, Any]:
        return {
            "goal": self.goal,
            "plannedPoints": self.planned_points,
            "completedPoints": self.completed_points,
            "completedIssues": self.completed_issues,
            "totalIssues": self.total_issues,
        }


# Tagged feature inputs

class SprintPlanningInput(BaseModel):
    feature: Literal["sprint_planning"] = SPRINT_PLANNING
    sprint_goal: Optional[str] = None
    capacity: Optional[int] = None
    duration: Optional[int] = None
    issues: List[IssueDigest] = Field(default_factory=list)
    team_members: List[TeamMemberDigest] = Field(default_factory=list)


class ScopeCreepInput(BaseModel):
    feature: Literal["scope_creep_detection"] = SCOPE_CREEP
    sprint_name: str
    sprint_goal: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    baseline_points: int = 0
    current_points: int = 0
    original_issues: List[IssueDigest] = Field(default_factory=list)
    current_issues: List[IssueDigest] = Field(default_factory=list)
    team_members: List[TeamMemberDigest] = Field(default_factory=list)


class RiskAssessmentInput(BaseModel):
    feature: Literal["risk_assessment"] = RISK_ASSESSMENT
    team_size: int = 0
    issues: List[IssueDigest] = Field(default_factory=list)
    sprints: List[SprintDigest] = Field(default_factory=list)
    blocked_issues: List[IssueDigest] = Field(default_factory=list)
    team_members: List[TeamMemberDigest] = Field(default_factory=list)


class RetrospectiveInput(BaseModel):
    feature: Literal["retrospective_insights"] = RETROSPECTIVE
    sprint: RetrospectiveSummary
    team_feedback: TeamFeedback = Field(default_factory=TeamFeedback)
    metrics: RetrospectiveMetrics = Field(default_factory=RetrospectiveMetrics)
    team_members: List[TeamMemberDigest] = Field(default_factory=list)


class SprintCreationInput(BaseModel):
    feature: Literal["sprint_creation"] = SPRINT_CREATION
    project_id: int
    board_id: int
    created_by: int
    start_date: date
    end_date: date
    total_story_points: int
    tasks: List[str]
    team_members: List[TeamMemberDigest] = Field(default_factory=list)


FeatureInput = Annotated[
    Union[
        SprintPlanningInput,
        ScopeCreepInput,
        RiskAssessmentInput,
        RetrospectiveInput,
        SprintCreationInput,
    ],
    Field(discriminator="feature"),
]


# Completion output contracts

class SprintPlanAdvice(BaseModel):
    model_config = ConfigDict(extra="allow")

    recommended_issues: List[Any]
    priority_order: List[Any]
    risks: List[Any]
    suggestions: List[Any]
    capacity_analysis: Any


class ScopeCreepAnalysis(BaseModel):
    model_config = ConfigDict(extra="allow")

    severity: RiskLevel
    scope_creep_detected: bool
    added_work: List[Any]
    impact_analysis: Any
    recommendations: List[Any]


class RiskItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    category: Literal["Technical", "Resource", "Timeline", "Quality"]
    description: str
    impact: RiskLevel
    probability: RiskLevel
    mitigation: str


class RiskAssessment(BaseModel):
    model_config = ConfigDict(extra="allow")

    overall_risk_level: RiskLevel
    risks: List[RiskItem]
    recommendations: List[Any]


class RetrospectiveInsights(BaseModel):
    model_config = ConfigDict(extra="allow")

    performance_analysis: Any
    productivity_insights: List[Any]
    improvement_suggestions: List[Any]
    action_items: List[Any]
    overall_rating: Literal["Excellent", "Good", "Average", "Poor"]


class PlanIssue(BaseModel):
    """One issue draft inside an AI sprint plan."""

    board_id: int
    title: str = Field(min_length=1, max_length=500)
    description: str = Field(max_length=5000)
    issue_type: PlanIssueType
    status: PlanIssueStatus
    priority: PlanPriority
    story_points: Optional[int] = Field(default=None, ge=0, le=21)
    original_estimate: Optional[float] = Field(default=None, ge=0)
    reporter_id: int
    assignee_id: Optional[int] = None
    blocked_reason: Optional[str] = None

    @model_validator(mode="after")
    def check_blocked_reason(self) -> "PlanIssue":
        if self.status == "Blocked" and not self.blocked_reason:
            raise ValueError("blocked_reason is required when status is Blocked")
        return self


class SprintPlan(BaseModel):
    """A complete AI-authored sprint, validated but not yet persisted."""

    board_id: int
    name: str = Field(min_length=1, max_length=255)
    goal: str = Field(max_length=1000)
    start_date: date
    end_date: date
    capacity_story_points: int = Field(ge=0)
    status: Literal["Planning", "Active"]
    created_by: int
    issues: List[PlanIssue] = Field(min_length=1)

    @model_validator(mode="after")
    def check_dates(self) -> "SprintPlan":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    @property
    def total_points(self) -> int:
        return sum(issue.story_points or 0 for issue in self.issues)
