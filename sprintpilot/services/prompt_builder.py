"""
Prompt rendering for the AI features.

Every builder is a pure function of its tagged input: no I/O, no clock, no
randomness. The same input always renders the same text, which keeps the
prompts snapshot-testable.
"""
from typing import Callable, Dict, List, Optional

from ..schemas.ai import (
    FeatureInput,
    IssueDigest,
    RetrospectiveInput,
    RiskAssessmentInput,
    ScopeCreepInput,
    SprintCreationInput,
    SprintPlanningInput,
    TeamMemberDigest,
    RISK_ASSESSMENT,
    RETROSPECTIVE,
    SCOPE_CREEP,
    SPRINT_CREATION,
    SPRINT_PLANNING,
)

FIBONACCI_POINTS = (1, 2, 3, 5, 8, 13, 21)
HOURS_PER_POINT = (4, 6)

BASE_SYSTEM_PROMPT = """You are an AI assistant for agile project management. You help teams with:
- Sprint planning and capacity analysis
- Scope tracking and change control
- Risk identification and mitigation
- Retrospectives and process improvement

Always be objective, constructive, and focused on team productivity. Respond with valid JSON only."""

_SYSTEM_PROMPTS: Dict[str, str] = {
    SPRINT_PLANNING: BASE_SYSTEM_PROMPT + """

For sprint planning:
- Respect the stated team capacity
- Prefer higher-priority issues first
- Call out dependencies and risky estimates""",
    SCOPE_CREEP: BASE_SYSTEM_PROMPT + """

For scope creep analysis:
- Compare committed work against current work
- Quantify added work in story points
- Recommend concrete scope trade-offs""",
    RISK_ASSESSMENT: BASE_SYSTEM_PROMPT + """

For risk assessment:
- Classify risks as Technical, Resource, Timeline or Quality
- Rate impact and probability separately
- Give one mitigation per risk""",
    RETROSPECTIVE: BASE_SYSTEM_PROMPT + """

For retrospectives:
- Ground the analysis in the sprint numbers
- Keep action items small and assignable""",
    SPRINT_CREATION: BASE_SYSTEM_PROMPT + """

For sprint creation:
- Produce a complete sprint with concrete issues
- Follow the estimation and priority rules exactly
- Never add fields outside the requested structure""",
}


def system_prompt_for(feature: str) -> str:
    """Get the system message for a feature"""
    return _SYSTEM_PROMPTS.get(feature, BASE_SYSTEM_PROMPT)


def _format_team(members: List[TeamMemberDigest]) -> str:
    if not members:
        return "- No team members listed"
    return "\n".join(
        f"- [{member.id}] {member.name} ({member.role or 'Member'})" for member in members
    )


def _format_points(points: Optional[int]) -> str:
    return str(points) if points is not None else "No estimate"


def _format_issue(issue: IssueDigest) -> str:
    ident = f"[{issue.id}] " if issue.id is not None else ""
    details = ", ".join(
        part for part in (issue.issue_type, issue.priority, issue.status) if part
    )
    line = f"- {ident}{issue.title}"
    if details:
        line += f" ({details}, {_format_points(issue.story_points)} points)"
    else:
        line += f" ({_format_points(issue.story_points)} points)"
    if issue.assignee:
        line += f" - assigned to {issue.assignee}"
    return line


def _format_issues(issues: List[IssueDigest], empty: str = "- None") -> str:
    if not issues:
        return empty
    return "\n".join(_format_issue(issue) for issue in issues)


def build_sprint_planning_prompt(data: SprintPlanningInput) -> str:
    return f"""
As an AI assistant for agile project management, help plan a sprint with the following details:

Sprint Goal: {data.sprint_goal or 'Not specified'}
Sprint Duration: {data.duration or 2} weeks
Team Capacity: {data.capacity if data.capacity is not None else 'Not specified'} story points

Team Members:
{_format_team(data.team_members)}

Available Issues:
{_format_issues(data.issues, empty='- No backlog issues available')}

Please provide:
1. Recommended issues to include in this sprint
2. Priority order for the selected issues
3. Risk assessment for the sprint
4. Suggestions for achieving the sprint goal
5. Capacity utilization analysis

Issue priorities use P1 (highest) to P4 (lowest).

Format your response as JSON with the following structure:
{{
  "recommended_issues": [list of issue IDs],
  "priority_order": [ordered list of issue IDs],
  "risks": [list of identified risks],
  "suggestions": [list of suggestions],
  "capacity_analysis": "analysis text"
}}
"""


def build_scope_creep_prompt(data: ScopeCreepInput) -> str:
    dates = ""
    if data.start_date and data.end_date:
        dates = f"Sprint Dates: {data.start_date.isoformat()} to {data.end_date.isoformat()}\n"

    return f"""
Analyze the following sprint for scope creep:

Sprint: {data.sprint_name}
Original Sprint Goal: {data.sprint_goal or 'Not specified'}
{dates}Committed Story Points (baseline): {data.baseline_points}
Current Story Points: {data.current_points}

Team Members:
{_format_team(data.team_members)}

Original Issues (at sprint start):
{_format_issues(data.original_issues)}

Current Issues (now):
{_format_issues(data.current_issues)}

Analyze for scope creep and provide:
1. Scope creep severity (Low/Medium/High)
2. Added work not in original plan
3. Impact on sprint goal
4. Recommendations to address scope creep

Format as JSON:
{{
  "severity": "Low|Medium|High",
  "scope_creep_detected": true/false,
  "added_work": [list of new work items],
  "impact_analysis": "text",
  "recommendations": [list of recommendations]
}}
"""


def build_risk_assessment_prompt(data: RiskAssessmentInput) -> str:
    active_sprints = len([sprint for sprint in data.sprints if sprint.status == "Active"])
    blocked = "\n".join(
        f"- {issue.title}: {issue.blocked_reason or 'No reason given'}"
        for issue in data.blocked_issues
    ) or "- None"

    return f"""
Assess risks for this project:

Team Size: {data.team_size or 'Unknown'}
Total Issues: {len(data.issues)}
Active Sprints: {active_sprints}
Blocked Issues: {len(data.blocked_issues)}

Team Members:
{_format_team(data.team_members)}

Recent Issues:
{_format_issues(data.issues[:10])}

Blocked Issues:
{blocked}

Identify and assess risks:
1. Technical risks
2. Resource risks
3. Timeline risks
4. Quality risks

Format as JSON:
{{
  "overall_risk_level": "Low|Medium|High",
  "risks": [
    {{
      "category": "Technical|Resource|Timeline|Quality",
      "description": "risk description",
      "impact": "Low|Medium|High",
      "probability": "Low|Medium|High",
      "mitigation": "mitigation strategy"
    }}
  ],
  "recommendations": [list of recommendations]
}}
"""


def build_retrospective_prompt(data: RetrospectiveInput) -> str:
    sprint = data.sprint
    feedback = data.team_feedback
    metrics = data.metrics

    def _metric(value) -> str:
        return "Unknown" if value is None else str(value)

    return f"""
Generate insights for sprint retrospective:

Sprint Summary:
- Goal: {sprint.goal or 'Not specified'}
- Planned Points: {sprint.planned_points}
- Completed Points: {sprint.completed_points}
- Issues Completed: {sprint.completed_issues}/{sprint.total_issues}

Team Members:
{_format_team(data.team_members)}

Team Feedback:
What went well: {feedback.went_well or 'No feedback provided'}
What could be improved: {feedback.improvements or 'No feedback provided'}
Action items from last retrospective: {feedback.previous_actions or 'None'}

Metrics:
- Velocity: {_metric(metrics.velocity)}
- Cycle Time: {_metric(metrics.cycle_time)}
- Burndown: {_metric(metrics.burndown_trend)}

Provide insights and recommendations:
1. Sprint performance analysis
2. Team productivity insights
3. Process improvement suggestions
4. Action items for next sprint

Format as JSON:
{{
  "performance_analysis": "analysis text",
  "productivity_insights": [list of insights],
  "improvement_suggestions": [list of suggestions],
  "action_items": [list of action items],
  "overall_rating": "Excellent|Good|Average|Poor"
}}
"""


def build_sprint_creation_prompt(data: SprintCreationInput) -> str:
    tasks = "\n".join(f"{index}. {task}" for index, task in enumerate(data.tasks, start=1))
    fibonacci = ", ".join(str(points) for points in FIBONACCI_POINTS)
    low_hours, high_hours = HOURS_PER_POINT

    return f"""
Create a complete sprint plan from the task list below.

Project ID: {data.project_id}
Board ID: {data.board_id}
Sprint Start Date: {data.start_date.isoformat()}
Sprint End Date: {data.end_date.isoformat()}
Total Story Point Capacity: {data.total_story_points}
Created By (user ID): {data.created_by}

Team Members (use these IDs for assignee_id):
{_format_team(data.team_members)}

Tasks:
{tasks}

Rules you must follow:
1. Create exactly one issue per task, in the order given.
2. Priority from severity words in the task text: "Critical" or "High" -> P1, "Medium" -> P2, "Low" -> P4. Default to P2 when no severity is stated.
3. Story points must be Fibonacci numbers only: {fibonacci}.
4. The sum of story points should not exceed {data.total_story_points}.
5. original_estimate is in hours: {low_hours}-{high_hours} hours per story point.
6. issue_type is one of Story, Task, Bug, Epic. Use Bug for defects and Story for user-facing features.
7. Every issue uses status "To Do", board_id {data.board_id} and reporter_id {data.created_by}.
8. assignee_id must be one of the team member IDs above, or null.
9. Write a short sprint name and a one-sentence goal covering the tasks.

Return ONLY valid JSON, with no commentary, matching exactly this structure:
{{
  "board_id": {data.board_id},
  "name": "sprint name",
  "goal": "sprint goal",
  "start_date": "{data.start_date.isoformat()}",
  "end_date": "{data.end_date.isoformat()}",
  "capacity_story_points": {data.total_story_points},
  "status": "Planning",
  "created_by": {data.created_by},
  "issues": [
    {{
      "board_id": {data.board_id},
      "title": "issue title",
      "description": "what needs to be done and acceptance criteria",
      "issue_type": "Story|Task|Bug|Epic",
      "status": "To Do",
      "priority": "P1|P2|P3",
      "story_points": 3,
      "original_estimate": 15,
      "reporter_id": {data.created_by},
      "assignee_id": null
    }}
  ]
}}
"""


_BUILDERS: Dict[str, Callable[..., str]] = {
    SPRINT_PLANNING: build_sprint_planning_prompt,
    SCOPE_CREEP: build_scope_creep_prompt,
    RISK_ASSESSMENT: build_risk_assessment_prompt,
    RETROSPECTIVE: build_retrospective_prompt,
    SPRINT_CREATION: build_sprint_creation_prompt,
}


def build_prompt(data: FeatureInput) -> str:
    """Render the prompt for any tagged feature input"""
    return _BUILDERS[data.feature](data)
