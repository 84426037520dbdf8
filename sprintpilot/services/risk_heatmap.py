"""
Rule-based team workload heatmap.

Utilization above 120% is Critical, above 100% High, above 80% Medium.
Each blocked issue adds 10 risk points and more than three open
high-priority issues add 15; the level is then re-derived from the score.
"""
from typing import Any, Dict, List

RISK_LEVELS = ("Critical", "High", "Medium", "Low")


def _utilization(assigned: int, capacity: int) -> int:
    if capacity <= 0:
        return 0
    return round(assigned / capacity * 100)


def _score_member(member: Dict[str, Any], capacity: int) -> Dict[str, Any]:
    assigned = int(member.get("active_story_points") or 0)
    blocked = int(member.get("blocked_issues") or 0)
    high_priority = int(member.get("high_priority_issues") or 0)
    utilization = _utilization(assigned, capacity)

    if utilization > 120:
        risk_level, risk_score = "Critical", 95
    elif utilization > 100:
        risk_level, risk_score = "High", 80
    elif utilization > 80:
        risk_level, risk_score = "Medium", 60
    else:
        risk_level, risk_score = "Low", 30

    if blocked > 0:
        risk_score += blocked * 10
    if high_priority > 3:
        risk_score += 15

    if risk_score > 90:
        risk_level = "Critical"
    elif risk_score > 70:
        risk_level = "High"
    elif risk_score > 50:
        risk_level = "Medium"

    risk_factors = []
    if utilization > 100:
        risk_factors.append(f"Overloaded by {utilization - 100}%")
    if blocked > 0:
        risk_factors.append(f"{blocked} blocked issues")
    if high_priority > 2:
        risk_factors.append(f"{high_priority} high-priority tasks")
    if not risk_factors:
        risk_factors.append("No significant risk factors")

    suggestions = []
    if utilization > 100:
        suggestions.append("Redistribute some tasks to other team members")
    if blocked > 0:
        suggestions.append("Prioritize unblocking issues")
    if not suggestions:
        suggestions.append("Continue current workload")

    return {
        "id": member["id"],
        "name": f"{member.get('first_name', '')} {member.get('last_name', '')}".strip(),
        "role": member.get("role"),
        "riskLevel": risk_level,
        "riskScore": min(risk_score, 100),
        "workload": {
            "assigned": assigned,
            "capacity": capacity,
            "percentage": utilization,
            "available": capacity - assigned,
        },
        "riskFactors": risk_factors,
        "suggestions": suggestions,
        "issueBreakdown": {
            "total": int(member.get("total_issues") or 0),
            "inProgress": int(member.get("in_progress_issues") or 0),
            "blocked": blocked,
            "highPriority": high_priority,
        },
    }


def build_workload_heatmap(workloads: List[Dict[str, Any]], member_capacity: int) -> Dict[str, Any]:
    """Score every member and summarize the team"""

    team_members = [_score_member(member, member_capacity) for member in workloads]

    overloaded = len([m for m in team_members if m["workload"]["percentage"] > 100])
    blocked_total = sum(m["issueBreakdown"]["blocked"] for m in team_members)
    avg_utilization = (
        round(sum(m["workload"]["percentage"] for m in team_members) / len(team_members))
        if team_members else 0
    )

    overall_risk = "Low"
    if team_members and overloaded > len(team_members) / 2:
        overall_risk = "Critical"
    elif overloaded > 0 or blocked_total > 2:
        overall_risk = "High"
    elif avg_utilization > 80:
        overall_risk = "Medium"

    recommendations = []
    if overloaded > 0:
        recommendations.append("Rebalance workload between team members")
    if blocked_total > 0:
        recommendations.append(f"Address {blocked_total} blocked issues immediately")
    if avg_utilization > 90:
        recommendations.append("Consider extending sprint timeline or reducing scope")
    if not recommendations:
        recommendations.append("Team workload appears balanced")

    return {
        "teamMembers": team_members,
        "summary": {
            "overallRisk": overall_risk,
            "overloadedMembers": overloaded,
            "criticalIssues": blocked_total,
            "totalCapacityUtilization": avg_utilization,
            "recommendations": recommendations,
            "riskDistribution": {
                level: len([m for m in team_members if m["riskLevel"] == level])
                for level in RISK_LEVELS
            },
        },
    }
