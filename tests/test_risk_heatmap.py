"""
Tests for the rule-based team workload heatmap.
"""

from sprintpilot.services.risk_heatmap import build_workload_heatmap


def _member(member_id, points, blocked=0, high_priority=0, **extra):
    member = {
        "id": member_id,
        "first_name": f"Dev{member_id}",
        "last_name": "Smith",
        "role": "Developer",
        "active_story_points": points,
        "total_issues": 5,
        "in_progress_issues": 1,
        "blocked_issues": blocked,
        "high_priority_issues": high_priority,
    }
    member.update(extra)
    return member


def test_utilization_bands() -> None:
    heatmap = build_workload_heatmap(
        [_member(1, 50), _member(2, 42), _member(3, 34), _member(4, 10)],
        member_capacity=40,
    )
    levels = [m["riskLevel"] for m in heatmap["teamMembers"]]

    assert levels == ["Critical", "High", "Medium", "Low"]
    assert heatmap["teamMembers"][0]["workload"] == {
        "assigned": 50,
        "capacity": 40,
        "percentage": 125,
        "available": -10,
    }
    assert heatmap["teamMembers"][0]["riskFactors"][0] == "Overloaded by 25%"


def test_blocked_and_priority_raise_score() -> None:
    member = build_workload_heatmap([_member(1, 20, blocked=2, high_priority=4)], 40)["teamMembers"][0]

    # 30 base + 20 blocked + 15 high priority
    assert member["riskScore"] == 65
    assert member["riskLevel"] == "Medium"
    assert "2 blocked issues" in member["riskFactors"]
    assert "4 high-priority tasks" in member["riskFactors"]
    assert "Prioritize unblocking issues" in member["suggestions"]


def test_score_is_capped() -> None:
    member = build_workload_heatmap([_member(1, 60, blocked=3)], 40)["teamMembers"][0]
    assert member["riskScore"] == 100
    assert member["riskLevel"] == "Critical"


def test_summary_overall_risk() -> None:
    summary = build_workload_heatmap([_member(1, 60), _member(2, 50), _member(3, 10)], 40)["summary"]

    assert summary["overallRisk"] == "Critical"
    assert summary["overloadedMembers"] == 2
    assert summary["riskDistribution"]["Critical"] == 2
    assert "Rebalance workload between team members" in summary["recommendations"]


def test_balanced_team() -> None:
    summary = build_workload_heatmap([_member(1, 10), _member(2, 12)], 40)["summary"]

    assert summary["overallRisk"] == "Low"
    assert summary["recommendations"] == ["Team workload appears balanced"]


def test_empty_team() -> None:
    heatmap = build_workload_heatmap([], 40)
    assert heatmap["teamMembers"] == []
    assert heatmap["summary"]["totalCapacityUtilization"] == 0
    assert heatmap["summary"]["overallRisk"] == "Low"
