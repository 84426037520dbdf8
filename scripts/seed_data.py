#!/usr/bin/env python3
"""
Seed Data Script for SprintPilot

Creates realistic data for development:
- 5 Users in one project
- 1 Board
- 1 Active Sprint with a recorded scope baseline
- A prioritized backlog, including vague and blocked issues for the AI features

Usage:
    python scripts/seed_data.py              # Add seed data
    python scripts/seed_data.py --clear      # Clear all data first
"""
import asyncio
import sys
import os
from datetime import date, timedelta
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sprintpilot.core.auth import create_access_token
from sprintpilot.database import async_session, engine
from sprintpilot.models.base import Base
from sprintpilot.models.board import Board
from sprintpilot.models.issue import Issue
from sprintpilot.models.sprint import Sprint
from sprintpilot.models.user import Project, ProjectMember, User
from sprintpilot.services.scope_service import ScopeService


# ==================== DATA DEFINITIONS ====================

USERS_DATA = [
    {"email": "alice.pm@company.com", "first_name": "Alice", "last_name": "Johnson", "role": "Project Manager"},
    {"email": "emma.dev@company.com", "first_name": "Emma", "last_name": "Rodriguez", "role": "Developer"},
    {"email": "frank.dev@company.com", "first_name": "Frank", "last_name": "Smith", "role": "Developer"},
    {"email": "grace.dev@company.com", "first_name": "Grace", "last_name": "Lee", "role": "Developer"},
    {"email": "henry.qa@company.com", "first_name": "Henry", "last_name": "Brown", "role": "Developer"},
]

PROJECT_DATA = {
    "name": "Storefront",
    "project_key": "SHOP",
    "description": "Customer facing web store",
}

# Committed to the active sprint
SPRINT_ISSUES = [
    {"title": "Payment Gateway Integration", "description": "Integrate Stripe for card payments. AC: Visa/Mastercard/Amex, 3D Secure, webhook for payment status.", "issue_type": "Story", "priority": "P1", "story_points": 8, "status": "In Progress"},
    {"title": "Email Notification System", "description": "Transactional emails for signup, password reset and order confirmation.", "issue_type": "Story", "priority": "P2", "story_points": 5, "status": "In Progress"},
    {"title": "Password Reset Flow", "description": "Forgot password with email verification. AC: token valid 1hr, rate limited.", "issue_type": "Story", "priority": "P1", "story_points": 3, "status": "Done"},
    {"title": "Checkout fails for guest users", "description": "Guest checkout returns 500 when the cart contains a discounted item.", "issue_type": "Bug", "priority": "P1", "story_points": 3, "status": "Blocked", "blocked_reason": "Waiting on payment provider sandbox credentials"},
    {"title": "Pagination for Lists", "description": "Configurable page size (10/25/50), total count, prev/next buttons.", "issue_type": "Task", "priority": "P3", "story_points": 2, "status": "To Do"},
]

# Unplanned backlog, some intentionally vague
BACKLOG_ISSUES = [
    {"title": "Search Functionality", "description": "Full-text search across products. Results in <500ms.", "issue_type": "Story", "priority": "P2", "story_points": 5},
    {"title": "API Rate Limiting", "description": "100 req/min per user, 429 with Retry-After.", "issue_type": "Story", "priority": "P2", "story_points": 3},
    {"title": "Admin Dashboard", "description": "Dashboard for admins to manage users and content", "issue_type": "Epic", "priority": "P2", "story_points": 13},
    {"title": "Improve Performance", "description": "The app is slow", "issue_type": "Task", "priority": "P2", "story_points": None},
    {"title": "Update UI", "description": "Make it look better", "issue_type": "Task", "priority": "P4", "story_points": None},
    {"title": "Two-Factor Authentication", "description": "Optional TOTP 2FA with backup codes.", "issue_type": "Story", "priority": "P3", "story_points": 8},
    {"title": "CSV Import", "description": "Import products from CSV with validation and error report.", "issue_type": "Story", "priority": "P3", "story_points": 5},
    {"title": "Dark Mode", "description": "Toggle in settings, persisted preference.", "issue_type": "Story", "priority": "P4", "story_points": 5},
]

HOURS_PER_POINT = 5


# ==================== HELPERS ====================

async def clear_all_data(session: AsyncSession):
    """Delete all rows, children first"""
    print("\n🗑️  Clearing existing data...")
    for table in reversed(Base.metadata.sorted_tables):
        await session.execute(delete(table))
    await session.commit()
    print("  ✓ All tables cleared")


async def create_users(session: AsyncSession):
    print("\n👥 Creating users...")
    users = []
    for user_data in USERS_DATA:
        user = User(
            email=user_data["email"],
            first_name=user_data["first_name"],
            last_name=user_data["last_name"],
            is_active=True
        )
        session.add(user)
        users.append(user)

    await session.commit()
    print(f"  ✓ Created {len(users)} users")
    return users


async def create_project(session: AsyncSession, users):
    print("\n📁 Creating project and board...")
    owner = users[0]
    project = Project(owner_id=owner.id, ai_requests_count=0, ai_requests_reset_date=date.today(), **PROJECT_DATA)
    session.add(project)
    await session.flush()

    for user, user_data in zip(users, USERS_DATA):
        session.add(ProjectMember(user_id=user.id, project_id=project.id, role=user_data["role"]))

    board = Board(project_id=project.id, name=f"{project.project_key} board", is_default=True, created_by=owner.id)
    session.add(board)
    await session.commit()

    print(f"  ✓ Project {project.project_key} with {len(users)} members")
    return project, board


async def create_issues(session: AsyncSession, board, sprint, users):
    print("\n📋 Creating issues...")
    reporter = users[0]
    developers = users[1:]

    for index, issue_data in enumerate(SPRINT_ISSUES + BACKLOG_ISSUES):
        in_sprint = index < len(SPRINT_ISSUES)
        points = issue_data.get("story_points")
        estimate = points * HOURS_PER_POINT if points else None
        session.add(Issue(
            board_id=board.id,
            sprint_id=sprint.id if in_sprint else None,
            reporter_id=reporter.id,
            assignee_id=developers[index % len(developers)].id if in_sprint else None,
            status=issue_data.get("status", "To Do"),
            original_estimate=estimate,
            time_remaining=estimate,
            time_spent=0,
            **{k: v for k, v in issue_data.items() if k != "status"}
        ))

    await session.commit()
    print(f"  ✓ {len(SPRINT_ISSUES)} sprint issues, {len(BACKLOG_ISSUES)} backlog issues")


# ==================== MAIN ====================

async def seed_database(clear_first: bool = False):
    """Main seed function"""
    print("=" * 60)
    print("🌱 SprintPilot - Database Seeding")
    print("=" * 60)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        if clear_first:
            await clear_all_data(session)

        users = await create_users(session)
        project, board = await create_project(session, users)

        sprint = Sprint(
            board_id=board.id,
            name="Sprint 1",
            goal="Take payments end to end",
            start_date=date.today() - timedelta(days=3),
            end_date=date.today() + timedelta(days=11),
            status="Active",
            capacity_story_points=30,
            created_by=users[0].id,
            baseline_points=0,
            scope_alerted=False
        )
        session.add(sprint)
        await session.commit()

        await create_issues(session, board, sprint, users)
        baseline = await ScopeService(session).snapshot_baseline(sprint.id)

    await engine.dispose()

    print("\n" + "=" * 60)
    print("✅ Database seeding complete!")
    print("=" * 60)
    print("\n📊 Summary:")
    print(f"  Project: {project.project_key} (id {project.id}), board id {board.id}")
    print(f"  Sprint: {sprint.name} (id {sprint.id}, baseline {baseline} points)")
    print(f"  Issues: {len(SPRINT_ISSUES) + len(BACKLOG_ISSUES)}")
    print("\n🔑 Bearer tokens:")
    for user in users:
        print(f"  {user.email}: {create_access_token({'sub': user.id})}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Seed SprintPilot database")
    parser.add_argument("--clear", action="store_true", help="Clear all data before seeding")
    args = parser.parse_args()

    asyncio.run(seed_database(clear_first=args.clear))
