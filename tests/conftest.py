"""
Pytest configuration and fixtures.

Every test gets its own SQLite file with foreign keys enforced, a seeded
project (one member, one outsider, one board) and a scripted completion
client standing in for the LLM provider.
"""

import os

os.environ["ENVIRONMENT"] = "testing"

from dataclasses import dataclass
from datetime import date
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sprintpilot.api.deps import get_activity_logger, get_app_settings, get_llm_provider
from sprintpilot.config import Settings, TestingConfig
from sprintpilot.core.auth import create_access_token
from sprintpilot.database import enable_sqlite_foreign_keys, get_db
from sprintpilot.main import app
from sprintpilot.models import Base, Board, Issue, Project, ProjectMember, Sprint, User
from sprintpilot.services.activity_service import ActivityLogger
from sprintpilot.services.llm_provider import CompletionResult
from sprintpilot.services.scope_service import ScopeService


class FakeLLM:
    """Completion client that replays queued responses and records every call.

    Setting ``error`` makes the next calls fail after being recorded.
    """

    def __init__(self, responses: Optional[List[str]] = None, ready: bool = True):
        self.responses = list(responses or [])
        self.ready = ready
        self.error: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []

    def is_ready(self) -> bool:
        return self.ready

    @property
    def model_name(self) -> str:
        return "fake-model"

    def queue(self, *responses: str) -> None:
        self.responses.extend(responses)

    async def generate_completion(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> CompletionResult:
        self.calls.append({
            "prompt": prompt,
            "system_prompt": system_prompt,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.error is not None:
            raise self.error
        text = self.responses.pop(0) if self.responses else "{}"
        return CompletionResult(text=text, model="fake-model", provider="fake", tokens_used=42)


@dataclass
class Seed:
    user: User
    teammate: User
    outsider: User
    project: Project
    board: Board


@pytest.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    enable_sqlite_foreign_keys(test_engine)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return TestingConfig()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def audit(session_factory) -> ActivityLogger:
    return ActivityLogger(session_factory)


@pytest.fixture
async def seed(db: AsyncSession) -> Seed:
    user = User(email="alice@example.com", first_name="Alice", last_name="Johnson", is_active=True)
    teammate = User(email="emma@example.com", first_name="Emma", last_name="Rodriguez", is_active=True)
    outsider = User(email="mallory@example.com", first_name="Mallory", last_name="Moss", is_active=True)
    db.add_all([user, teammate, outsider])
    await db.flush()

    project = Project(
        name="Storefront",
        project_key="SHOP",
        owner_id=user.id,
        ai_requests_count=0,
        ai_requests_reset_date=date.today()
    )
    db.add(project)
    await db.flush()

    db.add_all([
        ProjectMember(user_id=user.id, project_id=project.id, role="Project Manager"),
        ProjectMember(user_id=teammate.id, project_id=project.id, role="Developer"),
    ])
    board = Board(project_id=project.id, name="SHOP board", is_default=True, created_by=user.id)
    db.add(board)
    await db.commit()

    return Seed(user=user, teammate=teammate, outsider=outsider, project=project, board=board)


@pytest.fixture
def make_sprint(db: AsyncSession, seed: Seed):
    async def _make(**fields) -> Sprint:
        values = {
            "board_id": seed.board.id,
            "name": "Sprint 1",
            "status": "Planning",
            "baseline_points": 0,
            "scope_threshold_pct": 0.20,
            "scope_alerted": False,
            "created_by": seed.user.id,
        }
        values.update(fields)
        sprint = Sprint(**values)
        db.add(sprint)
        await db.commit()
        await db.refresh(sprint)
        return sprint

    return _make


@pytest.fixture
def make_issue(db: AsyncSession, seed: Seed):
    async def _make(**fields) -> Issue:
        values = {
            "board_id": seed.board.id,
            "title": "Issue",
            "issue_type": "Task",
            "status": "To Do",
            "priority": "P3",
            "reporter_id": seed.user.id,
            "time_spent": 0,
        }
        values.update(fields)
        issue = Issue(**values)
        db.add(issue)
        await db.commit()
        await db.refresh(issue)
        return issue

    return _make


@pytest.fixture
async def async_client(session_factory, llm, audit, settings) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with test dependencies swapped in."""

    async def _get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_llm_provider] = lambda: llm
    app.dependency_overrides[get_activity_logger] = lambda: audit
    app.dependency_overrides[get_app_settings] = lambda: settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(seed: Seed) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': seed.user.id})}"}


@pytest.fixture
def outsider_headers(seed: Seed) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': seed.outsider.id})}"}


@pytest.fixture
def broken_scope_recompute(monkeypatch) -> None:
    """Every scope recompute fails while summing sprint points."""

    async def _fail(self, sprint_id, session=None) -> int:
        raise RuntimeError("points query failed")

    monkeypatch.setattr(ScopeService, "current_points", _fail)


@pytest.fixture
def broken_audit() -> ActivityLogger:
    """Audit logger whose database cannot be reached."""

    def _unavailable_session():
        raise RuntimeError("audit database unavailable")

    return ActivityLogger(_unavailable_session)
