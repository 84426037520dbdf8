from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, settings
from ..core.exceptions import ServiceUnavailableError
from ..database import async_session, get_db
from ..services.activity_service import ActivityLogger
from ..services.ai_service import AIService
from ..services.llm_provider import LLMProvider


def get_app_settings() -> Settings:
    return settings


def get_llm_provider(request: Request) -> LLMProvider:
    """The completion client owned by the application lifespan"""
    llm = getattr(request.app.state, "llm", None)
    if llm is None:
        raise ServiceUnavailableError()
    return llm


def get_activity_logger() -> ActivityLogger:
    return ActivityLogger(async_session)


def get_ai_service(
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    llm: LLMProvider = Depends(get_llm_provider),
    app_settings: Settings = Depends(get_app_settings),
    audit: ActivityLogger = Depends(get_activity_logger)
) -> AIService:
    return AIService(db, llm, app_settings, audit, background_tasks)
