from fastapi import APIRouter
from .ai import router as ai_router
from .projects import router as projects_router
from .sprints import router as sprints_router
from .issues import router as issues_router

api_router = APIRouter()

# Include all sub-routers
api_router.include_router(projects_router, prefix="/projects", tags=["projects"])
api_router.include_router(ai_router, prefix="/projects", tags=["ai"])
api_router.include_router(sprints_router, tags=["sprints"])
api_router.include_router(issues_router, tags=["issues"])
