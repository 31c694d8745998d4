from fastapi import APIRouter
from . import auth, users, goals, progress_history, analytics, settings, goal_templates, admin

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(goals.router, prefix="/goals", tags=["goals"])
api_router.include_router(progress_history.router, prefix="/progress-history", tags=["progress-history"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
api_router.include_router(settings.router, prefix="/settings", tags=["settings"])
api_router.include_router(goal_templates.router, prefix="/goal-templates", tags=["goal-templates"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
