from typing import Any
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.database import get_db
from app.models.user import AdminPreferencesUpdate, AdminProfileUpdate, PasswordChange, User
from app.services import weekly_processor
from app.services.admin_service import AdminService
from app.services.user_service import UserService

router = APIRouter()

@router.get("/profile")
async def get_admin_profile(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await AdminService(db).profile(current_user)

@router.patch("/profile")
async def update_admin_profile(
    payload: AdminProfileUpdate,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await AdminService(db).update_profile(current_user, payload)

@router.patch("/preferences")
async def update_admin_preferences(
    payload: AdminPreferencesUpdate,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await AdminService(db).update_preferences(current_user, payload)

@router.post("/change-password")
async def change_admin_password(
    payload: PasswordChange,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    await UserService(db).change_password(current_user, payload)
    return {"message": "Password updated successfully"}

@router.get("/dashboard/stats")
async def get_dashboard_stats(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Headline numbers for the admin dashboard with month-over-month changes.
    """
    return await AdminService(db).dashboard_stats()

@router.get("/dashboard/activity")
async def get_recent_activity(
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await AdminService(db).recent_activity(limit)

@router.get("/dashboard/deadlines")
async def get_upcoming_deadlines(
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await AdminService(db).upcoming_deadlines(limit)

@router.get("/volunteers-with-goals")
async def get_volunteers_with_goals(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await AdminService(db).volunteers_with_goals()

@router.post("/process-weekly", response_model=weekly_processor.WeeklyProcessingResult)
async def trigger_weekly_processing(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await AdminService(db).run_weekly_processing(current_user)

@router.post("/process-overdue", response_model=weekly_processor.OverdueSweepResult)
async def trigger_overdue_sweep(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await AdminService(db).run_overdue_sweep(current_user)
