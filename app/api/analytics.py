from typing import Any, Optional
from uuid import UUID
from datetime import date
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.database import get_db
from app.models.user import User
from app.services.analytics_service import AnalyticsService, ReportType, date_range

router = APIRouter()

class ExportRequest(BaseModel):
    type: ReportType = ReportType.OVERVIEW
    startDate: Optional[date] = None
    endDate: Optional[date] = None

@router.get("/system-overview")
async def system_overview(
    startDate: Optional[date] = None,
    endDate: Optional[date] = None,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await AnalyticsService(db).system_overview(startDate, endDate)

@router.get("/personal/{volunteer_id}")
async def personal_analytics(
    volunteer_id: UUID,
    startDate: Optional[date] = None,
    endDate: Optional[date] = None,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await AnalyticsService(db).personal_analytics(volunteer_id, current_user, startDate, endDate)

@router.get("/data")
async def analytics_data(
    startDate: Optional[date] = None,
    endDate: Optional[date] = None,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Everything the admin analytics page needs in one call.
    """
    return await AnalyticsService(db).analytics_data(startDate, endDate)

@router.get("/completion-trends")
async def completion_trends(
    startDate: Optional[date] = None,
    endDate: Optional[date] = None,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    data = await AnalyticsService(db).analytics_data(startDate, endDate)
    return data["completionTrends"]

@router.get("/category-breakdown")
async def category_breakdown(
    startDate: Optional[date] = None,
    endDate: Optional[date] = None,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    data = await AnalyticsService(db).analytics_data(startDate, endDate)
    return data["categoryBreakdown"]

@router.get("/performance-distribution")
async def performance_distribution(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await AnalyticsService(db).performance_distribution()

@router.get("/volunteer-activity")
async def volunteer_activity(
    startDate: Optional[date] = None,
    endDate: Optional[date] = None,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    start_dt, end_dt = date_range(startDate, endDate)
    return await AnalyticsService(db).volunteer_activity(start_dt, end_dt)

@router.get("/volunteer-performance")
async def volunteer_performance(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await AnalyticsService(db).volunteer_performance()

@router.post("/export")
async def export_report(
    payload: ExportRequest,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await AnalyticsService(db).export_report(payload.type, payload.startDate, payload.endDate)
