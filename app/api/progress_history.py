from typing import Any, Optional
from uuid import UUID
from datetime import date, datetime
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.database import get_db
from app.models.enums import GoalStatus
from app.models.progress_history import ProgressHistoryCreate, ProgressHistoryRead
from app.models.user import User
from app.services.progress_history_service import ProgressHistoryService

router = APIRouter()

@router.post("", response_model=ProgressHistoryRead, status_code=status.HTTP_201_CREATED)
async def create_progress_history(
    entry_in: ProgressHistoryCreate,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Backfill a weekly snapshot. Normally written by the weekly processor.
    """
    return await ProgressHistoryService(db).create(entry_in, current_user)

@router.get("")
async def list_progress_history(
    goalId: Optional[UUID] = None,
    volunteerId: Optional[UUID] = None,
    status: Optional[GoalStatus] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    weekStartFrom: Optional[datetime] = None,
    weekStartTo: Optional[datetime] = None,
    minProgress: Optional[int] = Query(None, ge=0, le=100),
    maxProgress: Optional[int] = Query(None, ge=0, le=100),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).list(
        current_user,
        goal_id=goalId,
        volunteer_id=volunteerId,
        status=status,
        category=category,
        search=search,
        week_start_from=weekStartFrom,
        week_start_to=weekStartTo,
        min_progress=minProgress,
        max_progress=maxProgress,
        page=page,
        limit=limit,
    )

@router.get("/analytics/summary")
async def analytics_summary(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).analytics_summary(current_user)

@router.get("/my-history")
async def my_history(
    goalId: Optional[UUID] = None,
    status: Optional[GoalStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).list(
        current_user,
        goal_id=goalId,
        volunteer_id=current_user.id,
        status=status,
        page=page,
        limit=limit,
    )

@router.get("/my-trends")
async def my_trends(
    weeks: Optional[int] = Query(None, ge=1, le=52),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).volunteer_trends(current_user.id, current_user, weeks=weeks)

@router.get("/my-weekly-history")
async def my_weekly_history(
    startDate: Optional[date] = None,
    endDate: Optional[date] = None,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).weekly_history(current_user.id, current_user, startDate, endDate)

@router.get("/my-productive-day")
async def my_productive_day(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).most_productive_day(current_user.id, current_user)

@router.get("/monthly/{year}/{month}")
async def monthly_summary(
    year: int,
    month: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).monthly_summary(year, month, current_user)

@router.get("/volunteer/{volunteer_id}/trends")
async def volunteer_trends(
    volunteer_id: UUID,
    weeks: Optional[int] = Query(None, ge=1, le=52),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).volunteer_trends(volunteer_id, current_user, weeks=weeks)

@router.get("/volunteer/{volunteer_id}/monthly/{year}/{month}")
async def volunteer_monthly_summary(
    volunteer_id: UUID,
    year: int,
    month: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).monthly_summary(year, month, current_user, volunteer_id=volunteer_id)

@router.get("/volunteer/{volunteer_id}/weekly-history")
async def volunteer_weekly_history(
    volunteer_id: UUID,
    startDate: Optional[date] = None,
    endDate: Optional[date] = None,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).weekly_history(volunteer_id, current_user, startDate, endDate)

@router.get("/volunteer/{volunteer_id}/productive-day")
async def volunteer_productive_day(
    volunteer_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).most_productive_day(volunteer_id, current_user)

@router.get("/{entry_id}", response_model=ProgressHistoryRead)
async def get_progress_history(
    entry_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await ProgressHistoryService(db).get(entry_id, current_user)

@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_progress_history(
    entry_id: UUID,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> None:
    await ProgressHistoryService(db).delete(entry_id, current_user)
