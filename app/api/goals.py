from typing import Any, Optional
from uuid import UUID
from datetime import date
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.database import get_db
from app.models.enums import GoalPriority, GoalStatus, UserRole
from app.models.goal import (
    GoalBulkUpdate,
    GoalCreate,
    GoalListResponse,
    GoalProgressUpdate,
    GoalRead,
    GoalStatusUpdate,
    GoalUpdate,
)
from app.models.user import User
from app.services import weekly_processor
from app.services.goal_service import GoalService

router = APIRouter()

@router.post("", response_model=GoalRead, status_code=status.HTTP_201_CREATED)
async def create_goal(
    goal_in: GoalCreate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Create a goal. Volunteers create for themselves; admins may pass volunteerId.
    """
    return await GoalService(db).create(goal_in, current_user)

@router.get("", response_model=GoalListResponse)
async def list_goals(
    volunteerId: Optional[UUID] = None,
    status: Optional[GoalStatus] = None,
    priority: Optional[GoalPriority] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    dueDateFrom: Optional[date] = None,
    dueDateTo: Optional[date] = None,
    sortBy: str = "dueDate",
    sortOrder: str = Query("DESC", pattern="^(ASC|DESC|asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalService(db).list(
        current_user,
        volunteer_id=volunteerId,
        status=status,
        priority=priority,
        category=category,
        search=search,
        due_date_from=dueDateFrom,
        due_date_to=dueDateTo,
        sort_by=sortBy,
        sort_order=sortOrder,
        page=page,
        limit=limit,
    )

@router.get("/statistics")
async def goal_statistics(
    volunteerId: Optional[UUID] = None,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    # Volunteers always get their own numbers
    if current_user.role != UserRole.ADMIN:
        volunteerId = current_user.id
    return await GoalService(db).statistics(volunteerId)

@router.get("/categories")
async def goal_categories(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalService(db).categories()

@router.post("/process-weekly", response_model=weekly_processor.WeeklyProcessingResult)
@router.post("/weekly-processing", response_model=weekly_processor.WeeklyProcessingResult, include_in_schema=False)
async def run_weekly_processing(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Snapshot this week's goals and flag the ones that slipped past their due date.
    Safe to re-run; existing snapshots for the week are skipped.
    """
    return await weekly_processor.process_weekly_goals(db)

@router.post("/process-overdue", response_model=weekly_processor.OverdueSweepResult)
async def run_overdue_sweep(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await weekly_processor.process_overdue_goals(db)

@router.post("/bulk/update")
async def bulk_update_goals(
    payload: GoalBulkUpdate,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalService(db).bulk_update(payload, current_user)

@router.get("/{goal_id}", response_model=GoalRead)
async def get_goal(
    goal_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalService(db).get(goal_id, current_user)

@router.patch("/{goal_id}", response_model=GoalRead)
async def update_goal(
    goal_id: UUID,
    goal_in: GoalUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalService(db).update(goal_id, goal_in, current_user)

@router.patch("/{goal_id}/status", response_model=GoalRead)
async def update_goal_status(
    goal_id: UUID,
    payload: GoalStatusUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalService(db).update_status(goal_id, payload.status, current_user)

@router.patch("/{goal_id}/progress", response_model=GoalRead)
async def update_goal_progress(
    goal_id: UUID,
    payload: GoalProgressUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalService(db).update_progress(goal_id, payload.progress, current_user, notes=payload.notes)

@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goal(
    goal_id: UUID,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> None:
    await GoalService(db).delete(goal_id, current_user)
