from typing import Any, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.database import get_db
from app.models.enums import GoalPriority, TemplateStatus
from app.models.goal import GoalRead
from app.models.goal_template import (
    GoalTemplateCreate,
    GoalTemplateRead,
    GoalTemplateUpdate,
    UseTemplateRequest,
)
from app.models.user import User
from app.services.goal_template_service import GoalTemplateService

router = APIRouter()

@router.post("", response_model=GoalTemplateRead, status_code=status.HTTP_201_CREATED)
async def create_template(
    template_in: GoalTemplateCreate,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalTemplateService(db).create(template_in, current_user)

@router.get("")
async def list_templates(
    category: Optional[str] = None,
    priority: Optional[GoalPriority] = None,
    status: Optional[TemplateStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalTemplateService(db).list(
        current_user,
        category=category,
        priority=priority,
        status=status,
        search=search,
        page=page,
        limit=limit,
    )

@router.get("/categories", response_model=List[str])
async def template_categories(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalTemplateService(db).categories()

@router.get("/popular", response_model=List[GoalTemplateRead])
async def popular_templates(
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalTemplateService(db).popular(limit)

@router.get("/analytics")
async def template_analytics(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalTemplateService(db).analytics()

@router.get("/category-stats")
async def template_category_stats(
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalTemplateService(db).category_stats()

@router.post("/use", response_model=GoalRead, status_code=status.HTTP_201_CREATED)
async def use_template(
    request: UseTemplateRequest,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Create a goal from a template. Admins may target another volunteer.
    """
    return await GoalTemplateService(db).use(request, current_user)

@router.get("/{template_id}", response_model=GoalTemplateRead)
async def get_template(
    template_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalTemplateService(db).get(template_id, current_user)

@router.get("/{template_id}/usage-stats")
async def template_usage_stats(
    template_id: UUID,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalTemplateService(db).usage_stats(template_id)

@router.patch("/{template_id}", response_model=GoalTemplateRead)
async def update_template(
    template_id: UUID,
    template_in: GoalTemplateUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalTemplateService(db).update(template_id, template_in, current_user)

@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def archive_template(
    template_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> None:
    await GoalTemplateService(db).archive(template_id, current_user)

@router.post("/{template_id}/duplicate", response_model=GoalTemplateRead, status_code=status.HTTP_201_CREATED)
async def duplicate_template(
    template_id: UUID,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await GoalTemplateService(db).duplicate(template_id, current_user)
