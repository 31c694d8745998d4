from typing import Any, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.database import get_db
from app.models.enums import SettingScope
from app.models.setting import SettingBulkUpdate, SettingCreate, SettingRead, SettingUpdate
from app.models.user import User
from app.services.permissions import ensure_self_or_admin
from app.services.settings_service import SettingsService

router = APIRouter()

@router.get("", response_model=List[SettingRead])
async def list_settings(
    scope: Optional[SettingScope] = None,
    userId: Optional[UUID] = None,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await SettingsService(db).list(current_user, scope=scope, user_id=userId)

@router.get("/system/config")
async def system_config(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Non-sensitive system settings as a key -> typed value map.
    """
    return await SettingsService(db).system_config()

@router.get("/user/{user_id}/preferences")
async def user_preferences(
    user_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    ensure_self_or_admin(user_id, current_user, "You can only view your own preferences")
    return await SettingsService(db).user_preferences(user_id)

@router.get("/export")
async def export_settings(
    scope: Optional[SettingScope] = None,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await SettingsService(db).export(scope)

@router.post("", response_model=SettingRead, status_code=status.HTTP_201_CREATED)
async def create_setting(
    setting_in: SettingCreate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await SettingsService(db).create(setting_in, current_user)

# Registered before /{scope}/{key} so "bulk" is never read as a scope
@router.put("/bulk/{scope}")
async def bulk_update_settings(
    scope: SettingScope,
    payload: SettingBulkUpdate,
    userId: Optional[UUID] = None,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await SettingsService(db).bulk_update(payload, scope, current_user, user_id=userId)

@router.get("/{scope}/{key}", response_model=SettingRead)
async def get_setting(
    scope: SettingScope,
    key: str,
    userId: Optional[UUID] = None,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await SettingsService(db).get(key, scope, current_user, user_id=userId)

@router.put("/{scope}/{key}", response_model=SettingRead)
async def update_setting(
    scope: SettingScope,
    key: str,
    setting_in: SettingUpdate,
    userId: Optional[UUID] = None,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    return await SettingsService(db).update(key, setting_in, scope, current_user, user_id=userId)

@router.delete("/{scope}/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_setting(
    scope: SettingScope,
    key: str,
    userId: Optional[UUID] = None,
    current_user: User = Depends(deps.get_current_admin_user),
    db: AsyncSession = Depends(get_db)
) -> None:
    await SettingsService(db).delete(key, scope, current_user, user_id=userId)
