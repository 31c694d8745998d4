"""
Typed key/value settings.

Values are stored as strings and interpreted through their declared type.
A setting is identified by (key, scope, userId); user-scoped rows with no
userId are the defaults every user starts from.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy import and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from app.core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError, reject_null_fields
from app.models.enums import SettingScope, SettingType
from app.models.setting import Setting, SettingBulkUpdate, SettingCreate, SettingUpdate
from app.models.user import User
from app.services.activity_service import SettingDetails, actor_for, log_activity
from app.services.permissions import ensure_admin, is_admin

logger = logging.getLogger(__name__)

ADMIN_ONLY_SCOPES = (SettingScope.SYSTEM, SettingScope.ORGANIZATION)

DEFAULT_SETTINGS: List[Dict[str, Any]] = [
    {"key": "organization.name", "value": "X3 Lab", "type": SettingType.STRING,
     "scope": SettingScope.ORGANIZATION, "description": "Organization display name"},
    {"key": "goals.max_per_week", "value": "5", "type": SettingType.NUMBER,
     "scope": SettingScope.SYSTEM, "description": "Maximum number of goals a volunteer can hold per week"},
    {"key": "goals.default_duration_days", "value": "7", "type": SettingType.NUMBER,
     "scope": SettingScope.SYSTEM, "description": "Default goal duration in days"},
    {"key": "notifications.email_enabled", "value": "true", "type": SettingType.BOOLEAN,
     "scope": SettingScope.SYSTEM, "description": "Send email notifications"},
    {"key": "notifications.reminder_days_before", "value": "3", "type": SettingType.NUMBER,
     "scope": SettingScope.SYSTEM, "description": "Days before a due date to send a reminder"},
    {"key": "data.retention_months", "value": "12", "type": SettingType.NUMBER,
     "scope": SettingScope.SYSTEM, "description": "Months to keep progress history"},
    {"key": "backup.frequency_hours", "value": "24", "type": SettingType.NUMBER,
     "scope": SettingScope.SYSTEM, "description": "Hours between database backups", "sensitive": True},
    {"key": "security.session_timeout_minutes", "value": "60", "type": SettingType.NUMBER,
     "scope": SettingScope.SYSTEM, "description": "Session timeout in minutes", "sensitive": True},
    {"key": "features.analytics_enabled", "value": "true", "type": SettingType.BOOLEAN,
     "scope": SettingScope.SYSTEM, "description": "Enable the analytics dashboards"},
    {"key": "features.goal_templates_enabled", "value": "true", "type": SettingType.BOOLEAN,
     "scope": SettingScope.SYSTEM, "description": "Enable goal templates"},
    {"key": "user.theme", "value": "light", "type": SettingType.STRING,
     "scope": SettingScope.USER, "description": "Interface theme", "allowedValues": ["light", "dark", "auto"]},
    {"key": "user.timezone", "value": "UTC", "type": SettingType.STRING,
     "scope": SettingScope.USER, "description": "Preferred timezone"},
    {"key": "user.email_notifications", "value": "true", "type": SettingType.BOOLEAN,
     "scope": SettingScope.USER, "description": "Receive email notifications"},
    {"key": "user.weekly_reports", "value": "true", "type": SettingType.BOOLEAN,
     "scope": SettingScope.USER, "description": "Receive weekly progress reports"},
]


def validate_value(value: str, setting_type: SettingType) -> None:
    if setting_type == SettingType.BOOLEAN:
        if value.lower() not in ("true", "false"):
            raise BadRequestError('Boolean value must be "true" or "false"')
    elif setting_type == SettingType.NUMBER:
        try:
            float(value)
        except ValueError:
            raise BadRequestError("Value must be a valid number")
    elif setting_type in (SettingType.JSON, SettingType.ARRAY):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            raise BadRequestError(f"Invalid {setting_type.value} value")
        if setting_type == SettingType.ARRAY and not isinstance(parsed, list):
            raise BadRequestError("Array value must be a JSON list")


def parse_value(value: str, setting_type: SettingType) -> Any:
    """Typed view of a stored value. Values that fail to parse come back as the raw string."""
    if setting_type == SettingType.BOOLEAN:
        return value.lower() == "true"
    if setting_type == SettingType.NUMBER:
        try:
            number = float(value)
        except ValueError:
            return value
        return int(number) if number.is_integer() else number
    if setting_type in (SettingType.JSON, SettingType.ARRAY):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def _user_clause(user_id: Optional[UUID]):
    return Setting.userId == user_id if user_id else col(Setting.userId).is_(None)


async def seed_default_settings(db: AsyncSession) -> int:
    """Insert any missing default settings. Existing rows are left untouched."""
    created = 0
    for default in DEFAULT_SETTINGS:
        existing = await db.execute(
            select(Setting.id).where(
                Setting.key == default["key"],
                Setting.scope == default["scope"],
                col(Setting.userId).is_(None),
            )
        )
        if existing.first():
            continue
        db.add(Setting(**default))
        created += 1

    if created:
        await db.commit()
        logger.info(f"Seeded {created} default settings")
    return created


class SettingsService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _find(self, key: str, scope: SettingScope, user_id: Optional[UUID]) -> Setting:
        result = await self.session.execute(
            select(Setting).where(Setting.key == key, Setting.scope == scope, _user_clause(user_id))
        )
        setting = result.scalars().first()
        if not setting:
            raise NotFoundError(f"Setting with key '{key}' not found")
        return setting

    async def list(
        self,
        current_user: User,
        scope: Optional[SettingScope] = None,
        user_id: Optional[UUID] = None,
    ) -> List[Setting]:
        stmt = select(Setting).order_by(col(Setting.key).asc())
        if scope:
            stmt = stmt.where(Setting.scope == scope)
        if user_id:
            stmt = stmt.where(Setting.userId == user_id)
        elif scope == SettingScope.USER:
            stmt = stmt.where(col(Setting.userId).is_(None))

        # Non-admins see their own user settings and non-sensitive system ones
        if not is_admin(current_user):
            stmt = stmt.where(or_(
                and_(Setting.scope == SettingScope.USER, Setting.userId == current_user.id),
                and_(Setting.scope == SettingScope.SYSTEM, col(Setting.sensitive).is_(False)),
            ))

        return list((await self.session.execute(stmt)).scalars().all())

    async def get(
        self, key: str, scope: SettingScope, current_user: User, user_id: Optional[UUID] = None
    ) -> Setting:
        setting = await self._find(key, scope, user_id)
        if not is_admin(current_user):
            if setting.sensitive:
                raise ForbiddenError("This setting is restricted")
            if setting.scope == SettingScope.USER and setting.userId not in (None, current_user.id):
                raise ForbiddenError("You can only view your own user settings")
        return setting

    async def create(self, setting_in: SettingCreate, current_user: User) -> Setting:
        if setting_in.scope in ADMIN_ONLY_SCOPES and not is_admin(current_user):
            raise ForbiddenError("Only administrators can create system/organization settings")
        if setting_in.scope == SettingScope.USER and not is_admin(current_user) and setting_in.userId != current_user.id:
            raise ForbiddenError("You can only create your own user settings")

        existing = await self.session.execute(
            select(Setting.id).where(
                Setting.key == setting_in.key,
                Setting.scope == setting_in.scope,
                _user_clause(setting_in.userId),
            )
        )
        if existing.first():
            raise ConflictError("Setting with this key already exists")

        validate_value(setting_in.value, setting_in.type)
        if setting_in.allowedValues and setting_in.value not in setting_in.allowedValues:
            raise BadRequestError(f"Value must be one of: {', '.join(setting_in.allowedValues)}")

        setting = Setting(**setting_in.model_dump(), updatedById=current_user.id)
        self.session.add(setting)
        log_activity(
            self.session,
            actor_for(current_user.id),
            "setting",
            setting.id,
            SettingDetails(action="CREATE_SETTING", key=setting.key, scope=setting.scope.value),
        )
        await self.session.commit()
        return setting

    async def update(
        self,
        key: str,
        setting_in: SettingUpdate,
        scope: SettingScope,
        current_user: User,
        user_id: Optional[UUID] = None,
    ) -> Setting:
        setting = await self._find(key, scope, user_id)

        # 1. Permissions
        if not setting.editable:
            raise ForbiddenError("This setting is not editable")
        if setting.scope in ADMIN_ONLY_SCOPES and not is_admin(current_user):
            raise ForbiddenError("Only administrators can update system/organization settings")
        if setting.scope == SettingScope.USER and setting.userId != current_user.id and not is_admin(current_user):
            raise ForbiddenError("You can only update your own user settings")

        # 2. Value checks
        changes = setting_in.model_dump(exclude_unset=True)
        reject_null_fields(changes, nullable=("description", "allowedValues"))
        if changes.get("value") is not None:
            validate_value(changes["value"], changes.get("type") or setting.type)
            allowed = changes.get("allowedValues") or setting.allowedValues
            if allowed and changes["value"] not in allowed:
                raise BadRequestError(f"Value must be one of: {', '.join(allowed)}")

        # 3. Apply
        for field, value in changes.items():
            setattr(setting, field, value)
        setting.updatedById = current_user.id
        setting.updatedAt = datetime.utcnow()
        self.session.add(setting)

        log_activity(
            self.session,
            actor_for(current_user.id),
            "setting",
            setting.id,
            SettingDetails(
                action="UPDATE_SETTING",
                key=setting.key,
                scope=setting.scope.value,
                changes=setting_in.model_dump(mode="json", exclude_unset=True),
            ),
        )
        await self.session.commit()
        return setting

    async def bulk_update(
        self,
        payload: SettingBulkUpdate,
        scope: SettingScope,
        current_user: User,
        user_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        """Update each value independently. Rejected items are reported and skipped."""
        updated: List[Setting] = []
        failed: List[Dict[str, Any]] = []
        for item in payload.settings:
            try:
                updated.append(
                    await self.update(item.key, SettingUpdate(value=item.value), scope, current_user, user_id)
                )
            except HTTPException as exc:
                logger.warning(f"Failed to update setting {item.key}: {exc.detail}")
                failed.append({"key": item.key, "error": exc.detail})
        return {"updated": updated, "failed": failed}

    async def delete(
        self, key: str, scope: SettingScope, current_user: User, user_id: Optional[UUID] = None
    ) -> None:
        ensure_admin(current_user, "Only administrators can delete settings")
        setting = await self._find(key, scope, user_id)

        log_activity(
            self.session,
            actor_for(current_user.id),
            "setting",
            setting.id,
            SettingDetails(action="DELETE_SETTING", key=setting.key, scope=setting.scope.value),
        )
        await self.session.delete(setting)
        await self.session.commit()

    async def system_config(self) -> Dict[str, Any]:
        result = await self.session.execute(
            select(Setting)
            .where(Setting.scope == SettingScope.SYSTEM, col(Setting.sensitive).is_(False))
            .order_by(col(Setting.key).asc())
        )
        return {s.key: parse_value(s.value, s.type) for s in result.scalars().all()}

    async def user_preferences(self, user_id: UUID) -> Dict[str, Any]:
        """User overrides layered on top of the user-scope defaults."""
        result = await self.session.execute(
            select(Setting)
            .where(
                Setting.scope == SettingScope.USER,
                or_(Setting.userId == user_id, col(Setting.userId).is_(None)),
            )
            .order_by(col(Setting.key).asc())
        )
        rows = result.scalars().all()
        preferences = {s.key: parse_value(s.value, s.type) for s in rows if s.userId is None}
        preferences.update({s.key: parse_value(s.value, s.type) for s in rows if s.userId is not None})
        return preferences

    async def export(self, scope: Optional[SettingScope] = None) -> Dict[str, Any]:
        stmt = select(Setting).where(col(Setting.sensitive).is_(False)).order_by(col(Setting.key).asc())
        if scope:
            stmt = stmt.where(Setting.scope == scope)
        rows = (await self.session.execute(stmt)).scalars().all()
        return {
            "exportDate": datetime.utcnow(),
            "scope": scope.value if scope else "all",
            "settings": [
                {
                    "key": s.key,
                    "value": s.value,
                    "type": s.type,
                    "scope": s.scope,
                    "description": s.description,
                    "editable": s.editable,
                    "allowedValues": s.allowedValues,
                    "userId": s.userId,
                }
                for s in rows
            ],
        }
