import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from app.core.exceptions import BadRequestError, ConflictError, NotFoundError, UnauthorizedError, reject_null_fields
from app.core.security import get_password_hash, verify_password
from app.models.activity import ActivityLog
from app.models.enums import GoalStatus, UserRole, UserStatus
from app.models.goal import Goal
from app.models.goal_template import GoalTemplate
from app.models.progress_history import ProgressHistory
from app.models.setting import Setting
from app.models.user import PasswordChange, User, UserCreate, UserRead, UserUpdate
from app.services import aggregation
from app.services.activity_service import UserDetails, actor_for, log_activity
from app.services.permissions import ensure_admin, ensure_self_or_admin

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 10
TREND_MONTHS = 6


async def ensure_unique_contact(
    db: AsyncSession,
    email: Optional[str] = None,
    phone_number: Optional[str] = None,
    exclude_id: Optional[UUID] = None,
) -> None:
    """Raise ConflictError if another user already holds this email or phone number."""
    if email:
        stmt = select(User.id).where(User.email == email)
        if exclude_id:
            stmt = stmt.where(User.id != exclude_id)
        if (await db.execute(stmt)).first():
            raise ConflictError("User with this email already exists")
    if phone_number:
        stmt = select(User.id).where(User.phoneNumber == phone_number)
        if exclude_id:
            stmt = stmt.where(User.id != exclude_id)
        if (await db.execute(stmt)).first():
            raise ConflictError("User with this phone number already exists")


class UserService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_user(self, user_id: UUID) -> User:
        user = await self.session.get(User, user_id)
        if not user:
            raise NotFoundError(f"User with ID {user_id} not found")
        return user

    async def create(self, user_in: UserCreate, current_user: Optional[User] = None) -> User:
        """
        Create a user. `current_user` is None for self-registration, in which
        case the activity is attributed to the new user.
        """
        await ensure_unique_contact(self.session, user_in.email, user_in.phoneNumber)

        user = User(
            **user_in.model_dump(exclude={"password"}),
            password=get_password_hash(user_in.password),
        )
        self.session.add(user)
        # Parent row must exist before the log entry references it
        await self.session.flush()

        log_activity(
            self.session,
            actor_for(current_user.id if current_user else user.id),
            "user",
            user.id,
            UserDetails(action="CREATE_USER", email=user.email, role=user.role.value),
        )
        await self.session.commit()
        logger.info(f"User {user.id} created with role {user.role.value}")
        return user

    async def list(
        self,
        role: Optional[UserRole] = None,
        status: Optional[UserStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        stmt = select(User)
        if role:
            stmt = stmt.where(User.role == role)
        if status:
            stmt = stmt.where(User.status == status)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                col(User.firstName).ilike(pattern),
                col(User.lastName).ilike(pattern),
                col(User.email).ilike(pattern),
            ))

        total = (await self.session.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
        page = max(page, 1)
        limit = max(limit, 1)
        stmt = stmt.order_by(col(User.createdAt).desc()).offset((page - 1) * limit).limit(limit)
        users = (await self.session.execute(stmt)).scalars().all()

        return {
            "users": [UserRead.model_validate(u) for u in users],
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit),
        }

    async def export(self, role: Optional[UserRole] = None, status: Optional[UserStatus] = None) -> List[UserRead]:
        stmt = select(User).order_by(col(User.createdAt).desc())
        if role:
            stmt = stmt.where(User.role == role)
        if status:
            stmt = stmt.where(User.status == status)
        users = (await self.session.execute(stmt)).scalars().all()
        return [UserRead.model_validate(u) for u in users]

    async def get(self, user_id: UUID, current_user: User) -> User:
        ensure_self_or_admin(user_id, current_user)
        return await self._get_user(user_id)

    async def update(self, user_id: UUID, user_in: UserUpdate, current_user: User) -> User:
        ensure_self_or_admin(user_id, current_user, "You can only update your own profile")
        user = await self._get_user(user_id)

        update_data = user_in.model_dump(exclude_unset=True)
        reject_null_fields(update_data, nullable=("phoneNumber", "address", "position"))
        await ensure_unique_contact(
            self.session,
            update_data.get("email"),
            update_data.get("phoneNumber"),
            exclude_id=user.id,
        )

        if "password" in update_data:
            update_data["password"] = get_password_hash(update_data["password"])

        for key, value in update_data.items():
            setattr(user, key, value)
        user.updatedAt = datetime.utcnow()
        self.session.add(user)

        log_activity(
            self.session,
            actor_for(current_user.id),
            "user",
            user.id,
            UserDetails(action="UPDATE_USER", updatedFields=[k for k in update_data if k != "password"]),
        )
        await self.session.commit()
        return user

    async def update_status(self, user_id: UUID, status: UserStatus, current_user: User) -> User:
        ensure_admin(current_user)
        user = await self._get_user(user_id)

        user.status = status
        user.updatedAt = datetime.utcnow()
        self.session.add(user)

        log_activity(
            self.session,
            actor_for(current_user.id),
            "user",
            user.id,
            UserDetails(action="UPDATE_USER_STATUS", status=status.value),
        )
        await self.session.commit()
        return user

    async def bulk_update_status(self, user_ids: List[UUID], status: UserStatus, current_user: User) -> Dict[str, Any]:
        ensure_admin(current_user)
        result = await self.session.execute(select(User).where(col(User.id).in_(user_ids)))
        users = result.scalars().all()
        if not users:
            raise NotFoundError("No users found for the given ids")

        now = datetime.utcnow()
        for user in users:
            user.status = status
            user.updatedAt = now
            self.session.add(user)
            log_activity(
                self.session,
                actor_for(current_user.id),
                "user",
                user.id,
                UserDetails(action="UPDATE_USER_STATUS", status=status.value),
            )
        await self.session.commit()
        return {"updated": len(users), "userIds": [u.id for u in users]}

    async def delete(self, user_id: UUID, current_user: User) -> None:
        """
        Remove a user and everything they own. Refused while the user still
        has goals in progress.
        """
        ensure_admin(current_user)
        if user_id == current_user.id:
            raise BadRequestError("You cannot delete your own account")
        user = await self._get_user(user_id)

        active = await self.session.execute(
            select(Goal.id).where(Goal.volunteerId == user_id, Goal.status == GoalStatus.IN_PROGRESS)
        )
        if active.first():
            raise BadRequestError("Cannot delete user with active goals")

        # Owned rows first, then detach weak references
        await self.session.execute(delete(ProgressHistory).where(ProgressHistory.volunteerId == user_id))
        await self.session.execute(delete(Goal).where(Goal.volunteerId == user_id))
        await self.session.execute(delete(ActivityLog).where(ActivityLog.userId == user_id))
        await self.session.execute(delete(Setting).where(Setting.userId == user_id))
        await self.session.execute(update(Setting).where(Setting.updatedById == user_id).values(updatedById=None))
        await self.session.execute(
            update(GoalTemplate).where(GoalTemplate.createdById == user_id).values(createdById=current_user.id)
        )

        log_activity(
            self.session,
            actor_for(current_user.id),
            "user",
            user.id,
            UserDetails(action="DELETE_USER", email=user.email, role=user.role.value),
        )
        await self.session.delete(user)
        await self.session.commit()
        logger.info(f"User {user_id} deleted by {current_user.id}")

    async def change_password(self, user: User, payload: PasswordChange) -> None:
        if not verify_password(payload.currentPassword, user.password):
            raise UnauthorizedError("Current password is incorrect")
        if payload.currentPassword == payload.newPassword:
            raise BadRequestError("New password must be different from the current password")

        user.password = get_password_hash(payload.newPassword)
        user.updatedAt = datetime.utcnow()
        self.session.add(user)

        log_activity(self.session, actor_for(user.id), "user", user.id, UserDetails(action="CHANGE_PASSWORD"))
        await self.session.commit()
        logger.info(f"Password changed for user {user.id}")

    async def analytics(self, user_id: UUID, current_user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
        ensure_self_or_admin(user_id, current_user)
        user = await self._get_user(user_id)
        now = now or datetime.utcnow()

        goals = (await self.session.execute(select(Goal).where(Goal.volunteerId == user_id))).scalars().all()
        stats = aggregation.summarize(goals)

        this_month_start = datetime(now.year, now.month, 1)
        last_month_start = datetime(now.year - 1, 12, 1) if now.month == 1 else datetime(now.year, now.month - 1, 1)
        goals_this_month = sum(1 for g in goals if g.createdAt >= this_month_start)
        goals_last_month = sum(1 for g in goals if last_month_start <= g.createdAt < this_month_start)
        monthly_growth = (
            round((goals_this_month - goals_last_month) / goals_last_month * 100) if goals_last_month else 0
        )

        logs = (
            await self.session.execute(
                select(ActivityLog)
                .where(ActivityLog.userId == user_id)
                .order_by(col(ActivityLog.createdAt).desc())
                .limit(RECENT_ACTIVITY_LIMIT)
            )
        ).scalars().all()

        return {
            "userId": user.id,
            "totalGoals": stats["total"],
            "completedGoals": stats["completed"],
            "inProgressGoals": sum(1 for g in goals if g.status == GoalStatus.IN_PROGRESS),
            "overdueGoals": sum(1 for g in goals if g.status == GoalStatus.OVERDUE),
            "completionRate": stats["completionRate"],
            "averageProgress": stats["averageProgress"],
            "performanceScore": aggregation.performance_score(stats["completionRate"], stats["averageProgress"]),
            "performance": aggregation.performance_band(stats["completionRate"]),
            "goalsThisMonth": goals_this_month,
            "monthlyGrowth": monthly_growth,
            "categoryBreakdown": [
                {"category": row["key"], "count": row["count"], "completionRate": row["completionRate"]}
                for row in aggregation.group_stats(goals, key=lambda g: g.category or "Uncategorized")
            ],
            "monthlyTrend": self._monthly_trend(goals, now),
            "recentActivity": [
                {"action": log.action, "resource": log.resource, "date": log.createdAt, "details": log.details}
                for log in logs
            ],
        }

    @staticmethod
    def _monthly_trend(goals, now: datetime) -> List[Dict[str, Any]]:
        trend = []
        for offset in range(TREND_MONTHS - 1, -1, -1):
            year, month = now.year, now.month - offset
            while month <= 0:
                month += 12
                year -= 1
            month_goals = [g for g in goals if g.createdAt.year == year and g.createdAt.month == month]
            stats = aggregation.summarize(month_goals)
            trend.append({
                "month": f"{year}-{month:02d}",
                "totalGoals": stats["total"],
                "completedGoals": stats["completed"],
                "completionRate": stats["completionRate"],
            })
        return trend
