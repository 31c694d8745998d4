import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from app.core.exceptions import reject_null_fields
from app.models.activity import ActivityLog
from app.models.enums import GoalStatus, UserRole, UserStatus
from app.models.goal import Goal
from app.models.user import AdminPreferencesUpdate, AdminProfileUpdate, User
from app.services import aggregation, weekly_processor
from app.services.activity_service import AdminDetails, UpdateGoalStatusDetails, actor_for, log_activity, parse_details
from app.services.user_service import ensure_unique_contact

logger = logging.getLogger(__name__)

DEADLINE_WINDOW_DAYS = 14
DEFAULT_PREFERENCES = {
    "weeklyReports": True,
    "systemAlerts": True,
    "theme": "light",
    "timezone": "UTC",
}
ADMIN_PERMISSIONS = [
    "manage_users",
    "manage_goals",
    "view_analytics",
    "manage_settings",
    "export_data",
    "manage_templates",
    "system_administration",
]
ACTION_TEXT = {
    "UPDATE_GOAL_PROGRESS": "updated progress on",
    "CREATE_GOAL": "created",
    "UPDATE_GOAL": "updated",
    "DELETE_GOAL": "deleted",
    "MARK_GOAL_OVERDUE": "marked overdue",
    "BULK_UPDATE_GOALS": "bulk updated goals",
}


def time_ago(moment: datetime, now: Optional[datetime] = None) -> str:
    seconds = int(((now or datetime.utcnow()) - moment).total_seconds())
    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    if seconds < 604800:
        return f"{seconds // 86400} days ago"
    return moment.date().isoformat()


def describe_activity(log: ActivityLog) -> str:
    details = parse_details(log)
    if isinstance(details, UpdateGoalStatusDetails):
        if details.newStatus == GoalStatus.COMPLETED:
            return "completed"
        if details.newStatus == GoalStatus.IN_PROGRESS:
            return "started working on"
        return "updated status of"
    return ACTION_TEXT.get(log.action, "performed an action on")


def month_start(moment: datetime, months_back: int = 0) -> datetime:
    year, month = moment.year, moment.month - months_back
    while month <= 0:
        month += 12
        year -= 1
    return datetime(year, month, 1)


class AdminService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _count(self, *conditions) -> int:
        result = await self.session.execute(select(func.count()).select_from(Goal).where(*conditions))
        return result.scalar_one()

    # --- Profile ---

    async def profile(self, admin: User) -> Dict[str, Any]:
        volunteers = await self.session.execute(
            select(func.count()).select_from(User).where(User.role == UserRole.VOLUNTEER)
        )
        return {
            "id": admin.id,
            "name": admin.fullName,
            "email": admin.email,
            "phone": admin.phoneNumber or "",
            "role": admin.role,
            "joinDate": admin.createdAt,
            "lastLogin": admin.lastLogin or admin.updatedAt,
            "title": admin.position or "System Administrator",
            "permissions": ADMIN_PERMISSIONS,
            "preferences": {**DEFAULT_PREFERENCES, **(admin.preferences or {})},
            "stats": {
                "totalVolunteersManaged": volunteers.scalar_one(),
                "totalGoalsOversaw": await self._count(),
            },
        }

    async def update_profile(self, admin: User, payload: AdminProfileUpdate) -> Dict[str, Any]:
        changes = payload.model_dump(exclude_unset=True)
        reject_null_fields(changes)
        await ensure_unique_contact(self.session, changes.get("email"), changes.get("phone"), exclude_id=admin.id)

        if payload.name:
            first_name, _, last_name = payload.name.strip().partition(" ")
            admin.firstName = first_name
            admin.lastName = last_name.strip()
        if payload.email:
            admin.email = payload.email
        if payload.phone:
            admin.phoneNumber = payload.phone
        if payload.title:
            admin.position = payload.title
        admin.updatedAt = datetime.utcnow()
        self.session.add(admin)

        log_activity(
            self.session,
            actor_for(admin.id),
            "user",
            admin.id,
            AdminDetails(action="UPDATE_ADMIN_PROFILE", changes=changes),
        )
        await self.session.commit()
        return await self.profile(admin)

    async def update_preferences(self, admin: User, payload: AdminPreferencesUpdate) -> Dict[str, Any]:
        changes = payload.model_dump(exclude_unset=True)
        reject_null_fields(changes)
        # Reassign so the JSON column is flagged dirty
        admin.preferences = {**(admin.preferences or {}), **changes}
        admin.updatedAt = datetime.utcnow()
        self.session.add(admin)

        log_activity(
            self.session,
            actor_for(admin.id),
            "user",
            admin.id,
            AdminDetails(action="UPDATE_ADMIN_PREFERENCES", changes=changes),
        )
        await self.session.commit()
        return await self.profile(admin)

    # --- Dashboard ---

    async def dashboard_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        volunteers = (
            await self.session.execute(select(User).where(User.role == UserRole.VOLUNTEER))
        ).scalars().all()
        goals = (await self.session.execute(select(Goal))).scalars().all()
        stats = aggregation.summarize(goals)

        return {
            "activeVolunteers": sum(1 for v in volunteers if v.status == UserStatus.ACTIVE),
            "totalGoals": stats["total"],
            "completionRate": stats["completionRate"],
            "overdueGoals": sum(1 for g in goals if g.status == GoalStatus.OVERDUE),
            "monthlyChanges": self._monthly_changes(volunteers, goals, now),
        }

    @staticmethod
    def _monthly_changes(volunteers, goals, now: datetime) -> Dict[str, int]:
        """This month minus last month for new volunteers, new goals, completion rate and overdue goals."""
        this_start = month_start(now)
        last_start = month_start(now, 1)

        def in_this_month(moment: datetime) -> bool:
            return this_start <= moment <= now

        def in_last_month(moment: datetime) -> bool:
            return last_start <= moment < this_start

        def count(rows, predicate) -> int:
            return sum(1 for row in rows if predicate(row))

        this_goals = count(goals, lambda g: in_this_month(g.createdAt))
        last_goals = count(goals, lambda g: in_last_month(g.createdAt))
        this_completed = count(goals, lambda g: g.status == GoalStatus.COMPLETED and in_this_month(g.updatedAt))
        last_completed = count(goals, lambda g: g.status == GoalStatus.COMPLETED and in_last_month(g.updatedAt))

        return {
            "volunteers": count(volunteers, lambda v: in_this_month(v.createdAt))
            - count(volunteers, lambda v: in_last_month(v.createdAt)),
            "goals": this_goals - last_goals,
            "completion": aggregation.completion_rate(this_completed, this_goals)
            - aggregation.completion_rate(last_completed, last_goals),
            "overdue": count(goals, lambda g: g.status == GoalStatus.OVERDUE and in_this_month(g.updatedAt))
            - count(goals, lambda g: g.status == GoalStatus.OVERDUE and in_last_month(g.updatedAt)),
        }

    async def recent_activity(self, limit: int = 10, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        stmt = (
            select(ActivityLog, User)
            .join(User, User.id == ActivityLog.userId, isouter=True)
            .order_by(col(ActivityLog.createdAt).desc())
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).all()

        feed = []
        for log, user in rows:
            details = log.details or {}
            feed.append({
                "id": log.id,
                "user": user.fullName if user else "System",
                "action": describe_activity(log),
                "goal": details.get("goalTitle") or details.get("title") or details.get("name") or "Unknown Goal",
                "time": time_ago(log.createdAt, now),
                "timestamp": log.createdAt,
            })
        return feed

    async def upcoming_deadlines(self, limit: int = 10, today: Optional[date] = None) -> List[Dict[str, Any]]:
        today = today or date.today()
        stmt = (
            select(Goal, User)
            .join(User, User.id == Goal.volunteerId)
            .where(
                Goal.dueDate >= today,
                Goal.dueDate <= today + timedelta(days=DEADLINE_WINDOW_DAYS),
                col(Goal.status).in_([GoalStatus.PENDING, GoalStatus.IN_PROGRESS]),
            )
            .order_by(col(Goal.dueDate).asc())
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            {
                "id": goal.id,
                "volunteer": volunteer.fullName,
                "volunteerEmail": volunteer.email,
                "goal": goal.title,
                "deadline": goal.dueDate,
                "priority": goal.priority,
                "status": goal.status,
            }
            for goal, volunteer in rows
        ]

    async def volunteers_with_goals(self) -> List[Dict[str, Any]]:
        volunteers = (
            await self.session.execute(
                select(User).where(User.role == UserRole.VOLUNTEER).order_by(col(User.createdAt).desc())
            )
        ).scalars().all()
        goals = (await self.session.execute(select(Goal))).scalars().all()

        by_volunteer: Dict[Any, List[Goal]] = {}
        for goal in goals:
            by_volunteer.setdefault(goal.volunteerId, []).append(goal)

        result = []
        for volunteer in volunteers:
            stats = aggregation.summarize(by_volunteer.get(volunteer.id, []))
            result.append({
                "id": volunteer.id,
                "name": volunteer.fullName,
                "email": volunteer.email,
                "status": volunteer.status,
                "role": volunteer.role,
                "joinDate": volunteer.createdAt,
                "lastActive": volunteer.lastLogin or volunteer.updatedAt,
                "performance": aggregation.performance_band(stats["completionRate"]),
                "goalsCount": stats["total"],
                "completedGoalsCount": stats["completed"],
                "completionRate": stats["completionRate"],
            })
        return result

    # --- Batch jobs ---

    async def run_weekly_processing(self, admin: User, now: Optional[datetime] = None) -> weekly_processor.WeeklyProcessingResult:
        logger.info(f"Weekly processing triggered by admin {admin.id}")
        summary = await weekly_processor.process_weekly_goals(self.session, now)
        log_activity(
            self.session,
            actor_for(admin.id),
            "system",
            None,
            AdminDetails(action="RUN_WEEKLY_PROCESSING", changes=summary.model_dump(mode="json")),
        )
        await self.session.commit()
        return summary

    async def run_overdue_sweep(self, admin: User, now: Optional[datetime] = None) -> weekly_processor.OverdueSweepResult:
        logger.info(f"Overdue sweep triggered by admin {admin.id}")
        result = await weekly_processor.process_overdue_goals(self.session, now)
        log_activity(
            self.session,
            actor_for(admin.id),
            "system",
            None,
            AdminDetails(action="RUN_OVERDUE_SWEEP", changes=result.model_dump(mode="json")),
        )
        await self.session.commit()
        return result
