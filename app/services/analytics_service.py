import logging
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import settings
from app.core.exceptions import BadRequestError, NotFoundError
from app.models.activity import ActivityLog
from app.models.enums import GoalStatus, UserRole, UserStatus
from app.models.goal import Goal
from app.models.progress_history import ProgressHistory
from app.models.user import User
from app.services import aggregation
from app.services.activity_service import UpdateGoalProgressDetails, UpdateGoalStatusDetails, parse_details
from app.services.permissions import ensure_self_or_admin

logger = logging.getLogger(__name__)

MAX_DAILY_POINTS = 30
MAX_WEEKLY_POINTS = 12
COMPLETION_MILESTONES = [
    (1, "First Goal Completed", "Completed your first goal!"),
    (5, "Goal Achiever", "Completed 5 goals"),
    (10, "Goal Master", "Completed 10 goals"),
]


class ReportType(str, Enum):
    OVERVIEW = "overview"
    PERFORMANCE = "performance"
    GOALS = "goals"


def date_range(start: Optional[date], end: Optional[date]) -> Tuple[datetime, datetime]:
    """Inclusive datetime window; defaults to the last ANALYTICS_DEFAULT_DAYS days."""
    end_dt = datetime.combine(end, time.max) if end else datetime.utcnow()
    start_dt = (
        datetime.combine(start, time.min)
        if start
        else end_dt - timedelta(days=settings.ANALYTICS_DEFAULT_DAYS)
    )
    if start_dt > end_dt:
        raise BadRequestError("Start date cannot be after end date")
    return start_dt, end_dt


def is_completion(log: ActivityLog) -> bool:
    details = parse_details(log)
    if isinstance(details, UpdateGoalStatusDetails):
        return details.newStatus == GoalStatus.COMPLETED
    if isinstance(details, UpdateGoalProgressDetails):
        return details.newProgress == 100 and details.previousProgress != 100
    return False


class AnalyticsService:
    """
    Reporting over goals, snapshots and activity.

    Every figure is recomputed from the rows on each call.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _goals(self, *conditions) -> Sequence[Goal]:
        result = await self.session.execute(select(Goal).where(*conditions))
        return result.scalars().all()

    async def _volunteers(self) -> Sequence[User]:
        result = await self.session.execute(select(User).where(User.role == UserRole.VOLUNTEER))
        return result.scalars().all()

    async def _goals_by_volunteer(self, *conditions) -> Dict[UUID, List[Goal]]:
        grouped: Dict[UUID, List[Goal]] = {}
        for goal in await self._goals(*conditions):
            grouped.setdefault(goal.volunteerId, []).append(goal)
        return grouped

    # --- System ---

    async def system_overview(self, start: Optional[date] = None, end: Optional[date] = None) -> Dict[str, Any]:
        users = (await self.session.execute(select(User))).scalars().all()

        conditions = []
        if start or end:
            start_dt, end_dt = date_range(start, end)
            conditions = [Goal.createdAt >= start_dt, Goal.createdAt <= end_dt]
        goals = await self._goals(*conditions)
        stats = aggregation.summarize(goals)

        return {
            "totalVolunteers": len(users),
            "activeVolunteers": sum(1 for u in users if u.status == UserStatus.ACTIVE),
            "totalGoals": stats["total"],
            "completedGoals": stats["completed"],
            "completionRate": stats["completionRate"],
            "overdueGoals": sum(1 for g in goals if g.status == GoalStatus.OVERDUE),
        }

    # --- Personal ---

    async def personal_analytics(
        self,
        volunteer_id: UUID,
        current_user: User,
        start: Optional[date] = None,
        end: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        ensure_self_or_admin(volunteer_id, current_user, "You can only view your own analytics")
        volunteer = await self.session.get(User, volunteer_id)
        if not volunteer:
            raise NotFoundError("Volunteer not found")

        now = now or datetime.utcnow()
        conditions = [Goal.volunteerId == volunteer_id]
        if start or end:
            start_dt, end_dt = date_range(start, end)
            conditions += [Goal.createdAt >= start_dt, Goal.createdAt <= end_dt]
        goals = await self._goals(*conditions)
        stats = aggregation.summarize(goals)

        since = aggregation.week_bounds(now)[0] - timedelta(weeks=settings.TRENDS_LOOKBACK_WEEKS - 1)
        history = (
            await self.session.execute(
                select(ProgressHistory).where(
                    ProgressHistory.volunteerId == volunteer_id,
                    ProgressHistory.weekStart >= since,
                )
            )
        ).scalars().all()
        streak = aggregation.streak_count(history, now)

        weekly_trends = [
            {
                "week": week["weekStart"].date().isoformat(),
                "completionRate": week["completionRate"],
                "goalsCompleted": week["completedGoals"],
                "totalGoals": week["totalGoals"],
            }
            for week in aggregation.bucket_weekly(history)
        ]
        category_stats = [
            {"category": row["key"], "completionRate": row["completionRate"], "totalGoals": row["count"]}
            for row in aggregation.group_stats(goals, key=lambda g: g.category or "Uncategorized")
        ]

        return {
            "volunteerId": volunteer.id,
            "overallCompletionRate": stats["completionRate"],
            "averageProgress": stats["averageProgress"],
            "performanceScore": aggregation.performance_score(stats["completionRate"], stats["averageProgress"]),
            "streakCount": streak,
            "weeklyTrends": weekly_trends,
            "achievements": self._achievements(goals, streak, now),
            "categoryStats": category_stats,
            "productiveData": await self._completions_by_day(volunteer_id, now),
        }

    @staticmethod
    def _achievements(goals: Sequence[Goal], streak: int, now: datetime) -> List[Dict[str, Any]]:
        completed = sorted(
            (g for g in goals if g.status == GoalStatus.COMPLETED),
            key=lambda g: g.updatedAt,
        )
        achievements = []
        for index, (threshold, title, description) in enumerate(COMPLETION_MILESTONES, start=1):
            if len(completed) >= threshold:
                achievements.append({
                    "id": str(index),
                    "title": title,
                    "description": description,
                    "earnedDate": completed[threshold - 1].updatedAt,
                })
        if streak >= 1:
            achievements.append({
                "id": str(len(COMPLETION_MILESTONES) + 1),
                "title": "Weekly Streak",
                "description": f"Completed goals {streak} week(s) in a row",
                "earnedDate": now,
            })
        return achievements

    async def _completions_by_day(self, volunteer_id: UUID, now: datetime) -> List[Dict[str, Any]]:
        result = await self.session.execute(
            select(ActivityLog).where(
                ActivityLog.userId == volunteer_id,
                ActivityLog.resource == "goal",
                ActivityLog.createdAt >= now - timedelta(days=settings.ANALYTICS_DEFAULT_DAYS),
                ActivityLog.createdAt <= now,
            )
        )
        counts = [0] * len(aggregation.DAY_NAMES)
        for log in result.scalars().all():
            if is_completion(log):
                counts[aggregation.day_of_week(log.createdAt)] += 1
        return [
            {"day": name, "completedGoals": counts[index]}
            for index, name in enumerate(aggregation.DAY_NAMES)
        ]

    # --- Organisation-wide ---

    async def analytics_data(self, start: Optional[date] = None, end: Optional[date] = None) -> Dict[str, Any]:
        start_dt, end_dt = date_range(start, end)
        goals_in_range = await self._goals(Goal.createdAt >= start_dt, Goal.createdAt <= end_dt)

        return {
            "overview": await self.system_overview(start, end),
            "completionTrends": {
                "daily": self._daily_trends(goals_in_range, start_dt, end_dt),
                "weekly": self._weekly_trends(goals_in_range, start_dt, end_dt),
            },
            "performanceDistribution": await self.performance_distribution(),
            "categoryBreakdown": [
                {"name": row["key"], "value": row["count"]}
                for row in aggregation.group_stats(goals_in_range, key=lambda g: g.category or "Uncategorized")
            ],
            "volunteerActivity": await self.volunteer_activity(start_dt, end_dt),
        }

    @staticmethod
    def _daily_trends(goals: Sequence[Goal], start: datetime, end: datetime) -> List[Dict[str, Any]]:
        total_days = min((end.date() - start.date()).days + 1, MAX_DAILY_POINTS)
        trends = []
        for offset in range(total_days - 1, -1, -1):
            day = end.date() - timedelta(days=offset)
            day_goals = [g for g in goals if g.createdAt.date() == day]
            trends.append({
                "date": day.isoformat(),
                "completed": sum(1 for g in day_goals if g.status == GoalStatus.COMPLETED),
                "total": len(day_goals),
                "period": day.strftime("%b %d"),
            })
        return trends

    @staticmethod
    def _weekly_trends(goals: Sequence[Goal], start: datetime, end: datetime) -> List[Dict[str, Any]]:
        total_weeks = min(max(((end.date() - start.date()).days + 6) // 7, 1), MAX_WEEKLY_POINTS)
        trends = []
        for offset in range(total_weeks - 1, -1, -1):
            week_end = end.date() - timedelta(days=offset * 7)
            week_start = week_end - timedelta(days=6)
            week_goals = [g for g in goals if week_start <= g.createdAt.date() <= week_end]
            trends.append({
                "date": week_start.isoformat(),
                "completed": sum(1 for g in week_goals if g.status == GoalStatus.COMPLETED),
                "total": len(week_goals),
                "period": f"{week_start.strftime('%b %d')} - {week_end.strftime('%b %d')}",
            })
        return trends

    async def performance_distribution(self) -> List[Dict[str, Any]]:
        by_volunteer = await self._goals_by_volunteer()
        rates = [
            aggregation.summarize(by_volunteer.get(v.id, []))["completionRate"]
            for v in await self._volunteers()
        ]
        return aggregation.performance_distribution(rates)

    async def volunteer_activity(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        by_volunteer = await self._goals_by_volunteer(Goal.createdAt >= start, Goal.createdAt <= end)
        activity = []
        for volunteer in await self._volunteers():
            stats = aggregation.summarize(by_volunteer.get(volunteer.id, []))
            activity.append({
                "name": volunteer.fullName,
                "totalGoals": stats["total"],
                "completedGoals": stats["completed"],
                "completionRate": stats["completionRate"],
            })
        activity.sort(key=lambda a: a["totalGoals"], reverse=True)
        return activity

    async def volunteer_performance(self) -> List[Dict[str, Any]]:
        by_volunteer = await self._goals_by_volunteer()
        ranking = []
        for volunteer in await self._volunteers():
            stats = aggregation.summarize(by_volunteer.get(volunteer.id, []))
            ranking.append({
                "id": volunteer.id,
                "name": volunteer.fullName,
                "performance": aggregation.performance_score(stats["completionRate"], stats["averageProgress"]),
                "completionRate": stats["completionRate"],
                "goalsCount": stats["total"],
            })
        ranking.sort(key=lambda r: r["performance"], reverse=True)
        return ranking

    async def export_report(
        self, report_type: ReportType, start: Optional[date] = None, end: Optional[date] = None
    ) -> Dict[str, Any]:
        if report_type == ReportType.PERFORMANCE:
            data = await self.volunteer_performance()
        elif report_type == ReportType.GOALS:
            data = await self.analytics_data(start, end)
        else:
            data = await self.system_overview(start, end)

        logger.info(f"Exported {report_type.value} report")
        return {"type": report_type.value, "generatedAt": datetime.utcnow(), "data": data}
