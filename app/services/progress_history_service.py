import calendar
import logging
import math
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from app.core.config import settings
from app.core.exceptions import BadRequestError, ConflictError, NotFoundError
from app.models.activity import ActivityLog
from app.models.enums import GoalStatus
from app.models.goal import Goal
from app.models.progress_history import ProgressHistory, ProgressHistoryCreate, ProgressHistoryRead
from app.models.user import User
from app.services import aggregation
from app.services.activity_service import ProgressHistoryDetails, actor_for, log_activity
from app.services.permissions import ensure_admin, ensure_self_or_admin, is_admin

logger = logging.getLogger(__name__)

ANALYTICS_TREND_WEEKS = 8
TOP_PERFORMERS = 10
RECENT_ACTIVITY_LIMIT = 20
TOP_CATEGORIES = 5
WEEKLY_HISTORY_MONTHS = 6
PRODUCTIVITY_HISTORY_DAYS = 30


def to_history_read(entry: ProgressHistory, goal: Optional[Goal] = None, volunteer: Optional[User] = None) -> ProgressHistoryRead:
    return ProgressHistoryRead(
        **entry.model_dump(),
        goalTitle=goal.title if goal else entry.title,
        category=goal.category if goal else None,
        volunteerName=volunteer.fullName if volunteer else None,
    )


class ProgressHistoryService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_volunteer(self, volunteer_id: UUID) -> User:
        volunteer = await self.session.get(User, volunteer_id)
        if not volunteer:
            raise NotFoundError("Volunteer not found")
        return volunteer

    async def _entries_with_goals(self, *conditions) -> List[Tuple[ProgressHistory, Goal]]:
        stmt = (
            select(ProgressHistory, Goal)
            .join(Goal, Goal.id == ProgressHistory.goalId)
            .where(*conditions)
            .order_by(col(ProgressHistory.weekStart).asc())
        )
        return list((await self.session.execute(stmt)).all())

    # --- CRUD ---

    async def create(self, entry_in: ProgressHistoryCreate, current_user: User) -> ProgressHistoryRead:
        """Administrative backfill of a snapshot."""
        ensure_admin(current_user, "Only admins can create progress history entries")

        goal = await self.session.get(Goal, entry_in.goalId)
        if not goal:
            raise NotFoundError("Goal not found")
        volunteer = await self._get_volunteer(entry_in.volunteerId)
        if goal.volunteerId != volunteer.id:
            raise BadRequestError("Goal does not belong to this volunteer")
        if entry_in.weekStart > entry_in.weekEnd:
            raise BadRequestError("Week start cannot be after week end")

        existing = await self.session.execute(
            select(ProgressHistory.id).where(
                ProgressHistory.goalId == entry_in.goalId,
                ProgressHistory.weekStart == entry_in.weekStart,
            )
        )
        if existing.first() is not None:
            raise ConflictError("A snapshot for this goal and week already exists")

        entry = ProgressHistory(**entry_in.model_dump())
        self.session.add(entry)
        log_activity(
            self.session,
            actor_for(current_user.id),
            "progress_history",
            entry.id,
            ProgressHistoryDetails(action="CREATE_PROGRESS_HISTORY", title=entry.title, volunteerId=entry.volunteerId),
        )
        await self.session.commit()
        return to_history_read(entry, goal, volunteer)

    async def list(
        self,
        current_user: User,
        goal_id: Optional[UUID] = None,
        volunteer_id: Optional[UUID] = None,
        status: Optional[GoalStatus] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        week_start_from: Optional[datetime] = None,
        week_start_to: Optional[datetime] = None,
        min_progress: Optional[int] = None,
        max_progress: Optional[int] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        stmt = (
            select(ProgressHistory, Goal, User)
            .join(Goal, Goal.id == ProgressHistory.goalId)
            .join(User, User.id == ProgressHistory.volunteerId)
        )
        if not is_admin(current_user):
            stmt = stmt.where(ProgressHistory.volunteerId == current_user.id)
        elif volunteer_id:
            stmt = stmt.where(ProgressHistory.volunteerId == volunteer_id)

        if goal_id:
            stmt = stmt.where(ProgressHistory.goalId == goal_id)
        if status:
            stmt = stmt.where(ProgressHistory.status == status)
        if category:
            stmt = stmt.where(Goal.category == category)
        if search:
            stmt = stmt.where(col(ProgressHistory.title).ilike(f"%{search}%"))
        if week_start_from:
            stmt = stmt.where(ProgressHistory.weekStart >= week_start_from)
        if week_start_to:
            stmt = stmt.where(ProgressHistory.weekStart <= week_start_to)
        if min_progress is not None:
            stmt = stmt.where(ProgressHistory.progress >= min_progress)
        if max_progress is not None:
            stmt = stmt.where(ProgressHistory.progress <= max_progress)

        total = (await self.session.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

        page = max(page, 1)
        limit = max(limit, 1)
        stmt = stmt.order_by(col(ProgressHistory.weekStart).desc()).offset((page - 1) * limit).limit(limit)
        rows = (await self.session.execute(stmt)).all()

        return {
            "entries": [to_history_read(entry, goal, volunteer) for entry, goal, volunteer in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit),
        }

    async def get(self, entry_id: UUID, current_user: User) -> ProgressHistoryRead:
        entry = await self.session.get(ProgressHistory, entry_id)
        if not entry:
            raise NotFoundError("Progress history entry not found")
        ensure_self_or_admin(entry.volunteerId, current_user)
        goal = await self.session.get(Goal, entry.goalId)
        volunteer = await self.session.get(User, entry.volunteerId)
        return to_history_read(entry, goal, volunteer)

    async def delete(self, entry_id: UUID, current_user: User) -> None:
        ensure_admin(current_user, "Only admins can delete progress history entries")
        entry = await self.session.get(ProgressHistory, entry_id)
        if not entry:
            raise NotFoundError("Progress history entry not found")

        log_activity(
            self.session,
            actor_for(current_user.id),
            "progress_history",
            entry.id,
            ProgressHistoryDetails(action="DELETE_PROGRESS_HISTORY", title=entry.title, volunteerId=entry.volunteerId),
        )
        await self.session.delete(entry)
        await self.session.commit()

    # --- Trends ---

    async def volunteer_trends(
        self,
        volunteer_id: UUID,
        current_user: User,
        weeks: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        ensure_self_or_admin(volunteer_id, current_user)
        volunteer = await self._get_volunteer(volunteer_id)

        now = now or datetime.utcnow()
        weeks = weeks or settings.TRENDS_LOOKBACK_WEEKS
        since = aggregation.week_bounds(now)[0] - timedelta(weeks=weeks - 1)

        result = await self.session.execute(
            select(ProgressHistory).where(
                ProgressHistory.volunteerId == volunteer_id,
                ProgressHistory.weekStart >= since,
            )
        )
        entries = result.scalars().all()
        trends = aggregation.bucket_weekly(entries)
        overall = aggregation.summarize(entries)

        worst = None
        if trends:
            worst_week = min(trends, key=lambda w: w["completionRate"])
            worst = {"weekStart": worst_week["weekStart"], "completionRate": worst_week["completionRate"]}

        return {
            "volunteerId": volunteer.id,
            "volunteerName": volunteer.fullName,
            "weeklyTrends": trends,
            "overallAverageProgress": overall["averageProgress"],
            "overallCompletionRate": overall["completionRate"],
            "bestWeek": aggregation.best_week(trends),
            "worstWeek": worst,
            "improvementTrend": aggregation.improvement_trend(trends),
            "streak": aggregation.streak_count(entries, now),
        }

    async def monthly_summary(
        self,
        year: int,
        month: int,
        current_user: User,
        volunteer_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        if month < 1 or month > 12:
            raise BadRequestError("Month must be between 1 and 12")
        if volunteer_id:
            ensure_self_or_admin(volunteer_id, current_user)
        elif not is_admin(current_user):
            volunteer_id = current_user.id

        month_start = datetime(year, month, 1)
        month_end = month_start + timedelta(days=calendar.monthrange(year, month)[1])

        conditions = [ProgressHistory.weekStart >= month_start, ProgressHistory.weekStart < month_end]
        if volunteer_id:
            conditions.append(ProgressHistory.volunteerId == volunteer_id)
        rows = await self._entries_with_goals(*conditions)
        entries = [entry for entry, _ in rows]
        category_of = {entry.id: goal.category for entry, goal in rows}

        stats = aggregation.summarize(entries)
        weekly = [
            {
                "weekStart": week["weekStart"],
                "weekEnd": week["weekEnd"],
                "entries": week["totalGoals"],
                "averageProgress": week["averageProgress"],
            }
            for week in aggregation.bucket_weekly(entries)
        ]
        top_categories = [
            {"category": row["key"], "entries": row["count"], "completionRate": row["completionRate"]}
            for row in aggregation.group_stats(entries, key=lambda e: category_of[e.id], top_n=TOP_CATEGORIES)
        ]

        return {
            "month": calendar.month_name[month],
            "year": year,
            "volunteerId": volunteer_id,
            "summary": {
                "totalEntries": stats["total"],
                "completedGoals": stats["completed"],
                "averageProgress": stats["averageProgress"],
                "completionRate": stats["completionRate"],
                "categoriesWorked": sorted(set(category_of.values())),
                "weeklyBreakdown": weekly,
            },
            "topCategories": top_categories,
            "progressDistribution": aggregation.progress_distribution(entries),
        }

    async def analytics_summary(self, current_user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
        ensure_admin(current_user)
        now = now or datetime.utcnow()

        rows = await self._entries_with_goals()
        entries = [entry for entry, _ in rows]
        category_of = {entry.id: goal.category for entry, goal in rows}
        overall = aggregation.summarize(entries)

        category_performance = [
            {
                "category": row["key"],
                "entries": row["count"],
                "averageProgress": row["averageProgress"],
                "completionRate": row["completionRate"],
            }
            for row in aggregation.group_stats(entries, key=lambda e: category_of[e.id])
        ]

        trend_start = aggregation.week_bounds(now)[0] - timedelta(weeks=ANALYTICS_TREND_WEEKS - 1)
        weekly_trends = [
            {
                "weekStart": week["weekStart"],
                "weekEnd": week["weekEnd"],
                "totalEntries": week["totalGoals"],
                "averageProgress": week["averageProgress"],
                "completionRate": week["completionRate"],
            }
            for week in aggregation.bucket_weekly(e for e in entries if e.weekStart >= trend_start)
        ]

        volunteer_ids = {e.volunteerId for e in entries}
        names = await self._volunteer_names(volunteer_ids)
        top_performers = [
            {
                "volunteerId": row["key"],
                "volunteerName": names.get(row["key"], "Unknown"),
                "completionRate": row["completionRate"],
                "averageProgress": row["averageProgress"],
                "totalEntries": row["count"],
            }
            for row in aggregation.group_stats(
                entries, key=lambda e: e.volunteerId, top_n=TOP_PERFORMERS, sort_by="completionRate"
            )
        ]

        return {
            "totalEntries": overall["total"],
            "totalVolunteers": len(volunteer_ids),
            "overallCompletionRate": overall["completionRate"],
            "averageProgress": overall["averageProgress"],
            "statusDistribution": aggregation.status_distribution(entries),
            "categoryPerformance": category_performance,
            "weeklyTrends": weekly_trends,
            "topPerformers": top_performers,
            "recentActivity": await self._recent_goal_activity(),
        }

    async def _volunteer_names(self, volunteer_ids) -> Dict[UUID, str]:
        if not volunteer_ids:
            return {}
        result = await self.session.execute(select(User).where(col(User.id).in_(list(volunteer_ids))))
        return {u.id: u.fullName for u in result.scalars().all()}

    async def _recent_goal_activity(self) -> List[Dict[str, Any]]:
        stmt = (
            select(ActivityLog, User)
            .join(User, User.id == ActivityLog.userId, isouter=True)
            .where(col(ActivityLog.resource).in_(["goal", "progress_history"]))
            .order_by(col(ActivityLog.createdAt).desc())
            .limit(RECENT_ACTIVITY_LIMIT)
        )
        rows = (await self.session.execute(stmt)).all()
        feed = []
        for log, user in rows:
            details = log.details or {}
            feed.append({
                "date": log.createdAt,
                "action": log.action,
                "volunteerName": user.fullName if user else "System",
                "goalTitle": details.get("goalTitle") or details.get("title"),
                "progress": details.get("newProgress"),
            })
        return feed

    async def weekly_history(
        self,
        volunteer_id: UUID,
        current_user: User,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Week-by-week snapshot listing, newest week first. Defaults to the last six months."""
        ensure_self_or_admin(volunteer_id, current_user)
        volunteer = await self._get_volunteer(volunteer_id)

        end = datetime.combine(end_date or date.today(), datetime.max.time())
        start = datetime.combine(start_date, datetime.min.time()) if start_date else end - timedelta(days=WEEKLY_HISTORY_MONTHS * 30)
        if start > end:
            raise BadRequestError("Start date cannot be after end date")

        rows = await self._entries_with_goals(
            ProgressHistory.volunteerId == volunteer_id,
            ProgressHistory.weekStart >= start,
            ProgressHistory.weekStart <= end,
        )
        goals_by_week: Dict[str, List[Tuple[ProgressHistory, Goal]]] = {}
        for entry, goal in rows:
            goals_by_week.setdefault(entry.weekStart.date().isoformat(), []).append((entry, goal))

        weeks = []
        for week in reversed(aggregation.bucket_weekly(entry for entry, _ in rows)):
            week_rows = goals_by_week[week["weekStart"].date().isoformat()]
            weeks.append({
                **week,
                "goals": [
                    {
                        "id": goal.id,
                        "title": entry.title,
                        "status": entry.status,
                        "progress": entry.progress,
                        "priority": goal.priority,
                        "category": goal.category,
                        "notes": entry.notes,
                    }
                    for entry, goal in week_rows
                ],
            })

        entries = [entry for entry, _ in rows]
        overall = aggregation.summarize(entries)
        return {
            "volunteerId": volunteer.id,
            "volunteerName": volunteer.fullName,
            "totalWeeks": len(weeks),
            "overallStats": {
                "totalGoals": overall["total"],
                "completedGoals": overall["completed"],
                "averageProgress": overall["averageProgress"],
                "averageCompletionRate": aggregation.average_progress(w["completionRate"] for w in weeks),
            },
            "weeks": weeks,
        }

    async def most_productive_day(
        self, volunteer_id: UUID, current_user: User, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        ensure_self_or_admin(volunteer_id, current_user)
        volunteer = await self._get_volunteer(volunteer_id)

        now = now or datetime.utcnow()
        week_start, week_end = aggregation.week_bounds(now)

        current_logs = await self._goal_activity(volunteer_id, week_start, now)
        history_logs = await self._goal_activity(volunteer_id, now - timedelta(days=PRODUCTIVITY_HISTORY_DAYS), now)

        current = aggregation.daily_productivity(current_logs)
        historical = aggregation.daily_productivity(history_logs)

        return {
            "volunteerId": volunteer.id,
            "volunteerName": volunteer.fullName,
            "weekStart": week_start,
            "weekEnd": week_end,
            "mostProductiveDay": aggregation.most_productive_day(current),
            "weeklyPattern": current,
            "historicalPattern": historical,
            "recommendedDays": aggregation.recommended_days(historical),
            "insights": aggregation.productivity_insights(current, historical),
        }

    async def _goal_activity(self, volunteer_id: UUID, since: datetime, until: datetime) -> Sequence[ActivityLog]:
        result = await self.session.execute(
            select(ActivityLog).where(
                ActivityLog.userId == volunteer_id,
                ActivityLog.resource == "goal",
                ActivityLog.createdAt >= since,
                ActivityLog.createdAt <= until,
            )
        )
        return result.scalars().all()
