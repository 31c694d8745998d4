import logging
import math
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, delete, select

from app.core.exceptions import ForbiddenError, NotFoundError, reject_null_fields
from app.models.enums import GoalPriority, GoalStatus, UserRole
from app.models.goal import (
    Goal,
    GoalBulkUpdate,
    GoalCreate,
    GoalListResponse,
    GoalRead,
    GoalUpdate,
)
from app.models.progress_history import ProgressHistory
from app.models.user import User
from app.services import aggregation, goal_lifecycle, rollup_service
from app.services.activity_service import (
    BulkUpdateGoalsDetails,
    CreateGoalDetails,
    DeleteGoalDetails,
    UpdateGoalDetails,
    UpdateGoalProgressDetails,
    UpdateGoalStatusDetails,
    actor_for,
    log_activity,
)

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "title": Goal.title,
    "category": Goal.category,
    "priority": Goal.priority,
    "status": Goal.status,
    "progress": Goal.progress,
    "startDate": Goal.startDate,
    "dueDate": Goal.dueDate,
    "createdAt": Goal.createdAt,
    "updatedAt": Goal.updatedAt,
}

UPCOMING_WINDOW_DAYS = 7
UPCOMING_LIMIT = 5


def to_goal_read(goal: Goal, volunteer: Optional[User] = None, today: Optional[date] = None) -> GoalRead:
    today = today or date.today()
    data = goal.model_dump()
    data["volunteerName"] = volunteer.fullName if volunteer else None
    data["isOverdue"] = goal.status == GoalStatus.OVERDUE or goal_lifecycle.is_overdue(goal, today)
    data["daysUntilDue"] = (goal.dueDate - today).days
    return GoalRead(**data)


class GoalService:
    """
    Goal CRUD and the state-machine entry points.

    Every mutation follows the same order:
    1. Load and authorize.
    2. Validate (nothing is written on failure).
    3. Apply the change, stage the activity log entry, refresh the owner's rollup.
    4. Commit once.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- Helpers ---

    async def _get_goal(self, goal_id: UUID) -> Goal:
        goal = await self.session.get(Goal, goal_id)
        if not goal:
            raise NotFoundError("Goal not found")
        return goal

    @staticmethod
    def _ensure_access(goal: Goal, current_user: User) -> None:
        if current_user.role != UserRole.ADMIN and goal.volunteerId != current_user.id:
            raise ForbiddenError("You can only access your own goals")

    async def _read(self, goal: Goal) -> GoalRead:
        volunteer = await self.session.get(User, goal.volunteerId)
        return to_goal_read(goal, volunteer)

    # --- Create ---

    async def create(self, goal_in: GoalCreate, current_user: User) -> GoalRead:
        volunteer_id = goal_in.volunteerId or current_user.id

        # 1. Authorize
        if current_user.role != UserRole.ADMIN and volunteer_id != current_user.id:
            raise ForbiddenError("Volunteers can only create goals for themselves")

        volunteer = await self.session.get(User, volunteer_id)
        if not volunteer:
            raise NotFoundError("Volunteer not found")

        # 2. Validate
        goal_lifecycle.validate_date_range(goal_in.startDate, goal_in.dueDate)

        # 3. Persist
        goal = Goal(
            **goal_in.model_dump(exclude={"volunteerId"}),
            volunteerId=volunteer_id,
            status=goal_lifecycle.status_for_new_goal(goal_in.progress),
        )
        self.session.add(goal)

        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal",
            goal.id,
            CreateGoalDetails(goalTitle=goal.title, volunteerId=volunteer_id, templateId=goal.templateId),
        )
        await rollup_service.refresh_user_rollup(self.session, volunteer_id)
        await self.session.commit()

        logger.info(f"Goal {goal.id} created for volunteer {volunteer_id}")
        return to_goal_read(goal, volunteer)

    # --- Read ---

    async def list(
        self,
        current_user: User,
        volunteer_id: Optional[UUID] = None,
        status: Optional[GoalStatus] = None,
        priority: Optional[GoalPriority] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        due_date_from: Optional[date] = None,
        due_date_to: Optional[date] = None,
        sort_by: str = "dueDate",
        sort_order: str = "DESC",
        page: int = 1,
        limit: int = 10,
    ) -> GoalListResponse:
        stmt = select(Goal, User).join(User, User.id == Goal.volunteerId)

        # Volunteers only ever see their own goals
        if current_user.role != UserRole.ADMIN:
            stmt = stmt.where(Goal.volunteerId == current_user.id)
        elif volunteer_id:
            stmt = stmt.where(Goal.volunteerId == volunteer_id)

        if status:
            stmt = stmt.where(Goal.status == status)
        if priority:
            stmt = stmt.where(Goal.priority == priority)
        if category:
            stmt = stmt.where(Goal.category == category)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(col(Goal.title).ilike(pattern), col(Goal.description).ilike(pattern)))
        if due_date_from:
            stmt = stmt.where(Goal.dueDate >= due_date_from)
        if due_date_to:
            stmt = stmt.where(Goal.dueDate <= due_date_to)

        total = (await self.session.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

        sort_column = SORTABLE_FIELDS.get(sort_by, Goal.dueDate)
        order = col(sort_column).asc() if sort_order.upper() == "ASC" else col(sort_column).desc()
        page = max(page, 1)
        limit = max(limit, 1)
        stmt = stmt.order_by(order).offset((page - 1) * limit).limit(limit)

        rows = (await self.session.execute(stmt)).all()
        today = date.today()
        return GoalListResponse(
            goals=[to_goal_read(goal, volunteer, today) for goal, volunteer in rows],
            total=total,
            page=page,
            limit=limit,
            totalPages=math.ceil(total / limit),
        )

    async def get(self, goal_id: UUID, current_user: User) -> GoalRead:
        goal = await self._get_goal(goal_id)
        self._ensure_access(goal, current_user)
        return await self._read(goal)

    # --- Mutations ---

    async def update(self, goal_id: UUID, goal_in: GoalUpdate, current_user: User) -> GoalRead:
        goal = await self._get_goal(goal_id)
        self._ensure_access(goal, current_user)

        update_data = goal_in.model_dump(exclude_unset=True)
        reject_null_fields(update_data, nullable=("description",))
        goal_lifecycle.validate_date_range(
            update_data.get("startDate") or goal.startDate,
            update_data.get("dueDate") or goal.dueDate,
        )

        for key, value in update_data.items():
            if key != "status":
                setattr(goal, key, value)
        # Status goes through the state machine so progress stays consistent
        if "status" in update_data:
            goal_lifecycle.apply_status_update(goal, update_data["status"])
        goal.updatedAt = datetime.utcnow()
        self.session.add(goal)

        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal",
            goal.id,
            UpdateGoalDetails(goalTitle=goal.title, updatedFields=list(update_data.keys())),
        )
        if "status" in update_data:
            await rollup_service.refresh_user_rollup(self.session, goal.volunteerId)
        await self.session.commit()
        return await self._read(goal)

    async def update_status(self, goal_id: UUID, status: GoalStatus, current_user: User) -> GoalRead:
        goal = await self._get_goal(goal_id)
        self._ensure_access(goal, current_user)

        previous_status = goal_lifecycle.apply_status_update(goal, status)
        self.session.add(goal)

        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal",
            goal.id,
            UpdateGoalStatusDetails(goalTitle=goal.title, previousStatus=previous_status, newStatus=status),
        )
        await rollup_service.refresh_user_rollup(self.session, goal.volunteerId)
        await self.session.commit()
        return await self._read(goal)

    async def update_progress(
        self, goal_id: UUID, progress: int, current_user: User, notes: Optional[str] = None
    ) -> GoalRead:
        goal = await self._get_goal(goal_id)
        self._ensure_access(goal, current_user)

        previous_progress = goal_lifecycle.apply_progress_update(goal, progress, notes)
        self.session.add(goal)

        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal",
            goal.id,
            UpdateGoalProgressDetails(goalTitle=goal.title, previousProgress=previous_progress, newProgress=progress),
        )
        await rollup_service.refresh_user_rollup(self.session, goal.volunteerId)
        await self.session.commit()
        return await self._read(goal)

    async def delete(self, goal_id: UUID, current_user: User) -> None:
        if current_user.role != UserRole.ADMIN:
            raise ForbiddenError("Only admins can delete goals")

        goal = await self._get_goal(goal_id)
        volunteer_id = goal.volunteerId

        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal",
            goal.id,
            DeleteGoalDetails(goalTitle=goal.title, volunteerId=volunteer_id),
        )

        # Snapshots go with their goal
        await self.session.execute(delete(ProgressHistory).where(ProgressHistory.goalId == goal.id))
        await self.session.delete(goal)

        await rollup_service.refresh_user_rollup(self.session, volunteer_id)
        await self.session.commit()
        logger.info(f"Goal {goal_id} deleted by {current_user.id}")

    async def bulk_update(self, payload: GoalBulkUpdate, current_user: User) -> Dict[str, Any]:
        """
        Apply status and/or priority to many goals in one pass.

        Unlike the single-goal status path this does not touch progress.
        """
        if current_user.role != UserRole.ADMIN:
            raise ForbiddenError("Only admins can bulk update goals")

        result = await self.session.execute(select(Goal).where(col(Goal.id).in_(payload.goalIds)))
        goals = result.scalars().all()
        if not goals:
            raise NotFoundError("No goals found for the given ids")

        now = datetime.utcnow()
        for goal in goals:
            if payload.status is not None:
                goal.status = payload.status
            if payload.priority is not None:
                goal.priority = payload.priority
            goal.updatedAt = now
            self.session.add(goal)

        updated_ids = [g.id for g in goals]
        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal",
            None,
            BulkUpdateGoalsDetails(goalIds=updated_ids, status=payload.status, priority=payload.priority),
        )

        refreshed = await rollup_service.refresh_rollups(self.session, (g.volunteerId for g in goals))
        await self.session.commit()

        logger.info(f"Bulk updated {len(goals)} goals across {refreshed} volunteers")
        return {"updated": len(goals), "goalIds": updated_ids}

    # --- Reporting ---

    async def statistics(self, volunteer_id: Optional[UUID] = None) -> Dict[str, Any]:
        stmt = select(Goal).order_by(col(Goal.dueDate).asc())
        if volunteer_id:
            stmt = stmt.where(Goal.volunteerId == volunteer_id)
        goals = (await self.session.execute(stmt)).scalars().all()

        stats = aggregation.summarize(goals)
        today = date.today()
        horizon = today + timedelta(days=UPCOMING_WINDOW_DAYS)
        upcoming = [
            g for g in goals
            if g.status != GoalStatus.COMPLETED and today <= g.dueDate <= horizon
        ][:UPCOMING_LIMIT]

        return {
            "totalGoals": stats["total"],
            "completedGoals": stats["completed"],
            "pendingGoals": sum(1 for g in goals if g.status == GoalStatus.PENDING),
            "inProgressGoals": sum(1 for g in goals if g.status == GoalStatus.IN_PROGRESS),
            "overdueGoals": sum(1 for g in goals if g.status == GoalStatus.OVERDUE),
            "completionRate": stats["completionRate"],
            "averageProgress": stats["averageProgress"],
            "categoriesCount": len({g.category for g in goals}),
            "upcomingDeadlines": [to_goal_read(g, today=today) for g in upcoming],
        }

    async def categories(self) -> List[str]:
        result = await self.session.execute(select(Goal.category).distinct())
        return sorted(c for c in result.scalars().all() if c)
