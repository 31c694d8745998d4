"""
Weekly goal processing.

Runs once a week (scripts/process_weekly_goals.py, or on demand from the
admin endpoints):

1. Work out the Sunday..Saturday window containing "now".
2. Snapshot every goal due inside that window into ProgressHistory.
3. Flip goals whose due date has passed, and that are not completed, to overdue.
4. Recompute rollups for every user.

Each goal is its own unit of work. A storage failure on one goal is rolled
back, logged and reported in the summary; the run carries on with the rest.
Re-running for the same week skips goals that already have a snapshot.
"""
import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from app.models.enums import GoalStatus
from app.models.goal import Goal
from app.models.progress_history import ProgressHistory
from app.services import aggregation, goal_lifecycle, rollup_service
from app.services.activity_service import SYSTEM, MarkGoalOverdueDetails, log_activity

logger = logging.getLogger(__name__)

OVERDUE_CANDIDATE_STATUSES = [GoalStatus.PENDING, GoalStatus.IN_PROGRESS]


class WeeklyProcessingResult(BaseModel):
    processedGoals: int = 0
    completedGoals: int = 0
    overdueGoals: int = 0
    progressHistoryEntries: int = 0
    skippedSnapshots: int = 0
    failedGoalIds: List[UUID] = []
    usersRefreshed: int = 0
    weekStart: datetime
    weekEnd: datetime
    processedAt: datetime


class OverdueSweepResult(BaseModel):
    message: str
    processedGoals: int
    failedGoalIds: List[UUID] = []


def flatten_notes(notes: Optional[List[str]]) -> Optional[str]:
    if not notes:
        return None
    return "\n".join(notes)


async def _snapshot_exists(db: AsyncSession, goal_id: UUID, week_start: datetime) -> bool:
    result = await db.execute(
        select(ProgressHistory.id).where(
            ProgressHistory.goalId == goal_id,
            ProgressHistory.weekStart == week_start,
        )
    )
    return result.first() is not None


async def _process_goal(
    db: AsyncSession,
    goal: Goal,
    week_start: datetime,
    week_end: datetime,
    now: datetime,
    summary: WeeklyProcessingResult,
) -> None:
    """Snapshot one goal, then flag it overdue if needed. Stages changes only."""
    # Snapshot records the state before the overdue flip
    if await _snapshot_exists(db, goal.id, week_start):
        logger.warning(f"Snapshot for goal {goal.id} week {week_start.date()} already exists, skipping")
        summary.skippedSnapshots += 1
    else:
        db.add(ProgressHistory(
            goalId=goal.id,
            volunteerId=goal.volunteerId,
            title=goal.title,
            progress=goal.progress,
            status=goal.status,
            notes=flatten_notes(goal.notes),
            weekStart=week_start,
            weekEnd=week_end,
        ))
        summary.progressHistoryEntries += 1

    if goal.status == GoalStatus.COMPLETED:
        summary.completedGoals += 1
    elif goal_lifecycle.is_overdue(goal, now.date()) and goal.status != GoalStatus.OVERDUE:
        original_due_date = goal.dueDate
        goal_lifecycle.mark_overdue(goal, now)
        db.add(goal)
        log_activity(
            db,
            SYSTEM,
            "goal",
            goal.id,
            MarkGoalOverdueDetails(goalTitle=goal.title, originalDueDate=original_due_date),
        )
        summary.overdueGoals += 1


async def process_weekly_goals(db: AsyncSession, now: Optional[datetime] = None) -> WeeklyProcessingResult:
    now = now or datetime.utcnow()
    week_start, week_end = aggregation.week_bounds(now)
    logger.info(f"Weekly processing started for {week_start.date()} - {week_end.date()}")

    result = await db.execute(
        select(Goal.id)
        .where(Goal.dueDate >= week_start.date(), Goal.dueDate <= week_end.date())
        .order_by(col(Goal.dueDate).asc())
    )
    goal_ids = result.scalars().all()

    summary = WeeklyProcessingResult(weekStart=week_start, weekEnd=week_end, processedAt=now)

    for goal_id in goal_ids:
        # Fetched per goal: a rollback expires everything loaded before it
        goal = await db.get(Goal, goal_id)
        if not goal:
            continue
        summary.processedGoals += 1
        # Counters are only kept once the goal's changes are committed
        checkpoint = summary.model_copy()
        try:
            await _process_goal(db, goal, week_start, week_end, now, summary)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.error(f"Weekly processing failed for goal {goal_id}", exc_info=True)
            summary = checkpoint
            summary.failedGoalIds = [*summary.failedGoalIds, goal_id]

    summary.usersRefreshed = await rollup_service.refresh_all_rollups(db)
    await db.commit()
    logger.info(
        f"Weekly processing finished: {summary.processedGoals} goals, "
        f"{summary.progressHistoryEntries} snapshots, {summary.overdueGoals} newly overdue, "
        f"{summary.skippedSnapshots} skipped, {len(summary.failedGoalIds)} failed"
    )
    return summary


async def process_overdue_goals(db: AsyncSession, now: Optional[datetime] = None) -> OverdueSweepResult:
    """Catch-up sweep: flag every open goal whose due date has passed, regardless of week."""
    now = now or datetime.utcnow()
    result = await db.execute(
        select(Goal.id).where(
            col(Goal.status).in_(OVERDUE_CANDIDATE_STATUSES),
            Goal.dueDate < now.date(),
        )
    )
    goal_ids = result.scalars().all()
    if not goal_ids:
        return OverdueSweepResult(message="No overdue goals found", processedGoals=0)

    processed = 0
    failed: List[UUID] = []
    touched_users = []
    for goal_id in goal_ids:
        goal = await db.get(Goal, goal_id)
        if not goal:
            continue
        try:
            original_due_date = goal.dueDate
            goal_lifecycle.mark_overdue(goal, now)
            db.add(goal)
            log_activity(
                db,
                SYSTEM,
                "goal",
                goal.id,
                MarkGoalOverdueDetails(goalTitle=goal.title, originalDueDate=original_due_date),
            )
            await db.commit()
            processed += 1
            touched_users.append(goal.volunteerId)
        except SQLAlchemyError:
            await db.rollback()
            logger.error(f"Overdue sweep failed for goal {goal_id}", exc_info=True)
            failed.append(goal_id)

    await rollup_service.refresh_rollups(db, touched_users)
    await db.commit()

    logger.info(f"Overdue sweep flagged {processed} goals")
    return OverdueSweepResult(
        message=f"Processed {processed} overdue goals",
        processedGoals=processed,
        failedGoalIds=failed,
    )
