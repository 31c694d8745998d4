"""
Per-user goal rollups (goalsCount, completionRate, performance band).

The Goal rows are the source of truth: `compute_user_rollup` derives the
figures on demand. The copies stored on User are a cache whose only
invalidation point is `refresh_user_rollup`, called after every goal
mutation that touches that user.
"""
import logging
from typing import Iterable, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.enums import GoalStatus
from app.models.goal import Goal
from app.models.user import User
from app.services import aggregation

logger = logging.getLogger(__name__)


async def compute_user_rollup(db: AsyncSession, user_id: UUID) -> Tuple[int, int]:
    """Return (goalsCount, completionRate) computed from the user's goals."""
    result = await db.execute(select(Goal.status).where(Goal.volunteerId == user_id))
    statuses = result.scalars().all()
    total = len(statuses)
    completed = sum(1 for s in statuses if s == GoalStatus.COMPLETED)
    return total, aggregation.completion_rate(completed, total)


async def refresh_user_rollup(db: AsyncSession, user_id: UUID) -> None:
    """Recompute and stage the cached rollup fields for one user. The caller commits."""
    user = await db.get(User, user_id)
    if not user:
        return

    # Pending ORM changes must be visible to the count query
    await db.flush()
    goals_count, completion_rate = await compute_user_rollup(db, user_id)
    user.goalsCount = goals_count
    user.completionRate = completion_rate
    user.performance = aggregation.performance_band(completion_rate)
    db.add(user)


async def refresh_rollups(db: AsyncSession, user_ids: Iterable[UUID]) -> int:
    """Refresh each distinct user once. Returns how many users were refreshed."""
    distinct_ids = list(dict.fromkeys(user_ids))
    for user_id in distinct_ids:
        await refresh_user_rollup(db, user_id)
    return len(distinct_ids)


async def refresh_all_rollups(db: AsyncSession) -> int:
    result = await db.execute(select(User.id))
    user_ids = result.scalars().all()
    count = await refresh_rollups(db, user_ids)
    logger.info(f"Refreshed goal rollups for {count} users")
    return count
