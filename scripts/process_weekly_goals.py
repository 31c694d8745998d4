"""
Weekly cron entry point.

    python -m scripts.process_weekly_goals            # snapshot + overdue flip
    python -m scripts.process_weekly_goals --overdue  # overdue sweep only

Schedule for Saturday 23:59 so the run falls inside the Sunday..Saturday week
being closed. Pass --now to replay a specific moment, e.g.

    python -m scripts.process_weekly_goals --now 2024-06-15T23:59
"""
import argparse
import asyncio
import logging
from datetime import datetime
from typing import Optional

from app.core.config import settings
from app.database import async_session_maker, init_db
from app.services.weekly_processor import process_overdue_goals, process_weekly_goals

logger = logging.getLogger("scripts.process_weekly_goals")


async def run(overdue_only: bool, now: Optional[datetime] = None) -> int:
    await init_db()
    async with async_session_maker() as session:
        if overdue_only:
            result = await process_overdue_goals(session, now=now)
        else:
            result = await process_weekly_goals(session, now=now)

    logger.info(f"Finished: {result.model_dump_json()}")
    # Non-zero exit so cron surfaces partial failures
    return 1 if result.failedGoalIds else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the weekly goal processing batch")
    parser.add_argument("--overdue", action="store_true", help="only run the overdue sweep")
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        help="processing time as ISO 8601 (default: current UTC time)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    raise SystemExit(asyncio.run(run(args.overdue, args.now)))


if __name__ == "__main__":
    main()
