"""
Goal status state machine.

    pending -> in_progress -> completed
    any non-completed state -> overdue (once the due date has passed)
    overdue -> completed

The functions here mutate a Goal in memory only; persistence, access checks
and audit logging belong to GoalService.
"""
from datetime import date, datetime
from typing import Optional

from app.core.exceptions import BadRequestError
from app.models.enums import GoalStatus
from app.models.goal import Goal

MIN_PROGRESS = 0
MAX_PROGRESS = 100


def validate_progress(progress: int) -> None:
    if progress < MIN_PROGRESS or progress > MAX_PROGRESS:
        raise BadRequestError(f"Progress must be between {MIN_PROGRESS} and {MAX_PROGRESS}")


def validate_date_range(start_date: date, due_date: date) -> None:
    if start_date > due_date:
        raise BadRequestError("Start date cannot be after due date")


def status_for_new_goal(progress: int) -> GoalStatus:
    """New goals start pending unless they are created with progress already made."""
    if progress >= MAX_PROGRESS:
        return GoalStatus.COMPLETED
    if progress > MIN_PROGRESS:
        return GoalStatus.IN_PROGRESS
    return GoalStatus.PENDING


def apply_progress_update(goal: Goal, progress: int, note: Optional[str] = None, now: Optional[datetime] = None) -> int:
    """
    Set progress and derive the status from it.

    100 forces completed; any positive value moves a pending goal to
    in_progress. A note is appended to the goal's notes with an ISO timestamp.
    Returns the previous progress. Out-of-range values leave the goal untouched.
    """
    validate_progress(progress)

    previous_progress = goal.progress
    goal.progress = progress

    if progress == MAX_PROGRESS:
        goal.status = GoalStatus.COMPLETED
    elif progress > MIN_PROGRESS and goal.status == GoalStatus.PENDING:
        goal.status = GoalStatus.IN_PROGRESS

    if note:
        stamp = (now or datetime.utcnow()).isoformat()
        goal.notes = [*(goal.notes or []), f"{stamp}: {note}"]

    goal.updatedAt = now or datetime.utcnow()
    return previous_progress


def apply_status_update(goal: Goal, status: GoalStatus, now: Optional[datetime] = None) -> GoalStatus:
    """
    Set status explicitly. completed forces progress to 100, pending resets it
    to 0, other statuses keep the current progress. Returns the previous status.
    """
    previous_status = goal.status
    goal.status = status

    if status == GoalStatus.COMPLETED:
        goal.progress = MAX_PROGRESS
    elif status == GoalStatus.PENDING:
        goal.progress = MIN_PROGRESS

    goal.updatedAt = now or datetime.utcnow()
    return previous_status


def is_overdue(goal: Goal, today: date) -> bool:
    """A goal is overdue once its due date is strictly before today, unless it is completed."""
    return goal.status != GoalStatus.COMPLETED and goal.dueDate < today


def mark_overdue(goal: Goal, now: Optional[datetime] = None) -> None:
    goal.status = GoalStatus.OVERDUE
    goal.updatedAt = now or datetime.utcnow()
