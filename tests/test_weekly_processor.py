from datetime import date, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from app.models.activity import ActivityLog
from app.models.enums import ActorType, GoalPriority, GoalStatus
from app.models.goal import Goal, GoalBulkUpdate
from app.models.progress_history import ProgressHistory
from app.services import rollup_service, weekly_processor
from app.services.goal_service import GoalService
from scripts import process_weekly_goals as cron

# Wednesday; the processing window is Sun 2024-06-09 .. Sat 2024-06-15
NOW = datetime(2024, 6, 12, 23, 0)
YESTERDAY = date(2024, 6, 11)


async def snapshots(db):
    result = await db.execute(select(ProgressHistory))
    return result.scalars().all()


async def test_overdue_goal_is_snapshotted_before_flip(db, volunteer, make_goal):
    goal = await make_goal(volunteer, dueDate=YESTERDAY)

    summary = await weekly_processor.process_weekly_goals(db, now=NOW)

    await db.refresh(goal)
    assert goal.status == GoalStatus.OVERDUE
    rows = await snapshots(db)
    assert len(rows) == 1
    assert rows[0].status == GoalStatus.PENDING
    assert rows[0].weekStart == datetime(2024, 6, 9)
    assert summary.overdueGoals == 1
    assert summary.progressHistoryEntries == 1

    logs = (await db.execute(select(ActivityLog).where(ActivityLog.action == "MARK_GOAL_OVERDUE"))).scalars().all()
    assert len(logs) == 1
    assert logs[0].actorType == ActorType.SYSTEM
    assert logs[0].userId is None


async def test_one_snapshot_per_goal_due_in_window(db, volunteer, make_goal):
    in_window = [
        await make_goal(volunteer, title="a", dueDate=date(2024, 6, 9)),
        await make_goal(volunteer, title="b", dueDate=date(2024, 6, 13), status=GoalStatus.IN_PROGRESS, progress=40),
        await make_goal(volunteer, title="c", dueDate=date(2024, 6, 15)),
    ]
    await make_goal(volunteer, title="next week", dueDate=date(2024, 6, 16))
    await make_goal(volunteer, title="last week", dueDate=date(2024, 6, 8))

    summary = await weekly_processor.process_weekly_goals(db, now=NOW)

    rows = await snapshots(db)
    assert sorted(r.goalId for r in rows) == sorted(g.id for g in in_window)
    assert summary.processedGoals == 3


async def test_completed_goal_is_never_flipped_to_overdue(db, volunteer, make_goal):
    goal = await make_goal(volunteer, dueDate=YESTERDAY, status=GoalStatus.COMPLETED, progress=100)

    summary = await weekly_processor.process_weekly_goals(db, now=NOW)

    await db.refresh(goal)
    assert goal.status == GoalStatus.COMPLETED
    assert summary.completedGoals == 1
    assert summary.overdueGoals == 0


async def test_rerun_skips_existing_snapshots(db, volunteer, make_goal):
    await make_goal(volunteer, dueDate=date(2024, 6, 14))

    await weekly_processor.process_weekly_goals(db, now=NOW)
    second = await weekly_processor.process_weekly_goals(db, now=NOW)

    assert len(await snapshots(db)) == 1
    assert second.skippedSnapshots == 1
    assert second.progressHistoryEntries == 0


async def test_failure_on_one_goal_does_not_stop_the_run(db, volunteer, make_goal, monkeypatch):
    broken = await make_goal(volunteer, title="broken", dueDate=date(2024, 6, 10))
    healthy = await make_goal(volunteer, title="healthy", dueDate=date(2024, 6, 14))
    # Captured up front: the rollback expires the loaded instances
    broken_id, healthy_id = broken.id, healthy.id

    original = weekly_processor._process_goal

    async def flaky(db, goal, *args):
        if goal.id == broken_id:
            raise SQLAlchemyError("disk full")
        await original(db, goal, *args)

    monkeypatch.setattr(weekly_processor, "_process_goal", flaky)

    summary = await weekly_processor.process_weekly_goals(db, now=NOW)

    assert summary.failedGoalIds == [broken_id]
    assert summary.progressHistoryEntries == 1
    rows = await snapshots(db)
    assert [r.goalId for r in rows] == [healthy_id]


async def test_weekly_run_refreshes_rollups(db, volunteer, make_goal):
    await make_goal(volunteer, dueDate=date(2024, 6, 14), status=GoalStatus.COMPLETED, progress=100)
    await make_goal(volunteer, dueDate=date(2024, 6, 14))

    summary = await weekly_processor.process_weekly_goals(db, now=NOW)

    await db.refresh(volunteer)
    assert summary.usersRefreshed == 1
    assert volunteer.goalsCount == 2
    assert volunteer.completionRate == 50


async def test_overdue_sweep_only_touches_open_goals(db, volunteer, make_goal):
    pending = await make_goal(volunteer, dueDate=date(2024, 5, 1))
    in_progress = await make_goal(volunteer, dueDate=date(2024, 5, 2), status=GoalStatus.IN_PROGRESS, progress=30)
    completed = await make_goal(volunteer, dueDate=date(2024, 5, 3), status=GoalStatus.COMPLETED, progress=100)
    future = await make_goal(volunteer, dueDate=date(2024, 7, 1))

    result = await weekly_processor.process_overdue_goals(db, now=NOW)

    assert result.processedGoals == 2
    for goal in (pending, in_progress, completed, future):
        await db.refresh(goal)
    assert pending.status == GoalStatus.OVERDUE
    assert in_progress.status == GoalStatus.OVERDUE
    assert in_progress.progress == 30
    assert completed.status == GoalStatus.COMPLETED
    assert future.status == GoalStatus.PENDING


async def test_overdue_sweep_with_nothing_to_do(db):
    result = await weekly_processor.process_overdue_goals(db, now=NOW)
    assert result.processedGoals == 0
    assert result.message == "No overdue goals found"


async def test_bulk_update_keeps_progress_and_refreshes_each_volunteer_once(
    db, admin, volunteer, make_user, make_goal, monkeypatch
):
    other = await make_user("other@example.com")
    goals = [
        await make_goal(volunteer, title="one", status=GoalStatus.IN_PROGRESS, progress=30),
        await make_goal(volunteer, title="two", status=GoalStatus.IN_PROGRESS, progress=60),
        await make_goal(other, title="three", progress=0),
    ]

    refreshed = []
    original = rollup_service.refresh_user_rollup

    async def counting(db, user_id):
        refreshed.append(user_id)
        await original(db, user_id)

    monkeypatch.setattr(rollup_service, "refresh_user_rollup", counting)

    payload = GoalBulkUpdate(goalIds=[g.id for g in goals], status=GoalStatus.COMPLETED, priority=GoalPriority.HIGH)
    result = await GoalService(db).bulk_update(payload, admin)

    assert result["updated"] == 3
    assert sorted(refreshed) == sorted([volunteer.id, other.id])

    stored = (await db.execute(select(Goal).order_by(Goal.title))).scalars().all()
    assert {g.title: g.progress for g in stored} == {"one": 30, "three": 0, "two": 60}
    assert all(g.status == GoalStatus.COMPLETED for g in stored)
    assert all(g.priority == GoalPriority.HIGH for g in stored)

    logs = (await db.execute(select(ActivityLog).where(ActivityLog.action == "BULK_UPDATE_GOALS"))).scalars().all()
    assert len(logs) == 1


async def test_saturday_night_cron_run_closes_the_current_week(db, session_maker, volunteer, make_goal, monkeypatch):
    async def no_init():
        return None

    monkeypatch.setattr(cron, "init_db", no_init)
    monkeypatch.setattr(cron, "async_session_maker", session_maker)
    goal = await make_goal(volunteer, dueDate=date(2024, 6, 15))

    exit_code = await cron.run(overdue_only=False, now=datetime(2024, 6, 15, 23, 59))

    assert exit_code == 0
    rows = await snapshots(db)
    assert [r.goalId for r in rows] == [goal.id]
    assert rows[0].weekStart == datetime(2024, 6, 9)


async def test_sunday_run_opens_the_next_week(db, volunteer, make_goal):
    await make_goal(volunteer, dueDate=date(2024, 6, 15))

    summary = await weekly_processor.process_weekly_goals(db, now=datetime(2024, 6, 16, 23, 59))

    assert summary.weekStart == datetime(2024, 6, 16)
    assert summary.processedGoals == 0
