from datetime import datetime, timedelta
from types import SimpleNamespace

from app.models.activity import ActivityLog
from app.models.enums import GoalStatus, Performance
from app.services import aggregation
from app.services.activity_service import UpdateGoalProgressDetails, UpdateGoalStatusDetails

# Wednesday
NOW = datetime(2024, 6, 12, 15, 0)


def snapshot(week_start: datetime, status=GoalStatus.COMPLETED, progress=100):
    return SimpleNamespace(
        weekStart=week_start,
        weekEnd=week_start + timedelta(days=6, hours=23, minutes=59, seconds=59),
        status=status,
        progress=progress,
    )


def progress_log(created_at: datetime, previous: int, new: int) -> ActivityLog:
    return ActivityLog(
        action="UPDATE_GOAL_PROGRESS",
        resource="goal",
        resourceId="goal-1",
        details=UpdateGoalProgressDetails(goalTitle="g", previousProgress=previous, newProgress=new).model_dump(mode="json"),
        createdAt=created_at,
    )


def test_empty_inputs_return_zeroes():
    assert aggregation.completion_rate(0, 0) == 0
    assert aggregation.average_progress([]) == 0
    assert aggregation.performance_score(0, 0) == 0
    assert aggregation.summarize([]) == {"total": 0, "completed": 0, "completionRate": 0, "averageProgress": 0}
    assert aggregation.bucket_weekly([]) == []
    assert aggregation.best_week([]) is None
    assert aggregation.improvement_trend([]) == "stable"
    assert aggregation.streak_count([], NOW) == 0
    assert aggregation.group_stats([], key=lambda g: g.category) == []
    assert all(row["percentage"] == 0 for row in aggregation.progress_distribution([]))
    assert all(row["productivityScore"] == 0 for row in aggregation.daily_productivity([]))


def test_performance_score_weights_completion_over_progress():
    assert aggregation.performance_score(80, 50) == 71


def test_performance_band_thresholds():
    assert aggregation.performance_band(80) == Performance.HIGH
    assert aggregation.performance_band(60) == Performance.AVERAGE
    assert aggregation.performance_band(59) == Performance.LOW


def test_week_bounds_run_sunday_to_saturday():
    start, end = aggregation.week_bounds(NOW)
    assert start == datetime(2024, 6, 9)
    assert end == datetime(2024, 6, 15, 23, 59, 59, 999000)
    assert aggregation.day_of_week(start) == 0


def test_week_bounds_on_sunday_start_that_day():
    start, _ = aggregation.week_bounds(datetime(2024, 6, 9, 0, 0))
    assert start == datetime(2024, 6, 9)


def test_streak_counts_six_weeks_until_gap():
    this_week = aggregation.week_bounds(NOW)[0]
    entries = [snapshot(this_week - timedelta(weeks=i)) for i in range(6)]
    # week 7 missing, week 8 present again
    entries.append(snapshot(this_week - timedelta(weeks=7)))

    assert aggregation.streak_count(entries, NOW) == 6


def test_streak_tolerates_current_week_without_snapshot():
    this_week = aggregation.week_bounds(NOW)[0]
    entries = [snapshot(this_week - timedelta(weeks=i)) for i in range(1, 4)]
    assert aggregation.streak_count(entries, NOW) == 3


def test_streak_ignores_weeks_without_completion():
    this_week = aggregation.week_bounds(NOW)[0]
    entries = [
        snapshot(this_week),
        snapshot(this_week - timedelta(weeks=1), status=GoalStatus.IN_PROGRESS, progress=40),
        snapshot(this_week - timedelta(weeks=2)),
    ]
    assert aggregation.streak_count(entries, NOW) == 1


def test_bucket_weekly_orders_oldest_first():
    this_week = aggregation.week_bounds(NOW)[0]
    entries = [
        snapshot(this_week),
        snapshot(this_week - timedelta(weeks=1), status=GoalStatus.IN_PROGRESS, progress=50),
        snapshot(this_week - timedelta(weeks=1)),
    ]

    trends = aggregation.bucket_weekly(entries)

    assert [t["weekStart"] for t in trends] == [this_week - timedelta(weeks=1), this_week]
    assert trends[0]["totalGoals"] == 2
    assert trends[0]["completionRate"] == 50
    assert trends[0]["averageProgress"] == 75


def test_improvement_trend():
    def weeks(*rates):
        return [{"completionRate": r} for r in rates]

    assert aggregation.improvement_trend(weeks(20, 30, 60, 70)) == "improving"
    assert aggregation.improvement_trend(weeks(70, 60, 30, 20)) == "declining"
    assert aggregation.improvement_trend(weeks(50, 50, 52, 54)) == "stable"


def test_progress_distribution_bands():
    entries = [SimpleNamespace(progress=p) for p in (0, 20, 21, 85, 100)]
    rows = {row["range"]: row["count"] for row in aggregation.progress_distribution(entries)}
    assert rows == {"0-20%": 2, "21-40%": 1, "41-60%": 0, "61-80%": 0, "81-100%": 2}


def test_group_stats_sorted_and_truncated():
    goals = [
        SimpleNamespace(category="outreach", status=GoalStatus.COMPLETED, progress=100),
        SimpleNamespace(category="outreach", status=GoalStatus.PENDING, progress=0),
        SimpleNamespace(category="training", status=GoalStatus.COMPLETED, progress=100),
    ]

    rows = aggregation.group_stats(goals, key=lambda g: g.category, top_n=1)

    assert rows == [{"key": "outreach", "count": 2, "completed": 1, "averageProgress": 50, "completionRate": 50}]


def test_score_activity():
    assert aggregation.score_activity(progress_log(NOW, 0, 35)) == 3
    assert aggregation.score_activity(progress_log(NOW, 30, 35)) == 1
    assert aggregation.score_activity(progress_log(NOW, 90, 100)) == 10

    completed = ActivityLog(
        action="UPDATE_GOAL_STATUS",
        resource="goal",
        details=UpdateGoalStatusDetails(
            goalTitle="g", previousStatus=GoalStatus.IN_PROGRESS, newStatus=GoalStatus.COMPLETED
        ).model_dump(mode="json"),
        createdAt=NOW,
    )
    assert aggregation.score_activity(completed) == 10


def test_daily_productivity_picks_busiest_day():
    monday = datetime(2024, 6, 10, 10, 0)
    wednesday = datetime(2024, 6, 12, 10, 0)
    logs = [
        progress_log(monday, 0, 20),
        progress_log(wednesday, 20, 100),
        progress_log(wednesday, 0, 10),
    ]

    pattern = aggregation.daily_productivity(logs)
    best = aggregation.most_productive_day(pattern)

    assert len(pattern) == 7
    assert best["dayName"] == "Wednesday"
    assert best["activitiesCount"] == 2
    assert best["productivityScore"] == 22
    assert pattern[1]["productivityScore"] == 4
