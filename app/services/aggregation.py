"""
Read-only statistics over Goal, ProgressHistory and ActivityLog rows.

Everything here is a pure function of the rows passed in plus "now"; callers
load the candidate rows and hand them over. All functions accept empty
input and return zeroed structures rather than raising.
"""
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from app.models.activity import ActivityLog
from app.models.enums import GoalStatus, Performance
from app.services.activity_service import (
    CreateGoalDetails,
    UpdateGoalProgressDetails,
    UpdateGoalStatusDetails,
    parse_details,
)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

TREND_THRESHOLD = 5

PROGRESS_RANGES = [
    ("0-20%", 0, 20),
    ("21-40%", 21, 40),
    ("41-60%", 41, 60),
    ("61-80%", 61, 80),
    ("81-100%", 81, 100),
]

PERFORMANCE_BANDS = [
    ("High Performers (80-100%)", 80),
    ("Good Performers (60-79%)", 60),
    ("Average Performers (40-59%)", 40),
    ("Needs Improvement (0-39%)", 0),
]

# Productivity points per activity
POINTS_COMPLETED = 10
POINTS_STARTED = 3
POINTS_CREATED = 2
POINTS_MINIMUM = 1
SCORE_MULTIPLIER = 2
SCORE_CAP = 100


# --- Rates ---

def completion_rate(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return round(completed / total * 100)


def average_progress(values: Iterable[int]) -> int:
    values = list(values)
    if not values:
        return 0
    return round(sum(values) / len(values))


def performance_score(rate: int, avg_progress: int) -> int:
    return round(rate * 0.7 + avg_progress * 0.3)


def summarize(items: Sequence[Any]) -> Dict[str, int]:
    """Count, completed count, completion rate and average progress of goal-like rows."""
    total = len(items)
    completed = sum(1 for i in items if i.status == GoalStatus.COMPLETED)
    return {
        "total": total,
        "completed": completed,
        "completionRate": completion_rate(completed, total),
        "averageProgress": average_progress(i.progress for i in items),
    }


def performance_band(rate: float) -> Performance:
    if rate >= 80:
        return Performance.HIGH
    if rate >= 60:
        return Performance.AVERAGE
    return Performance.LOW


def performance_distribution(rates: Iterable[float]) -> List[Dict[str, Any]]:
    counts = OrderedDict((name, 0) for name, _ in PERFORMANCE_BANDS)
    for rate in rates:
        for name, floor in PERFORMANCE_BANDS:
            if rate >= floor:
                counts[name] += 1
                break
    return [{"name": name, "value": value} for name, value in counts.items()]


# --- Calendar helpers ---

def day_of_week(moment: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def week_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Closed Sunday 00:00:00.000 .. Saturday 23:59:59.999 window containing `now`."""
    start = datetime(now.year, now.month, now.day) - timedelta(days=day_of_week(now))
    end = start + timedelta(days=6, hours=23, minutes=59, seconds=59, microseconds=999000)
    return start, end


def week_key(moment: datetime) -> date:
    """Calendar day of the Sunday that opens the week containing `moment`."""
    return week_bounds(moment)[0].date()


# --- Weekly buckets ---

def bucket_weekly(entries: Iterable[Any]) -> List[Dict[str, Any]]:
    """
    Group snapshot rows by the calendar day of their weekStart, oldest first.
    """
    buckets: Dict[str, List[Any]] = {}
    for entry in entries:
        buckets.setdefault(entry.weekStart.date().isoformat(), []).append(entry)

    trends = []
    for key in sorted(buckets):
        rows = buckets[key]
        stats = summarize(rows)
        trends.append({
            "weekStart": rows[0].weekStart,
            "weekEnd": rows[0].weekEnd,
            "totalGoals": stats["total"],
            "completedGoals": stats["completed"],
            "averageProgress": stats["averageProgress"],
            "completionRate": stats["completionRate"],
        })
    return trends


def best_week(trends: Sequence[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not trends:
        return None
    best = trends[0]
    for week in trends[1:]:
        if week["completionRate"] > best["completionRate"]:
            best = week
    return {"weekStart": best["weekStart"], "completionRate": best["completionRate"]}


def improvement_trend(trends: Sequence[Dict[str, Any]]) -> str:
    """Compare the last two weekly buckets with the two before them."""
    if len(trends) < 4:
        return "stable"
    last_four = trends[-4:]
    earlier = (last_four[0]["completionRate"] + last_four[1]["completionRate"]) / 2
    recent = (last_four[2]["completionRate"] + last_four[3]["completionRate"]) / 2
    if recent > earlier + TREND_THRESHOLD:
        return "improving"
    if recent < earlier - TREND_THRESHOLD:
        return "declining"
    return "stable"


def streak_count(entries: Iterable[Any], now: datetime, max_weeks: int = 52) -> int:
    """
    Consecutive weeks, newest first, with at least one completed snapshot.

    The current week may not have been snapshotted yet, so an empty current
    week does not break the streak; counting then starts from last week.
    """
    completed_weeks = {week_key(e.weekStart) for e in entries if e.status == GoalStatus.COMPLETED}
    if not completed_weeks:
        return 0

    cursor = week_key(now)
    if cursor not in completed_weeks:
        cursor -= timedelta(days=7)

    streak = 0
    while cursor in completed_weeks and streak < max_weeks:
        streak += 1
        cursor -= timedelta(days=7)
    return streak


# --- Grouping ---

def group_stats(
    items: Iterable[Any],
    key: Callable[[Any], Hashable],
    top_n: Optional[int] = None,
    sort_by: str = "count",
) -> List[Dict[str, Any]]:
    """
    Fold goal-like rows into per-key count, completed, average progress and
    completion rate, sorted descending by `sort_by`.
    """
    groups: Dict[Hashable, List[Any]] = {}
    for item in items:
        groups.setdefault(key(item), []).append(item)

    rows = []
    for group_key, members in groups.items():
        stats = summarize(members)
        rows.append({
            "key": group_key,
            "count": stats["total"],
            "completed": stats["completed"],
            "averageProgress": stats["averageProgress"],
            "completionRate": stats["completionRate"],
        })

    rows.sort(key=lambda r: r[sort_by], reverse=True)
    if top_n is not None:
        rows = rows[:top_n]
    return rows


def progress_distribution(entries: Sequence[Any]) -> List[Dict[str, Any]]:
    total = len(entries)
    distribution = []
    for label, low, high in PROGRESS_RANGES:
        count = sum(1 for e in entries if low <= e.progress <= high)
        distribution.append({
            "range": label,
            "count": count,
            "percentage": completion_rate(count, total),
        })
    return distribution


def status_distribution(entries: Sequence[Any]) -> List[Dict[str, Any]]:
    total = len(entries)
    counts = OrderedDict((s, 0) for s in GoalStatus)
    for entry in entries:
        counts[entry.status] += 1
    return [
        {"status": status.value, "count": count, "percentage": completion_rate(count, total)}
        for status, count in counts.items()
    ]


# --- Productivity ---

def score_activity(log: ActivityLog) -> int:
    """
    Points for one activity entry: a completion scores 10, starting a goal 3,
    creating one 2, a progress update one point per 10% gained (at least 1).
    """
    details = parse_details(log)

    if isinstance(details, UpdateGoalStatusDetails):
        if details.newStatus == GoalStatus.COMPLETED:
            return POINTS_COMPLETED
        if details.newStatus == GoalStatus.IN_PROGRESS:
            return POINTS_STARTED
        return POINTS_MINIMUM
    if isinstance(details, UpdateGoalProgressDetails):
        if details.newProgress == 100:
            return POINTS_COMPLETED
        delta = details.newProgress - details.previousProgress
        return max(POINTS_MINIMUM, delta // 10)
    if isinstance(details, CreateGoalDetails):
        return POINTS_CREATED
    return 0


def daily_productivity(logs: Iterable[ActivityLog]) -> List[Dict[str, Any]]:
    """Seven rows, Sunday first, with activity counts and a 0-100 productivity score."""
    days = [
        {"raw": 0, "count": 0, "goals": set(), "progress": []}
        for _ in DAY_NAMES
    ]
    for log in logs:
        day = days[day_of_week(log.createdAt)]
        day["raw"] += score_activity(log)
        day["count"] += 1
        if log.resource == "goal" and log.resourceId:
            day["goals"].add(log.resourceId)
        details = parse_details(log)
        if isinstance(details, UpdateGoalProgressDetails):
            day["progress"].append(details.newProgress)

    return [
        {
            "dayOfWeek": index,
            "dayName": DAY_NAMES[index],
            "activitiesCount": day["count"],
            "goalsWorkedOn": len(day["goals"]),
            "averageProgress": average_progress(day["progress"]),
            "productivityScore": min(SCORE_CAP, day["raw"] * SCORE_MULTIPLIER),
        }
        for index, day in enumerate(days)
    ]


def most_productive_day(pattern: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Highest score wins; ties go to the day with more activity, then the earlier day."""
    return max(pattern, key=lambda d: (d["productivityScore"], d["activitiesCount"]))


def recommended_days(pattern: Sequence[Dict[str, Any]], limit: int = 3) -> List[str]:
    active = [d for d in pattern if d["productivityScore"] > 0]
    active.sort(key=lambda d: (d["productivityScore"], d["activitiesCount"]), reverse=True)
    return [d["dayName"] for d in active[:limit]]


def productivity_insights(current: Sequence[Dict[str, Any]], historical: Sequence[Dict[str, Any]]) -> List[str]:
    """Cross-check this week's best day against the longer-term pattern."""
    if not any(d["activitiesCount"] for d in current):
        if any(d["activitiesCount"] for d in historical):
            usual = most_productive_day(historical)
            return [
                "No goal activity recorded this week yet.",
                f"Historically {usual['dayName']} is your most productive day.",
            ]
        return ["No goal activity recorded yet. Update a goal to start building your pattern."]

    best = most_productive_day(current)
    insights = [
        f"{best['dayName']} is your most productive day this week with a score of {best['productivityScore']}."
    ]
    if any(d["activitiesCount"] for d in historical):
        usual = most_productive_day(historical)
        if usual["dayOfWeek"] == best["dayOfWeek"]:
            insights.append(f"This matches your 30-day pattern: keep scheduling important work on {best['dayName']}s.")
        else:
            insights.append(
                f"Over the last 30 days {usual['dayName']} has been stronger; consider planning key goals for {usual['dayName']}."
            )
    active_days = sum(1 for d in current if d["activitiesCount"])
    if active_days <= 2:
        insights.append("Spreading updates across more days helps keep goals on track.")
    return insights
