from datetime import datetime, timedelta

from app.models.enums import GoalStatus
from app.models.progress_history import ProgressHistory
from app.services import aggregation


def week(offset: int):
    start = aggregation.week_bounds(datetime.utcnow())[0] - timedelta(weeks=offset)
    return start, start + timedelta(days=6, hours=23, minutes=59, seconds=59, microseconds=999000)


async def add_snapshot(db, goal, offset: int, status=GoalStatus.COMPLETED, progress=100) -> ProgressHistory:
    week_start, week_end = week(offset)
    entry = ProgressHistory(
        goalId=goal.id,
        volunteerId=goal.volunteerId,
        title=goal.title,
        progress=progress,
        status=status,
        weekStart=week_start,
        weekEnd=week_end,
    )
    db.add(entry)
    await db.commit()
    return entry


def backfill_payload(goal, offset: int = 1) -> dict:
    week_start, week_end = week(offset)
    return {
        "goalId": str(goal.id),
        "volunteerId": str(goal.volunteerId),
        "title": goal.title,
        "progress": 50,
        "status": "in_progress",
        "weekStart": week_start.isoformat(),
        "weekEnd": week_end.isoformat(),
    }


async def test_admin_backfill_and_duplicate_week(client, admin_headers, volunteer, make_goal):
    goal = await make_goal(volunteer)

    created = await client.post("/api/progress-history", json=backfill_payload(goal), headers=admin_headers)
    assert created.status_code == 201
    assert created.json()["goalTitle"] == goal.title
    assert created.json()["volunteerName"] == volunteer.fullName

    duplicate = await client.post("/api/progress-history", json=backfill_payload(goal), headers=admin_headers)
    assert duplicate.status_code == 409


async def test_backfill_rejects_goal_of_another_volunteer(client, admin_headers, admin, volunteer, make_goal):
    goal = await make_goal(volunteer)
    payload = backfill_payload(goal)
    payload["volunteerId"] = str(admin.id)

    response = await client.post("/api/progress-history", json=payload, headers=admin_headers)
    assert response.status_code == 400


async def test_backfill_is_admin_only(client, volunteer_headers, volunteer, make_goal):
    goal = await make_goal(volunteer)
    response = await client.post("/api/progress-history", json=backfill_payload(goal), headers=volunteer_headers)
    assert response.status_code == 403


async def test_volunteer_listing_is_scoped_to_self(db, client, volunteer, volunteer_headers, make_user, make_goal):
    other = await make_user("other@example.com")
    await add_snapshot(db, await make_goal(volunteer, title="mine"), 1)
    await add_snapshot(db, await make_goal(other, title="theirs"), 1)

    response = await client.get("/api/progress-history", params={"volunteerId": str(other.id)}, headers=volunteer_headers)
    body = response.json()
    assert body["total"] == 1
    assert body["entries"][0]["title"] == "mine"

    mine = await client.get("/api/progress-history/my-history", headers=volunteer_headers)
    assert mine.json()["total"] == 1


async def test_progress_range_filter(db, client, admin_headers, volunteer, make_goal):
    goal = await make_goal(volunteer)
    await add_snapshot(db, goal, 1, status=GoalStatus.IN_PROGRESS, progress=20)
    await add_snapshot(db, goal, 2, status=GoalStatus.IN_PROGRESS, progress=70)

    response = await client.get("/api/progress-history", params={"minProgress": 50}, headers=admin_headers)
    assert [e["progress"] for e in response.json()["entries"]] == [70]


async def test_trends_report_streak_and_best_week(db, client, volunteer, volunteer_headers, make_goal):
    goal = await make_goal(volunteer)
    for offset in (1, 2, 3):
        await add_snapshot(db, goal, offset)
    await add_snapshot(db, goal, 5, status=GoalStatus.IN_PROGRESS, progress=40)

    response = await client.get("/api/progress-history/my-trends", headers=volunteer_headers)
    body = response.json()

    assert body["streak"] == 3
    assert len(body["weeklyTrends"]) == 4
    assert body["bestWeek"]["completionRate"] == 100
    assert body["worstWeek"]["completionRate"] == 0
    assert body["overallCompletionRate"] == 75


async def test_trends_for_another_volunteer_are_forbidden(client, volunteer_headers, admin):
    response = await client.get(f"/api/progress-history/volunteer/{admin.id}/trends", headers=volunteer_headers)
    assert response.status_code == 403


async def test_monthly_summary_validates_month(client, admin_headers):
    response = await client.get("/api/progress-history/monthly/2024/13", headers=admin_headers)
    assert response.status_code == 400


async def test_monthly_summary_counts_entries(db, client, admin_headers, volunteer, make_goal):
    goal = await make_goal(volunteer, category="outreach")
    entry = await add_snapshot(db, goal, 0, status=GoalStatus.IN_PROGRESS, progress=30)

    year, month = entry.weekStart.year, entry.weekStart.month
    response = await client.get(f"/api/progress-history/monthly/{year}/{month}", headers=admin_headers)
    body = response.json()

    assert body["summary"]["totalEntries"] == 1
    assert body["summary"]["categoriesWorked"] == ["outreach"]
    assert body["topCategories"][0]["category"] == "outreach"
    distribution = {row["range"]: row["count"] for row in body["progressDistribution"]}
    assert distribution["21-40%"] == 1


async def test_analytics_summary_is_admin_only(client, admin_headers, volunteer_headers):
    assert (await client.get("/api/progress-history/analytics/summary", headers=volunteer_headers)).status_code == 403

    body = (await client.get("/api/progress-history/analytics/summary", headers=admin_headers)).json()
    assert body["totalEntries"] == 0
    assert body["overallCompletionRate"] == 0
    assert body["topPerformers"] == []


async def test_productive_day_after_goal_activity(client, volunteer_headers):
    today = datetime.utcnow().date()
    goal = (
        await client.post(
            "/api/goals",
            json={"title": "Sort donations", "startDate": today.isoformat(), "dueDate": (today + timedelta(days=5)).isoformat()},
            headers=volunteer_headers,
        )
    ).json()
    await client.patch(f"/api/goals/{goal['id']}/progress", json={"progress": 100}, headers=volunteer_headers)

    body = (await client.get("/api/progress-history/my-productive-day", headers=volunteer_headers)).json()

    assert len(body["weeklyPattern"]) == 7
    assert body["mostProductiveDay"]["dayOfWeek"] == aggregation.day_of_week(datetime.utcnow())
    assert body["mostProductiveDay"]["activitiesCount"] == 2
    assert body["insights"]


async def test_delete_snapshot(db, client, admin_headers, volunteer, make_goal):
    entry = await add_snapshot(db, await make_goal(volunteer), 1)

    response = await client.delete(f"/api/progress-history/{entry.id}", headers=admin_headers)
    assert response.status_code == 204

    missing = await client.get(f"/api/progress-history/{entry.id}", headers=admin_headers)
    assert missing.status_code == 404
