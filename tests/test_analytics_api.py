from datetime import date, datetime, timedelta

from app.models.enums import GoalStatus


async def test_personal_analytics_with_no_goals_is_all_zero(client, volunteer, volunteer_headers):
    response = await client.get(f"/api/analytics/personal/{volunteer.id}", headers=volunteer_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["overallCompletionRate"] == 0
    assert body["averageProgress"] == 0
    assert body["performanceScore"] == 0
    assert body["streakCount"] == 0
    assert body["weeklyTrends"] == []
    assert body["achievements"] == []
    assert [d["completedGoals"] for d in body["productiveData"]] == [0] * 7


async def test_personal_analytics_of_someone_else_is_forbidden(client, admin, volunteer_headers):
    response = await client.get(f"/api/analytics/personal/{admin.id}", headers=volunteer_headers)
    assert response.status_code == 403


async def test_personal_analytics_scores_and_achievements(client, volunteer, volunteer_headers, make_goal):
    await make_goal(volunteer, status=GoalStatus.COMPLETED, progress=100)
    await make_goal(volunteer, status=GoalStatus.IN_PROGRESS, progress=50)

    body = (await client.get(f"/api/analytics/personal/{volunteer.id}", headers=volunteer_headers)).json()

    assert body["overallCompletionRate"] == 50
    assert body["averageProgress"] == 75
    assert body["performanceScore"] == 58
    assert [a["title"] for a in body["achievements"]] == ["First Goal Completed"]


async def test_system_overview_is_admin_only(client, admin_headers, volunteer_headers, volunteer, make_goal):
    await make_goal(volunteer, status=GoalStatus.OVERDUE)

    assert (await client.get("/api/analytics/system-overview", headers=volunteer_headers)).status_code == 403

    body = (await client.get("/api/analytics/system-overview", headers=admin_headers)).json()
    assert body["totalVolunteers"] == 2
    assert body["totalGoals"] == 1
    assert body["overdueGoals"] == 1
    assert body["completionRate"] == 0


async def test_analytics_data_shapes(client, admin_headers, volunteer, make_goal):
    await make_goal(volunteer, category="outreach", status=GoalStatus.COMPLETED, progress=100)

    today = date.today()
    body = (
        await client.get(
            "/api/analytics/data",
            params={"startDate": (today - timedelta(days=6)).isoformat(), "endDate": today.isoformat()},
            headers=admin_headers,
        )
    ).json()

    assert len(body["completionTrends"]["daily"]) == 7
    assert len(body["completionTrends"]["weekly"]) == 1
    assert body["completionTrends"]["daily"][-1]["completed"] == 1
    assert body["categoryBreakdown"] == [{"name": "outreach", "value": 1}]
    assert sum(band["value"] for band in body["performanceDistribution"]) == 1


async def test_inverted_date_range_is_rejected(client, admin_headers):
    today = date.today()
    response = await client.get(
        "/api/analytics/data",
        params={"startDate": today.isoformat(), "endDate": (today - timedelta(days=3)).isoformat()},
        headers=admin_headers,
    )
    assert response.status_code == 400


async def test_volunteer_performance_ranking(client, admin_headers, volunteer, make_user, make_goal):
    strong = await make_user("strong@example.com")
    await make_goal(strong, status=GoalStatus.COMPLETED, progress=100)
    await make_goal(volunteer, status=GoalStatus.IN_PROGRESS, progress=20)

    ranking = (await client.get("/api/analytics/volunteer-performance", headers=admin_headers)).json()

    assert [r["name"] for r in ranking] == [strong.fullName, volunteer.fullName]
    assert ranking[0]["performance"] == 100
    assert ranking[1]["performance"] == 6


async def test_export_report(client, admin_headers):
    response = await client.post("/api/analytics/export", json={"type": "performance"}, headers=admin_headers)
    body = response.json()
    assert body["type"] == "performance"
    assert isinstance(body["data"], list)
    assert datetime.fromisoformat(body["generatedAt"])
