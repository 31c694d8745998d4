from datetime import date, timedelta

from httpx import AsyncClient

from app.models.enums import GoalStatus


def goal_payload(**overrides) -> dict:
    today = date.today()
    payload = {
        "title": "Organise food drive",
        "description": "Collect donations at the community centre",
        "category": "outreach",
        "priority": "high",
        "startDate": today.isoformat(),
        "dueDate": (today + timedelta(days=10)).isoformat(),
    }
    payload.update(overrides)
    return payload


async def create_goal(client: AsyncClient, headers: dict, **overrides) -> dict:
    response = await client.post("/api/goals", json=goal_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def test_requires_authentication(client):
    response = await client.get("/api/goals")
    assert response.status_code == 401


async def test_progress_updates_drive_status(client, volunteer_headers):
    goal = await create_goal(client, volunteer_headers)
    assert goal["status"] == "pending"
    assert goal["progress"] == 0

    response = await client.patch(f"/api/goals/{goal['id']}/progress", json={"progress": 45}, headers=volunteer_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "in_progress"
    assert response.json()["progress"] == 45

    response = await client.patch(
        f"/api/goals/{goal['id']}/progress",
        json={"progress": 100, "notes": "All boxes delivered"},
        headers=volunteer_headers,
    )
    body = response.json()
    assert body["status"] == "completed"
    assert body["notes"][-1].endswith("All boxes delivered")


async def test_out_of_range_progress_is_rejected(client, volunteer_headers):
    goal = await create_goal(client, volunteer_headers)
    await client.patch(f"/api/goals/{goal['id']}/progress", json={"progress": 30}, headers=volunteer_headers)

    response = await client.patch(f"/api/goals/{goal['id']}/progress", json={"progress": 101}, headers=volunteer_headers)
    assert response.status_code == 400

    stored = (await client.get(f"/api/goals/{goal['id']}", headers=volunteer_headers)).json()
    assert stored["progress"] == 30
    assert stored["status"] == "in_progress"


async def test_status_paths_adjust_progress(client, volunteer_headers):
    goal = await create_goal(client, volunteer_headers)

    completed = await client.patch(f"/api/goals/{goal['id']}/status", json={"status": "completed"}, headers=volunteer_headers)
    assert completed.json()["progress"] == 100

    reset = await client.patch(f"/api/goals/{goal['id']}/status", json={"status": "pending"}, headers=volunteer_headers)
    assert reset.json()["progress"] == 0

    via_update = await client.patch(f"/api/goals/{goal['id']}", json={"status": "completed"}, headers=volunteer_headers)
    assert via_update.json()["progress"] == 100


async def test_rollup_follows_goal_mutations(client, volunteer_headers):
    first = await create_goal(client, volunteer_headers, title="first")
    await create_goal(client, volunteer_headers, title="second")
    await create_goal(client, volunteer_headers, title="third")

    await client.patch(f"/api/goals/{first['id']}/status", json={"status": "completed"}, headers=volunteer_headers)

    me = (await client.get("/api/users/me", headers=volunteer_headers)).json()
    assert me["goalsCount"] == 3
    assert me["completionRate"] == 33


async def test_start_after_due_is_a_domain_error(client, volunteer_headers):
    today = date.today()
    response = await client.post(
        "/api/goals",
        json=goal_payload(startDate=today.isoformat(), dueDate=(today - timedelta(days=1)).isoformat()),
        headers=volunteer_headers,
    )
    assert response.status_code == 400


async def test_missing_fields_are_schema_errors(client, volunteer_headers):
    response = await client.post("/api/goals", json={"title": "no dates"}, headers=volunteer_headers)
    assert response.status_code == 422


async def test_volunteer_cannot_create_for_someone_else(client, volunteer_headers, admin):
    response = await client.post(
        "/api/goals", json=goal_payload(volunteerId=str(admin.id)), headers=volunteer_headers
    )
    assert response.status_code == 403


async def test_admin_creates_for_volunteer_and_lists_with_filters(client, admin_headers, volunteer, volunteer_headers):
    await create_goal(client, admin_headers, volunteerId=str(volunteer.id), title="Mentor newcomers", category="training")
    await create_goal(client, volunteer_headers, title="Beach cleanup")

    response = await client.get("/api/goals", params={"category": "training"}, headers=admin_headers)
    body = response.json()
    assert body["total"] == 1
    assert body["goals"][0]["title"] == "Mentor newcomers"
    assert body["goals"][0]["volunteerName"] == volunteer.fullName

    response = await client.get("/api/goals", params={"search": "beach"}, headers=volunteer_headers)
    assert [g["title"] for g in response.json()["goals"]] == ["Beach cleanup"]


async def test_volunteers_only_see_their_own_goals(client, auth_headers, make_user, volunteer_headers):
    other = await make_user("someone@example.com")
    other_headers = auth_headers(other)
    goal = await create_goal(client, other_headers)

    listing = await client.get("/api/goals", headers=volunteer_headers)
    assert listing.json()["total"] == 0

    response = await client.get(f"/api/goals/{goal['id']}", headers=volunteer_headers)
    assert response.status_code == 403


async def test_pagination(client, volunteer_headers):
    for i in range(5):
        await create_goal(client, volunteer_headers, title=f"goal {i}")

    response = await client.get("/api/goals", params={"page": 2, "limit": 2, "sortBy": "title", "sortOrder": "ASC"}, headers=volunteer_headers)
    body = response.json()
    assert body["total"] == 5
    assert body["totalPages"] == 3
    assert [g["title"] for g in body["goals"]] == ["goal 2", "goal 3"]


async def test_delete_is_admin_only(client, admin_headers, volunteer_headers):
    goal = await create_goal(client, volunteer_headers)

    forbidden = await client.delete(f"/api/goals/{goal['id']}", headers=volunteer_headers)
    assert forbidden.status_code == 403

    deleted = await client.delete(f"/api/goals/{goal['id']}", headers=admin_headers)
    assert deleted.status_code == 204

    missing = await client.get(f"/api/goals/{goal['id']}", headers=admin_headers)
    assert missing.status_code == 404


async def test_statistics_and_categories(client, volunteer_headers):
    goal = await create_goal(client, volunteer_headers, category="outreach")
    await create_goal(client, volunteer_headers, category="training")
    await client.patch(f"/api/goals/{goal['id']}/status", json={"status": "completed"}, headers=volunteer_headers)

    stats = (await client.get("/api/goals/statistics", headers=volunteer_headers)).json()
    assert stats["totalGoals"] == 2
    assert stats["completedGoals"] == 1
    assert stats["completionRate"] == 50
    assert stats["categoriesCount"] == 2

    categories = (await client.get("/api/goals/categories", headers=volunteer_headers)).json()
    assert categories == ["outreach", "training"]


async def test_weekly_processing_endpoint_is_admin_only(client, admin_headers, volunteer_headers):
    forbidden = await client.post("/api/goals/process-weekly", headers=volunteer_headers)
    assert forbidden.status_code == 403

    response = await client.post("/api/goals/process-weekly", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["failedGoalIds"] == []


async def test_null_for_required_field_is_a_domain_error(client, volunteer_headers):
    goal = await create_goal(client, volunteer_headers, title="Keep me")

    for payload in ({"title": None}, {"startDate": None}, {"tags": None}):
        response = await client.patch(f"/api/goals/{goal['id']}", json=payload, headers=volunteer_headers)
        assert response.status_code == 400, payload

    stored = (await client.get(f"/api/goals/{goal['id']}", headers=volunteer_headers)).json()
    assert stored["title"] == "Keep me"
    assert stored["startDate"] == goal["startDate"]


async def test_description_can_be_cleared(client, volunteer_headers):
    goal = await create_goal(client, volunteer_headers)

    response = await client.patch(f"/api/goals/{goal['id']}", json={"description": None}, headers=volunteer_headers)

    assert response.status_code == 200
    assert response.json()["description"] is None


async def test_overdue_goal_can_still_be_completed(client, volunteer, volunteer_headers, make_goal):
    goal = await make_goal(volunteer, status=GoalStatus.OVERDUE, progress=60)

    response = await client.patch(f"/api/goals/{goal.id}/progress", json={"progress": 100}, headers=volunteer_headers)

    assert response.json()["status"] == "completed"
    assert response.json()["progress"] == 100
