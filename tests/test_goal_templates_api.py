from datetime import date, timedelta

import pytest


def template_payload(**overrides) -> dict:
    payload = {
        "name": "Community cleanup",
        "description": "Organise a neighbourhood litter pick",
        "category": "environment",
        "priority": "high",
        "defaultDuration": 14,
        "tags": ["outdoors"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
async def template(client, admin_headers) -> dict:
    response = await client.post("/api/goal-templates", json=template_payload(), headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()


async def test_create_requires_admin_and_unique_name(client, template, admin_headers, volunteer_headers):
    assert template["usageCount"] == 0
    assert template["status"] == "active"

    duplicate = await client.post("/api/goal-templates", json=template_payload(), headers=admin_headers)
    assert duplicate.status_code == 409

    forbidden = await client.post(
        "/api/goal-templates", json=template_payload(name="Other"), headers=volunteer_headers
    )
    assert forbidden.status_code == 403


async def test_volunteers_only_list_active_templates(client, template, admin_headers, volunteer_headers):
    await client.post(
        "/api/goal-templates", json=template_payload(name="Old drive", status="inactive"), headers=admin_headers
    )

    admin_view = (await client.get("/api/goal-templates", headers=admin_headers)).json()
    assert admin_view["total"] == 2

    volunteer_view = (await client.get("/api/goal-templates", headers=volunteer_headers)).json()
    assert [t["name"] for t in volunteer_view["templates"]] == ["Community cleanup"]

    categories = (await client.get("/api/goal-templates/categories", headers=volunteer_headers)).json()
    assert categories == ["environment"]


async def test_use_template_creates_goal(client, template, volunteer, volunteer_headers, admin_headers):
    response = await client.post(
        "/api/goal-templates/use",
        json={"templateId": template["id"], "title": "Clean the park", "customNotes": "Bring gloves"},
        headers=volunteer_headers,
    )
    assert response.status_code == 201
    goal = response.json()

    assert goal["volunteerId"] == str(volunteer.id)
    assert goal["templateId"] == template["id"]
    assert goal["category"] == "environment"
    assert goal["priority"] == "high"
    assert goal["tags"] == ["outdoors"]
    assert goal["description"] == template["description"]
    assert goal["dueDate"] == (date.today() + timedelta(days=14)).isoformat()
    assert goal["notes"] == ["Bring gloves"]

    stored = (await client.get(f"/api/goal-templates/{template['id']}", headers=admin_headers)).json()
    assert stored["usageCount"] == 1


async def test_volunteer_cannot_use_template_for_someone_else(client, template, admin, volunteer_headers):
    response = await client.post(
        "/api/goal-templates/use",
        json={"templateId": template["id"], "title": "Clean the park", "volunteerId": str(admin.id)},
        headers=volunteer_headers,
    )
    assert response.status_code == 403


async def test_archived_template_cannot_be_used(client, template, admin_headers, volunteer_headers):
    archived = await client.delete(f"/api/goal-templates/{template['id']}", headers=admin_headers)
    assert archived.status_code == 204

    stored = (await client.get(f"/api/goal-templates/{template['id']}", headers=admin_headers)).json()
    assert stored["status"] == "archived"

    hidden = await client.get(f"/api/goal-templates/{template['id']}", headers=volunteer_headers)
    assert hidden.status_code == 404

    response = await client.post(
        "/api/goal-templates/use",
        json={"templateId": template["id"], "title": "Too late"},
        headers=volunteer_headers,
    )
    assert response.status_code == 404


async def test_duplicate_template(client, template, admin_headers):
    response = await client.post(f"/api/goal-templates/{template['id']}/duplicate", headers=admin_headers)
    assert response.status_code == 201
    copy = response.json()

    assert copy["name"] == "Community cleanup (Copy)"
    assert copy["usageCount"] == 0
    assert copy["tags"] == template["tags"]


async def test_update_template(client, template, admin_headers):
    response = await client.patch(
        f"/api/goal-templates/{template['id']}", json={"defaultDuration": 21}, headers=admin_headers
    )
    assert response.json()["defaultDuration"] == 21


async def test_usage_stats_and_analytics(client, template, admin_headers, volunteer_headers):
    for title in ("First", "Second"):
        await client.post(
            "/api/goal-templates/use",
            json={"templateId": template["id"], "title": title},
            headers=volunteer_headers,
        )

    stats = (await client.get(f"/api/goal-templates/{template['id']}/usage-stats", headers=admin_headers)).json()
    assert stats["totalUsage"] == 2
    assert stats["goalsCreated"] == 2
    assert stats["activeGoals"] == 2
    assert stats["recentUsage"] == 2
    assert len(stats["usageByMonth"]) == 12
    assert stats["usageByMonth"][-1]["count"] == 2

    analytics = (await client.get("/api/goal-templates/analytics", headers=admin_headers)).json()
    assert analytics["totalTemplates"] == 1
    assert analytics["totalUsage"] == 2
    assert analytics["topCategories"][0]["category"] == "environment"

    popular = (await client.get("/api/goal-templates/popular", headers=volunteer_headers)).json()
    assert popular[0]["id"] == template["id"]


async def test_reporting_is_admin_only(client, template, volunteer_headers):
    assert (await client.get("/api/goal-templates/analytics", headers=volunteer_headers)).status_code == 403
    assert (
        await client.get(f"/api/goal-templates/{template['id']}/usage-stats", headers=volunteer_headers)
    ).status_code == 403


async def test_update_rejects_null_required_fields(client, template, admin_headers):
    for payload in ({"name": None}, {"defaultDuration": None}, {"tags": None}):
        response = await client.patch(f"/api/goal-templates/{template['id']}", json=payload, headers=admin_headers)
        assert response.status_code == 400, payload

    stored = (await client.get(f"/api/goal-templates/{template['id']}", headers=admin_headers)).json()
    assert stored["name"] == template["name"]
