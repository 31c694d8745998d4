TEST_PASSWORD = "secret123"


async def test_register_login_and_me(client):
    registered = await client.post(
        "/api/auth/register",
        json={
            "firstName": "Ada",
            "lastName": "Lovelace",
            "email": "ada@example.com",
            "password": "analytical",
            "role": "admin",
        },
    )
    assert registered.status_code == 201
    # Self-registration never grants admin
    assert registered.json()["user"]["role"] == "volunteer"
    assert "password" not in registered.json()["user"]

    login = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "analytical"})
    assert login.status_code == 200
    token = login.json()["accessToken"]
    assert login.cookies.get("access_token") == token

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["email"] == "ada@example.com"
    assert me.json()["lastLogin"] is not None


async def test_duplicate_email_conflicts(client, volunteer):
    response = await client.post(
        "/api/auth/register",
        json={"firstName": "V", "lastName": "Two", "email": volunteer.email, "password": "another1"},
    )
    assert response.status_code == 409


async def test_wrong_password_is_unauthorized(client, volunteer):
    response = await client.post("/api/auth/login", json={"email": volunteer.email, "password": "nope"})
    assert response.status_code == 401


async def test_inactive_user_cannot_log_in(client, make_user):
    user = await make_user("sleepy@example.com", status="inactive")
    response = await client.post("/api/auth/login", json={"email": user.email, "password": TEST_PASSWORD})
    assert response.status_code == 401


async def test_invalid_token_is_rejected(client):
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


async def test_cookie_authentication(client, volunteer, auth_headers):
    token = auth_headers(volunteer)["Authorization"].split(" ")[1]
    client.cookies.set("access_token", token)

    response = await client.get("/api/auth/me")
    assert response.status_code == 200
    assert response.json()["id"] == str(volunteer.id)


async def test_change_password(client, volunteer, volunteer_headers):
    wrong = await client.patch(
        "/api/auth/change-password",
        json={"currentPassword": "incorrect", "newPassword": "brandnew1"},
        headers=volunteer_headers,
    )
    assert wrong.status_code == 401

    same = await client.patch(
        "/api/auth/change-password",
        json={"currentPassword": TEST_PASSWORD, "newPassword": TEST_PASSWORD},
        headers=volunteer_headers,
    )
    assert same.status_code == 400

    changed = await client.patch(
        "/api/auth/change-password",
        json={"currentPassword": TEST_PASSWORD, "newPassword": "brandnew1"},
        headers=volunteer_headers,
    )
    assert changed.status_code == 200

    login = await client.post("/api/auth/login", json={"email": volunteer.email, "password": "brandnew1"})
    assert login.status_code == 200


async def test_refresh_and_logout(client, volunteer_headers):
    refreshed = await client.post("/api/auth/refresh-token", headers=volunteer_headers)
    assert refreshed.status_code == 200
    assert refreshed.json()["accessToken"]

    logout = await client.post("/api/auth/logout")
    assert logout.status_code == 200
