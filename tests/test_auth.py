def test_register_creates_user_with_trial(client):
    resp = client.post("/api/auth/register", json={
        "email": "Bob@Example.com", "name": "Bob", "password": "supersecret",
    })
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    user = body["data"]["user"]
    assert user["email"] == "bob@example.com"
    assert user["subscription"]["tier"] == "STARTER"
    assert user["subscription"]["status"] == "TRIALING"
    assert "password" not in str(body)


def test_register_duplicate_email(client, user):
    resp = client.post("/api/auth/register", json={
        "email": "alice@example.com", "name": "Alice again", "password": "supersecret",
    })
    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "error": {"message": "User with this email already exists", "code": None},
    }


def test_register_short_password_is_validation_error(client):
    resp = client.post("/api/auth/register", json={"email": "c@example.com", "name": "C", "password": "short"})
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["message"].startswith("Validation error: password")


def test_login_returns_bearer_token(client, user):
    resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "correct-horse"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["tokenType"] == "bearer"
    assert data["user"]["id"] == user.id

    profile = client.get("/api/user/profile", headers={"Authorization": f"Bearer {data['accessToken']}"})
    assert profile.status_code == 200
    assert profile.json()["data"]["user"]["email"] == "alice@example.com"


def test_login_wrong_password(client, user):
    resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "Invalid email or password"


def test_protected_route_requires_token(client):
    resp = client.get("/api/user/profile")
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "Unauthorized"

    resp = client.get("/api/user/profile", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_usage_reports_tier_limits(client, user, auth_headers, make_account):
    make_account(user, "TWITTER")
    resp = client.get("/api/user/usage", headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["postsUsed"] == 0
    assert data["accountsConnected"] == 1
    assert data["tier"] == "STARTER"
    assert data["limits"] == {"accounts": 3, "posts": 50}


def test_request_id_is_echoed(client):
    resp = client.get("/", headers={"X-Request-ID": "req-123"})
    assert resp.status_code == 200
    assert resp.headers["X-Request-ID"] == "req-123"
