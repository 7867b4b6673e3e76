from fastapi.testclient import TestClient

from spendee.main import SESSION_COOKIE_NAME, app


def test_register_login_me_logout() -> None:
    client = TestClient(app)
    reg_res = client.post(
        "/api/v1/auth/register",
        json={"email": "Owner@Example.com", "password": "Secret123!", "fullName": "Owner"},
    )
    assert reg_res.status_code == 201
    assert reg_res.json()["email"] == "owner@example.com"
    assert SESSION_COOKIE_NAME in reg_res.cookies

    dup_res = client.post("/api/v1/auth/register", json={"email": "owner@example.com", "password": "Secret123!"})
    assert dup_res.status_code == 409

    bad_login = client.post("/api/v1/auth/login", json={"email": "owner@example.com", "password": "Wrong1234!"})
    assert bad_login.status_code == 401

    login_res = client.post("/api/v1/auth/login", json={"email": "owner@example.com", "password": "Secret123!"})
    assert login_res.status_code == 200
    token = login_res.json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    me_res = client.get("/api/v1/auth/me", headers=headers)
    assert me_res.status_code == 200
    assert me_res.json()["fullName"] == "Owner"

    logout_res = client.post("/api/v1/auth/logout", headers=headers)
    assert logout_res.status_code == 200
    assert client.get("/api/v1/categories", headers=headers).status_code == 401


def test_session_cookie_authenticates() -> None:
    client = TestClient(app)
    res = client.post(
        "/api/v1/auth/register", json={"email": "cookie-user@example.com", "password": "Secret123!"}
    )
    assert res.status_code == 201
    assert client.get("/api/v1/categories").status_code == 200


def test_api_requires_session() -> None:
    client = TestClient(app)
    assert client.get("/api/v1/health").json() == {"status": "ok"}
    for path in ("/api/v1/categories", "/api/v1/budgets", "/api/v1/transactions", "/api/v1/savings", "/api/v1/summary"):
        res = client.get(path)
        assert res.status_code == 401
        assert res.json() == {"detail": "authentication required"}
    res = client.get("/api/v1/categories", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401
