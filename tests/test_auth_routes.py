import logging

import pytest
from fastapi.testclient import TestClient

from authcore.main import create_app
from authcore.repositories.memory import MemoryCredentialStore

from conftest import make_settings

PASSWORD = "Secret123!"
REFRESH_COOKIE = "__Host-refresh_token"
CSRF_COOKIE = "__Host-csrf_token"


@pytest.fixture
def client():
    app = create_app(make_settings(), store=MemoryCredentialStore())
    with TestClient(app, base_url="https://testserver") as test_client:
        yield test_client


def _register(client, email="a@x.com", password=PASSWORD):
    return client.post("/api/v1/auth/register", json={"email": email, "password": password})


def _login(client, email="a@x.com", password=PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


def test_register_created(client):
    response = _register(client)
    assert response.status_code == 201
    assert response.json() == {"user": {"email": "a@x.com", "role": "user"}}


def test_register_ignores_requested_role(client):
    response = client.post(
        "/api/v1/auth/register",
        json={"email": "a@x.com", "password": PASSWORD, "role": "admin"},
    )
    assert response.status_code == 201
    assert response.json()["user"]["role"] == "user"


def test_register_duplicate_conflict(client):
    _register(client)
    response = _register(client, email="A@X.com")
    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "email_exists"


def test_register_weak_password(client):
    response = _register(client, password="password1")
    assert response.status_code == 400
    assert response.json()["code"] == "weak_password"


def test_register_invalid_email(client):
    response = _register(client, email="not-an-email")
    assert response.status_code == 422


def test_login_sets_refresh_cookie(client):
    _register(client)
    response = _login(client)
    assert response.status_code == 200

    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == 15 * 60
    assert body["user"] == {"email": "a@x.com", "role": "user"}

    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"{REFRESH_COOKIE}={body['refresh_token']}")
    lowered = cookie.lower()
    assert "httponly" in lowered
    assert "secure" in lowered
    assert "samesite=strict" in lowered
    assert "path=/" in lowered
    assert "max-age=604800" in lowered


def test_login_invalid_then_locked(client):
    _register(client)
    for _ in range(5):
        response = _login(client, password="Wrong123!")
        assert response.status_code == 401
        assert response.json()["code"] == "invalid_credentials"

    response = _login(client)
    assert response.status_code == 423
    assert response.json()["code"] == "account_locked"
    assert int(response.headers["retry-after"]) in (59, 60)


def test_unknown_user_gets_same_response(client):
    _register(client)
    known = _login(client, password="Wrong123!")
    unknown = _login(client, email="ghost@x.com", password="Wrong123!")
    assert known.status_code == unknown.status_code == 401
    assert known.json()["error"] == unknown.json()["error"]


def test_refresh_with_body_rotates(client):
    _register(client)
    first = _login(client).json()
    client.cookies.clear()

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert response.status_code == 200
    second = response.json()
    assert second["refresh_token"] != first["refresh_token"]

    client.cookies.clear()
    replay = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["code"] == "invalid_token"


def test_refresh_from_cookie_requires_csrf(client):
    _register(client)
    _login(client)

    response = client.post("/api/v1/auth/refresh")
    assert response.status_code == 403

    csrf = client.get("/api/v1/auth/csrf-token").json()["csrf_token"]
    assert client.cookies.get(CSRF_COOKIE) == csrf

    response = client.post("/api/v1/auth/refresh", headers={"X-CSRF-Token": csrf})
    assert response.status_code == 200
    assert client.cookies.get(REFRESH_COOKIE) == response.json()["refresh_token"]


def test_refresh_without_any_token(client):
    response = client.post("/api/v1/auth/refresh")
    assert response.status_code == 401


def test_me(client):
    _register(client)
    access = _login(client).json()["access_token"]

    response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {access}"})
    assert response.status_code == 200
    assert response.json()["email"] == "a@x.com"
    assert response.json()["role"] == "user"


def test_me_requires_valid_bearer(client):
    assert client.get("/api/v1/auth/me").status_code == 401

    response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["code"] == "invalid_token"
    assert response.headers["www-authenticate"] == "Bearer"


def test_logout_revokes_and_is_idempotent(client):
    _register(client)
    token = _login(client).json()["refresh_token"]
    client.cookies.clear()

    response = client.post("/api/v1/auth/logout", json={"refresh_token": token})
    assert response.status_code == 204
    assert client.post("/api/v1/auth/logout", json={"refresh_token": token}).status_code == 204
    assert client.post("/api/v1/auth/logout", json={"refresh_token": "unknown"}).status_code == 204

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": token})
    assert response.status_code == 401


def test_admin_ping_requires_admin():
    settings = make_settings(ADMIN_EMAIL="root@x.com", ADMIN_PASSWORD="Adm1nPass!word")
    app = create_app(settings, store=MemoryCredentialStore())
    with TestClient(app, base_url="https://testserver") as client:
        _register(client)
        user_access = _login(client).json()["access_token"]
        response = client.get("/api/v1/auth/admin/ping", headers={"Authorization": f"Bearer {user_access}"})
        assert response.status_code == 403

        admin_access = _login(client, "root@x.com", "Adm1nPass!word").json()["access_token"]
        response = client.get("/api/v1/auth/admin/ping", headers={"Authorization": f"Bearer {admin_access}"})
        assert response.status_code == 200
        assert response.json() == {"ok": True, "email": "root@x.com"}


def test_health_and_metrics(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["store"] == {"driver": "memory", "ok": True}
    assert health.headers["x-content-type-options"] == "nosniff"

    _register(client)
    _login(client)
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "authcore_login_attempts_total" in metrics.text


def test_empty_body_token_is_invalid_token(client):
    response = client.post("/api/v1/auth/refresh", json={"refresh_token": ""})
    assert response.status_code == 401
    assert response.json()["code"] == "invalid_token"


def test_app_factory_enables_audit_log(caplog):
    logging.getLogger("authcore").setLevel(logging.NOTSET)

    app = create_app(make_settings(), store=MemoryCredentialStore())
    assert logging.getLogger("authcore.audit").isEnabledFor(logging.INFO)

    with TestClient(app, base_url="https://testserver") as client:
        _register(client)
        _login(client)

    messages = [r.getMessage() for r in caplog.records if r.name == "authcore.audit"]
    assert any(m.startswith("auth.register email=a@x.com") for m in messages)
    assert any(m.startswith("auth.login.success email=a@x.com") for m in messages)
