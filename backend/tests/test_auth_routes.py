import pytest
from fastapi.testclient import TestClient

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from authcore.config import FailPolicy
from authcore.core.database import get_db
from authcore.main import app
from authcore.models.audit import AuditLog
from authcore.models.session import AuthSession
from authcore.services import lockout_guard as lockout_guard_module
from authcore.services.auth_gateway import auth_gateway

PASSWORD = "correct-horse-battery"


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _login(client, email="staff@example.com", password=PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_login_returns_tokens_and_sets_refresh_cookie(client, make_account):
    make_account()
    response = _login(client)

    assert response.status_code == 200
    body = response.json()
    assert body["tokenType"] == "bearer"
    assert body["expiresIn"] == 15 * 60
    assert body["user"]["email"] == "staff@example.com"
    assert "password_hash" not in body["user"]

    cookie = response.headers["set-cookie"].lower()
    assert cookie.startswith("refreshtoken=")
    assert "httponly" in cookie
    assert "samesite=strict" in cookie
    assert "path=/" in cookie
    assert "max-age=604800" in cookie


def test_failed_logins_share_one_message(client, make_account):
    make_account()
    unknown = client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    wrong = _login(client, password="wrong-password")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json()["error"] == wrong.json()["error"]
    assert unknown.json()["code"] == "INVALID_CREDENTIALS"


def test_locked_account_returns_423_with_retry_after(client, make_account):
    make_account()
    for _ in range(10):
        assert _login(client, password="wrong-password").status_code == 401

    response = _login(client)
    assert response.status_code == 423
    assert response.json()["code"] == "ACCOUNT_LOCKED"
    assert "retry_at" in response.json()["details"]
    assert 1700 <= int(response.headers["retry-after"]) <= 1800


def test_me_requires_bearer_token(client):
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_INVALID"


def test_second_login_terminates_first_access_token(client, make_account):
    make_account()
    first = _login(client).json()
    second = _login(client).json()

    stale = client.get("/api/v1/auth/me", headers=_bearer(first["accessToken"]))
    assert stale.status_code == 401
    assert stale.json()["code"] == "SESSION_TERMINATED"

    fresh = client.get("/api/v1/auth/me", headers=_bearer(second["accessToken"]))
    assert fresh.status_code == 200
    assert fresh.json()["email"] == "staff@example.com"

    replay = client.post("/api/v1/auth/refresh", json={"refreshToken": first["refreshToken"]})
    assert replay.status_code == 401
    assert replay.json()["code"] == "SESSION_TERMINATED"


def test_refresh_reads_cookie_when_body_is_empty(client, make_account):
    make_account()
    _login(client)

    response = client.post("/api/v1/auth/refresh")
    assert response.status_code == 200
    assert client.get("/api/v1/auth/me", headers=_bearer(response.json()["accessToken"])).status_code == 200


def test_refresh_without_token_is_invalid(client):
    client.cookies.clear()
    response = client.post("/api/v1/auth/refresh", json={})
    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_INVALID"


def test_logout_revokes_session(client, make_account):
    make_account()
    tokens = _login(client).json()

    response = client.post("/api/v1/auth/logout", headers=_bearer(tokens["accessToken"]))
    assert response.status_code == 200
    assert response.json()["sessionRevoked"] is True

    after = client.get("/api/v1/auth/me", headers=_bearer(tokens["accessToken"]))
    assert after.json()["code"] == "SESSION_TERMINATED"


def test_audit_endpoints_require_admin(client, db_session, make_account):
    staff = make_account()
    tokens = _login(client).json()

    response = client.get("/api/v1/audit", headers=_bearer(tokens["accessToken"]))
    assert response.status_code == 403

    denied = db_session.execute(
        select(AuditLog).where(AuditLog.action == "access.denied")
    ).scalars().all()
    assert len(denied) == 1
    assert denied[0].account_id == staff.id
    assert denied[0].account_role == "staff"


def test_admin_reads_and_verifies_audit_log(client, make_account):
    make_account(email="admin@example.com", role="admin")
    tokens = _login(client, email="admin@example.com").json()

    entries = client.get("/api/v1/audit", headers=_bearer(tokens["accessToken"]))
    assert entries.status_code == 200
    assert entries.json()[0]["action"] == "auth.login"
    assert entries.json()[0]["account_email"] == "admin@example.com"

    verify = client.get("/api/v1/audit/verify", headers=_bearer(tokens["accessToken"]))
    assert verify.json() == {"ok": True, "checked": 1, "broken_at": None, "reason": None}


def test_admin_deletes_account_and_keeps_its_audit_trail(client, make_account):
    make_account(email="admin@example.com", role="admin")
    staff = make_account()
    staff_id = staff.id
    _login(client)
    admin_tokens = _login(client, email="admin@example.com").json()
    headers = _bearer(admin_tokens["accessToken"])

    response = client.delete(f"/api/v1/accounts/{staff_id}", headers=headers)
    assert response.status_code == 200

    entries = client.get("/api/v1/audit", params={"action": "auth.login"}, headers=headers).json()
    staff_login = next(e for e in entries if e["account_email"] == "staff@example.com")
    assert staff_login["account_id"] is None
    assert client.get("/api/v1/audit/verify", headers=headers).json()["ok"] is True

    missing = client.delete(f"/api/v1/accounts/{staff_id}", headers=headers)
    assert missing.status_code == 404


def test_metrics_endpoint_exposes_login_counter(client, make_account):
    make_account()
    _login(client)
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "authcore_login_attempts_total" in response.text


def test_lockout_storage_failure_returns_503(client, db_session, make_account, monkeypatch):
    make_account()

    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database unavailable"))
    monkeypatch.setattr(lockout_guard_module, "select", broken)
    monkeypatch.setattr(auth_gateway.lockout, "fail_policy", FailPolicy.FAIL_CLOSED)

    response = _login(client)

    assert response.status_code == 503
    assert response.json()["code"] == "AUTH_UNAVAILABLE"
    assert db_session.execute(select(AuditLog)).scalars().all() == []
    assert db_session.execute(select(AuthSession)).scalars().all() == []


def test_malformed_login_body_is_rejected_by_request_validation(client):
    response = client.post("/api/v1/auth/login", json={"email": "staff@example.com"})

    assert response.status_code == 422
    assert response.json()["error"] == "Validation failed"
    fields = [error["field"] for error in response.json()["details"]["errors"]]
    assert "body.password" in fields
