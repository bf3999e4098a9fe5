"""Tests for the /v1/admin/auth endpoints"""
from datetime import datetime, timedelta

import pyotp
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from admin_api import models, routes_admin_auth, security
from admin_api.main import app
from admin_api.guard import security_headers
from admin_api.ratelimit import MemoryRateLimiter

from conftest import DEFAULT_PASSWORD


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _assert_security_headers(response):
    for k, v in security_headers().items():
        assert response.headers[k] == v


def test_health(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_login_sets_cookie_and_returns_token(client: TestClient, make_admin):
    make_admin("a@x.com")
    response = client.post("/v1/admin/auth/login", json={"email": "a@x.com", "password": DEFAULT_PASSWORD})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["token"].startswith("adm_")
    assert data["admin"]["email"] == "a@x.com"
    assert data["role"]["name"] == "admin"
    assert "password_hash" not in data["admin"]

    set_cookie = response.headers["set-cookie"]
    assert set_cookie.startswith("admin_session=")
    assert "HttpOnly" in set_cookie
    assert "SameSite=lax" in set_cookie
    _assert_security_headers(response)


def test_login_failure_body(client: TestClient, make_admin):
    make_admin("a@x.com")
    response = client.post("/v1/admin/auth/login", json={"email": "a@x.com", "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": "Invalid credentials",
        "code": "invalid_credentials",
        "remaining_attempts": 4,
    }
    _assert_security_headers(response)


def test_login_lockout_over_http(client: TestClient, make_admin):
    make_admin("a@x.com")
    for _ in range(5):
        client.post("/v1/admin/auth/login", json={"email": "a@x.com", "password": "wrong-password"})

    response = client.post("/v1/admin/auth/login", json={"email": "a@x.com", "password": DEFAULT_PASSWORD})
    assert response.status_code == 401
    assert response.json()["code"] == "account_locked"
    assert response.json()["retry_after_minutes"] == 30


def test_login_requires_2fa(client: TestClient, make_admin):
    secret = pyotp.random_base32()
    make_admin("a@x.com", totp_secret=secret)

    response = client.post("/v1/admin/auth/login", json={"email": "a@x.com", "password": DEFAULT_PASSWORD})
    assert response.status_code == 200
    assert response.json() == {"success": False, "requires_2fa": True}
    assert "set-cookie" not in response.headers

    response = client.post(
        "/v1/admin/auth/login",
        json={"email": "a@x.com", "password": DEFAULT_PASSWORD, "totp_code": pyotp.TOTP(secret).now()},
    )
    assert response.status_code == 200
    assert response.json()["success"] is True


def test_login_rate_limited(client: TestClient, make_admin, monkeypatch):
    make_admin("a@x.com")
    monkeypatch.setattr(security.settings, "ADMIN_LOGIN_RATE_LIMIT", 2)
    security.guard.limiter = MemoryRateLimiter()

    for _ in range(2):
        client.post("/v1/admin/auth/login", json={"email": "a@x.com", "password": "wrong-password"})
    response = client.post("/v1/admin/auth/login", json={"email": "a@x.com", "password": DEFAULT_PASSWORD})

    assert response.status_code == 429
    assert response.json()["code"] == "rate_limited"
    assert int(response.headers["Retry-After"]) >= 1
    _assert_security_headers(response)


def test_session_endpoint_with_cookie_and_bearer(client: TestClient, make_admin, login_token):
    make_admin("a@x.com", role="moderator")
    token = login_token("a@x.com")

    # cookie from the login response
    response = client.get("/v1/admin/auth/session")
    assert response.status_code == 200
    assert response.json()["admin"]["email"] == "a@x.com"
    assert response.json()["role"]["name"] == "moderator"
    _assert_security_headers(response)

    client.cookies.clear()
    assert client.get("/v1/admin/auth/session").status_code == 401
    assert client.get("/v1/admin/auth/session", headers=_bearer(token)).status_code == 200


def test_logout_invalidates_and_clears_cookie(client: TestClient, db: Session, make_admin, login_token, drain):
    make_admin("a@x.com")
    token = login_token("a@x.com")

    response = client.post("/v1/admin/auth/logout", headers=_bearer(token))
    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert 'admin_session=""' in response.headers["set-cookie"] or "Max-Age=0" in response.headers["set-cookie"]

    client.cookies.clear()
    assert client.get("/v1/admin/auth/session", headers=_bearer(token)).status_code == 401

    drain()
    assert db.query(models.AdminAuditLog).filter(models.AdminAuditLog.action_type == "admin_logout").count() == 1


def test_logout_without_token_still_succeeds(client: TestClient):
    response = client.post("/v1/admin/auth/logout")
    assert response.status_code == 200
    assert response.json() == {"success": True}


def test_logout_all(client: TestClient, make_admin, login_token):
    make_admin("a@x.com")
    first = login_token("a@x.com")
    second = login_token("a@x.com")
    client.cookies.clear()

    response = client.post("/v1/admin/auth/logout-all", headers=_bearer(second))
    assert response.status_code == 200
    assert response.json()["sessions_revoked"] == 2
    assert client.get("/v1/admin/auth/session", headers=_bearer(first)).status_code == 401


def test_password_change(client: TestClient, make_admin, login_token):
    make_admin("a@x.com")
    token = login_token("a@x.com")
    client.cookies.clear()

    response = client.post(
        "/v1/admin/auth/password",
        json={"current_password": DEFAULT_PASSWORD, "new_password": "short"},
        headers=_bearer(token),
    )
    assert response.status_code == 400

    response = client.post(
        "/v1/admin/auth/password",
        json={"current_password": DEFAULT_PASSWORD, "new_password": "an-even-longer-password"},
        headers=_bearer(token),
    )
    assert response.status_code == 200
    assert client.get("/v1/admin/auth/session", headers=_bearer(token)).status_code == 401
    assert login_token("a@x.com", "an-even-longer-password")


def test_totp_enrollment(client: TestClient, make_admin, login_token):
    make_admin("a@x.com")
    token = login_token("a@x.com")
    client.cookies.clear()

    response = client.post("/v1/admin/auth/2fa/start", headers=_bearer(token))
    assert response.status_code == 200
    secret = response.json()["secret"]
    assert response.json()["otpauth_uri"].startswith("otpauth://totp/")

    qr = client.get("/v1/admin/auth/2fa/qr", headers=_bearer(token))
    assert qr.status_code == 200
    assert qr.headers["content-type"] == "image/png"
    assert qr.content[:4] == b"\x89PNG"
    _assert_security_headers(qr)

    bad = client.post("/v1/admin/auth/2fa/confirm", json={"code": "abcdef"}, headers=_bearer(token))
    assert bad.status_code == 401
    assert bad.json()["code"] == "invalid_2fa_code"

    ok = client.post("/v1/admin/auth/2fa/confirm", json={"code": pyotp.TOTP(secret).now()}, headers=_bearer(token))
    assert ok.status_code == 200

    response = client.post("/v1/admin/auth/login", json={"email": "a@x.com", "password": DEFAULT_PASSWORD})
    assert response.json() == {"success": False, "requires_2fa": True}

    off = client.post(
        "/v1/admin/auth/2fa/disable",
        json={"password": DEFAULT_PASSWORD, "code": pyotp.TOTP(secret).now()},
        headers=_bearer(token),
    )
    assert off.status_code == 200
    assert login_token("a@x.com")


def test_bootstrap(client: TestClient, db: Session):
    payload = {"email": "root@x.com", "password": "first-admin-password"}

    assert client.post("/v1/admin/auth/bootstrap", json=payload).status_code == 401

    headers = {"X-Bootstrap-Token": "bootstrap-test-token"}
    response = client.post("/v1/admin/auth/bootstrap", json=payload, headers=headers)
    assert response.status_code == 200
    assert response.json()["admin"]["email"] == "root@x.com"

    again = client.post("/v1/admin/auth/bootstrap", json=payload, headers=headers)
    assert again.status_code == 409
    assert again.json()["code"] == "conflict"
    _assert_security_headers(again)

    u = db.query(models.AdminUser).filter(models.AdminUser.email == "root@x.com").one()
    assert u.role.name == "super_admin"


def test_request_id_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-Id": "req-123"})
    assert response.headers["X-Request-Id"] == "req-123"


def test_logout_of_locked_admin_is_audited(client: TestClient, db: Session, make_admin, login_token, drain):
    """Locking an admin after login must not hide their logout from the ledger"""
    admin = make_admin("l@x.com")
    token = login_token("l@x.com")

    admin.locked_until = datetime.utcnow() + timedelta(minutes=30)
    db.commit()

    response = client.post("/v1/admin/auth/logout", headers=_bearer(token))
    assert response.status_code == 200

    drain()
    db.expire_all()
    events = db.query(models.AdminAuditLog).filter(models.AdminAuditLog.action_type == "admin_logout").all()
    assert len(events) == 1
    assert events[0].admin_id == admin.id
    assert events[0].admin_email == "l@x.com"
    assert events[0].session_id is not None


def test_logout_of_disabled_admin_is_audited(client: TestClient, db: Session, make_admin, login_token, drain):
    admin = make_admin("d@x.com")
    token = login_token("d@x.com")

    admin.is_active = False
    db.commit()

    assert client.post("/v1/admin/auth/logout", headers=_bearer(token)).status_code == 200
    drain()
    db.expire_all()
    assert db.query(models.AdminAuditLog).filter(
        models.AdminAuditLog.action_type == "admin_logout",
        models.AdminAuditLog.admin_id == admin.id,
    ).count() == 1


def test_unexpected_login_result_is_a_server_error(db: Session, make_admin, monkeypatch):
    """An unknown login outcome yields 500, never a token-less success"""
    make_admin("a@x.com")
    monkeypatch.setattr(routes_admin_auth, "do_login", lambda db, **kw: object())

    raw = TestClient(app, raise_server_exceptions=False)
    response = raw.post("/v1/admin/auth/login", json={"email": "a@x.com", "password": DEFAULT_PASSWORD})
    assert response.status_code == 500
    assert "token" not in response.text
