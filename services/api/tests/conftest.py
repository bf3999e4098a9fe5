"""Pytest configuration and fixtures"""
import os
import tempfile
from typing import Callable, Generator

# settings are read at import time; configure before anything from admin_api loads
_TMP = tempfile.mkdtemp(prefix="admin_api_tests_")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP, 'test.db')}")
os.environ.setdefault("SESSION_SECRET", "test-pepper-not-for-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ADMIN_COOKIE_SECURE", "false")
os.environ.setdefault("ADMIN_LOGIN_RATE_LIMIT", "1000")
os.environ.setdefault("ADMIN_BOOTSTRAP_TOKEN", "bootstrap-test-token")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from admin_api import models, security
from admin_api.admin_auth import hash_password
from admin_api.background import side_effects
from admin_api.db import Base, SessionLocal, engine
from admin_api.main import app
from admin_api.ratelimit import MemoryRateLimiter
from admin_api.rbac import seed_default_roles
from admin_api.sessions import RequestMeta

DEFAULT_PASSWORD = "correct-horse-battery"


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema + system roles for each test"""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    seed_default_roles(db)
    db.commit()
    try:
        yield db
    finally:
        side_effects.flush(timeout=10)
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def fresh_limiter() -> Generator[MemoryRateLimiter, None, None]:
    """Rate-limit windows never leak between tests"""
    previous = security.guard.limiter
    limiter = MemoryRateLimiter()
    security.guard.limiter = limiter
    yield limiter
    security.guard.limiter = previous


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def meta() -> RequestMeta:
    return RequestMeta(ip="203.0.113.7", user_agent="pytest", device_info={"raw": "pytest"})


@pytest.fixture
def make_admin(db: Session) -> Callable[..., models.AdminUser]:
    """Factory: make_admin("a@x.com", role="moderator", totp_secret=..., is_active=...)"""

    def _make(
        email: str,
        password: str = DEFAULT_PASSWORD,
        role: str = "admin",
        *,
        is_active: bool = True,
        totp_secret: str | None = None,
    ) -> models.AdminUser:
        r = db.query(models.AdminRole).filter(models.AdminRole.name == role).one()
        u = models.AdminUser(
            email=email,
            display_name=email.split("@")[0],
            password_hash=hash_password(password),
            role_id=r.id,
            is_active=is_active,
            failed_attempts=0,
            totp_secret=totp_secret,
            totp_enabled=totp_secret is not None,
        )
        db.add(u)
        db.commit()
        return u

    return _make


@pytest.fixture
def drain() -> Callable[[], None]:
    """Wait for queued audit writes / activity touches"""

    def _drain() -> None:
        assert side_effects.flush(timeout=10)

    return _drain


@pytest.fixture
def login_token(client: TestClient) -> Callable[..., str]:
    """Log in over HTTP and return the bearer token"""

    def _login(email: str, password: str = DEFAULT_PASSWORD) -> str:
        response = client.post("/v1/admin/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()["token"]

    return _login
