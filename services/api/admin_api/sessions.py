# services/api/admin_api/sessions.py

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, NamedTuple, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session as OrmSession

from .background import side_effects
from .config import settings
from . import models

LOG = logging.getLogger("admin_api.sessions")

def _now() -> datetime:
    return datetime.utcnow()

def _new_token(prefix: str) -> str:
    # 32 random bytes = 256 bits of entropy
    return f"{prefix}_{secrets.token_urlsafe(32)}"

def _peppered_sha256(value: str) -> str:
    # stable hash w/ server pepper (SESSION_SECRET)
    h = hashlib.sha256()
    h.update(settings.SESSION_SECRET.encode("utf-8"))
    h.update(b":")
    h.update(value.encode("utf-8"))
    return h.hexdigest()

def hash_token(token: str) -> str:
    return _peppered_sha256(token)

# --------------------------
# Request metadata
# --------------------------

@dataclass(frozen=True)
class RequestMeta:
    ip: str | None = None
    user_agent: str | None = None
    device_info: Dict[str, str] = field(default_factory=dict)

def parse_user_agent(user_agent: str | None) -> Dict[str, str]:
    ua = user_agent or ""
    out = {"raw": ua[:500]}

    if "Windows" in ua:
        out["os"] = "Windows"
    elif "Android" in ua:
        out["os"] = "Android"
    elif "iPhone" in ua or "iPad" in ua or "iOS" in ua:
        out["os"] = "iOS"
    elif "Mac" in ua:
        out["os"] = "macOS"
    elif "Linux" in ua:
        out["os"] = "Linux"

    # order matters: Edge and Chrome UAs also mention Safari
    if "Edg/" in ua or "Edge/" in ua:
        out["browser"] = "Edge"
    elif "Firefox/" in ua:
        out["browser"] = "Firefox"
    elif "Chrome/" in ua:
        out["browser"] = "Chrome"
    elif "Safari/" in ua:
        out["browser"] = "Safari"

    return out

def client_ip(headers: Mapping[str, str], client_host: str | None) -> str | None:
    if settings.TRUST_PROXY_HEADERS:
        fwd = headers.get("x-forwarded-for")
        if fwd:
            first = fwd.split(",")[0].strip()
            if first:
                return first
        real = headers.get("x-real-ip")
        if real:
            return real.strip()
    return client_host

def request_meta(headers: Mapping[str, str], client_host: str | None) -> RequestMeta:
    """
    headers: lower-cased header names -> values (starlette Headers already are).
    """
    h = {k.lower(): v for k, v in headers.items()}
    ua = h.get("user-agent")
    return RequestMeta(
        ip=client_ip(h, client_host),
        user_agent=ua,
        device_info=parse_user_agent(ua),
    )

# --------------------------
# Session manager
# --------------------------

class SessionContext(NamedTuple):
    admin: models.AdminUser
    session: models.AdminSession
    role: models.AdminRole

def create_session(db: OrmSession, *, admin_id: int, meta: RequestMeta) -> Tuple[str, models.AdminSession]:
    """
    Stores only the token hash. The plaintext goes back to the caller once and is never
    re-emitted. Caller commits.
    """
    token = _new_token("adm")
    now = _now()
    s = models.AdminSession(
        admin_id=admin_id,
        token_hash=hash_token(token),
        ip=meta.ip,
        user_agent=meta.user_agent,
        device_info=dict(meta.device_info) or None,
        created_at=now,
        expires_at=now + timedelta(minutes=int(settings.ADMIN_SESSION_TTL_MIN)),
        last_activity_at=now,
        is_active=True,
    )
    db.add(s)
    db.flush()
    return token, s

def _touch_activity(session_id: int, at: datetime):
    def job(db: OrmSession) -> None:
        db.execute(
            update(models.AdminSession)
            .where(models.AdminSession.id == session_id)
            .values(last_activity_at=at)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    return job

def validate_session(db: OrmSession, token: str | None) -> Optional[SessionContext]:
    """
    Unknown, revoked and expired tokens all return None; callers cannot tell them apart.
    Expiry is absolute: validation never moves expires_at.
    """
    if not token:
        return None

    now = _now()
    s = (
        db.query(models.AdminSession)
        .filter(models.AdminSession.token_hash == hash_token(token))
        .filter(models.AdminSession.is_active == True)  # noqa: E712
        .filter(models.AdminSession.expires_at > now)
        .first()
    )
    if s is None:
        return None

    u = db.get(models.AdminUser, s.admin_id)
    if u is None or not u.is_active:
        return None
    if u.locked_until is not None and u.locked_until > now:
        return None

    role = u.role
    if role is None:
        return None

    # best effort, off the request path
    side_effects.submit("session_touch", _touch_activity(s.id, now))

    return SessionContext(admin=u, session=s, role=role)

def invalidate_session(db: OrmSession, token: str | None) -> Optional[models.AdminSession]:
    """
    Logout. Returns the session that was active (for auditing), or None. Caller commits.
    """
    if not token:
        return None
    s = db.query(models.AdminSession).filter(models.AdminSession.token_hash == hash_token(token)).first()
    if s is None:
        return None
    was_active = bool(s.is_active)
    s.is_active = False
    return s if was_active else None

def invalidate_all_sessions(db: OrmSession, admin_id: int) -> int:
    """
    Forced global logout. Returns how many sessions were still active. Caller commits.
    """
    res = db.execute(
        update(models.AdminSession)
        .where(models.AdminSession.admin_id == int(admin_id))
        .where(models.AdminSession.is_active == True)  # noqa: E712
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    LOG.info("admin_sessions_revoked admin_id=%s count=%s", admin_id, res.rowcount)
    return int(res.rowcount or 0)

def session_cookie_kwargs() -> Dict[str, Any]:
    return dict(
        key=settings.ADMIN_COOKIE_NAME,
        httponly=True,
        secure=bool(settings.ADMIN_COOKIE_SECURE),
        samesite=settings.ADMIN_COOKIE_SAMESITE,
        domain=settings.ADMIN_COOKIE_DOMAIN,
        path="/",
        max_age=int(settings.ADMIN_SESSION_TTL_MIN) * 60,
    )
