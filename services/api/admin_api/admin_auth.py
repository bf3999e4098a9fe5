# services/api/admin_api/admin_auth.py

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from passlib.context import CryptContext
from sqlalchemy import case, func, update
from sqlalchemy.orm import Session as OrmSession

from .audit import AuditCategory, AuditEvent, append_event
from .config import settings
from .errors import (
    AccountDisabled, AccountLocked, AdminAuthError, BadRequest, Conflict,
    InvalidCredentials, InvalidSecondFactorCode,
)
from .rbac import seed_default_roles
from .second_factor import verify_code
from .sessions import RequestMeta, create_session, invalidate_all_sessions
from . import models

LOG = logging.getLogger("admin_api.auth")

pwd = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=int(settings.BCRYPT_ROUNDS))

def hash_password(pw: str) -> str:
    return pwd.hash(pw)

def verify_password(pw: str, pw_hash: str | None) -> bool:
    if not pw_hash:
        return False
    try:
        return pwd.verify(pw, pw_hash)
    except (ValueError, TypeError):
        # unknown / malformed hash
        return False

def _now() -> datetime:
    return datetime.utcnow()

def normalize_email(email: str) -> str:
    return (email or "").strip().lower()

def get_admin_by_email(db: OrmSession, email: str) -> Optional[models.AdminUser]:
    return (
        db.query(models.AdminUser)
        .filter(func.lower(models.AdminUser.email) == normalize_email(email))
        .populate_existing()
        .first()
    )

def admin_public(u: models.AdminUser) -> Dict[str, Any]:
    # password_hash / totp_secret never leave this module
    return {
        "id": u.id,
        "email": u.email,
        "display_name": u.display_name,
        "role_id": u.role_id,
        "is_active": bool(u.is_active),
        "is_2fa_enabled": bool(u.totp_enabled),
        "last_login_at": u.last_login_at.isoformat() if u.last_login_at else None,
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }

def role_public(r: models.AdminRole | None) -> Dict[str, Any] | None:
    if r is None:
        return None
    return {
        "id": r.id,
        "name": r.name,
        "display_name": r.display_name,
        "permissions": r.permissions or {},
    }

# --------------------------
# Login results
# --------------------------

@dataclass
class LoginSuccess:
    admin: Dict[str, Any]
    role: Dict[str, Any] | None
    token: str
    session_id: int
    expires_at: datetime

@dataclass
class SecondFactorRequired:
    requires_2fa: bool = True

@dataclass
class LoginFailure:
    error: AdminAuthError
    remaining_attempts: int | None = field(default=None)

LoginResult = Union[LoginSuccess, SecondFactorRequired, LoginFailure]

def _auth_event(action_type: str, meta: RequestMeta, **kw) -> AuditEvent:
    return AuditEvent(
        category=AuditCategory.AUTH,
        action_type=action_type,
        target_type="admin",
        ip=meta.ip,
        user_agent=meta.user_agent,
        **kw,
    )

def _register_failure(db: OrmSession, admin_id: int, now: datetime, *, counter: str, max_attempts: int) -> int:
    """
    Single atomic UPDATE: increment and (at the threshold) lock in the same statement,
    so concurrent bad attempts on one account are all counted.
    """
    column = getattr(models.AdminUser, counter)
    lock_until = now + timedelta(minutes=int(settings.ADMIN_LOCKOUT_MIN))
    new_count = column + 1

    attempts = db.execute(
        update(models.AdminUser)
        .where(models.AdminUser.id == admin_id)
        .values({
            counter: new_count,
            "locked_until": case(
                (new_count >= int(max_attempts), lock_until),
                else_=models.AdminUser.locked_until,
            ),
        })
        .returning(column)
        .execution_options(synchronize_session=False)
    ).scalar_one()
    db.commit()
    return int(attempts)

def _register_failed_password(db: OrmSession, admin_id: int, now: datetime) -> int:
    return _register_failure(
        db, admin_id, now,
        counter="failed_attempts", max_attempts=settings.ADMIN_MAX_LOGIN_ATTEMPTS,
    )

def _register_failed_second_factor(db: OrmSession, admin_id: int, now: datetime) -> int:
    return _register_failure(
        db, admin_id, now,
        counter="failed_2fa_attempts", max_attempts=settings.ADMIN_MAX_2FA_ATTEMPTS,
    )

def _refuse_inactive(u: models.AdminUser, meta: RequestMeta, reason: str) -> LoginFailure:
    append_event(_auth_event(
        "admin_login_failed", meta,
        admin_id=u.id, admin_email=u.email, target_id=str(u.id),
        reason=reason,
    ))
    if settings.ADMIN_DISCLOSE_DISABLED:
        return LoginFailure(AccountDisabled())
    return LoginFailure(InvalidCredentials())

def login(
    db: OrmSession,
    *,
    email: str,
    password: str,
    totp_code: str | None,
    meta: RequestMeta,
) -> LoginResult:
    email_n = normalize_email(email)
    u = get_admin_by_email(db, email_n)

    if u is None:
        # same answer as a wrong password: never reveal whether the email exists
        append_event(_auth_event(
            "admin_login_failed", meta,
            admin_email=email_n,
            target_details={"email": email_n},
            reason="Invalid credentials",
        ))
        return LoginFailure(InvalidCredentials())

    now = _now()

    if u.locked_until is not None and u.locked_until > now:
        remaining = max(1, math.ceil((u.locked_until - now).total_seconds() / 60))
        append_event(_auth_event(
            "admin_login_failed", meta,
            admin_id=u.id, admin_email=u.email, target_id=str(u.id),
            reason="Account locked",
        ))
        return LoginFailure(AccountLocked(remaining))

    if not u.is_active:
        return _refuse_inactive(u, meta, "Account disabled")

    if not verify_password(password, u.password_hash):
        attempts = _register_failed_password(db, u.id, now)
        remaining = max(0, int(settings.ADMIN_MAX_LOGIN_ATTEMPTS) - attempts)
        append_event(_auth_event(
            "admin_login_failed", meta,
            admin_id=u.id, admin_email=u.email, target_id=str(u.id),
            reason="Invalid password",
            metadata={"attempts": attempts},
        ))
        if remaining == 0:
            LOG.warning("admin_locked_out admin_id=%s attempts=%s", u.id, attempts)
        return LoginFailure(InvalidCredentials(remaining), remaining_attempts=remaining)

    # a session without a role can never validate; don't hand out its token
    if u.role is None:
        return _refuse_inactive(u, meta, "No role assigned")

    if u.totp_enabled:
        if not totp_code:
            return SecondFactorRequired()
        if not verify_code(u.totp_secret, totp_code):
            # own counter; the password counter is left alone
            attempts = _register_failed_second_factor(db, u.id, now)
            append_event(_auth_event(
                "admin_login_failed", meta,
                admin_id=u.id, admin_email=u.email, target_id=str(u.id),
                reason="Invalid 2FA code",
                metadata={"2fa_attempts": attempts},
            ))
            if attempts >= int(settings.ADMIN_MAX_2FA_ATTEMPTS):
                LOG.warning("admin_locked_out_2fa admin_id=%s attempts=%s", u.id, attempts)
            return LoginFailure(InvalidSecondFactorCode())

    try:
        db.execute(
            update(models.AdminUser)
            .where(models.AdminUser.id == u.id)
            .values(
                failed_attempts=0, failed_2fa_attempts=0, locked_until=None,
                last_login_at=now, last_login_ip=meta.ip,
            )
            .execution_options(synchronize_session=False)
        )
        token, s = create_session(db, admin_id=u.id, meta=meta)
        db.commit()
    except Exception:
        # no commit -> no session row -> no token handed out
        db.rollback()
        raise

    db.refresh(u)
    append_event(_auth_event(
        "admin_login", meta,
        admin_id=u.id, admin_email=u.email, target_id=str(u.id),
        session_id=s.id,
    ))
    LOG.info("admin_login_ok admin_id=%s session_id=%s", u.id, s.id)

    return LoginSuccess(
        admin=admin_public(u),
        role=role_public(u.role),
        token=token,
        session_id=s.id,
        expires_at=s.expires_at,
    )

# --------------------------
# Credential maintenance
# --------------------------

def _check_password_policy(pw: str) -> None:
    if len(pw or "") < int(settings.ADMIN_MIN_PASSWORD_LEN):
        raise BadRequest(f"Password must be at least {settings.ADMIN_MIN_PASSWORD_LEN} characters")

def change_password(
    db: OrmSession,
    *,
    admin: models.AdminUser,
    current_password: str,
    new_password: str,
    meta: RequestMeta,
) -> int:
    """
    Re-hash and force a global logout (every session of this admin, the current one included).
    Returns the number of sessions revoked.
    """
    if not verify_password(current_password, admin.password_hash):
        raise InvalidCredentials()
    _check_password_policy(new_password)

    admin.password_hash = hash_password(new_password)
    admin.password_changed_at = _now()
    revoked = invalidate_all_sessions(db, admin.id)
    db.commit()

    append_event(_auth_event(
        "admin_password_changed", meta,
        admin_id=admin.id, admin_email=admin.email, target_id=str(admin.id),
        metadata={"sessions_revoked": revoked},
    ))
    return revoked

def bootstrap_first_admin(
    db: OrmSession,
    *,
    email: str,
    password: str,
    display_name: str | None,
    meta: RequestMeta,
) -> models.AdminUser:
    """
    Provision the very first admin (super_admin) and the system roles.
    Refuses once any admin exists.
    """
    if db.query(models.AdminUser).count() > 0:
        raise Conflict("Admin already initialized")
    _check_password_policy(password)

    roles = seed_default_roles(db)
    u = models.AdminUser(
        email=normalize_email(email),
        display_name=display_name,
        password_hash=hash_password(password),
        role_id=roles["super_admin"].id,
        is_active=True,
        failed_attempts=0,
        totp_enabled=False,
        created_at=_now(),
    )
    db.add(u)
    db.commit()

    append_event(AuditEvent(
        category=AuditCategory.ADMIN_MANAGEMENT,
        action_type="admin_created",
        admin_id=u.id,
        admin_email=u.email,
        target_type="admin",
        target_id=str(u.id),
        reason="bootstrap",
        ip=meta.ip,
        user_agent=meta.user_agent,
    ))
    return u
