# services/api/admin_api/routes_admin_auth.py

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session as OrmSession

from .db import get_db
from .config import settings
from .admin_auth import (
    LoginFailure, LoginSuccess, SecondFactorRequired,
    admin_public, bootstrap_first_admin, change_password, login as do_login,
    role_public, verify_password,
)
from .audit import AuditCategory, AuditEvent, append_event
from .errors import BadRequest, InvalidCredentials, InvalidSecondFactorCode
from .guard import AdminContext, GuardRequest, GuardResponse, apply_security_headers, extract_token
from .schemas_admin import (
    BootstrapReq, LoginReq, PasswordChangeReq,
    TotpConfirmReq, TotpDisableReq, TotpStartResp,
)
from .second_factor import generate_secret, provisioning_uri, qr_png, verify_code
from .security import admin_endpoint, login_rate_limit
from .sessions import (
    invalidate_all_sessions, invalidate_session, request_meta,
    session_cookie_kwargs,
)

router = APIRouter(prefix="/v1/admin/auth", tags=["admin-auth"])

def _meta(request: Request):
    return request_meta(request.headers, request.client.host if request.client else None)

def _clear_cookie(response: Response):
    kw = session_cookie_kwargs()
    response.delete_cookie(key=kw["key"], domain=kw["domain"], path=kw["path"])

def _auth_event(action_type: str, ctx: AdminContext, req: GuardRequest, **kw) -> AuditEvent:
    meta = req.meta
    return AuditEvent(
        category=AuditCategory.AUTH,
        action_type=action_type,
        admin_id=ctx.admin.id,
        admin_email=ctx.admin.email,
        target_type="admin",
        target_id=str(ctx.admin.id),
        ip=meta.ip,
        user_agent=meta.user_agent,
        session_id=ctx.session.id,
        **kw,
    )

# --------------------------
# Bootstrap / login / logout
# --------------------------

@router.post("/bootstrap")
def bootstrap(
    payload: BootstrapReq,
    request: Request,
    db: OrmSession = Depends(get_db),
    x_bootstrap_token: str | None = Header(default=None),
):
    if not settings.ADMIN_BOOTSTRAP_TOKEN:
        raise HTTPException(503, "ADMIN_BOOTSTRAP_TOKEN not configured")
    if not x_bootstrap_token or x_bootstrap_token != settings.ADMIN_BOOTSTRAP_TOKEN:
        raise HTTPException(401, "Invalid bootstrap token")

    u = bootstrap_first_admin(
        db,
        email=str(payload.email),
        password=payload.password,
        display_name=payload.display_name,
        meta=_meta(request),
    )
    return {"success": True, "admin": admin_public(u)}

@router.post("/login", dependencies=[Depends(login_rate_limit)])
def login(payload: LoginReq, request: Request, db: OrmSession = Depends(get_db)):
    result = do_login(
        db,
        email=str(payload.email),
        password=payload.password,
        totp_code=payload.totp_code,
        meta=_meta(request),
    )

    if isinstance(result, SecondFactorRequired):
        return JSONResponse({"success": False, "requires_2fa": True})

    if isinstance(result, LoginFailure):
        err = result.error
        return JSONResponse(err.to_body(), status_code=err.status_code, headers=err.headers)

    if not isinstance(result, LoginSuccess):
        raise TypeError(f"unexpected login result: {type(result).__name__}")

    resp = JSONResponse({
        "success": True,
        "token": result.token,
        "admin": result.admin,
        "role": result.role,
        "expires_at": result.expires_at.isoformat(),
    })
    resp.set_cookie(value=result.token, **session_cookie_kwargs())
    return resp

@router.post("/logout")
def logout(request: Request, db: OrmSession = Depends(get_db)):
    token = extract_token(request.headers, request.cookies)
    if token:
        s = invalidate_session(db, token)
        db.commit()
        if s is not None:
            # audited even when the admin has since been locked or disabled
            meta = _meta(request)
            append_event(AuditEvent(
                category=AuditCategory.AUTH,
                action_type="admin_logout",
                admin_id=s.admin_id,
                admin_email=s.admin.email if s.admin else None,
                target_type="admin",
                target_id=str(s.admin_id),
                ip=meta.ip,
                user_agent=meta.user_agent,
                session_id=s.id,
            ))

    resp = JSONResponse({"success": True})
    _clear_cookie(resp)
    apply_security_headers(resp.headers)
    return resp

# --------------------------
# Authenticated-only (no permission needed)
# --------------------------

@router.get("/session")
@admin_endpoint()
def session_info(req: GuardRequest, ctx: AdminContext):
    return {
        "authenticated": True,
        "admin": admin_public(ctx.admin),
        "role": role_public(ctx.role),
        "session": {
            "id": ctx.session.id,
            "created_at": ctx.session.created_at.isoformat(),
            "expires_at": ctx.session.expires_at.isoformat(),
            "ip": ctx.session.ip,
            "device": ctx.session.device_info,
        },
    }

@router.post("/logout-all")
@admin_endpoint()
def logout_all(req: GuardRequest, ctx: AdminContext):
    revoked = invalidate_all_sessions(ctx.db, ctx.admin.id)
    ctx.db.commit()
    append_event(_auth_event("admin_sessions_revoked", ctx, req, metadata={"sessions_revoked": revoked}))
    return {"success": True, "sessions_revoked": revoked}

@router.post("/password")
@admin_endpoint()
def password_change(req: GuardRequest, ctx: AdminContext):
    body = req.parse(PasswordChangeReq)
    revoked = change_password(
        ctx.db,
        admin=ctx.admin,
        current_password=body.current_password,
        new_password=body.new_password,
        meta=req.meta,
    )
    return {"success": True, "sessions_revoked": revoked}

# --------------------------
# 2FA enrollment
# --------------------------

@router.post("/2fa/start")
@admin_endpoint()
def totp_start(req: GuardRequest, ctx: AdminContext):
    u = ctx.admin
    if u.totp_enabled:
        raise BadRequest("2FA already enabled")

    # create/replace secret but do not enable until confirmed
    secret = generate_secret()
    u.totp_secret = secret
    ctx.db.commit()

    append_event(_auth_event("admin_2fa_started", ctx, req))
    return TotpStartResp(ok=True, secret=secret, otpauth_uri=provisioning_uri(u.email, secret)).model_dump()

@router.get("/2fa/qr")
@admin_endpoint()
def totp_qr(req: GuardRequest, ctx: AdminContext):
    """
    PNG QR code for the pending (or enabled) secret.
    """
    u = ctx.admin
    if not u.totp_secret:
        raise BadRequest("2FA not started")
    return GuardResponse(body=qr_png(provisioning_uri(u.email, u.totp_secret)), media_type="image/png")

@router.post("/2fa/confirm")
@admin_endpoint()
def totp_confirm(req: GuardRequest, ctx: AdminContext):
    body = req.parse(TotpConfirmReq)
    u = ctx.admin
    if not u.totp_secret:
        raise BadRequest("2FA not started")
    if not verify_code(u.totp_secret, body.code):
        raise InvalidSecondFactorCode()

    u.totp_enabled = True
    ctx.db.commit()
    append_event(_auth_event("admin_2fa_enabled", ctx, req))
    return {"success": True}

@router.post("/2fa/disable")
@admin_endpoint()
def totp_disable(req: GuardRequest, ctx: AdminContext):
    body = req.parse(TotpDisableReq)
    u = ctx.admin
    if not verify_password(body.password, u.password_hash):
        raise InvalidCredentials()
    if u.totp_enabled and not verify_code(u.totp_secret, body.code):
        raise InvalidSecondFactorCode()

    u.totp_enabled = False
    u.totp_secret = None
    ctx.db.commit()
    append_event(_auth_event("admin_2fa_disabled", ctx, req))
    return {"success": True}
