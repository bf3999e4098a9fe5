# services/api/admin_api/routes_admin_users.py

from __future__ import annotations

from fastapi import APIRouter

from . import models, rbac
from .audit import AuditCategory, AuditEvent, append_event
from .errors import BadRequest, NotFound
from .guard import AdminContext, GuardRequest
from .schemas_admin import AdminRow, UpdateAdminReq
from .security import admin_endpoint
from .sessions import invalidate_all_sessions

router = APIRouter(prefix="/v1/admin/admins", tags=["admin-admins"])

def _row(u: models.AdminUser) -> dict:
    return AdminRow(
        id=u.id,
        email=u.email,
        display_name=u.display_name,
        role=u.role.name if u.role else None,
        is_active=bool(u.is_active),
        is_2fa_enabled=bool(u.totp_enabled),
        failed_attempts=int(u.failed_attempts or 0),
        locked_until=u.locked_until.isoformat() if u.locked_until else None,
        last_login_at=u.last_login_at.isoformat() if u.last_login_at else None,
        created_at=u.created_at.isoformat() if u.created_at else None,
    ).model_dump()

def _target_id(req: GuardRequest) -> int:
    try:
        return int(req.path_params["admin_id"])
    except (KeyError, TypeError, ValueError):
        raise BadRequest("Invalid admin id")

def _management_event(action_type: str, ctx: AdminContext, req: GuardRequest, target: models.AdminUser, **kw) -> AuditEvent:
    meta = req.meta
    return AuditEvent(
        category=AuditCategory.ADMIN_MANAGEMENT,
        action_type=action_type,
        admin_id=ctx.admin.id,
        admin_email=ctx.admin.email,
        target_type="admin",
        target_id=str(target.id),
        ip=meta.ip,
        user_agent=meta.user_agent,
        session_id=ctx.session.id,
        **kw,
    )

@router.get("")
@admin_endpoint(rbac.ADMINS_VIEW)
def list_admins(req: GuardRequest, ctx: AdminContext):
    rows = ctx.db.query(models.AdminUser).order_by(models.AdminUser.id.asc()).all()
    return [_row(u) for u in rows]

@router.patch("/{admin_id}")
@admin_endpoint(rbac.ADMINS_EDIT)
def update_admin(req: GuardRequest, ctx: AdminContext):
    body = req.parse(UpdateAdminReq)
    db = ctx.db
    u = db.get(models.AdminUser, _target_id(req))
    if u is None:
        raise NotFound("Admin not found")

    changes: dict = {}
    revoked = 0

    if body.role is not None:
        role = db.query(models.AdminRole).filter(models.AdminRole.name == body.role).first()
        if role is None:
            raise BadRequest(f"Unknown role: {body.role}")
        if u.id == ctx.admin.id and role.id != u.role_id:
            raise BadRequest("Cannot change your own role")
        if role.id != u.role_id:
            changes["role"] = {"from": u.role.name if u.role else None, "to": role.name}
            u.role_id = role.id

    if body.is_active is not None and bool(body.is_active) != bool(u.is_active):
        if u.id == ctx.admin.id and not body.is_active:
            raise BadRequest("Cannot deactivate yourself")
        changes["is_active"] = {"from": bool(u.is_active), "to": bool(body.is_active)}
        u.is_active = bool(body.is_active)
        if not u.is_active:
            revoked = invalidate_all_sessions(db, u.id)

    if body.unlock and (u.failed_attempts or u.failed_2fa_attempts or u.locked_until is not None):
        changes["unlock"] = {
            "failed_attempts": int(u.failed_attempts or 0),
            "failed_2fa_attempts": int(u.failed_2fa_attempts or 0),
        }
        u.failed_attempts = 0
        u.failed_2fa_attempts = 0
        u.locked_until = None

    db.commit()
    db.refresh(u)

    if changes:
        append_event(_management_event(
            "admin_updated", ctx, req, u,
            target_details={"email": u.email, "changes": changes},
            reason=body.reason,
            metadata={"sessions_revoked": revoked} if revoked else {},
        ))
    return _row(u)

@router.post("/{admin_id}/sessions/revoke")
@admin_endpoint(rbac.ADMINS_EDIT)
def revoke_admin_sessions(req: GuardRequest, ctx: AdminContext):
    db = ctx.db
    u = db.get(models.AdminUser, _target_id(req))
    if u is None:
        raise NotFound("Admin not found")

    revoked = invalidate_all_sessions(db, u.id)
    db.commit()

    append_event(_management_event(
        "admin_sessions_revoked", ctx, req, u,
        target_details={"email": u.email},
        metadata={"sessions_revoked": revoked},
    ))
    return {"success": True, "sessions_revoked": revoked}
