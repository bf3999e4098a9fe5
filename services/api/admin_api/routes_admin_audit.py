# services/api/admin_api/routes_admin_audit.py

from __future__ import annotations

from fastapi import APIRouter

from . import rbac
from .audit import AuditCategory, list_events
from .errors import BadRequest
from .guard import AdminContext, GuardRequest
from .schemas_admin import AuditEventRow, AuditPage
from .security import admin_endpoint

router = APIRouter(prefix="/v1/admin/audit-logs", tags=["admin-audit"])

def _int_param(req: GuardRequest, name: str, default: int | None = None) -> int | None:
    raw = req.query_params.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise BadRequest(f"Invalid {name}")

@router.get("")
@admin_endpoint(rbac.AUDIT_LOGS_VIEW)
def list_audit_logs(req: GuardRequest, ctx: AdminContext):
    """
    Newest first. Page with ?before_id=<next_before_id>.
    """
    category = req.query_params.get("category") or None
    if category is not None:
        try:
            category = AuditCategory(category)
        except ValueError:
            raise BadRequest(f"Unknown category: {category}")

    limit = _int_param(req, "limit", 50)
    rows = list_events(
        ctx.db,
        limit=limit,
        before_id=_int_param(req, "before_id"),
        category=category,
        action_type=req.query_params.get("action_type") or None,
        admin_id=_int_param(req, "admin_id"),
    )

    items = [
        AuditEventRow(
            id=r.id,
            created_at=r.created_at.isoformat(),
            admin_id=r.admin_id,
            admin_email=r.admin_email,
            category=r.category,
            action_type=r.action_type,
            target_type=r.target_type,
            target_id=r.target_id,
            target_details=r.target_details,
            reason=r.reason,
            ip=r.ip,
            session_id=r.session_id,
            metadata=r.event_metadata,
        )
        for r in rows
    ]
    next_before_id = items[-1].id if items and len(items) >= max(1, min(int(limit), 200)) else None
    return AuditPage(items=items, next_before_id=next_before_id).model_dump()
