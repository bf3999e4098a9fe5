# services/api/admin_api/audit.py

from __future__ import annotations

import enum
import json
import logging
from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session as OrmSession

from . import models
from .background import side_effects

LOG = logging.getLogger("admin_api.audit")


class AuditCategory(str, enum.Enum):
    AUTH = "auth"
    USER_MANAGEMENT = "user_management"
    REPORT_MANAGEMENT = "report_management"
    CONTENT_MODERATION = "content_moderation"
    SYSTEM_SETTINGS = "system_settings"
    ADMIN_MANAGEMENT = "admin_management"


class AuditEvent(BaseModel):
    category: AuditCategory
    action_type: str
    admin_id: int | None = None
    admin_email: str | None = None
    target_type: str | None = None
    target_id: str | None = None
    target_details: Dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    session_id: int | None = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)


def _safe_json(payload: Any) -> Any:
    if payload is None:
        return None
    try:
        return json.loads(json.dumps(payload, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        return {"_unserializable": True, "repr": repr(payload)}


def _to_row(event: AuditEvent) -> models.AdminAuditLog:
    return models.AdminAuditLog(
        created_at=event.created_at,
        admin_id=event.admin_id,
        admin_email=event.admin_email,
        category=event.category.value,
        action_type=event.action_type,
        target_type=event.target_type,
        target_id=event.target_id,
        target_details=_safe_json(event.target_details) or None,
        reason=event.reason,
        ip=event.ip,
        user_agent=event.user_agent,
        session_id=event.session_id,
        event_metadata=_safe_json(event.metadata) or None,
    )


def write_event(db: OrmSession, event: AuditEvent) -> None:
    db.add(_to_row(event))
    db.commit()


def append_event(event: AuditEvent) -> None:
    """
    Write-once and fire-and-forget: the insert runs on the side-effect queue.
    Nothing here may raise into the security decision being recorded.
    """
    try:
        side_effects.submit(f"audit:{event.action_type}", lambda db: write_event(db, event))
    except Exception:
        LOG.exception("audit_enqueue_failed action_type=%s", event.action_type)


def list_events(
    db: OrmSession,
    *,
    limit: int = 50,
    before_id: int | None = None,
    category: AuditCategory | None = None,
    action_type: str | None = None,
    admin_id: int | None = None,
) -> List[models.AdminAuditLog]:
    q = db.query(models.AdminAuditLog)
    if before_id is not None:
        q = q.filter(models.AdminAuditLog.id < int(before_id))
    if category is not None:
        q = q.filter(models.AdminAuditLog.category == category.value)
    if action_type:
        q = q.filter(models.AdminAuditLog.action_type == action_type)
    if admin_id is not None:
        q = q.filter(models.AdminAuditLog.admin_id == int(admin_id))
    limit = max(1, min(int(limit), 200))
    return q.order_by(models.AdminAuditLog.id.desc()).limit(limit).all()
