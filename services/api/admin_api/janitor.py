# services/api/admin_api/janitor.py

from datetime import datetime, timedelta

from sqlalchemy import delete, update
from sqlalchemy.orm import Session as OrmSession

from .config import settings
from . import models

def run_session_cleanup(db: OrmSession, now: datetime | None = None) -> dict:
    """
    - Marks sessions past expires_at inactive (they already fail validation; this keeps
      the active set honest for "who is logged in" views).
    - Hard-deletes sessions that expired more than SESSION_RETENTION_DAYS ago.
      Audit rows keep their session_id; they are never touched here.
    """
    now = now or datetime.utcnow()

    deactivated = db.execute(
        update(models.AdminSession)
        .where(models.AdminSession.is_active == True)  # noqa: E712
        .where(models.AdminSession.expires_at <= now)
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    ).rowcount or 0

    cutoff = now - timedelta(days=int(settings.SESSION_RETENTION_DAYS))
    deleted = db.execute(
        delete(models.AdminSession)
        .where(models.AdminSession.expires_at < cutoff)
        .execution_options(synchronize_session=False)
    ).rowcount or 0

    db.commit()

    return {
        "deactivated_sessions": int(deactivated),
        "deleted_sessions": int(deleted),
        "retention_cutoff": cutoff.isoformat(),
    }
