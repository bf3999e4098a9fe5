# services/api/admin_api/models.py

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, String, Boolean, DateTime, Integer, ForeignKey, Text, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base

# --------------------------
# Admin RBAC
# --------------------------

class AdminRole(Base):
    __tablename__ = "admin_roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # {resource: {action: bool}}; anything missing is denied
    permissions: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    is_system_role: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    admins: Mapped[list["AdminUser"]] = relationship(back_populates="role")


class AdminUser(Base):
    __tablename__ = "admin_users"
    __table_args__ = (CheckConstraint("failed_attempts >= 0", name="ck_admin_users_failed_attempts_nonneg"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255))

    role_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("admin_roles.id", ondelete="SET NULL"), nullable=True, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    # lockout bookkeeping
    failed_attempts: Mapped[int] = mapped_column(Integer, default=0)
    failed_2fa_attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    totp_secret: Mapped[str | None] = mapped_column(String(64), nullable=True)
    totp_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_login_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    password_changed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    role: Mapped[Optional["AdminRole"]] = relationship(back_populates="admins")
    sessions: Mapped[list["AdminSession"]] = relationship(back_populates="admin")


class AdminSession(Base):
    __tablename__ = "admin_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    admin_id: Mapped[int] = mapped_column(Integer, ForeignKey("admin_users.id"), index=True)

    # peppered sha256 of the bearer token; the plaintext is never stored
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    admin: Mapped["AdminUser"] = relationship(back_populates="sessions")


# --------------------------
# Audit ledger (write-once)
# --------------------------

class AdminAuditLog(Base):
    __tablename__ = "admin_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    # nullable: unknown-email attempts are still logged with the raw email
    admin_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    admin_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    category: Mapped[str] = mapped_column(String(40), index=True)
    action_type: Mapped[str] = mapped_column(String(60), index=True)

    target_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    target_details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # column is "metadata"; the attribute name is reserved by declarative
    event_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)


class ImmutableAuditRow(RuntimeError):
    pass


@event.listens_for(AdminAuditLog, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise ImmutableAuditRow("admin_audit_logs rows are write-once")


@event.listens_for(AdminAuditLog, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise ImmutableAuditRow("admin_audit_logs rows are write-once")
