# services/api/admin_api/rbac.py

from __future__ import annotations

import copy
import logging
from typing import Any, Mapping, NamedTuple

from sqlalchemy.orm import Session as OrmSession

from . import models

LOG = logging.getLogger("admin_api.rbac")


class Permission(NamedTuple):
    resource: str
    action: str

    def __str__(self) -> str:
        return f"{self.resource}.{self.action}"


def has_permission(matrix: Mapping[str, Any] | None, resource: str, action: str) -> bool:
    """
    Exact-key lookup. A pair absent from the matrix is denied; only a literal True grants.
    No wildcards: a resource or action named "*" is just another key.
    """
    if not matrix:
        return False
    actions = matrix.get(resource)
    if not isinstance(actions, Mapping):
        return False
    return actions.get(action) is True


def check_permission(role: models.AdminRole | None, resource: str, action: str) -> bool:
    if role is None:
        return False
    return has_permission(role.permissions, resource, action)


# --------------------------
# Well-known permissions
# --------------------------

USERS_VIEW = Permission("users", "view")
USERS_EDIT = Permission("users", "edit")
USERS_BAN = Permission("users", "ban")
USERS_DELETE = Permission("users", "delete")
USERS_EXPORT = Permission("users", "export")

REPORTS_VIEW = Permission("reports", "view")
REPORTS_MANAGE = Permission("reports", "manage")
REPORTS_ASSIGN = Permission("reports", "assign")
REPORTS_RESOLVE = Permission("reports", "resolve")

POSTS_VIEW = Permission("posts", "view")
POSTS_EDIT = Permission("posts", "edit")
POSTS_DELETE = Permission("posts", "delete")
POSTS_MODERATE = Permission("posts", "moderate")

COMMENTS_VIEW = Permission("comments", "view")
COMMENTS_EDIT = Permission("comments", "edit")
COMMENTS_DELETE = Permission("comments", "delete")
COMMENTS_MODERATE = Permission("comments", "moderate")

ANALYTICS_VIEW = Permission("analytics", "view")
ANALYTICS_EXPORT = Permission("analytics", "export")

SETTINGS_VIEW = Permission("settings", "view")
SETTINGS_EDIT = Permission("settings", "edit")

ADMINS_VIEW = Permission("admins", "view")
ADMINS_CREATE = Permission("admins", "create")
ADMINS_EDIT = Permission("admins", "edit")
ADMINS_DELETE = Permission("admins", "delete")

AUDIT_LOGS_VIEW = Permission("audit_logs", "view")
AUDIT_LOGS_EXPORT = Permission("audit_logs", "export")

# --------------------------
# System roles
# --------------------------

DEFAULT_ROLES: dict[str, dict[str, Any]] = {
    "super_admin": {
        "display_name": "Super Administrator",
        "description": "Full system control with all permissions",
        "permissions": {
            "users": {"view": True, "edit": True, "ban": True, "delete": True, "export": True},
            "reports": {"view": True, "manage": True, "assign": True, "resolve": True},
            "posts": {"view": True, "edit": True, "delete": True, "moderate": True},
            "comments": {"view": True, "edit": True, "delete": True, "moderate": True},
            "analytics": {"view": True, "export": True},
            "settings": {"view": True, "edit": True},
            "admins": {"view": True, "create": True, "edit": True, "delete": True},
            "audit_logs": {"view": True, "export": True},
        },
    },
    "admin": {
        "display_name": "Administrator",
        "description": "User and report management with limited system access",
        "permissions": {
            "users": {"view": True, "edit": True, "ban": True, "delete": False, "export": True},
            "reports": {"view": True, "manage": True, "assign": False, "resolve": True},
            "posts": {"view": True, "edit": False, "delete": True, "moderate": True},
            "comments": {"view": True, "edit": False, "delete": True, "moderate": True},
            "analytics": {"view": True, "export": False},
            "settings": {"view": True, "edit": False},
            "admins": {"view": True, "create": False, "edit": False, "delete": False},
            "audit_logs": {"view": True, "export": False},
        },
    },
    "moderator": {
        "display_name": "Moderator",
        "description": "Reports and content moderation only",
        "permissions": {
            "users": {"view": True, "edit": False, "ban": False, "delete": False, "export": False},
            "reports": {"view": True, "manage": True, "assign": False, "resolve": True},
            "posts": {"view": True, "edit": False, "delete": False, "moderate": True},
            "comments": {"view": True, "edit": False, "delete": False, "moderate": True},
            "analytics": {"view": False, "export": False},
            "settings": {"view": False, "edit": False},
            "admins": {"view": False, "create": False, "edit": False, "delete": False},
            "audit_logs": {"view": False, "export": False},
        },
    },
}


def seed_default_roles(db: OrmSession) -> dict[str, models.AdminRole]:
    """
    Insert missing system roles. Existing rows are left alone (their matrices may
    have been edited on purpose). Caller commits.
    """
    out: dict[str, models.AdminRole] = {}
    for name, template in DEFAULT_ROLES.items():
        role = db.query(models.AdminRole).filter(models.AdminRole.name == name).first()
        if role is None:
            role = models.AdminRole(
                name=name,
                display_name=template["display_name"],
                description=template["description"],
                permissions=copy.deepcopy(template["permissions"]),
                is_system_role=True,
            )
            db.add(role)
            LOG.info("seeded admin role %s", name)
        out[name] = role
    db.flush()
    return out
