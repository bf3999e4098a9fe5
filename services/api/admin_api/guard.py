# services/api/admin_api/guard.py

"""
Request guard for privileged admin handlers.

Nothing in here knows about FastAPI/Starlette: requests come in as GuardRequest
(plain header / cookie maps), responses go out as GuardResponse. security.py adapts
both ends to the web framework.

Order per request:
  rate limit -> token extraction -> session validation (401)
  -> required permissions, in declaration order (403 + audit) -> handler
Every response, whatever branch produced it, carries security_headers().
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, NamedTuple, Optional, Sequence

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session as OrmSession

from .audit import AuditCategory, AuditEvent, append_event
from .config import settings
from .errors import AdminAuthError, BadRequest, PermissionDenied, RateLimited, SessionInvalid
from .rbac import Permission, check_permission
from .sessions import RequestMeta, request_meta, validate_session
from . import models

LOG = logging.getLogger("admin_api.guard")


def security_headers() -> Dict[str, str]:
    return {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Content-Security-Policy": settings.ADMIN_CSP,
        "Cache-Control": "no-store, no-cache, must-revalidate, private",
        "Pragma": "no-cache",
        "Expires": "0",
    }

def apply_security_headers(headers: MutableMapping[str, str]) -> None:
    for k, v in security_headers().items():
        headers[k] = v


def extract_token(headers: Mapping[str, str], cookies: Mapping[str, str], cookie_name: str | None = None) -> str | None:
    """
    Bearer header (programmatic clients) first, then the session cookie (browsers).
    """
    auth = ""
    for k, v in headers.items():
        if k.lower() == "authorization":
            auth = v or ""
            break
    if auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
        if token:
            return token
    token = cookies.get(cookie_name or settings.ADMIN_COOKIE_NAME)
    return token or None


@dataclass
class GuardRequest:
    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    cookies: Mapping[str, str] = field(default_factory=dict)
    client_host: str | None = None
    path_params: Mapping[str, Any] = field(default_factory=dict)
    query_params: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def meta(self) -> RequestMeta:
        return request_meta(self.headers, self.client_host)

    def json(self) -> Any:
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except ValueError:
            raise BadRequest("Malformed JSON body")

    def parse(self, model: type[BaseModel]) -> Any:
        try:
            return model.model_validate(self.json() or {})
        except ValidationError as e:
            raise BadRequest("Validation failed", extra={"details": e.errors(include_url=False, include_context=False)})


@dataclass
class GuardResponse:
    status_code: int = 200
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    media_type: str = "application/json"


class AdminContext(NamedTuple):
    admin: models.AdminUser
    session: models.AdminSession
    role: models.AdminRole
    db: OrmSession


class RateLimitRule(NamedTuple):
    limit: int
    window_ms: int


Handler = Callable[[GuardRequest, AdminContext], Any]
GuardedHandler = Callable[[GuardRequest], GuardResponse]

DEFAULT_RATE_LIMIT = object()


class AdminGuard:
    def __init__(self, *, limiter, session_factory: Callable[[], OrmSession]):
        # limiter: anything with check(identifier, limit, window_ms) -> RateLimitDecision
        self.limiter = limiter
        self._session_factory = session_factory

    def default_rule(self) -> RateLimitRule:
        return RateLimitRule(int(settings.ADMIN_RATE_LIMIT_PER_MIN), 60_000)

    def enforce_rate_limit(self, identifier: str, rule: RateLimitRule) -> None:
        decision = self.limiter.check(identifier, rule.limit, rule.window_ms)
        if not decision.allowed:
            LOG.warning("rate_limited identifier=%s", identifier)
            raise RateLimited(decision.retry_after)

    def authorize(
        self,
        db: OrmSession,
        request: GuardRequest,
        permissions: Sequence[Permission] = (),
    ) -> AdminContext:
        token = extract_token(request.headers, request.cookies)
        ctx = validate_session(db, token)
        if ctx is None:
            raise SessionInvalid()

        for perm in permissions:
            if not check_permission(ctx.role, perm.resource, perm.action):
                meta = request.meta
                append_event(AuditEvent(
                    category=AuditCategory.AUTH,
                    action_type="permission_denied",
                    admin_id=ctx.admin.id,
                    admin_email=ctx.admin.email,
                    target_type="permission",
                    target_details={
                        "required_resource": perm.resource,
                        "required_action": perm.action,
                        "path": request.path,
                        "method": request.method,
                    },
                    reason="Insufficient permissions",
                    ip=meta.ip,
                    user_agent=meta.user_agent,
                    session_id=ctx.session.id,
                ))
                raise PermissionDenied(perm.resource, perm.action)

        return AdminContext(admin=ctx.admin, session=ctx.session, role=ctx.role, db=db)

    def wrap(
        self,
        handler: Handler,
        permissions: Iterable[Permission] | Permission | None = None,
        *,
        rate_limit: Any = DEFAULT_RATE_LIMIT,
    ) -> GuardedHandler:
        if permissions is None:
            perms: tuple[Permission, ...] = ()
        elif isinstance(permissions, Permission):
            perms = (permissions,)
        else:
            perms = tuple(permissions)

        def guarded(request: GuardRequest) -> GuardResponse:
            resp = self._dispatch(handler, perms, rate_limit, request)
            apply_security_headers(resp.headers)
            return resp

        guarded.__name__ = getattr(handler, "__name__", "guarded")
        guarded.required_permissions = perms  # type: ignore[attr-defined]
        return guarded

    def _dispatch(self, handler: Handler, perms: tuple, rate_limit: Any, request: GuardRequest) -> GuardResponse:
        db: Optional[OrmSession] = None
        try:
            rule = self.default_rule() if rate_limit is DEFAULT_RATE_LIMIT else rate_limit
            if rule is not None:
                ip = request.meta.ip or "unknown"
                self.enforce_rate_limit(f"admin:{ip}:{request.path}", rule)

            db = self._session_factory()
            ctx = self.authorize(db, request, perms)
            out = handler(request, ctx)
            if isinstance(out, GuardResponse):
                return out
            return GuardResponse(status_code=200, body=out)
        except AdminAuthError as e:
            if db is not None:
                db.rollback()
            return GuardResponse(status_code=e.status_code, body=e.to_body(), headers=dict(e.headers))
        except Exception:
            if db is not None:
                db.rollback()
            LOG.exception("admin_handler_error method=%s path=%s", request.method, request.path)
            return GuardResponse(status_code=500, body={"success": False, "error": "Internal server error"})
        finally:
            if db is not None:
                db.close()
