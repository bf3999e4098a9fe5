# services/api/admin_api/security.py

from __future__ import annotations

from typing import Callable

from fastapi import Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .config import settings
from .db import SessionLocal
from .errors import AdminAuthError
from .guard import (
    DEFAULT_RATE_LIMIT, AdminGuard, GuardRequest, GuardResponse, RateLimitRule,
    apply_security_headers,
)
from .ratelimit import build_rate_limiter
from .rbac import Permission
from .sessions import request_meta

def _session_factory():
    return SessionLocal()

# guard.limiter is swappable (RedisRateLimiter, or a fresh MemoryRateLimiter in tests)
guard = AdminGuard(limiter=build_rate_limiter(), session_factory=_session_factory)

async def to_guard_request(request: Request) -> GuardRequest:
    return GuardRequest(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        cookies=dict(request.cookies),
        client_host=request.client.host if request.client else None,
        path_params=dict(request.path_params),
        query_params=dict(request.query_params),
        body=await request.body(),
    )

def to_response(gr: GuardResponse) -> Response:
    if isinstance(gr.body, (bytes, bytearray)):
        return Response(content=bytes(gr.body), status_code=gr.status_code, headers=gr.headers, media_type=gr.media_type)
    return JSONResponse(content=gr.body, status_code=gr.status_code, headers=gr.headers)

def admin_endpoint(*permissions: Permission, rate_limit=DEFAULT_RATE_LIMIT):
    """
    Decorator turning a guarded handler(req, ctx) into a FastAPI endpoint.

    Usage::

        @router.get("/audit-logs")
        @admin_endpoint(rbac.AUDIT_LOGS_VIEW)
        def list_audit(req: GuardRequest, ctx: AdminContext): ...

    Zero permissions = authenticated-only.
    """
    def decorator(handler: Callable):
        guarded = guard.wrap(handler, permissions, rate_limit=rate_limit)

        # no functools.wraps: FastAPI must see (request: Request), not the handler's signature
        async def endpoint(request: Request) -> Response:
            greq = await to_guard_request(request)
            gresp = await run_in_threadpool(guarded, greq)
            return to_response(gresp)

        endpoint.__name__ = handler.__name__
        endpoint.__doc__ = handler.__doc__
        return endpoint
    return decorator

def enforce_rate_limit(request: Request, scope: str, rule: RateLimitRule) -> None:
    meta = request_meta(request.headers, request.client.host if request.client else None)
    guard.enforce_rate_limit(f"{scope}:{meta.ip or 'unknown'}", rule)

def login_rate_limit(request: Request) -> None:
    """
    FastAPI dependency: stricter per-ip limit for the unauthenticated login endpoint.
    """
    enforce_rate_limit(
        request,
        "admin-login",
        RateLimitRule(int(settings.ADMIN_LOGIN_RATE_LIMIT), int(settings.ADMIN_LOGIN_RATE_WINDOW_SEC) * 1000),
    )

def error_response(exc: AdminAuthError) -> JSONResponse:
    resp = JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)
    apply_security_headers(resp.headers)
    return resp

def internal_error_response() -> JSONResponse:
    resp = JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})
    apply_security_headers(resp.headers)
    return resp

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Stamps the admin security headers on every response under `prefix`,
    unguarded endpoints (login/logout) included.
    """
    def __init__(self, app, prefix: str = "/v1/admin"):
        super().__init__(app)
        self.prefix = prefix

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        if request.url.path.startswith(self.prefix):
            apply_security_headers(response.headers)
        return response
