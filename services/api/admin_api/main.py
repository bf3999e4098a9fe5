# services/api/admin_api/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from .background import side_effects
from .config import settings
from .errors import AdminAuthError
from .logging_mw import RequestLoggingMiddleware, configure_logging
from .security import SecurityHeadersMiddleware, error_response, internal_error_response

from .routes_admin_auth import router as admin_auth_router
from .routes_admin_users import router as admin_users_router
from .routes_admin_audit import router as admin_audit_router

LOG = logging.getLogger("admin_api")

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # drain pending audit writes before the process goes away
    side_effects.close()

app = FastAPI(title="Admin Auth API", version="0.1.0", lifespan=lifespan)

configure_logging(settings.LOG_LEVEL)
app.add_middleware(SecurityHeadersMiddleware, prefix="/v1/admin")
app.add_middleware(RequestLoggingMiddleware)

@app.exception_handler(AdminAuthError)
async def admin_auth_error_handler(request: Request, exc: AdminAuthError):
    return error_response(exc)

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    LOG.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
    return internal_error_response()

app.include_router(admin_auth_router)
app.include_router(admin_users_router)
app.include_router(admin_audit_router)

@app.get("/health")
def health():
    return {"ok": True}
