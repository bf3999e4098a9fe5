# services/api/admin_api/logging_mw.py

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

LOG = logging.getLogger("admin_api")

# session tokens travel in these; never log them
REDACT_HEADERS = {"authorization", "cookie", "set-cookie", "x-bootstrap-token"}

_REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms")

def _redact_headers(headers: dict) -> dict:
    out = {}
    for k, v in headers.items():
        lk = k.lower()
        if lk in REDACT_HEADERS:
            out[k] = "[REDACTED]"
        else:
            out[k] = v if len(v) < 200 else (v[:200] + "…")
    return out

class _RequestFieldDefaults(logging.Filter):
    # module loggers outside the middleware don't carry the request extras
    def filter(self, record: logging.LogRecord) -> bool:
        for name in _REQUEST_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        rid = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        start = time.time()

        # no request bodies: passwords and TOTP codes
        safe_headers = _redact_headers(dict(request.headers))

        try:
            response: Response = await call_next(request)
            status = response.status_code
        except Exception:
            status = 500
            raise
        finally:
            dur_ms = int((time.time() - start) * 1000)

            LOG.info(
                "request",
                extra={
                    "request_id": rid,
                    "method": request.method,
                    "path": request.url.path,
                    "status": status,
                    "duration_ms": dur_ms,
                    "client": request.client.host if request.client else None,
                    "headers": safe_headers,
                },
            )

        response.headers["X-Request-Id"] = rid
        return response

def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(levelname)s %(name)s %(message)s | %(request_id)s %(method)s %(path)s %(status)s %(duration_ms)s",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, _RequestFieldDefaults) for f in handler.filters):
            handler.addFilter(_RequestFieldDefaults())
