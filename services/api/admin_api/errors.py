# services/api/admin_api/errors.py

from __future__ import annotations

from typing import Any, Dict

class AdminAuthError(Exception):
    """
    Base for every failure this core resolves into a structured response.
    Anything that is NOT an AdminAuthError is treated as an internal error (generic 500).
    """
    status_code: int = 400
    code: str = "bad_request"
    message: str = "Bad request"

    def __init__(
        self,
        message: str | None = None,
        *,
        extra: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ):
        self.message = message or self.message
        self.extra = dict(extra or {})
        self.headers = dict(headers or {})
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        body.update(self.extra)
        return body


class InvalidCredentials(AdminAuthError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid credentials"

    def __init__(self, remaining_attempts: int | None = None):
        extra = {} if remaining_attempts is None else {"remaining_attempts": remaining_attempts}
        super().__init__(extra=extra)


class AccountLocked(AdminAuthError):
    status_code = 401
    code = "account_locked"

    def __init__(self, remaining_minutes: int):
        super().__init__(
            f"Account locked. Try again in {remaining_minutes} minutes.",
            extra={"retry_after_minutes": remaining_minutes},
        )


class AccountDisabled(AdminAuthError):
    status_code = 401
    code = "account_disabled"
    message = "Account is disabled"


class InvalidSecondFactorCode(AdminAuthError):
    status_code = 401
    code = "invalid_2fa_code"
    message = "Invalid 2FA code"


class SessionInvalid(AdminAuthError):
    # missing, expired and revoked all look the same to the caller
    status_code = 401
    code = "session_invalid"
    message = "Admin authentication required"


class PermissionDenied(AdminAuthError):
    status_code = 403
    code = "permission_denied"

    def __init__(self, resource: str, action: str):
        super().__init__(
            f"Insufficient permissions: {resource}.{action} required",
            extra={"required_permission": f"{resource}.{action}"},
        )


class RateLimited(AdminAuthError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None):
        retry_after = max(1, int(retry_after))
        super().__init__(
            message,
            extra={"retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


class BadRequest(AdminAuthError):
    status_code = 400
    code = "bad_request"
    message = "Bad request"


class NotFound(AdminAuthError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class Conflict(AdminAuthError):
    status_code = 409
    code = "conflict"
    message = "Conflict"
