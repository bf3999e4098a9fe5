# services/api/admin_api/config.py

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str
    SESSION_SECRET: str

    LOG_LEVEL: str = "INFO"

    # RBAC bootstrap: allow creating the FIRST admin user if none exists.
    # Send as header: X-Bootstrap-Token
    ADMIN_BOOTSTRAP_TOKEN: str | None = None

    # Admin sessions (server-side, absolute expiry)
    ADMIN_SESSION_TTL_MIN: int = 60 * 8  # 8 hours
    ADMIN_COOKIE_NAME: str = "admin_session"
    ADMIN_COOKIE_SECURE: bool = True
    ADMIN_COOKIE_SAMESITE: str = "lax"
    ADMIN_COOKIE_DOMAIN: str | None = None
    SESSION_RETENTION_DAYS: int = 30

    # Credentials + lockout
    BCRYPT_ROUNDS: int = 12
    ADMIN_MAX_LOGIN_ATTEMPTS: int = 5
    ADMIN_LOCKOUT_MIN: int = 30
    ADMIN_MAX_2FA_ATTEMPTS: int = 5  # own counter, same lockout window
    ADMIN_DISCLOSE_DISABLED: bool = True  # False -> disabled accounts answer "Invalid credentials"
    ADMIN_MIN_PASSWORD_LEN: int = 10

    # TOTP
    TOTP_ISSUER: str = "Social Admin"
    TOTP_VALID_WINDOW: int = 1  # +/- 30s steps

    # Rate limiting. "memory" is per-process: N instances => effective limit x N.
    RATE_LIMIT_BACKEND: str = "memory"  # "memory" or "redis"
    REDIS_URL: str | None = None
    RATE_LIMIT_FAIL_OPEN: bool = True
    RATE_LIMIT_SWEEP_THRESHOLD: int = 1000
    ADMIN_RATE_LIMIT_PER_MIN: int = 60
    ADMIN_LOGIN_RATE_LIMIT: int = 5
    ADMIN_LOGIN_RATE_WINDOW_SEC: int = 60

    # Only honour X-Forwarded-For / X-Real-IP behind a trusted proxy
    TRUST_PROXY_HEADERS: bool = False

    ADMIN_CSP: str = (
        "default-src 'self'; script-src 'self'; style-src 'self'; img-src 'self' data:; "
        "font-src 'self'; object-src 'none'; base-uri 'self'; form-action 'self'; frame-ancestors 'none'"
    )

    # Fire-and-forget side effects (audit writes, activity touches)
    SIDE_EFFECT_QUEUE_MAX: int = 10_000

settings = Settings()
