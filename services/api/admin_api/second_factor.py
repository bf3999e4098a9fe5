# services/api/admin_api/second_factor.py

from __future__ import annotations

from io import BytesIO

import pyotp
import qrcode

from .config import settings

def generate_secret() -> str:
    # base32, 160 bits; stored as-is on the admin row
    return pyotp.random_base32(length=32)

def _normalize(code: str | None) -> str:
    return (code or "").strip().replace(" ", "").replace("-", "")

def verify_code(secret: str | None, code: str | None) -> bool:
    """
    RFC 6238: 30s steps, 6 digits, +/- TOTP_VALID_WINDOW steps of clock skew.
    Stateless: a code stays valid for its whole window (no replay tracking).
    """
    if not secret:
        return False
    c = _normalize(code)
    if len(c) != 6 or not c.isdigit():
        return False
    try:
        return bool(pyotp.TOTP(secret).verify(c, valid_window=int(settings.TOTP_VALID_WINDOW)))
    except (ValueError, TypeError):
        # malformed secret
        return False

def provisioning_uri(email: str, secret: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=settings.TOTP_ISSUER)

def qr_png(uri: str) -> bytes:
    img = qrcode.make(uri)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
