# services/api/admin_api/schemas_admin.py

from pydantic import BaseModel, EmailStr, Field
from typing import Any, Dict, List, Optional

# ---- auth ----

class LoginReq(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=256)
    totp_code: Optional[str] = Field(default=None, max_length=16)

class BootstrapReq(BaseModel):
    email: EmailStr
    password: str = Field(min_length=10, max_length=256)
    display_name: Optional[str] = Field(default=None, max_length=100)

class PasswordChangeReq(BaseModel):
    current_password: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=10, max_length=256)

class TotpStartResp(BaseModel):
    ok: bool
    secret: Optional[str] = None
    otpauth_uri: Optional[str] = None

class TotpConfirmReq(BaseModel):
    code: str = Field(min_length=6, max_length=16)

class TotpDisableReq(BaseModel):
    password: str = Field(min_length=1, max_length=256)
    code: Optional[str] = Field(default=None, max_length=16)

# ---- admin management ----

class AdminRow(BaseModel):
    id: int
    email: str
    display_name: Optional[str] = None
    role: Optional[str] = None
    is_active: bool
    is_2fa_enabled: bool
    failed_attempts: int
    locked_until: Optional[str] = None
    last_login_at: Optional[str] = None
    created_at: Optional[str] = None

class UpdateAdminReq(BaseModel):
    role: Optional[str] = None
    is_active: Optional[bool] = None
    unlock: bool = False
    reason: Optional[str] = Field(default=None, max_length=500)

# ---- audit ----

class AuditEventRow(BaseModel):
    id: int
    created_at: str
    admin_id: Optional[int] = None
    admin_email: Optional[str] = None
    category: str
    action_type: str
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    target_details: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    ip: Optional[str] = None
    session_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

class AuditPage(BaseModel):
    items: List[AuditEventRow]
    next_before_id: Optional[int] = None
