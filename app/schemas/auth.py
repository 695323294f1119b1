"""Authentication schemas."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .user import UserRead


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str
    confirm_password: str | None = None


class LoginRequest(BaseModel):
    username: str
    password: str


class MFALoginRequest(BaseModel):
    username: str
    code: str
    mfa_ticket: str


class GenericResponse(BaseModel):
    ok: bool = True


class LoginSuccessResponse(BaseModel):
    ok: bool = True
    user: UserRead


class MFARequiredResponse(BaseModel):
    mfa_required: bool = True
    mfa_ticket: str


class TOTPSetupResponse(BaseModel):
    secret: str
    provisioning_uri: str


class TOTPConfirmRequest(BaseModel):
    secret: str
    code: str


class TOTPDisableRequest(BaseModel):
    code: str


class WebAuthnStartResponse(BaseModel):
    publicKey: dict[str, Any]


class WebAuthnFinishRequest(BaseModel):
    credential: dict[str, Any]


class WebAuthnLoginStartRequest(BaseModel):
    username: str


class WebAuthnLoginFinishRequest(BaseModel):
    username: str
    credential: dict[str, Any]


class PasskeyRead(BaseModel):
    id: str
    credential_id: str
    device_type: str
    backed_up: bool
    transports: list[str]
    created_at: datetime
    last_used_at: datetime | None
