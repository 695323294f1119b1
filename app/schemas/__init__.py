"""Pydantic schemas exposed by the API."""
from .admin import AdminPasswordRequest, MergeUsersRequest, SettingsRead, SettingsUpdate, UserStatusRequest
from .auth import (
    GenericResponse,
    LoginRequest,
    LoginSuccessResponse,
    MFALoginRequest,
    MFARequiredResponse,
    PasskeyRead,
    RegisterRequest,
    TOTPConfirmRequest,
    TOTPDisableRequest,
    TOTPSetupResponse,
    WebAuthnFinishRequest,
    WebAuthnLoginFinishRequest,
    WebAuthnLoginStartRequest,
    WebAuthnStartResponse,
)
from .client import (
    ClientCreate,
    ClientRead,
    ClientUpdate,
    DiscoverRequest,
    DiscoverResponse,
    HttpProbeRequest,
    LogoutUrlRequest,
    LogoutUrlResponse,
    RefreshRequest,
    TokenDecodeRequest,
    TokenDecodeResponse,
    TokenSetResponse,
    TokenVerifyRequest,
)
from .user import EmailUpdateRequest, PasswordChangeRequest, UserRead

__all__ = [
    "AdminPasswordRequest",
    "ClientCreate",
    "ClientRead",
    "ClientUpdate",
    "DiscoverRequest",
    "DiscoverResponse",
    "EmailUpdateRequest",
    "GenericResponse",
    "HttpProbeRequest",
    "LoginRequest",
    "LoginSuccessResponse",
    "LogoutUrlRequest",
    "LogoutUrlResponse",
    "MFALoginRequest",
    "MFARequiredResponse",
    "MergeUsersRequest",
    "PasskeyRead",
    "PasswordChangeRequest",
    "RefreshRequest",
    "RegisterRequest",
    "SettingsRead",
    "SettingsUpdate",
    "TOTPConfirmRequest",
    "TOTPDisableRequest",
    "TOTPSetupResponse",
    "TokenDecodeRequest",
    "TokenDecodeResponse",
    "TokenSetResponse",
    "TokenVerifyRequest",
    "UserRead",
    "UserStatusRequest",
    "WebAuthnFinishRequest",
    "WebAuthnLoginFinishRequest",
    "WebAuthnLoginStartRequest",
    "WebAuthnStartResponse",
]
