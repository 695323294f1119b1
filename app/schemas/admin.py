"""Administration schemas."""
from __future__ import annotations

from pydantic import BaseModel

from app.services.settings import AuthSettings


class UserStatusRequest(BaseModel):
    disabled: bool


class AdminPasswordRequest(BaseModel):
    new_password: str


class MergeUsersRequest(BaseModel):
    source_user_id: str
    target_user_id: str


class SettingsRead(BaseModel):
    enable_password_login: bool
    enable_oidc_login: bool
    enable_oidc_auto_provision: bool
    oidc_username_claim: str
    oidc_group_claim: str | None
    oidc_required_groups: str | None
    oidc_issuer: str | None
    oidc_client_id: str | None
    oidc_client_secret_set: bool

    @classmethod
    def from_settings(cls, auth_settings: AuthSettings) -> SettingsRead:
        values = auth_settings.model_dump(exclude={"oidc_client_secret"})
        return cls(**values, oidc_client_secret_set=bool(auth_settings.oidc_client_secret))


class SettingsUpdate(BaseModel):
    enable_password_login: bool | None = None
    enable_oidc_login: bool | None = None
    enable_oidc_auto_provision: bool | None = None
    oidc_username_claim: str | None = None
    oidc_group_claim: str | None = None
    oidc_required_groups: str | None = None
    oidc_issuer: str | None = None
    oidc_client_id: str | None = None
    oidc_client_secret: str | None = None
