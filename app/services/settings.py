"""Process-wide authentication settings persisted as key/value rows."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from app.services.store import CredentialStore

# field name -> (storage key, default)
_FIELDS: dict[str, tuple[str, Any]] = {
    "enable_password_login": ("enable_password_login", True),
    "enable_oidc_login": ("enable_oidc_login", False),
    "enable_oidc_auto_provision": ("enable_oidc_auto_provision", True),
    "oidc_username_claim": ("oidc_username_claim", "email"),
    "oidc_group_claim": ("oidc_group_claim", None),
    "oidc_required_groups": ("oidc_required_groups", None),
    "oidc_issuer": ("oidc_issuer", None),
    "oidc_client_id": ("oidc_client_id", None),
    "oidc_client_secret": ("oidc_client_secret", None),
}


class AuthSettings(BaseModel):
    enable_password_login: bool = True
    enable_oidc_login: bool = False
    enable_oidc_auto_provision: bool = True
    oidc_username_claim: str = "email"
    oidc_group_claim: str | None = None
    oidc_required_groups: str | None = None
    oidc_issuer: str | None = None
    oidc_client_id: str | None = None
    oidc_client_secret: str | None = None

    @property
    def oidc_configured(self) -> bool:
        return bool(self.oidc_issuer and self.oidc_client_id and self.oidc_client_secret)

    @property
    def required_groups(self) -> list[str]:
        if not self.oidc_required_groups:
            return []
        return [group.strip() for group in self.oidc_required_groups.split(",") if group.strip()]


def _parse(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() == "true"
    return raw or default


async def get_auth_settings(store: CredentialStore) -> AuthSettings:
    stored = await store.get_settings_map()
    values: dict[str, Any] = {}
    for field, (key, default) in _FIELDS.items():
        raw = stored.get(key)
        values[field] = default if raw is None else _parse(raw, default)
    return AuthSettings(**values)


async def update_auth_settings(store: CredentialStore, partial: dict[str, Any]) -> AuthSettings:
    """Write only the keys present in ``partial``; ``None`` clears optional text values."""
    for field, value in partial.items():
        if field not in _FIELDS:
            raise KeyError(f"unknown setting {field!r}")
        key, default = _FIELDS[field]
        if isinstance(default, bool):
            if value is None:
                continue
            await store.set_setting(key, "true" if value else "false")
        else:
            await store.set_setting(key, "" if value is None else str(value))
    return await get_auth_settings(store)
