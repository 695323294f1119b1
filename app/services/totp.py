"""TOTP service."""
from __future__ import annotations

from app.core.security import SecurityManager, get_security_manager
from app.models import User
from app.services.store import CredentialStore


def generate_totp_secret_for(user: User, manager: SecurityManager | None = None) -> tuple[str, str]:
    """Return a candidate secret and its otpauth:// URI. Nothing is persisted."""
    manager = manager or get_security_manager()
    secret = manager.generate_totp_secret()
    return secret, manager.totp_provisioning_uri(secret, user.username)


async def confirm_totp_enrollment(
    store: CredentialStore,
    user_id: str,
    secret: str,
    code: str,
    manager: SecurityManager | None = None,
) -> bool:
    """Persist ``secret`` only if ``code`` proves the authenticator app holds it."""
    manager = manager or get_security_manager()
    if not manager.verify_totp_code(secret, code):
        return False
    await store.update_user_totp_secret(user_id, manager.encrypt_secret(secret))
    return True


def verify_user_totp(user: User, code: str, manager: SecurityManager | None = None) -> bool:
    if not user.totp_secret:
        return False
    manager = manager or get_security_manager()
    secret = manager.decrypt_secret(user.totp_secret)
    return manager.verify_totp_code(secret, code)


async def disable_totp(store: CredentialStore, user_id: str) -> None:
    await store.update_user_totp_secret(user_id, None)
