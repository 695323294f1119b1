"""Password login, two-step TOTP login and registration."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.config import get_settings
from app.core.security import PasswordValidationError, SecurityManager, get_security_manager
from app.models import User, UserRole
from app.services import mfa_ticket, totp
from app.services.session import create_session
from app.services.settings import get_auth_settings
from app.services.store import CredentialStore

logger = logging.getLogger("oauth_sim.auth")

INVALID_CREDENTIALS = "Invalid credentials"
ACCOUNT_DISABLED = "Account is disabled"
INVALID_MFA_CODE = "Invalid MFA code"
MFA_TICKET_EXPIRED = "MFA session expired, please log in again"
PASSWORD_LOGIN_DISABLED = "Password login is disabled"


@dataclass
class AuthResult:
    """Outcome of any login path. ``session_token`` is set only when authenticated."""

    success: bool
    error: str | None = None
    mfa_required: bool = False
    mfa_ticket: str | None = None
    user: User | None = None
    session_token: str | None = None

    @classmethod
    def rejected(cls, error: str) -> AuthResult:
        return cls(success=False, error=error)

    @classmethod
    def authenticated(cls, user: User) -> AuthResult:
        return cls(success=True, user=user, session_token=create_session(user))


async def login(
    store: CredentialStore,
    username: str,
    password: str,
    manager: SecurityManager | None = None,
) -> AuthResult:
    manager = manager or get_security_manager()
    auth_settings = await get_auth_settings(store)
    if not auth_settings.enable_password_login:
        return AuthResult.rejected(PASSWORD_LOGIN_DISABLED)

    user = await store.get_user_by_username(username)
    if user is None:
        manager.burn_password_check(password)
        logger.info("Login rejected for unknown username")
        return AuthResult.rejected(INVALID_CREDENTIALS)
    if user.disabled:
        logger.warning("Login rejected for disabled user %s", user.id)
        return AuthResult.rejected(ACCOUNT_DISABLED)
    if not manager.verify_password(password, user.password_hash):
        logger.info("Login rejected for user %s: wrong password", user.id)
        return AuthResult.rejected(INVALID_CREDENTIALS)

    if user.mfa_enabled:
        ticket = await mfa_ticket.issue_ticket(user.id)
        logger.info("MFA required for user %s", user.id)
        return AuthResult(success=False, mfa_required=True, mfa_ticket=ticket)

    logger.info("Password login succeeded for user %s", user.id)
    return AuthResult.authenticated(user)


async def login_with_mfa(
    store: CredentialStore,
    username: str,
    code: str,
    ticket: str | None,
    manager: SecurityManager | None = None,
) -> AuthResult:
    """Second step of a password login; ``ticket`` must come from :func:`login`."""
    auth_settings = await get_auth_settings(store)
    if not auth_settings.enable_password_login:
        if ticket:
            await mfa_ticket.consume_ticket(ticket)
        return AuthResult.rejected(PASSWORD_LOGIN_DISABLED)

    user = await store.get_user_by_username(username)
    if user is None or not user.mfa_enabled:
        return AuthResult.rejected(INVALID_MFA_CODE)

    pending = await mfa_ticket.load_ticket(ticket)
    if pending is None or pending.user_id != user.id:
        logger.warning("MFA step for user %s without a valid pending login", user.id)
        return AuthResult.rejected(MFA_TICKET_EXPIRED)
    if user.disabled:
        await mfa_ticket.consume_ticket(pending.ticket)
        return AuthResult.rejected(ACCOUNT_DISABLED)

    if not totp.verify_user_totp(user, code, manager):
        await mfa_ticket.record_failure(pending)
        logger.info("Wrong MFA code for user %s", user.id)
        return AuthResult.rejected(INVALID_MFA_CODE)

    await mfa_ticket.consume_ticket(pending.ticket)
    logger.info("MFA login succeeded for user %s", user.id)
    return AuthResult.authenticated(user)


async def register(
    store: CredentialStore,
    username: str,
    password: str,
    confirm_password: str | None = None,
    manager: SecurityManager | None = None,
) -> AuthResult:
    if confirm_password is not None and password != confirm_password:
        return AuthResult.rejected("Passwords do not match")
    username = username.strip()
    if not username:
        return AuthResult.rejected("Username is required")

    manager = manager or get_security_manager()
    try:
        password_hash = manager.hash_password(password)
    except PasswordValidationError as exc:
        return AuthResult.rejected(str(exc))

    if await store.get_user_by_username(username) is not None:
        return AuthResult.rejected("Username already taken")

    role = UserRole.ADMIN if username == get_settings().admin_username else UserRole.USER
    user = await store.create_user(username, password_hash, role=role)
    logger.info("Registered user %s", user.id)
    return AuthResult.authenticated(user)


async def change_password(
    store: CredentialStore,
    user: User,
    current_password: str,
    new_password: str,
    manager: SecurityManager | None = None,
) -> str | None:
    """Return an error message, or None when the password was changed."""
    manager = manager or get_security_manager()
    if not manager.verify_password(current_password, user.password_hash):
        return "Current password is incorrect"
    try:
        password_hash = manager.hash_password(new_password)
    except PasswordValidationError as exc:
        return str(exc)
    await store.update_user_password(user.id, password_hash)
    return None


async def reset_password(
    store: CredentialStore,
    user_id: str,
    new_password: str,
    manager: SecurityManager | None = None,
) -> str | None:
    manager = manager or get_security_manager()
    try:
        password_hash = manager.hash_password(new_password)
    except PasswordValidationError as exc:
        return str(exc)
    await store.update_user_password(user_id, password_hash)
    logger.info("Password reset by administrator for user %s", user_id)
    return None
