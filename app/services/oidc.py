"""Login through an external OpenID Provider.

``begin_login`` mints the state/nonce pair and the provider redirect;
``complete_login`` runs the callback checks in a fixed order: state, nonce
presence, code exchange, ID token verification, nonce binding, claim
extraction, group gate, then local account resolution.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from app.core.config import get_settings
from app.core.errors import ConfigurationError, TokenVerificationError, UpstreamError
from app.core.security import SecurityManager, get_security_manager
from app.services.auth import ACCOUNT_DISABLED, AuthResult
from app.services.discovery import DiscoveryCache, discover_endpoints
from app.services.jwks import JwksCache, verify_jwt
from app.services.oauth_client import request_token
from app.services.settings import AuthSettings, get_auth_settings
from app.services.store import CredentialStore

logger = logging.getLogger("oauth_sim.oidc")

OIDC_SCOPE = "openid email profile"
REGISTRATION_DISABLED = "User not found and registration disabled"


@dataclass
class OidcLoginRequest:
    url: str
    state: str
    nonce: str


async def _require_oidc_settings(store: CredentialStore) -> AuthSettings:
    auth_settings = await get_auth_settings(store)
    if not auth_settings.enable_oidc_login:
        raise ConfigurationError("OIDC login is disabled")
    if not auth_settings.oidc_configured:
        raise ConfigurationError("OIDC is not configured. Configure it in admin settings.")
    return auth_settings


async def begin_login(
    store: CredentialStore,
    *,
    http: httpx.AsyncClient,
    discovery_cache: DiscoveryCache,
) -> OidcLoginRequest:
    auth_settings = await _require_oidc_settings(store)
    document = await discover_endpoints(auth_settings.oidc_issuer, http=http, cache=discovery_cache)

    state = SecurityManager.generate_state()
    nonce = SecurityManager.generate_nonce()
    params = {
        "client_id": auth_settings.oidc_client_id,
        "redirect_uri": get_settings().oidc_redirect_uri,
        "response_type": "code",
        "scope": OIDC_SCOPE,
        "state": state,
        "nonce": nonce,
    }
    endpoint = document["authorization_endpoint"]
    separator = "&" if "?" in endpoint else "?"
    return OidcLoginRequest(url=f"{endpoint}{separator}{urlencode(params)}", state=state, nonce=nonce)


def _groups_allowed(claims: dict[str, Any], auth_settings: AuthSettings) -> bool:
    required = auth_settings.required_groups
    if not auth_settings.oidc_group_claim or not required:
        return True
    presented = claims.get(auth_settings.oidc_group_claim)
    if isinstance(presented, str):
        presented = [presented]
    if not isinstance(presented, list):
        return False
    return any(group in presented for group in required)


async def complete_login(
    store: CredentialStore,
    code: str | None,
    state: str | None,
    stored_state: str | None,
    stored_nonce: str | None,
    *,
    http: httpx.AsyncClient,
    discovery_cache: DiscoveryCache,
    jwks_cache: JwksCache,
    error: str | None = None,
) -> AuthResult:
    """Process the provider callback. Every failure is an ``AuthResult`` with a short message."""
    if error:
        logger.info("OIDC provider returned error %s", error)
        return AuthResult.rejected(error)
    if not state or not stored_state or not SecurityManager.constant_time_compare(state, stored_state):
        logger.warning("OIDC callback rejected: state mismatch")
        return AuthResult.rejected("Invalid state parameter")
    if not stored_nonce:
        logger.warning("OIDC callback rejected: no stored nonce")
        return AuthResult.rejected("Missing nonce")
    if not code:
        return AuthResult.rejected("Missing authorization code")

    try:
        auth_settings = await _require_oidc_settings(store)
    except ConfigurationError as exc:
        return AuthResult.rejected(str(exc))

    try:
        document = await discover_endpoints(auth_settings.oidc_issuer, http=http, cache=discovery_cache)
        tokens = await request_token(
            http,
            document["token_endpoint"],
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": get_settings().oidc_redirect_uri,
                "client_id": auth_settings.oidc_client_id,
                "client_secret": auth_settings.oidc_client_secret,
            },
        )
    except UpstreamError as exc:
        logger.warning("OIDC code exchange failed: %s", exc)
        return AuthResult.rejected("Failed to exchange authorization code")

    id_token = tokens.get("id_token")
    if not isinstance(id_token, str) or not id_token:
        return AuthResult.rejected("No ID token in token response")

    try:
        claims = await verify_jwt(
            id_token,
            document["jwks_uri"],
            http=http,
            cache=jwks_cache,
            issuer=document["issuer"],
            audience=auth_settings.oidc_client_id,
        )
    except (TokenVerificationError, UpstreamError) as exc:
        logger.warning("OIDC ID token rejected: %s", exc)
        return AuthResult.rejected("ID token verification failed")

    if not SecurityManager.constant_time_compare(str(claims.get("nonce", "")), stored_nonce):
        logger.warning("OIDC callback rejected: nonce mismatch")
        return AuthResult.rejected("Invalid nonce")

    identifier = claims.get(auth_settings.oidc_username_claim)
    if not isinstance(identifier, str) or not identifier:
        return AuthResult.rejected(f"Username claim '{auth_settings.oidc_username_claim}' missing from ID token")

    if not _groups_allowed(claims, auth_settings):
        logger.warning("OIDC login for %s rejected: not in a required group", identifier)
        return AuthResult.rejected("User is not a member of a required group")

    return await login_with_oidc(store, identifier)


async def login_with_oidc(
    store: CredentialStore,
    identifier: str,
    manager: SecurityManager | None = None,
) -> AuthResult:
    """Resolve (or provision) the local account for a verified provider identity."""
    user = await store.get_user_by_username(identifier)
    if user is None:
        auth_settings = await get_auth_settings(store)
        if not auth_settings.enable_oidc_auto_provision:
            logger.info("OIDC login for unknown user rejected: auto-provisioning disabled")
            return AuthResult.rejected(REGISTRATION_DISABLED)
        manager = manager or get_security_manager()
        email = identifier if "@" in identifier else None
        user = await store.create_user(identifier, manager.hash_unusable_password(), email=email)
        logger.info("Provisioned user %s from OIDC login", user.id)

    if user.disabled:
        logger.warning("OIDC login rejected for disabled user %s", user.id)
        return AuthResult.rejected(ACCOUNT_DISABLED)

    logger.info("OIDC login succeeded for user %s", user.id)
    return AuthResult.authenticated(user)
