"""Login through the configured external OpenID Provider."""

import logging
from urllib.parse import quote

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from app.api.dependencies import get_discovery_cache, get_http_client, get_jwks_cache, get_store
from app.core.config import get_settings
from app.core.errors import ConfigurationError, DiscoveryError
from app.core.rate_limit import limiter
from app.services import oidc
from app.services import session as session_service
from app.services.discovery import DiscoveryCache
from app.services.jwks import JwksCache
from app.services.store import CredentialStore

router = APIRouter(prefix="/api/auth/oidc", tags=["oidc"])
settings = get_settings()
logger = logging.getLogger("oauth_sim.oidc")

STATE_COOKIE = "oidc_state"
NONCE_COOKIE = "oidc_nonce"


def _login_error(message: str) -> RedirectResponse:
    return RedirectResponse(f"/login?error={quote(message)}", status_code=302)


def _set_flow_cookie(response: RedirectResponse, name: str, value: str) -> None:
    current = get_settings()
    response.set_cookie(
        key=name,
        value=value,
        max_age=current.oidc_state_ttl_seconds,
        path="/",
        httponly=True,
        secure=current.secure_cookies,
        samesite="lax",
    )


def _clear_flow_cookies(response: RedirectResponse) -> None:
    current = get_settings()
    for name in (STATE_COOKIE, NONCE_COOKIE):
        response.delete_cookie(name, path="/", httponly=True, secure=current.secure_cookies, samesite="lax")


@router.get("/login")
@limiter.limit(settings.rate_limit_per_ip)
async def oidc_login(
    request: Request,
    store: CredentialStore = Depends(get_store),
    http: httpx.AsyncClient = Depends(get_http_client),
    discovery_cache: DiscoveryCache = Depends(get_discovery_cache),
) -> RedirectResponse:
    try:
        login_request = await oidc.begin_login(store, http=http, discovery_cache=discovery_cache)
    except (ConfigurationError, DiscoveryError) as exc:
        logger.warning("OIDC login could not start: %s", exc)
        return _login_error(str(exc) if isinstance(exc, ConfigurationError) else "Identity provider unavailable")

    response = RedirectResponse(login_request.url, status_code=302)
    _set_flow_cookie(response, STATE_COOKIE, login_request.state)
    _set_flow_cookie(response, NONCE_COOKIE, login_request.nonce)
    return response


@router.get("/callback")
@limiter.limit(settings.rate_limit_per_ip)
async def oidc_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    store: CredentialStore = Depends(get_store),
    http: httpx.AsyncClient = Depends(get_http_client),
    discovery_cache: DiscoveryCache = Depends(get_discovery_cache),
    jwks_cache: JwksCache = Depends(get_jwks_cache),
) -> RedirectResponse:
    try:
        result = await oidc.complete_login(
            store,
            code,
            state,
            request.cookies.get(STATE_COOKIE),
            request.cookies.get(NONCE_COOKIE),
            http=http,
            discovery_cache=discovery_cache,
            jwks_cache=jwks_cache,
            error=error_description or error,
        )
    except Exception:
        # Uncommitted work is discarded with the request session.
        logger.exception("OIDC callback failed")
        response = _login_error("Login failed")
        _clear_flow_cookies(response)
        return response
    await store.commit()

    if result.success:
        response = RedirectResponse("/", status_code=302)
        session_service.attach_session_to_response(response, result.session_token)
    else:
        response = _login_error(result.error or "Login failed")
    _clear_flow_cookies(response)
    return response
