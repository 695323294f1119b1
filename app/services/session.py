"""Session credential: a signed, short-lived JWT carried in an http-only cookie."""
from __future__ import annotations

import logging
import time
from typing import Any

from authlib.jose import JsonWebToken
from authlib.jose.errors import JoseError
from fastapi import Request, Response

from app.core.config import Settings, get_settings
from app.models import User
from app.services.store import CredentialStore

logger = logging.getLogger("oauth_sim.auth")

_ALGORITHM = "HS256"
_jwt = JsonWebToken([_ALGORITHM])
_CLAIMS_OPTIONS = {
    "sub": {"essential": True},
    "exp": {"essential": True},
    "username": {"essential": True},
}


def create_session(user: User, settings: Settings | None = None) -> str:
    """Return a signed credential for ``user``.

    Only the id and username are embedded; status and role are looked up on
    every request so a disabled account loses access immediately.
    """
    settings = settings or get_settings()
    now = int(time.time())
    payload = {
        "sub": user.id,
        "username": user.username,
        "iat": now,
        "exp": now + settings.session_ttl_seconds,
    }
    token = _jwt.encode({"alg": _ALGORITHM, "typ": "JWT"}, payload, settings.secret_key)
    return token.decode("ascii")


def decode_session(token: str, settings: Settings | None = None) -> dict[str, Any] | None:
    """Return the verified claims or None for any malformed, forged or expired credential."""
    settings = settings or get_settings()
    try:
        claims = _jwt.decode(token, settings.secret_key, claims_options=_CLAIMS_OPTIONS)
        claims.validate()
    except (JoseError, ValueError, TypeError):
        return None
    return dict(claims)


def attach_session_to_response(response: Response, token: str, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_seconds,
        path="/",
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
    )


async def get_session(request: Request, store: CredentialStore) -> User | None:
    settings = get_settings()
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    claims = decode_session(token, settings)
    if claims is None:
        return None
    user = await store.get_user_by_id(claims["sub"])
    if user is None or user.disabled or user.username != claims["username"]:
        return None
    return user


async def is_authenticated(request: Request, store: CredentialStore) -> bool:
    return await get_session(request, store) is not None
