"""Session credential issuing and validation."""
from __future__ import annotations

import time

from authlib.jose import jwt
from starlette.requests import Request

from app.core.config import get_settings
from app.core.security import get_security_manager
from app.services import session as session_service

from conftest import PASSWORD


def request_with_cookie(token: str | None) -> Request:
    headers = []
    if token is not None:
        cookie = f"{get_settings().session_cookie_name}={token}"
        headers.append((b"cookie", cookie.encode("latin-1")))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers, "query_string": b""})


def create_user(with_store, username: str = "sam"):
    async def scenario(store):
        return await store.create_user(username, get_security_manager().hash_password(PASSWORD))

    return with_store(scenario)


def test_session_round_trip(app_env, with_store) -> None:
    user = create_user(with_store)
    token = session_service.create_session(user)

    claims = session_service.decode_session(token)
    assert claims["sub"] == user.id
    assert claims["username"] == "sam"
    assert claims["exp"] - claims["iat"] == get_settings().session_ttl_seconds
    assert set(claims) == {"sub", "username", "iat", "exp"}

    async def lookup(store):
        return await session_service.get_session(request_with_cookie(token), store)

    found = with_store(lookup)
    assert found is not None and found.id == user.id


def test_tampered_and_foreign_tokens_are_rejected(app_env, with_store) -> None:
    user = create_user(with_store)
    token = session_service.create_session(user)
    header, payload, signature = token.split(".")
    flipped = signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")

    assert session_service.decode_session(f"{header}.{payload}.{flipped}") is None
    assert session_service.decode_session("garbage") is None
    assert session_service.decode_session("") is None

    foreign = jwt.encode(
        {"alg": "HS256"},
        {"sub": user.id, "username": user.username, "iat": int(time.time()), "exp": int(time.time()) + 60},
        "another-secret-that-is-long-enough-000",
    ).decode("ascii")
    assert session_service.decode_session(foreign) is None


def test_expired_token_is_rejected(app_env, with_store) -> None:
    user = create_user(with_store)
    issued = int(time.time()) - 7200
    expired = jwt.encode(
        {"alg": "HS256"},
        {"sub": user.id, "username": user.username, "iat": issued, "exp": issued + 60},
        get_settings().secret_key,
    ).decode("ascii")
    assert session_service.decode_session(expired) is None


def test_missing_claims_are_rejected(app_env) -> None:
    now = int(time.time())
    token = jwt.encode({"alg": "HS256"}, {"sub": "x", "iat": now, "exp": now + 60}, get_settings().secret_key)
    assert session_service.decode_session(token.decode("ascii")) is None


def test_session_lookup_rechecks_account(app_env, with_store) -> None:
    user = create_user(with_store)
    token = session_service.create_session(user)

    async def lookup(store):
        return await session_service.get_session(request_with_cookie(token), store)

    async def disable(store):
        await store.update_user_status(user.id, True)

    async def delete(store):
        await store.delete_user(user.id)

    with_store(disable)
    assert with_store(lookup) is None

    with_store(delete)
    assert with_store(lookup) is None


def test_session_lookup_without_cookie(app_env, with_store) -> None:
    async def lookup(store):
        return await session_service.is_authenticated(request_with_cookie(None), store)

    assert with_store(lookup) is False
