"""Test fixtures for the simulator service."""
from __future__ import annotations

import asyncio
import os
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Generator
from typing import Any
from urllib.parse import parse_qs

os.environ.update(
    {
        "APP_NAME": "OAuth Simulator Test",
        "ENVIRONMENT": "test",
        "DEBUG": "False",
        "DATABASE_URL": "sqlite+aiosqlite:///./test-placeholder.db",
        "REDIS_URL": "redis://localhost:6379/0",
        "APP_URL": "http://testserver",
        "ORIGIN_URL": "http://localhost",
        "SECRET_KEY": "s" * 48,
        "TOTP_ENCRYPTION_KEY": "t" * 48,
        "SECURE_COOKIES": "False",
        "RATE_LIMIT_PER_IP": "20/minute",
        "RATE_LIMIT_STORAGE_URI": "memory://",
        "ARGON2_MEMORY_COST": "1024",
        "ARGON2_TIME_COST": "1",
        "ARGON2_PARALLELISM": "1",
        "FIDO_RP_ID": "localhost",
        "FIDO_RP_NAME": "OAuth Simulator Test",
        "LOG_LEVEL": "DEBUG",
    }
)

import httpx  # noqa: E402
import pytest  # noqa: E402
from authlib.jose import JsonWebKey, jwt  # noqa: E402
from cryptography.hazmat.primitives import serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import ec, rsa  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.api import dependencies  # noqa: E402
from app.core import rate_limit  # noqa: E402
from app.core.config import get_settings  # noqa: E402
from app.core.security import get_security_manager  # noqa: E402
from app.db.session import get_database  # noqa: E402
from app.main import create_app  # noqa: E402
from app.services.ceremony import get_ceremony_verifier  # noqa: E402
from app.services.redis_client import get_redis_client  # noqa: E402
from app.services.store import CredentialStore  # noqa: E402

ISSUER = "https://idp.example.com"
OIDC_CLIENT_ID = "simulator-app"
OIDC_CLIENT_SECRET = "simulator-secret"
PASSWORD = "correct-horse-42"


class InMemoryRedis:
    """Minimal async Redis replacement for tests."""

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float | None]] = {}
        self.closed = False

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        expires = time.monotonic() + ex if ex is not None else None
        self._store[key] = (value, expires)

    async def get(self, key: str) -> str | None:
        payload = self._store.get(key)
        if not payload:
            return None
        value, expires = payload
        if expires is not None and time.monotonic() > expires:
            self._store.pop(key, None)
            return None
        return value

    async def getdel(self, key: str) -> str | None:
        value = await self.get(key)
        self._store.pop(key, None)
        return value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def aclose(self) -> None:
        self.closed = True
        self._store.clear()

    def keys_with_prefix(self, prefix: str) -> list[str]:
        return [key for key in self._store if key.startswith(prefix)]


def run_async(coro: Awaitable[Any]) -> Any:
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class RsaSigner:
    """RSA key pair that signs ID/access tokens and publishes the matching JWKS."""

    def __init__(self, kid: str = "test-key") -> None:
        self.kid = kid
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.private_pem = private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        public_pem = private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        self.public_jwk = dict(JsonWebKey.import_key(public_pem, {"kty": "RSA"}).as_dict(is_private=False))
        self.public_jwk["kid"] = kid

    def sign(self, claims: dict[str, Any], kid: str | None = None) -> str:
        header = {"alg": "RS256", "kid": kid or self.kid}
        return jwt.encode(header, claims, self.private_pem).decode("ascii")

    def sign_with_ec_key(self, claims: dict[str, Any]) -> str:
        """ES256 token from a throwaway EC key that still names this signer's RSA kid."""
        ec_pem = ec.generate_private_key(ec.SECP256R1()).private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        return jwt.encode({"alg": "ES256", "kid": self.kid}, claims, ec_pem).decode("ascii")

    def id_token(self, nonce: str, **overrides: Any) -> str:
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "aud": OIDC_CLIENT_ID,
            "sub": "provider-user-1",
            "email": "dana@example.com",
            "nonce": nonce,
            "iat": now,
            "exp": now + 300,
        }
        claims.update(overrides)
        return self.sign(claims)


class StubProvider:
    """OpenID Provider served through ``httpx.MockTransport``."""

    def __init__(self, signer: RsaSigner) -> None:
        self.signer = signer
        self.calls: list[httpx.Request] = []
        self.token_forms: list[dict[str, str]] = []
        self.id_token: str | None = None
        self.token_status = 200
        self.token_payload: dict[str, Any] | None = None

    def discovery_document(self) -> dict[str, Any]:
        return {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/authorize",
            "token_endpoint": f"{ISSUER}/token",
            "jwks_uri": f"{ISSUER}/jwks",
            "end_session_endpoint": f"{ISSUER}/logout",
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path
        if path == "/.well-known/openid-configuration":
            return httpx.Response(200, json=self.discovery_document())
        if path == "/jwks":
            return httpx.Response(200, json={"keys": [self.signer.public_jwk]})
        if path == "/token":
            form = {key: values[0] for key, values in parse_qs(request.content.decode("utf-8")).items()}
            self.token_forms.append(form)
            if self.token_status != 200:
                return httpx.Response(self.token_status, text="invalid_grant")
            if self.token_payload is not None:
                return httpx.Response(200, json=self.token_payload)
            body: dict[str, Any] = {"access_token": "provider-access", "token_type": "Bearer", "expires_in": 3600}
            if self.id_token:
                body["id_token"] = self.id_token
            return httpx.Response(200, json=body)
        return httpx.Response(404, text="not found")

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    async def dependency(self) -> AsyncIterator[httpx.AsyncClient]:
        async with self.http_client() as client:
            yield client


@pytest.fixture
def app_env(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> Generator[InMemoryRedis, None, None]:
    tmp_dir = tmp_path_factory.mktemp("db")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_dir / 'test.db'}")

    caches = (
        get_settings,
        get_database,
        get_redis_client,
        get_security_manager,
        get_ceremony_verifier,
        dependencies.get_discovery_cache,
        dependencies.get_jwks_cache,
        dependencies.get_echo_discovery_cache,
        dependencies.get_echo_jwks_cache,
    )
    for cached in caches:
        cached.cache_clear()

    fake_redis = InMemoryRedis()
    monkeypatch.setattr("app.services.redis_client.get_redis_client", lambda: fake_redis)
    rate_limit.limiter.reset()

    database = get_database()
    run_async(database.create_all())

    yield fake_redis

    run_async(database.drop_all())
    run_async(database.dispose())
    for cached in caches:
        cached.cache_clear()


@pytest.fixture
def client(app_env: InMemoryRedis) -> Generator[TestClient, None, None]:
    app = create_app()
    with TestClient(app) as test_client:
        setattr(test_client, "redis", app_env)
        yield test_client


@pytest.fixture
def with_store(app_env: InMemoryRedis) -> Callable[[Callable[[CredentialStore], Awaitable[Any]]], Any]:
    """Run ``fn(store)`` in its own session and commit afterwards."""

    def runner(fn: Callable[[CredentialStore], Awaitable[Any]]) -> Any:
        async def main() -> Any:
            async with get_database().session()() as db:
                result = await fn(CredentialStore(db))
                await db.commit()
                return result

        return run_async(main())

    return runner


@pytest.fixture
def signer() -> RsaSigner:
    return RsaSigner()


@pytest.fixture
def provider(signer: RsaSigner) -> StubProvider:
    return StubProvider(signer)
