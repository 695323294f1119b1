"""API dependencies."""
from __future__ import annotations

from collections.abc import AsyncIterator
from functools import lru_cache

import httpx
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.session import get_db_session
from app.models import User
from app.services import session as session_service
from app.services.ceremony import CeremonyVerifier, get_ceremony_verifier
from app.services.discovery import DiscoveryCache
from app.services.jwks import JwksCache
from app.services.store import CredentialStore


async def get_store(db: AsyncSession = Depends(get_db_session)) -> CredentialStore:
    return CredentialStore(db)


async def require_session(request: Request, store: CredentialStore = Depends(get_store)) -> User:
    user = await session_service.get_session(request, store)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not_authenticated")
    request.state.user = user
    return user


async def require_admin(user: User = Depends(require_session)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient_role")
    return user


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Outbound client for provider calls; every request is bounded by ``HTTP_TIMEOUT_SECONDS``."""
    settings = get_settings()
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        yield client


@lru_cache(maxsize=1)
def get_discovery_cache() -> DiscoveryCache:
    return DiscoveryCache(get_settings().discovery_cache_ttl_seconds)


@lru_cache(maxsize=1)
def get_jwks_cache() -> JwksCache:
    return JwksCache(get_settings().jwks_cache_ttl_seconds)


# Echo-endpoint lookups follow caller-chosen issuers, so they never share or evict the login caches.
ECHO_CACHE_MAX_ENTRIES = 32


@lru_cache(maxsize=1)
def get_echo_discovery_cache() -> DiscoveryCache:
    return DiscoveryCache(get_settings().discovery_cache_ttl_seconds, max_entries=ECHO_CACHE_MAX_ENTRIES)


@lru_cache(maxsize=1)
def get_echo_jwks_cache() -> JwksCache:
    return JwksCache(get_settings().jwks_cache_ttl_seconds, max_entries=ECHO_CACHE_MAX_ENTRIES)


def get_verifier() -> CeremonyVerifier:
    return get_ceremony_verifier()
