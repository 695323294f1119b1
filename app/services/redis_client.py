"""Shared Redis connection for short-lived server-side state."""
from __future__ import annotations

from functools import lru_cache

from redis.asyncio import Redis

from app.core.config import get_settings

MFA_TICKET_PREFIX = "mfa:pending"
OAUTH_STATE_PREFIX = "oauth:state"


def state_key(prefix: str, token: str) -> str:
    return f"{prefix}:{token}"


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    settings = get_settings()
    return Redis.from_url(settings.redis_url, decode_responses=True)


async def close_redis_client() -> None:
    await get_redis_client().aclose()
