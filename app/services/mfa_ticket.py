"""Pending-login tickets binding a verified password to the MFA step."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass

from app.core.config import get_settings
from app.core.security import SecurityManager
from app.services import redis_client


@dataclass
class PendingLogin:
    ticket: str
    user_id: str
    attempts: int
    expires_at: float


def _key(ticket: str) -> str:
    return redis_client.state_key(redis_client.MFA_TICKET_PREFIX, ticket)


async def issue_ticket(user_id: str) -> str:
    settings = get_settings()
    ticket = SecurityManager.generate_ticket()
    pending = PendingLogin(ticket, user_id, 0, time.time() + settings.mfa_ticket_ttl_seconds)
    await _save(pending)
    return ticket


async def load_ticket(ticket: str | None) -> PendingLogin | None:
    if not ticket:
        return None
    redis = redis_client.get_redis_client()
    payload = await redis.get(_key(ticket))
    if not payload:
        return None
    data = json.loads(payload)
    pending = PendingLogin(ticket, data["user_id"], data["attempts"], data["expires_at"])
    if pending.expires_at <= time.time():
        await consume_ticket(ticket)
        return None
    return pending


async def record_failure(pending: PendingLogin) -> None:
    """Count a wrong code; the ticket is burnt once the attempt budget is spent."""
    pending.attempts += 1
    if pending.attempts >= get_settings().mfa_max_attempts:
        await consume_ticket(pending.ticket)
        return
    await _save(pending)


async def consume_ticket(ticket: str) -> None:
    redis = redis_client.get_redis_client()
    await redis.delete(_key(ticket))


async def _save(pending: PendingLogin) -> None:
    redis = redis_client.get_redis_client()
    remaining = max(1, int(pending.expires_at - time.time()))
    payload = json.dumps(
        {"user_id": pending.user_id, "attempts": pending.attempts, "expires_at": pending.expires_at}
    )
    await redis.set(_key(pending.ticket), payload, ex=remaining)
