"""OpenID Provider discovery with an injectable TTL cache."""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from app.core.errors import DiscoveryError

logger = logging.getLogger("oauth_sim.oidc")

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


@dataclass
class CachedDocument:
    document: dict[str, Any]
    fetched_at: float


class DocumentCache:
    """JSON documents keyed by URL.

    Entries older than ``ttl_seconds`` are refetched; ``invalidate`` drops one
    URL (or everything) on demand. At most ``max_entries`` documents are held,
    the least recently used going first.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 128,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CachedDocument] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CachedDocument, now: float) -> bool:
        return now - entry.fetched_at > self.ttl_seconds

    def get(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry, self._clock()):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.document

    def put(self, key: str, document: dict[str, Any]) -> None:
        now = self._clock()
        for stale in [name for name, entry in self._entries.items() if self._expired(entry, now)]:
            del self._entries[stale]
        self._entries[key] = CachedDocument(document=document, fetched_at=now)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)


class DiscoveryCache(DocumentCache):
    """Provider configuration documents keyed by discovery URL."""


def discovery_url(issuer: str) -> str:
    base = issuer.rstrip("/")
    if base.endswith(WELL_KNOWN_PATH):
        return base
    return base + WELL_KNOWN_PATH


async def discover_endpoints(issuer: str, *, http: httpx.AsyncClient, cache: DiscoveryCache) -> dict[str, Any]:
    """Return the provider's configuration document for ``issuer``.

    The returned mapping carries at least ``authorization_endpoint``,
    ``token_endpoint``, ``jwks_uri`` and ``issuer``.
    """
    url = discovery_url(issuer)
    cached = cache.get(url)
    if cached is not None:
        return cached

    try:
        response = await http.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        logger.warning("Discovery request to %s failed: %s", url, exc)
        raise DiscoveryError(f"Failed to fetch OIDC discovery document: {exc}") from exc

    if not response.is_success:
        raise DiscoveryError(
            f"Failed to fetch OIDC discovery document: {response.status_code}",
            status_code=response.status_code,
            reason=response.reason_phrase,
            body=response.text,
        )
    try:
        document = response.json()
    except ValueError as exc:
        raise DiscoveryError("OIDC discovery document is not valid JSON", status_code=response.status_code) from exc
    if not isinstance(document, dict):
        raise DiscoveryError("OIDC discovery document is not a JSON object", status_code=response.status_code)

    missing = [key for key in ("authorization_endpoint", "token_endpoint", "jwks_uri") if not document.get(key)]
    if missing:
        raise DiscoveryError(f"OIDC discovery document is missing {', '.join(missing)}")

    document.setdefault("issuer", issuer.rstrip("/").removesuffix(WELL_KNOWN_PATH))
    cache.put(url, document)
    logger.info("Loaded OIDC discovery document for %s", url)
    return document
