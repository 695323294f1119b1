"""JWKS fetching and JWT signature verification."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from app.core.errors import TokenVerificationError, UpstreamError
from app.services.discovery import DocumentCache
from app.utils.encoding import b64url_decode

logger = logging.getLogger("oauth_sim.jwks")

ASYMMETRIC_ALGORITHMS = [
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
    "EdDSA",
]
_jwt = JsonWebToken(ASYMMETRIC_ALGORITHMS)

# JWK "kty" each algorithm family needs.
KEY_TYPES = {"RS": "RSA", "PS": "RSA", "ES": "EC", "Ed": "OKP"}


class JwksCache(DocumentCache):
    """Remote key sets keyed by JWKS URL."""


@dataclass
class SignatureCheck:
    valid: bool
    key_id: str | None = None
    algorithm: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.valid:
            return {"valid": True, "keyId": self.key_id, "algorithm": self.algorithm}
        return {"valid": False, "error": self.error}


def token_header(token: str) -> dict[str, Any]:
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("Token is not a compact JWS")
    header = json.loads(b64url_decode(parts[0]))
    if not isinstance(header, dict):
        raise ValueError("Token header is not a JSON object")
    return header


async def fetch_jwks(jwks_url: str, *, http: httpx.AsyncClient, cache: JwksCache, refresh: bool = False) -> dict[str, Any]:
    if not refresh:
        cached = cache.get(jwks_url)
        if cached is not None:
            return cached
    try:
        response = await http.get(jwks_url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        raise UpstreamError(f"Failed to fetch JWKS: {exc}") from exc
    if not response.is_success:
        raise UpstreamError(
            f"Failed to fetch JWKS: {response.status_code} {response.reason_phrase}",
            status_code=response.status_code,
            reason=response.reason_phrase,
            body=response.text,
        )
    try:
        document = response.json()
    except ValueError as exc:
        raise UpstreamError("JWKS response is not valid JSON", status_code=response.status_code) from exc
    if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
        raise UpstreamError("JWKS response has no keys array", status_code=response.status_code)
    cache.put(jwks_url, document)
    return document


def _select_key(jwks: dict[str, Any], kid: str | None) -> dict[str, Any] | None:
    keys = [key for key in jwks.get("keys", []) if isinstance(key, dict)]
    if kid:
        return next((key for key in keys if key.get("kid") == kid), None)
    if len(keys) == 1:
        return keys[0]
    return None


async def _resolve_key(
    jwks_url: str, kid: str | None, algorithm: str, *, http: httpx.AsyncClient, cache: JwksCache
) -> Any:
    jwks = await fetch_jwks(jwks_url, http=http, cache=cache)
    jwk = _select_key(jwks, kid)
    if jwk is None and kid:
        # The provider may have rotated keys since the set was cached.
        jwks = await fetch_jwks(jwks_url, http=http, cache=cache, refresh=True)
        jwk = _select_key(jwks, kid)
    if jwk is None:
        if kid:
            raise TokenVerificationError(f"No key matching kid {kid!r} in JWKS")
        raise TokenVerificationError("Token has no kid and the JWKS does not hold exactly one key")
    key_type = jwk.get("kty")
    if key_type != KEY_TYPES[algorithm[:2]]:
        raise TokenVerificationError(f"Key {jwk.get('kid')!r} of type {key_type} cannot verify {algorithm}")
    try:
        return JsonWebKey.import_key(jwk)
    except (JoseError, ValueError) as exc:
        raise TokenVerificationError(f"Unsupported key in JWKS: {exc}") from exc


def _checked_header(token: str) -> dict[str, Any]:
    try:
        header = token_header(token)
    except ValueError as exc:
        raise TokenVerificationError("Invalid JWT format") from exc
    algorithm = header.get("alg")
    if algorithm not in ASYMMETRIC_ALGORITHMS:
        raise TokenVerificationError(f"Unsupported algorithm: {algorithm}")
    return header


async def verify_jwt(
    token: str,
    jwks_url: str,
    *,
    http: httpx.AsyncClient,
    cache: JwksCache,
    issuer: str | None = None,
    audience: str | None = None,
    leeway: int = 60,
) -> dict[str, Any]:
    """Verify signature and registered claims; return the payload or raise ``TokenVerificationError``."""
    header = _checked_header(token)
    key = await _resolve_key(jwks_url, header.get("kid"), header["alg"], http=http, cache=cache)

    claims_options: dict[str, Any] = {}
    if issuer is not None:
        claims_options["iss"] = {"essential": True, "value": issuer}
    if audience is not None:
        claims_options["aud"] = {"essential": True, "value": audience}
    try:
        claims = _jwt.decode(token, key, claims_options=claims_options)
        claims.validate(leeway=leeway)
    except JoseError as exc:
        raise TokenVerificationError(f"Token verification failed: {exc.error}") from exc
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenVerificationError(f"Token verification failed: {exc}") from exc
    return dict(claims)


async def verify_signature(token: str, jwks_url: str, *, http: httpx.AsyncClient, cache: JwksCache) -> SignatureCheck:
    """Check only the signature of ``token``. Never raises; failures come back as ``valid=False``."""
    try:
        header = _checked_header(token)
        key = await _resolve_key(jwks_url, header.get("kid"), header["alg"], http=http, cache=cache)
        _jwt.decode(token, key)
    except (TokenVerificationError, UpstreamError) as exc:
        return SignatureCheck(valid=False, error=str(exc))
    except JoseError as exc:
        logger.info("Signature check against %s failed: %s", jwks_url, exc.error)
        return SignatureCheck(valid=False, error=f"Signature verification failed: {exc.error}")
    except Exception as exc:
        logger.warning("Signature check against %s raised %s: %s", jwks_url, type(exc).__name__, exc)
        return SignatureCheck(valid=False, error=f"Signature verification failed: {exc}")
    return SignatureCheck(valid=True, key_id=header.get("kid"), algorithm=header["alg"])
