"""Bearer-protected echo resource for testing access tokens end to end."""

import logging
import time
from typing import Any

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.api.dependencies import get_echo_discovery_cache, get_echo_jwks_cache, get_http_client
from app.core.errors import DiscoveryError
from app.services.discovery import DiscoveryCache, discover_endpoints
from app.services.jwks import JwksCache, SignatureCheck, verify_signature
from app.services.oauth_client import DecodedToken, decode_token_for_display
from app.utils.request import get_bearer_token, redacted_headers

router = APIRouter(prefix="/api/endpoint", tags=["endpoint"])
logger = logging.getLogger("oauth_sim.jwks")


def _require_token(request: Request) -> tuple[str, DecodedToken]:
    token = get_bearer_token(request)
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_bearer_token")
    decoded = decode_token_for_display(token)
    if decoded is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_jwt_format")
    exp = decoded.payload.get("exp")
    if isinstance(exp, (int, float)) and exp < time.time():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="token_expired")
    return token, decoded


async def _check_signature(
    token: str,
    decoded: DecodedToken,
    http: httpx.AsyncClient,
    discovery_cache: DiscoveryCache,
    jwks_cache: JwksCache,
) -> SignatureCheck:
    issuer = decoded.payload.get("iss")
    if not isinstance(issuer, str) or not issuer:
        return SignatureCheck(valid=False, error="Token has no iss claim")
    try:
        document = await discover_endpoints(issuer, http=http, cache=discovery_cache)
    except DiscoveryError as exc:
        return SignatureCheck(valid=False, error=str(exc))
    return await verify_signature(token, document["jwks_uri"], http=http, cache=jwks_cache)


def _echo(request: Request, decoded: DecodedToken, check: SignatureCheck, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "message": "Access granted",
        "method": request.method,
        **data,
        "headers": redacted_headers(request),
        "token": {"header": decoded.header, "payload": decoded.payload},
        "signature": check.to_dict(),
    }


@router.get("")
async def echo_get(
    request: Request,
    http: httpx.AsyncClient = Depends(get_http_client),
    discovery_cache: DiscoveryCache = Depends(get_echo_discovery_cache),
    jwks_cache: JwksCache = Depends(get_echo_jwks_cache),
) -> dict[str, Any]:
    token, decoded = _require_token(request)
    check = await _check_signature(token, decoded, http, discovery_cache, jwks_cache)
    return _echo(request, decoded, check, {"query": dict(request.query_params)})


@router.post("")
async def echo_post(
    request: Request,
    http: httpx.AsyncClient = Depends(get_http_client),
    discovery_cache: DiscoveryCache = Depends(get_echo_discovery_cache),
    jwks_cache: JwksCache = Depends(get_echo_jwks_cache),
) -> dict[str, Any]:
    token, decoded = _require_token(request)
    raw = await request.body()
    try:
        body = await request.json() if raw else None
    except ValueError:
        body = {"error": "Could not parse JSON body"}
    check = await _check_signature(token, decoded, http, discovery_cache, jwks_cache)
    return _echo(request, decoded, check, {"body": body})
