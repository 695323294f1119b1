"""Token inspection and protected-resource probing for signed-in operators."""

import httpx
from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_http_client, get_jwks_cache, require_session
from app.models import User
from app.schemas import HttpProbeRequest, TokenDecodeRequest, TokenDecodeResponse, TokenVerifyRequest
from app.services.http_probe import execute_http_request
from app.services.jwks import JwksCache, verify_signature
from app.services.oauth_client import decode_token_for_display

router = APIRouter(prefix="/tokens", tags=["tokens"])


@router.post("/decode", response_model=TokenDecodeResponse)
async def decode_token(payload: TokenDecodeRequest, user: User = Depends(require_session)) -> TokenDecodeResponse:
    decoded = decode_token_for_display(payload.token)
    if decoded is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_jwt")
    return TokenDecodeResponse(header=decoded.header, payload=decoded.payload, signature=decoded.signature)


@router.post("/verify")
async def verify_token(
    payload: TokenVerifyRequest,
    user: User = Depends(require_session),
    http: httpx.AsyncClient = Depends(get_http_client),
    jwks_cache: JwksCache = Depends(get_jwks_cache),
) -> dict:
    check = await verify_signature(payload.token, payload.jwks_url, http=http, cache=jwks_cache)
    return check.to_dict()


@router.post("/request")
async def probe_resource(
    payload: HttpProbeRequest,
    user: User = Depends(require_session),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> dict:
    result = await execute_http_request(http, payload.method, payload.url, payload.token, payload.headers, payload.body)
    return result.to_dict()
