"""Relying-party client definitions and the grants the simulator runs for them."""

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, RedirectResponse

from app.api.dependencies import get_discovery_cache, get_http_client, get_store, require_session
from app.core.config import get_settings
from app.core.errors import DiscoveryError
from app.core.security import SecurityManager
from app.models import OAuthClient, User
from app.schemas import (
    ClientCreate,
    ClientRead,
    ClientUpdate,
    DiscoverRequest,
    DiscoverResponse,
    GenericResponse,
    LogoutUrlRequest,
    LogoutUrlResponse,
    RefreshRequest,
    TokenSetResponse,
)
from app.services import oauth_client, redis_client
from app.services.discovery import DiscoveryCache, discover_endpoints
from app.services.store import CredentialStore

router = APIRouter(tags=["clients"])
logger = logging.getLogger("oauth_sim.simulator")


def _state_key(state: str) -> str:
    return redis_client.state_key(redis_client.OAUTH_STATE_PREFIX, state)


def _token_set(tokens: dict) -> TokenSetResponse:
    return TokenSetResponse(
        grant_type=tokens["grant_type"],
        tokens=tokens,
        decoded=oauth_client.decoded_views(tokens),
    )


async def _owned_client(store: CredentialStore, client_id: str, user: User) -> OAuthClient:
    client = await store.get_client(client_id, user.id)
    if client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="client_not_found")
    return client


@router.get("/clients", response_model=list[ClientRead])
async def list_clients(
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> list[ClientRead]:
    return [ClientRead.from_client(client) for client in await store.list_clients_for_user(user.id)]


@router.post("/clients", response_model=ClientRead, status_code=status.HTTP_201_CREATED)
async def create_client(
    payload: ClientCreate,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> ClientRead:
    values = payload.model_dump()
    values["redirect_uri"] = values["redirect_uri"] or get_settings().simulator_redirect_uri
    client = await store.save_client(OAuthClient(user_id=user.id, **values))
    await store.commit()
    logger.info("User %s created client %s", user.id, client.id)
    return ClientRead.from_client(client)


@router.post("/clients/discover", response_model=DiscoverResponse)
async def discover_client_endpoints(
    payload: DiscoverRequest,
    user: User = Depends(require_session),
    http: httpx.AsyncClient = Depends(get_http_client),
    discovery_cache: DiscoveryCache = Depends(get_discovery_cache),
) -> DiscoverResponse:
    try:
        document = await discover_endpoints(payload.issuer, http=http, cache=discovery_cache)
    except DiscoveryError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return DiscoverResponse(
        issuer=document["issuer"],
        authorize_url=document["authorization_endpoint"],
        token_url=document["token_endpoint"],
        end_session_url=document.get("end_session_endpoint"),
        jwks_url=document.get("jwks_uri"),
    )


@router.get("/clients/{client_id}", response_model=ClientRead)
async def get_client(
    client_id: str,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> ClientRead:
    return ClientRead.from_client(await _owned_client(store, client_id, user))


@router.put("/clients/{client_id}", response_model=ClientRead)
async def update_client(
    client_id: str,
    payload: ClientUpdate,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> ClientRead:
    client = await _owned_client(store, client_id, user)
    changes = payload.model_dump(exclude_unset=True)
    for required in ("name", "client_id", "authorize_url", "token_url"):
        if required in changes and changes[required] is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{required}_required")
    if "redirect_uri" in changes and changes["redirect_uri"] is None:
        changes["redirect_uri"] = get_settings().simulator_redirect_uri
    if "client_secret" in changes and changes["client_secret"] is None:
        changes["client_secret"] = ""
    if "custom_attributes" in changes and changes["custom_attributes"] is None:
        changes["custom_attributes"] = {}
    for key, value in changes.items():
        setattr(client, key, value)
    await store.save_client(client)
    await store.commit()
    return ClientRead.from_client(client)


@router.delete("/clients/{client_id}", response_model=GenericResponse)
async def delete_client(
    client_id: str,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> GenericResponse:
    if not await store.delete_client(client_id, user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="client_not_found")
    await store.commit()
    return GenericResponse()


@router.get("/clients/{client_id}/authorize")
async def authorize(
    client_id: str,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> RedirectResponse:
    client = await _owned_client(store, client_id, user)
    state = SecurityManager.generate_state()
    redis = redis_client.get_redis_client()
    await redis.set(_state_key(state), client.id, ex=get_settings().oidc_state_ttl_seconds)
    return RedirectResponse(oauth_client.build_authorization_url(client, state), status_code=302)


@router.get("/api/oauth/callback", response_model=TokenSetResponse)
async def simulator_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> TokenSetResponse | JSONResponse:
    if error:
        return JSONResponse(status_code=400, content={"error": error, "errorDescription": error_description})
    if not code or not state:
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_request", "errorDescription": "Missing code or state"},
        )

    redis = redis_client.get_redis_client()
    client_id = await redis.getdel(_state_key(state))
    if not client_id:
        logger.warning("Simulator callback with unknown or reused state")
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_state", "errorDescription": "Unknown or expired state"},
        )
    client = await _owned_client(store, client_id, user)
    tokens = await oauth_client.exchange_authorization_code(http, client, code)
    return _token_set(tokens)


@router.post("/clients/{client_id}/client-credentials", response_model=TokenSetResponse)
async def run_client_credentials(
    client_id: str,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> TokenSetResponse:
    client = await _owned_client(store, client_id, user)
    return _token_set(await oauth_client.client_credentials_grant(http, client))


@router.post("/clients/{client_id}/refresh", response_model=TokenSetResponse)
async def run_refresh(
    client_id: str,
    payload: RefreshRequest,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> TokenSetResponse:
    client = await _owned_client(store, client_id, user)
    return _token_set(await oauth_client.refresh_token_grant(http, client, payload.refresh_token))


@router.post("/clients/{client_id}/logout-url", response_model=LogoutUrlResponse)
async def logout_url(
    client_id: str,
    payload: LogoutUrlRequest,
    user: User = Depends(require_session),
    store: CredentialStore = Depends(get_store),
) -> LogoutUrlResponse:
    client = await _owned_client(store, client_id, user)
    try:
        url = oauth_client.build_end_session_url(client, payload.id_token_hint, payload.extra)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end_session_url_missing") from exc
    return LogoutUrlResponse(url=url)
