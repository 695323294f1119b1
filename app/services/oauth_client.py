"""Grant execution and token display for relying-party test clients."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from app.core.errors import UpstreamError
from app.models import OAuthClient
from app.utils.encoding import b64url_decode

logger = logging.getLogger("oauth_sim.simulator")

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


@dataclass
class DecodedToken:
    header: dict[str, Any]
    payload: dict[str, Any]
    signature: str


def _append_query(url: str, params: list[tuple[str, str]]) -> str:
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def build_authorization_url(client: OAuthClient, state: str) -> str:
    """Authorization request URL; parameter order is fixed and custom attributes keep insertion order."""
    params: list[tuple[str, str]] = [
        ("response_type", "code"),
        ("client_id", client.client_id),
        ("redirect_uri", client.redirect_uri),
    ]
    if client.scope:
        params.append(("scope", client.scope))
    for key, value in (client.custom_attributes or {}).items():
        params.append((key, str(value)))
    params.append(("state", state))
    return _append_query(client.authorize_url, params)


def build_end_session_url(
    client: OAuthClient,
    id_token_hint: str | None = None,
    extra: dict[str, str] | None = None,
) -> str:
    if not client.end_session_url:
        raise ValueError("Client has no end-session URL configured")
    params: list[tuple[str, str]] = []
    if id_token_hint:
        params.append(("id_token_hint", id_token_hint))
    params.append(("client_id", client.client_id))
    if client.post_logout_redirect_uri:
        params.append(("post_logout_redirect_uri", client.post_logout_redirect_uri))
    for key, value in (extra or {}).items():
        params.append((key, value))
    return _append_query(client.end_session_url, params)


async def request_token(http: httpx.AsyncClient, token_url: str, form: dict[str, str]) -> dict[str, Any]:
    """POST a form-encoded grant and return the parsed JSON body.

    Transport failures and non-2xx answers raise ``UpstreamError`` carrying
    the upstream status and body so the operator sees the provider's answer.
    """
    grant_type = form.get("grant_type", "")
    try:
        response = await http.post(token_url, data=form, headers=FORM_HEADERS)
    except httpx.HTTPError as exc:
        logger.warning("%s request to %s failed: %s", grant_type, token_url, exc)
        raise UpstreamError(f"Token request failed: {exc}") from exc

    if not response.is_success:
        logger.info("%s request to %s answered %d", grant_type, token_url, response.status_code)
        raise UpstreamError(
            f"Token exchange failed: {response.status_code} {response.reason_phrase} - {response.text}",
            status_code=response.status_code,
            reason=response.reason_phrase,
            body=response.text,
        )
    try:
        tokens = response.json()
    except ValueError as exc:
        raise UpstreamError(
            "Token endpoint did not return JSON",
            status_code=response.status_code,
            reason=response.reason_phrase,
            body=response.text,
        ) from exc
    if not isinstance(tokens, dict):
        raise UpstreamError("Token endpoint did not return a JSON object", status_code=response.status_code)
    return tokens


def _tagged(tokens: dict[str, Any], grant_type: str) -> dict[str, Any]:
    return {**tokens, "grant_type": grant_type}


async def exchange_authorization_code(http: httpx.AsyncClient, client: OAuthClient, code: str) -> dict[str, Any]:
    form = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": client.redirect_uri,
        "client_id": client.client_id,
        "client_secret": client.client_secret,
    }
    return _tagged(await request_token(http, client.token_url, form), "authorization_code")


async def client_credentials_grant(http: httpx.AsyncClient, client: OAuthClient) -> dict[str, Any]:
    form = {
        "grant_type": "client_credentials",
        "client_id": client.client_id,
        "client_secret": client.client_secret,
    }
    if client.scope:
        form["scope"] = client.scope
    return _tagged(await request_token(http, client.token_url, form), "client_credentials")


async def refresh_token_grant(http: httpx.AsyncClient, client: OAuthClient, refresh_token: str) -> dict[str, Any]:
    form = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": client.client_id,
        "client_secret": client.client_secret,
    }
    return _tagged(await request_token(http, client.token_url, form), "refresh_token")


def decode_token_for_display(token: str) -> DecodedToken | None:
    """Decode header and payload without checking the signature. None for anything malformed."""
    parts = token.split(".") if isinstance(token, str) else []
    if len(parts) != 3:
        return None
    try:
        header = json.loads(b64url_decode(parts[0]))
        payload = json.loads(b64url_decode(parts[1]))
    except ValueError:
        return None
    if not isinstance(header, dict) or not isinstance(payload, dict):
        return None
    return DecodedToken(header=header, payload=payload, signature=parts[2])


def decoded_views(tokens: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Decoded header/payload for each JWT-shaped token in a token response."""
    views: dict[str, dict[str, Any]] = {}
    for name in ("access_token", "id_token", "refresh_token"):
        value = tokens.get(name)
        decoded = decode_token_for_display(value) if isinstance(value, str) else None
        if decoded is not None:
            views[name] = {"header": decoded.header, "payload": decoded.payload}
    return views
