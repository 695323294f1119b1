"""Relying-party client and token schemas."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from app.models import OAuthClient


def _absolute_uri(value: str | None) -> str | None:
    if value is None or value == "":
        return None
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError("must be an absolute URI")
    return value


class ClientCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    client_id: str = Field(min_length=1)
    client_secret: str = ""
    authorize_url: str
    token_url: str
    end_session_url: str | None = None
    jwks_url: str | None = None
    redirect_uri: str | None = None
    post_logout_redirect_uri: str | None = None
    scope: str | None = None
    custom_attributes: dict[str, str] = Field(default_factory=dict)

    @field_validator("authorize_url", "token_url")
    @classmethod
    def validate_required_uri(cls, value: str) -> str:
        checked = _absolute_uri(value)
        if checked is None:
            raise ValueError("must be an absolute URI")
        return checked

    @field_validator("end_session_url", "jwks_url", "redirect_uri", "post_logout_redirect_uri")
    @classmethod
    def validate_optional_uri(cls, value: str | None) -> str | None:
        return _absolute_uri(value)


class ClientUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    client_id: str | None = Field(default=None, min_length=1)
    client_secret: str | None = None
    authorize_url: str | None = None
    token_url: str | None = None
    end_session_url: str | None = None
    jwks_url: str | None = None
    redirect_uri: str | None = None
    post_logout_redirect_uri: str | None = None
    scope: str | None = None
    custom_attributes: dict[str, str] | None = None

    @field_validator(
        "authorize_url", "token_url", "end_session_url", "jwks_url", "redirect_uri", "post_logout_redirect_uri"
    )
    @classmethod
    def validate_uri(cls, value: str | None) -> str | None:
        return _absolute_uri(value)


class ClientRead(BaseModel):
    id: str
    name: str
    client_id: str
    has_client_secret: bool
    authorize_url: str
    token_url: str
    end_session_url: str | None
    jwks_url: str | None
    redirect_uri: str
    post_logout_redirect_uri: str | None
    scope: str | None
    custom_attributes: dict[str, str]
    created_at: datetime

    @classmethod
    def from_client(cls, client: OAuthClient) -> ClientRead:
        return cls(
            id=client.id,
            name=client.name,
            client_id=client.client_id,
            has_client_secret=bool(client.client_secret),
            authorize_url=client.authorize_url,
            token_url=client.token_url,
            end_session_url=client.end_session_url,
            jwks_url=client.jwks_url,
            redirect_uri=client.redirect_uri,
            post_logout_redirect_uri=client.post_logout_redirect_uri,
            scope=client.scope,
            custom_attributes=dict(client.custom_attributes or {}),
            created_at=client.created_at,
        )


class DiscoverRequest(BaseModel):
    issuer: str

    @field_validator("issuer")
    @classmethod
    def validate_issuer(cls, value: str) -> str:
        checked = _absolute_uri(value)
        if checked is None:
            raise ValueError("must be an absolute URI")
        return checked


class DiscoverResponse(BaseModel):
    issuer: str
    authorize_url: str
    token_url: str
    end_session_url: str | None = None
    jwks_url: str | None = None


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutUrlRequest(BaseModel):
    id_token_hint: str | None = None
    extra: dict[str, str] = Field(default_factory=dict)


class LogoutUrlResponse(BaseModel):
    url: str


class TokenSetResponse(BaseModel):
    grant_type: str
    tokens: dict[str, Any]
    decoded: dict[str, Any] = Field(default_factory=dict)


class TokenDecodeRequest(BaseModel):
    token: str


class TokenDecodeResponse(BaseModel):
    header: dict[str, Any]
    payload: dict[str, Any]
    signature: str


class TokenVerifyRequest(BaseModel):
    token: str
    jwks_url: str

    @field_validator("jwks_url")
    @classmethod
    def validate_jwks_url(cls, value: str) -> str:
        checked = _absolute_uri(value)
        if checked is None:
            raise ValueError("must be an absolute URI")
        return checked


class HttpProbeRequest(BaseModel):
    method: Literal["GET", "POST"] = "GET"
    url: str
    token: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        checked = _absolute_uri(value)
        if checked is None:
            raise ValueError("must be an absolute URI")
        return checked
