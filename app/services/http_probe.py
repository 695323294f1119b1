"""Send a bearer-authenticated request to a protected resource and capture the raw answer."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

import httpx

logger = logging.getLogger("oauth_sim.simulator")

SUPPORTED_METHODS = ("GET", "POST")


@dataclass
class ProbeResult:
    success: bool
    status: int | None = None
    status_text: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


async def execute_http_request(
    http: httpx.AsyncClient,
    method: str,
    url: str,
    token: str | None = None,
    headers: dict[str, str] | None = None,
    body: str | None = None,
) -> ProbeResult:
    method = method.upper()
    if method not in SUPPORTED_METHODS:
        return ProbeResult(success=False, error=f"Unsupported method {method}")

    request_headers = dict(headers or {})
    if token:
        request_headers["Authorization"] = f"Bearer {token}"
    if method == "POST" and body and not any(key.lower() == "content-type" for key in request_headers):
        request_headers["Content-Type"] = "application/json"

    try:
        response = await http.request(
            method,
            url,
            headers=request_headers,
            content=body.encode("utf-8") if method == "POST" and body else None,
        )
    except httpx.HTTPError as exc:
        logger.info("Probe %s %s failed: %s", method, url, exc)
        return ProbeResult(success=False, error=f"Request failed: {exc}")

    return ProbeResult(
        success=True,
        status=response.status_code,
        status_text=response.reason_phrase,
        headers=dict(response.headers),
        body=response.text,
    )
