"""Request utility helpers."""
from __future__ import annotations

from fastapi import Request

SENSITIVE_HEADERS = frozenset({"authorization", "cookie"})


def get_bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if not header.startswith("Bearer "):
        return None
    token = header[7:].strip()
    return token or None


def redacted_headers(request: Request) -> dict[str, str]:
    return {key: value for key, value in request.headers.items() if key.lower() not in SENSITIVE_HEADERS}
