"""Avatar URLs."""
from __future__ import annotations

import hashlib

GRAVATAR_BASE = "https://www.gravatar.com/avatar"


def gravatar_url(email: str | None, size: int = 200) -> str | None:
    if not email or not email.strip():
        return None
    digest = hashlib.md5(email.strip().lower().encode("utf-8")).hexdigest()
    return f"{GRAVATAR_BASE}/{digest}?s={size}&d=mp"
