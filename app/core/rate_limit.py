"""Rate limiting for the login and ceremony endpoints (slowapi over Redis)."""
from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings

settings = get_settings()
# Keyed on the socket peer; forwarded-for headers are client controlled.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_per_ip],
    storage_uri=settings.rate_limit_storage_uri or settings.redis_url,
)
