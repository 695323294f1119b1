"""FastAPI application entrypoint."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.api.routes import admin, auth, clients, endpoint, oidc, profile, tokens
from app.core.config import get_settings
from app.core.errors import UpstreamError
from app.core.logging import configure_logging
from app.core.rate_limit import limiter
from app.db.session import get_database
from app.services import redis_client

logger = logging.getLogger("oauth_sim.app")


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, debug=settings.debug)

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted({settings.public_origin, settings.expected_origin}),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if settings.secure_cookies:
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else "error"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": True, "code": detail, "message": detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
        return JSONResponse(
            status_code=502,
            content={"error": True, "code": "upstream_error", "message": str(exc), "upstream": exc.to_dict()},
        )

    app.include_router(auth.router)
    app.include_router(oidc.router)
    app.include_router(clients.router)
    app.include_router(tokens.router)
    app.include_router(endpoint.router)
    app.include_router(profile.router)
    app.include_router(admin.router)

    @app.on_event("startup")
    async def startup_event() -> None:
        await get_database().create_all()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await redis_client.close_redis_client()
        await get_database().dispose()

    return app


async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"error": True, "code": "rate_limited", "message": "Too many requests"})


app = create_app()
