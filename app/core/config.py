"""Application configuration management."""
from __future__ import annotations

from functools import lru_cache

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_SESSION_TTL_SECONDS = 24 * 60 * 60


class Settings(BaseSettings):
    """Runtime configuration derived from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    app_name: str = Field("OAuth Simulator", alias="APP_NAME")
    environment: str = Field("development", alias="ENVIRONMENT")
    debug: bool = Field(False, alias="DEBUG")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    database_url: str = Field(..., alias="DATABASE_URL")
    redis_url: str = Field(..., alias="REDIS_URL")
    app_url: AnyHttpUrl = Field("http://localhost:8000", alias="APP_URL")
    secret_key: str = Field(..., alias="SECRET_KEY")
    totp_encryption_key: str = Field(..., alias="TOTP_ENCRYPTION_KEY")
    session_cookie_name: str = Field("oauth_sim_session", alias="SESSION_COOKIE_NAME")
    session_ttl_seconds: int = Field(MAX_SESSION_TTL_SECONDS, alias="SESSION_TTL_SECONDS")
    secure_cookies: bool = Field(True, alias="SECURE_COOKIES")
    oidc_state_ttl_seconds: int = Field(300, alias="OIDC_STATE_TTL_SECONDS")
    mfa_ticket_ttl_seconds: int = Field(300, alias="MFA_TICKET_TTL_SECONDS")
    mfa_max_attempts: int = Field(5, alias="MFA_MAX_ATTEMPTS")
    rate_limit_per_ip: str = Field("50/10minutes", alias="RATE_LIMIT_PER_IP")
    rate_limit_storage_uri: str | None = Field(None, alias="RATE_LIMIT_STORAGE_URI")
    argon2_memory_cost: int = Field(19456, alias="ARGON2_MEMORY_COST")
    argon2_time_cost: int = Field(3, alias="ARGON2_TIME_COST")
    argon2_parallelism: int = Field(1, alias="ARGON2_PARALLELISM")
    password_min_length: int = Field(8, alias="PASSWORD_MIN_LENGTH")
    fido_rp_id: str = Field("localhost", alias="FIDO_RP_ID")
    fido_rp_name: str = Field("OAuth Simulator", alias="FIDO_RP_NAME")
    origin_url: AnyHttpUrl = Field("http://localhost:8000", alias="ORIGIN_URL")
    http_timeout_seconds: float = Field(10.0, alias="HTTP_TIMEOUT_SECONDS")
    discovery_cache_ttl_seconds: int = Field(3600, alias="DISCOVERY_CACHE_TTL_SECONDS")
    jwks_cache_ttl_seconds: int = Field(600, alias="JWKS_CACHE_TTL_SECONDS")
    admin_username: str = Field("admin", alias="ADMIN_USERNAME")

    @field_validator("secret_key", "totp_encryption_key")
    @classmethod
    def validate_key_length(cls, value: str) -> str:
        if len(value) < 32:
            raise ValueError("secret keys must be at least 32 characters")
        return value

    @field_validator("session_ttl_seconds")
    @classmethod
    def validate_session_ttl(cls, value: int) -> int:
        if value <= 0 or value > MAX_SESSION_TTL_SECONDS:
            raise ValueError("SESSION_TTL_SECONDS must be between 1 and 86400")
        return value

    @property
    def public_origin(self) -> str:
        return str(self.app_url).rstrip("/")

    @property
    def expected_origin(self) -> str:
        return str(self.origin_url).rstrip("/")

    @property
    def oidc_redirect_uri(self) -> str:
        return f"{self.public_origin}/api/auth/oidc/callback"

    @property
    def simulator_redirect_uri(self) -> str:
        return f"{self.public_origin}/api/oauth/callback"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()
