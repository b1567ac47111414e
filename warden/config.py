"""
Warden Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation.

SECURITY NOTE: The two JWT signing secrets must be distinct. An access token
leak must never be usable to mint refresh tokens.
"""

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ALLOWED_JWT_ALGORITHMS = ("HS256", "HS384", "HS512")


def _validate_secret(name: str, value: str) -> str:
    if len(value) < 32:
        raise ValueError(f"{name} must be at least 32 characters")
    if len(set(value)) < 10:
        raise ValueError(f"{name} must have at least 10 unique characters")
    return value


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # APPLICATION
    # ═══════════════════════════════════════════════════════════════
    app_name: str = Field(default="warden", description="Application name")
    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_json: bool = Field(default=False, description="Render logs as JSON")

    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")

    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated CORS origins",
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used for links embedded in emails",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into list."""
        origins = [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
        if self.app_env == "production" and "*" in origins:
            raise ValueError("Wildcard CORS origin not allowed in production")
        return origins

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    # ═══════════════════════════════════════════════════════════════
    # ACCOUNT STORE
    # ═══════════════════════════════════════════════════════════════
    store_backend: Literal["neo4j", "memory"] = Field(
        default="neo4j", description="Account store backend"
    )
    neo4j_uri: str = Field(default="bolt://localhost:7687", description="Neo4j connection URI")
    neo4j_user: str = Field(default="neo4j", description="Neo4j username")
    neo4j_password: str | None = Field(default=None, description="Neo4j password")
    neo4j_database: str = Field(default="neo4j", description="Neo4j database name")
    neo4j_max_connection_lifetime: int = Field(
        default=3600, description="Max connection lifetime in seconds"
    )
    neo4j_max_connection_pool_size: int = Field(
        default=50, ge=1, description="Max connection pool size"
    )
    neo4j_connection_timeout: int = Field(
        default=30, ge=1, description="Connection timeout in seconds"
    )

    # ═══════════════════════════════════════════════════════════════
    # TOKENS
    # ═══════════════════════════════════════════════════════════════
    jwt_access_secret_key: str = Field(description="Access token signing secret")
    jwt_refresh_secret_key: str = Field(description="Refresh token signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    jwt_issuer: str = Field(default="warden", description="JWT issuer claim")
    jwt_access_token_expire_days: int = Field(
        default=7, ge=1, le=30, description="Access token lifetime"
    )
    jwt_refresh_token_expire_days: int = Field(
        default=30, ge=1, le=365, description="Refresh token lifetime"
    )
    refresh_cookie_name: str = Field(default="refreshToken", description="Refresh cookie name")
    refresh_cookie_max_age_hours: int = Field(
        default=24, ge=1, description="Refresh cookie lifetime"
    )

    # ═══════════════════════════════════════════════════════════════
    # CREDENTIALS & LOCKOUT
    # ═══════════════════════════════════════════════════════════════
    password_bcrypt_rounds: int = Field(default=12, ge=4, le=31, description="Bcrypt rounds")
    login_max_attempts: int = Field(
        default=5, ge=1, description="Failed logins before the account locks"
    )
    login_lockout_minutes: int = Field(default=15, ge=1, description="Lock duration")

    password_reset_ttl_minutes: int = Field(
        default=10, ge=1, description="Password reset token lifetime"
    )
    email_verification_ttl_hours: int = Field(
        default=24, ge=1, description="Email verification token lifetime"
    )

    # ═══════════════════════════════════════════════════════════════
    # EMAIL DELIVERY
    # ═══════════════════════════════════════════════════════════════
    email_backend: Literal["log", "http"] = Field(default="log", description="Email backend")
    email_api_url: str | None = Field(default=None, description="Transactional email API URL")
    email_api_key: str | None = Field(default=None, description="Transactional email API key")
    email_from: str = Field(default="no-reply@localhost", description="Sender address")
    email_from_name: str = Field(default="Warden", description="Sender display name")
    email_timeout_seconds: float = Field(default=10.0, gt=0, description="Email API timeout")

    # ═══════════════════════════════════════════════════════════════
    # PROFILE IMAGES
    # ═══════════════════════════════════════════════════════════════
    image_backend: Literal["log", "http"] = Field(default="log", description="Image store backend")
    image_api_url: str | None = Field(default=None, description="Image hosting API URL")
    image_api_key: str | None = Field(default=None, description="Image hosting API key")
    image_public_base_url: str = Field(
        default="http://localhost:8000/media", description="Base URL for logged images"
    )
    image_max_bytes: int = Field(
        default=10 * 1024 * 1024, ge=1, description="Largest accepted profile image"
    )
    image_timeout_seconds: float = Field(default=30.0, gt=0, description="Image API timeout")

    pagination_limit: int = Field(default=50, ge=1, le=500, description="Default page size")

    @field_validator("jwt_access_secret_key")
    @classmethod
    def validate_access_secret(cls, v: str) -> str:
        return _validate_secret("JWT access secret key", v)

    @field_validator("jwt_refresh_secret_key")
    @classmethod
    def validate_refresh_secret(cls, v: str) -> str:
        return _validate_secret("JWT refresh secret key", v)

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        if v not in ALLOWED_JWT_ALGORITHMS:
            raise ValueError(f"jwt_algorithm must be one of {', '.join(ALLOWED_JWT_ALGORITHMS)}")
        return v

    @model_validator(mode="after")
    def validate_cross_field(self) -> "Settings":
        if self.jwt_access_secret_key == self.jwt_refresh_secret_key:
            raise ValueError("Access and refresh signing secrets must differ")
        if self.store_backend == "neo4j" and not self.neo4j_password:
            raise ValueError("neo4j_password is required when store_backend is 'neo4j'")
        if self.email_backend == "http" and not self.email_api_url:
            raise ValueError("email_api_url is required when email_backend is 'http'")
        if self.image_backend == "http" and not self.image_api_url:
            raise ValueError("image_api_url is required when image_backend is 'http'")
        if self.is_production and self.store_backend == "memory":
            logger.warning("In-memory account store configured in production")
        return self

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(days=self.jwt_access_token_expire_days)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.jwt_refresh_token_expire_days)

    @property
    def password_reset_ttl(self) -> timedelta:
        return timedelta(minutes=self.password_reset_ttl_minutes)

    @property
    def email_verification_ttl(self) -> timedelta:
        return timedelta(hours=self.email_verification_ttl_hours)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
