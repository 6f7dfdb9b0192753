"""Application configuration management"""

import json
from functools import lru_cache
from typing import Annotated, Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from authcore.core.exceptions import ConfigError

DEV_SECRET_KEY = "dev-secret-key-change-in-production-use-openssl-rand-hex-32"


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application
    APP_NAME: str = "Auth Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Credential store
    STORE_DRIVER: str = "memory"  # memory | sql
    DATABASE_URL: str = "sqlite:///./authcore.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # Token signing
    SECRET_KEY: str = DEV_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Password hashing
    BCRYPT_ROUNDS: int = Field(default=12, ge=4, le=31)

    # Lockout
    LOCKOUT_THRESHOLD: int = Field(default=5, ge=1)
    LOCKOUT_MAX_MINUTES: int = Field(default=60, ge=1)
    FAILED_LOGIN_RETENTION_HOURS: int = Field(default=24, ge=1)

    # Token/session security
    REVOKE_FAMILY_ON_REUSE: bool = False
    TOKEN_CLEANUP_INTERVAL_SECONDS: int = 3600

    # Cookies / CSRF
    SESSION_SECURE: bool = True
    COOKIE_DOMAIN: str = ""
    REFRESH_COOKIE_NAME: str = "refresh_token"
    CSRF_COOKIE_NAME: str = "csrf_token"
    CSRF_HEADER_NAME: str = "X-CSRF-Token"

    # Rate Limiting
    LOGIN_RATE_LIMIT_PER_MINUTE: int = 10
    LOGIN_RATE_LIMIT_PER_HOUR: int = 50
    REFRESH_RATE_LIMIT_PER_MINUTE: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:5173"]

    # Bootstrap admin
    ADMIN_EMAIL: str = ""
    ADMIN_PASSWORD: str = ""

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: Any) -> Any:
        """
        Accept JSON array or comma-separated origins from env.

        Examples:
            CORS_ORIGINS=["http://localhost:5173","http://example.com"]
            CORS_ORIGINS=http://localhost:5173,http://example.com
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(origin).strip() for origin in parsed if str(origin).strip()]

        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def cookie_name(self, base: str) -> str:
        """Use the ``__Host-`` prefix when the browser will enforce it."""
        if self.SESSION_SECURE and not self.COOKIE_DOMAIN:
            return f"__Host-{base}"
        return base

    def validate_security_settings(self) -> None:
        """
        Validate runtime security defaults in production.

        Raises:
            ConfigError: If insecure defaults are detected.
        """
        if not self.SECRET_KEY:
            raise ConfigError("SECRET_KEY must be set")

        if self.STORE_DRIVER not in {"memory", "sql"}:
            raise ConfigError(f"Unknown STORE_DRIVER: {self.STORE_DRIVER}")

        if not self.is_production:
            return

        insecure_secret_markers = {
            "",
            DEV_SECRET_KEY,
            "replace_me_dev_only",
            "change-me",
        }
        if self.SECRET_KEY in insecure_secret_markers or len(self.SECRET_KEY) < 32:
            raise ConfigError(
                "Insecure SECRET_KEY for production. Use a strong key (e.g. `openssl rand -hex 32`)."
            )

        if self.ADMIN_EMAIL and len(self.ADMIN_PASSWORD) < 10:
            raise ConfigError(
                "Insecure ADMIN_PASSWORD for production. Set a strong admin password before startup."
            )

        if not self.SESSION_SECURE:
            raise ConfigError("SESSION_SECURE must stay enabled in production.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
