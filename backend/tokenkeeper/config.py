"""Settings for the token service, read from the environment and .env"""

import json
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode
from sqlalchemy.engine import URL

# backend/
_BASE_DIR = Path(__file__).resolve().parent.parent

SUPPORTED_ALGORITHMS = ("RS256",)


class Settings(BaseSettings):
    """Token lifecycle settings"""

    # Application
    APP_NAME: str = "Token Keeper"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Token store (PostgreSQL)
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "tokenkeeper_db"
    POSTGRES_USER: str = "tokenkeeper"
    POSTGRES_PASSWORD: str = "tokenkeeper"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    # Signing keys (PEM). The *_FILE variants take precedence when set.
    JWT_PRIVATE_KEY: str = ""
    JWT_PUBLIC_KEY: str = ""
    JWT_PRIVATE_KEY_FILE: str = ""
    JWT_PUBLIC_KEY_FILE: str = ""
    JWT_ALGORITHM: str = "RS256"
    JWT_ISSUER: str = "tokenkeeper-api"
    JWT_AUDIENCE: str = "tokenkeeper-clients"
    JWT_ALLOW_EPHEMERAL_KEYS: bool = True

    # Token lifetimes
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    # Login lockout
    MAX_LOGIN_ATTEMPTS: int = 5
    LOGIN_LOCKOUT_WINDOW_MINUTES: int = 15

    # Device sessions
    MAX_DEVICES_PER_USER: int = 5

    # Token cleanup
    RUN_EMBEDDED_CLEANUP: bool = True
    CLEANUP_INTERVAL_SECONDS: float = 3600.0
    CLEANUP_INITIAL_DELAY_SECONDS: float = 60.0
    CLEANUP_REVOKED_RETENTION_DAYS: int = 7
    CLEANUP_BATCH_SIZE: int = 500

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # Proxies whose X-Forwarded-For hops are honoured. Empty means the socket peer is the client.
    TRUSTED_PROXIES: Annotated[List[str], NoDecode] = []

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator(
        "ACCESS_TOKEN_EXPIRE_MINUTES",
        "REFRESH_TOKEN_EXPIRE_DAYS",
        "MAX_LOGIN_ATTEMPTS",
        "LOGIN_LOCKOUT_WINDOW_MINUTES",
        "MAX_DEVICES_PER_USER",
        "CLEANUP_BATCH_SIZE",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("CORS_ORIGINS", "TRUSTED_PROXIES", mode="before")
    @classmethod
    def _split_list(cls, value: Any) -> Any:
        """List settings may be a JSON list or a comma-separated string."""
        if not isinstance(value, str):
            return value
        raw = value.strip()
        if raw.startswith("["):
            return [str(origin).strip() for origin in json.loads(raw) if str(origin).strip()]
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def access_token_lifetime(self) -> timedelta:
        return timedelta(minutes=self.ACCESS_TOKEN_EXPIRE_MINUTES)

    @property
    def refresh_token_lifetime(self) -> timedelta:
        return timedelta(days=self.REFRESH_TOKEN_EXPIRE_DAYS)

    def get_log_file(self) -> str:
        if self.LOG_FILE:
            return self.LOG_FILE
        return str(_BASE_DIR.parent / "logs" / "tokenkeeper.log")

    def get_database_url(self) -> str:
        """DATABASE_URL if set, otherwise built from the POSTGRES_* parts"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return URL.create(
            "postgresql+psycopg2",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            database=self.POSTGRES_DB,
        ).render_as_string(hide_password=False)

    def has_configured_keys(self) -> bool:
        return bool(
            (self.JWT_PRIVATE_KEY or self.JWT_PRIVATE_KEY_FILE)
            and (self.JWT_PUBLIC_KEY or self.JWT_PUBLIC_KEY_FILE)
        )

    def validate_security_settings(self) -> None:
        """
        Refuse to start with signing settings that are unsafe.

        Raises:
            ValueError: Unsupported algorithm anywhere, or missing/ephemeral
                keys in production
        """
        if self.JWT_ALGORITHM not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"JWT_ALGORITHM must be one of {', '.join(SUPPORTED_ALGORITHMS)}")

        if not self.is_production:
            return

        if not self.has_configured_keys():
            raise ValueError(
                "JWT_PRIVATE_KEY and JWT_PUBLIC_KEY (or their *_FILE variants) are required in production."
            )
        if self.JWT_ALLOW_EPHEMERAL_KEYS:
            raise ValueError("JWT_ALLOW_EPHEMERAL_KEYS must be disabled in production.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
