"""Configuration settings for the Taakl backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment (TAAKL_* variables)."""

    # Storage
    database_path: str | None = None  # Defaults to $TAAKL_HOME/taakl.db

    # Auth
    token_expiry_days: int = 30
    bcrypt_rounds: int = 12

    # Rate limiting (slowapi limit strings)
    rate_limit: str = "100/minute"
    auth_rate_limit: str = "10/minute"
    # Peers allowed to set X-Forwarded-For (the local reverse proxy)
    trusted_proxy_cidrs: list[str] = ["127.0.0.0/8", "::1/128"]

    # App
    debug: bool = False
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = ["*"]

    class Config:
        env_prefix = "TAAKL_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
