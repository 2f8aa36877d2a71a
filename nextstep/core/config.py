"""
Application settings, read from the environment and nextstep/.env.

Only DATABASE_URL is needed to boot. Generation (GROQ_*), billing
(STRIPE_*) and Clerk profile lookups switch themselves off when their keys
are missing; validate_config() reports which ones are absent.
"""
import logging
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ENV: str = "development"
    CONFIG_STRICT: bool = False
    PORT: int = 3001
    LOG_LEVEL: str = "INFO"

    # Storage
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Clerk
    CLERK_PUBLISHABLE_KEY: Optional[str] = None
    CLERK_SECRET_KEY: Optional[str] = None
    CLERK_JWT_KEY: Optional[str] = None  # HS256 secret, dev/test tokens only
    CLERK_ISSUER: Optional[str] = None  # https://<instance>.clerk.accounts.dev
    CLERK_AUDIENCE: Optional[str] = None
    CLERK_JWKS_URL: Optional[str] = None
    CLERK_API_URL: Optional[str] = None  # https://api.clerk.com/v1

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_ID: Optional[str] = None

    # Text generation (Groq)
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.1-8b-instant"
    GROQ_TEMPERATURE: float = 0.7

    # Browser client
    CLIENT_URL: str = "http://localhost:5173"
    CORS_ORIGINS: str = "http://localhost:5173"  # comma-separated

    # Admission: single conditional UPDATE instead of read-then-write
    ATOMIC_ADMISSION: bool = False

    @field_validator("ENV")
    @classmethod
    def _normalize_env(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("GROQ_TEMPERATURE")
    @classmethod
    def _temperature_range(cls, value: float) -> float:
        if not 0.0 <= value <= 2.0:
            raise ValueError("GROQ_TEMPERATURE must be between 0 and 2")
        return value

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


settings = Settings()

REQUIRED_KEYS = (
    "DATABASE_URL",
    "CLERK_PUBLISHABLE_KEY",
    "CLERK_SECRET_KEY",
    "GROQ_API_KEY",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_PRICE_ID",
)


def cors_origins(settings_obj: Optional[Settings] = None) -> list[str]:
    cfg = settings_obj or settings
    return [origin.strip() for origin in cfg.CORS_ORIGINS.split(",") if origin.strip()]


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Report missing keys by name (never values); raise RuntimeError when strict."""
    cfg = settings_obj or settings
    log = logger or logging.getLogger("nextstep")
    strict_mode = strict if strict is not None else cfg.CONFIG_STRICT

    missing = [key for key in REQUIRED_KEYS if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)
    return True
