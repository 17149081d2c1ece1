"""
Environment configuration for the Artisy API.

Every credential the service needs is required; a missing one stops the
process at startup instead of failing on the first request that needs it.
Values come from the process environment, then from a ``.env`` file.
"""
from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

REQUIRED_ENV = (
    "SITE_URL",
    "DATABASE_URL",
    "DATABASE_NAME",
    "JWT_SECRET",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "OPENAI_API_KEY",
)


class ConfigError(RuntimeError):
    pass


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    site_url: str = Field(..., min_length=1)
    database_url: str = Field(..., min_length=1)
    database_name: str = Field(..., min_length=1)
    jwt_secret: str = Field(..., min_length=1)
    stripe_secret_key: str = Field(..., min_length=1)
    stripe_webhook_secret: str = Field(..., min_length=1)
    openai_api_key: str = Field(..., min_length=1)
    environment: str = "development"
    currency: str = "inr"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 7
    log_level: str = "INFO"

    @field_validator("site_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, v: str) -> str:
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


def load_settings(**overrides) -> Settings:
    """Build settings, turning validation failures into a ``ConfigError`` that
    names every missing variable. ``overrides`` go straight to ``Settings``
    (e.g. ``_env_file=None``)."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        missing = [
            str(err["loc"][0]).upper()
            for err in e.errors()
            if err["type"] in ("missing", "string_too_short")
        ]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}") from e
        raise ConfigError(f"Invalid configuration: {e}") from e


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
