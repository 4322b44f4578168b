from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fxrelay.models.constants import CURRENCY_CODE_RE


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic's rules (e.g., EXR_API_KEY,
    BASE_CURRENCY, CACHE_TTL_MS, CORS_ORIGIN). The API key and base currency
    have no default: a process started without them fails at startup.
    """

    # Basic app metadata
    app_name: str = "FX Relay"
    debug: bool = False
    version: str = "0.1.0"

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origin: str = "*"

    # ExchangeRate-API (v6)
    exr_api_key: str = Field(..., min_length=1)
    base_currency: str
    exchange_api_base_url: str = "https://v6.exchangerate-api.com/v6"
    http_timeout_seconds: float = Field(10.0, gt=0)

    # Cache / refresh loop
    cache_ttl_ms: int = Field(60_000, gt=0)
    refresh_backoff_ms: int = Field(15_000, gt=0)
    bootstrap_retry_ms: int = Field(5_000, gt=0)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    @field_validator("base_currency")
    @classmethod
    def valid_base_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if not CURRENCY_CODE_RE.match(v):
            raise ValueError("base_currency must be a 3-letter ISO 4217 code")
        return v

    @field_validator("exchange_api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.cors_origin.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
