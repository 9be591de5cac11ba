from functools import lru_cache
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_name: str = "Scootride"
    # mock | dev | prod
    env: str = "mock"

    # Scooter API
    scooter_api_base_url: str = ""
    api_timeout_seconds: float = 15.0
    access_token: str = ""
    default_city: str = "Stockholm"

    # Zone rules
    min_fetch_interval_ms: int = 8000

    # Ride accrual / pricing
    accrual_tick_seconds: float = 1.0
    unlock_fee: float = 10.0
    per_minute_rate: float = 2.5
    currency: str = "kr"

    # Mock backend
    secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    mock_latency_ms: int = 0
    mock_starting_balance: float = 200.0

    @field_validator("env", mode="before")
    @classmethod
    def _coerce_env(cls, value):
        normalized = str(value or "").strip().lower()
        return normalized if normalized in {"mock", "dev", "prod"} else "mock"

    @field_validator("scooter_api_base_url", mode="after")
    @classmethod
    def _trim_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()
