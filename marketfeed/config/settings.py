"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Refresh cadence (seconds)
    refresh_interval_networks: float = 15.0  # infrastructure metrics
    refresh_interval_tokens: float = 60.0  # provider rate limit driven
    refresh_interval_overview: float = 60.0

    # Upstream queues
    binance_max_concurrent: int = 3
    binance_min_interval: float = 0.1  # well under 1200 weight/min
    coingecko_max_concurrent: int = 1
    coingecko_min_interval: float = 2.0  # 30 calls/min on the free tier

    # Timeouts
    transport_ready_timeout: float = 8.0
    source_timeout: float = 10.0
    http_timeout: float = 15.0
    degraded_latency_ms: int = 3000

    # Endpoints
    transport_url: str = ""
    transport_fallback_url: str = "wss://stream.binance.com:9443/stream"
    binance_rest_url: str = "https://api.binance.com"

    # Rankings
    trending_limit: int = 15
    movers_limit: int = 10
    vs_currency: str = "usd"

    # Live price feed
    price_symbols: list[str] = [
        "btcusdt", "ethusdt", "solusdt", "bnbusdt", "xrpusdt",
        "adausdt", "avaxusdt", "dogeusdt", "dotusdt", "linkusdt",
    ]
    price_reconnect_attempts: int = 8
    price_reconnect_max_delay: float = 30.0

    @field_validator(
        "refresh_interval_networks",
        "refresh_interval_tokens",
        "refresh_interval_overview",
        "transport_ready_timeout",
        "source_timeout",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Intervals and timeouts must be positive")
        return v

    @field_validator("binance_max_concurrent", "coingecko_max_concurrent")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Queue concurrency must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
