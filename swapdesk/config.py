from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Runtime
    log_level: str = Field(default="INFO", description="Logging level")
    environment: str = Field(
        default="production",
        description="Deployment environment (production, development, testing)",
    )

    # Cache Settings
    redis_url: str = Field(
        default="",
        description="Redis connection string; empty keeps the cache in-process",
    )
    cache_key_prefix: str = Field(default="swapdesk:", description="Namespace prefix for every cache key")
    max_cache_size: int = Field(default=1000, description="Maximum in-memory cache entries")

    # Conversation
    conversation_ttl_seconds: int = Field(
        default=600,
        ge=30,
        description="Lifetime of a pending multi-step trade interaction",
    )

    # Market data provider
    market_data_base_url: str = Field(
        default="https://testnet-api.monorail.xyz/v1",
        description="Base URL for asset metadata and wallet balance lookups",
    )
    market_data_timeout_seconds: float = Field(default=10.0, description="HTTP timeout for market data calls")
    native_asset_address: str = Field(
        default="0x0000000000000000000000000000000000000000",
        description="Placeholder address the balance API uses for the native asset",
    )
    native_asset_symbol: str = Field(default="MON", description="Ticker of the native asset")

    # Metrics
    metrics_window_size: int = Field(
        default=100,
        ge=1,
        description="Number of recent trades used for the rolling latency average",
    )

    @property
    def has_redis(self) -> bool:
        return bool(self.redis_url)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


settings = Settings()
