"""Application configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Upstream WebSocket API (one pooled connection per app id)
    deriv_ws_url: str = "wss://ws.derivws.com/websockets/v3"
    deriv_app_ids: list[str] = ["1089", "16929", "22168", "23789"]
    deriv_api_token: str = ""
    currency: str = "USD"

    # Connection pool
    ping_interval: float = 30.0
    reconnect_base_delay: float = 1.0
    max_reconnect_attempts: int = 5
    request_timeout: float = 10.0

    # Execution
    queue_interval: float = 1.0
    monitor_interval: float = 5.0
    trade_history_limit: int = 1000

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Trading config file (analyzers, stake, auto trader)
    trading_config_path: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
