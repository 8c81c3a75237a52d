"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BACKEND_BASE_URL = "https://hackathon-backend-982651832089.europe-west1.run.app"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8080, alias="PORT")

    # Node connection (Sepolia via Infura)
    node_http_url: str = Field(default="", alias="INFURA_SEPOLIA_URL")
    node_ws_url_override: str = Field(default="", alias="INFURA_SEPOLIA_WS_URL")
    network: str = Field(default="SEPOLIA", alias="NETWORK")
    health_check_timeout_seconds: float = Field(default=10.0, alias="HEALTH_CHECK_TIMEOUT_SECONDS")

    # Marketplace contract - listener and contract routes are disabled when empty
    marketplace_contract_address: str = Field(default="", alias="MARKETPLACE_CONTRACT_ADDRESS")

    # Payment
    app_collect_wallet_address: str = Field(default="", alias="APP_COLLECT_WALLET_ADDRESS")
    payment_amount_wei: int = Field(default=10**15, alias="PAYMENT_AMOUNT_WEI")

    # Downstream backend notifications
    backend_base_url: str = Field(default=DEFAULT_BACKEND_BASE_URL, alias="BACKEND_BASE_URL")
    backend_api_prefix: str = Field(default="/api/v1/blockchain", alias="BACKEND_API_PREFIX")
    notify_max_attempts: int = Field(default=3, alias="NOTIFY_MAX_ATTEMPTS")
    notify_retry_base_seconds: float = Field(default=1.0, alias="NOTIFY_RETRY_BASE_SECONDS")
    notify_timeout_seconds: float = Field(default=10.0, alias="NOTIFY_TIMEOUT_SECONDS")

    # Ingestion pipeline
    backfill_window_blocks: int = Field(default=10000, alias="BACKFILL_WINDOW_BLOCKS")
    poll_interval_seconds: float = Field(default=5.0, alias="POLL_INTERVAL_SECONDS")
    reconnect_floor_seconds: float = Field(default=5.0, alias="RECONNECT_FLOOR_SECONDS")
    reconnect_ceiling_seconds: float = Field(default=60.0, alias="RECONNECT_CEILING_SECONDS")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def node_ws_url(self) -> str:
        """WebSocket RPC URL, derived from the HTTP URL when not set explicitly.

        https://sepolia.infura.io/v3/... -> wss://sepolia.infura.io/v3/...
        """
        if self.node_ws_url_override:
            return self.node_ws_url_override
        if self.node_http_url.startswith("https://"):
            return "wss://" + self.node_http_url.removeprefix("https://")
        if self.node_http_url.startswith("http://"):
            return "ws://" + self.node_http_url.removeprefix("http://")
        return self.node_http_url

    @property
    def contract_enabled(self) -> bool:
        return bool(self.marketplace_contract_address)

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with clear error messages if configuration is incomplete.
        Validation is skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.node_http_url:
            missing.append("INFURA_SEPOLIA_URL: HTTPS endpoint of your Sepolia node provider")

        if not self.app_collect_wallet_address:
            missing.append("APP_COLLECT_WALLET_ADDRESS: Wallet that receives order payments")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        if self.reconnect_floor_seconds > self.reconnect_ceiling_seconds:
            raise ValueError("RECONNECT_FLOOR_SECONDS must not exceed RECONNECT_CEILING_SECONDS")

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        renderer_processors = [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer_processors = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderer_processors,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
