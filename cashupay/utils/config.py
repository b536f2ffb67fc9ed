"""Application settings for the CashuPay gateway.

Pydantic-based configuration loaded from the environment and an optional
``.env`` file.

Environment Variables:
- CASHUPAY_DATABASE_URL: SQLAlchemy URL (default: sqlite:///./cashupay.db)
- CASHUPAY_BASE_URL: Public base URL used for the background self-trigger
- CASHUPAY_CRON_KEY: Shared key required by external calls to /cron
- CASHUPAY_COINGECKO_API_KEY: Optional CoinGecko demo API key
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway configuration.

    All settings can be overridden via environment variables with prefix
    CASHUPAY_*.

    Example:
        >>> settings = Settings(invoice_expiration_seconds=600)
        >>> settings.rate_cache_ttl_seconds
        300
    """

    model_config = SettingsConfigDict(
        env_prefix="CASHUPAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core
    database_url: str = Field(
        default="sqlite:///./cashupay.db",
        description="SQLAlchemy database URL",
    )
    base_url: str = Field(
        default="http://127.0.0.1:8000",
        description="Public base URL of this gateway (used for the self-trigger)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON logs")

    # Invoices
    invoice_expiration_seconds: int = Field(
        default=900,
        ge=60,
        description="Fallback invoice lifetime when the mint gives no quote expiry",
    )
    mint_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for mint quote requests",
    )

    # Exchange rates
    rate_cache_ttl_seconds: int = Field(
        default=300,
        ge=1,
        description="Seconds a cached BTC price is considered fresh",
    )
    rate_stale_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Seconds a cached BTC price may still be used when all providers fail",
    )
    provider_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for price provider requests",
    )
    coingecko_api_key: str | None = Field(
        default=None,
        description="Optional CoinGecko demo API key",
    )
    default_price_provider_primary: str = Field(
        default="coingecko",
        description="Primary price provider for new stores",
    )
    default_price_provider_secondary: str = Field(
        default="binance",
        description="Secondary price provider for new stores",
    )

    # Webhooks
    webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single webhook POST",
    )
    webhook_response_limit: int = Field(
        default=1000,
        ge=0,
        description="Characters of the receiver response kept in the delivery log",
    )
    webhook_delivery_retention: int = Field(
        default=1000,
        ge=0,
        description="Delivery rows kept by the maintenance sweep (0 disables pruning)",
    )

    # Background maintenance
    background_trigger_timeout_seconds: float = Field(
        default=0.1,
        gt=0,
        description="Timeout of the fire-and-forget self-trigger request",
    )
    sync_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Minimum seconds between full reconciliations",
    )
    poll_min_interval_seconds: int = Field(
        default=30,
        ge=0,
        description="Minimum seconds between polls of the same quote",
    )
    poll_batch_limit: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Quotes polled per maintenance sweep",
    )
    orphan_grace_seconds: int = Field(
        default=60,
        ge=0,
        description="Age before a Processing invoice is considered orphaned",
    )
    maintenance_interval_seconds: int = Field(
        default=60,
        ge=1,
        description="Period of the in-process maintenance loop",
    )
    cron_key: str | None = Field(
        default=None,
        description="Key required by external /cron calls (unset: open)",
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings(force_reload: bool = False) -> Settings:
    """Get or create application settings.

    Args:
        force_reload: Force reload from environment

    Returns:
        Settings instance
    """
    global _settings

    if _settings is None or force_reload:
        _settings = Settings()

    return _settings
