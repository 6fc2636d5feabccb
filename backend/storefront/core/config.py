from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    app_name: str = "Storefront Orders API"
    app_version: str = "0.1.0"
    environment: str = "local"

    database_url: str = "sqlite+aiosqlite:///./storefront.db"
    log_json: bool = False
    sentry_dsn: str | None = None
    sentry_traces_sample_rate: float = 0.0

    cors_origins: list[str] = ["http://localhost:4200"]

    currency: str = "INR"
    currency_symbol: str = "₹"
    money_rounding: str = "half_up"

    order_id_prefix: str = "ORD"
    order_timezone: str = "Asia/Kolkata"
    order_sequence_width: int = 4
    return_window_days: int = 7

    default_max_usage_per_user: int = 1
    coupon_release_on_remove: bool = False
    coupon_expiry_warning_days: int = 7

    side_effect_max_attempts: int = 5

    # Shared secrets for collaborator callbacks; unsigned callbacks are refused while unset.
    payment_webhook_secret: str | None = None
    shipment_webhook_secret: str | None = None
    payment_gateway_key_secret: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
