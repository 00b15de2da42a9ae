"""Central environment-driven settings shared by all services.

Each service process loads this once at startup. Service-specific behavior is
controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    postgres_dsn: str
    api_key: str
    auto_create_schema: bool = False
    app_url: str = "http://localhost:3000"
    otel_exporter_otlp_endpoint: str = ""

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300
    stripe_timeout_seconds: float = 10.0
    stripe_max_network_retries: int = 2
    stripe_price_small: str = ""
    stripe_price_medium: str = ""
    stripe_price_large: str = ""

    free_grant_amount: int = 1
    free_grant_cooldown_hours: int = 24
    processing_log_retention_days: int = 30
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
