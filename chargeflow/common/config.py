"""Central environment-driven settings for the authorization service.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "chargeflow"
    log_level: str = "INFO"
    api_key: str = "dev-api-key"

    gateway_url: str = "http://payment-gateway:8080/v1"
    gateway_secret_key: str = ""
    gateway_public_key: str = ""
    gateway_timeout_seconds: float = 20.0
    statement_descriptor: str = "ChargeFlow"
    default_currency: str = "PHP"

    poll_interval_seconds: float = 2.0
    poll_initial_delay_seconds: float = 2.0
    poll_budget_seconds: float = 90.0
    challenge_sentinel: str = "3DS-authentication-complete"
    challenge_fallback_seconds: float | None = None
    failure_redirect_delay_seconds: float = 2.0
    failure_redirect_path: str = "/booking/payment-failed/{reference}"
    attempt_retention_seconds: float = 900.0

    kafka_bootstrap_servers: str = "kafka:9092"
    notification_topic: str = "payments.authorization.outcome"
    booking_store_url: str = "http://booking-store:8010"
    database_dsn: str = "sqlite:///./chargeflow.db"
    reconciliation_interval_seconds: float = 30.0
    reconciliation_max_attempts: int = 10
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
