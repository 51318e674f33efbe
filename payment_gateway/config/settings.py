"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Stripe Configuration
    stripe_secret_key: str = Field(..., description="Stripe secret API key (sk_test_...)")
    stripe_publishable_key: str = Field(..., description="Stripe publishable key (pk_test_...)")
    stripe_webhook_secret: str = Field(..., description="Stripe webhook signing secret")
    stripe_api_version: str = Field(default="2023-10-16", description="Stripe API version")

    # Paystack Configuration
    paystack_secret_key: str = Field(..., description="Paystack secret key (sk_...)")
    paystack_public_key: str = Field(default="", description="Paystack public key (pk_...)")
    paystack_webhook_secret: str = Field(default="", description="Paystack webhook secret")
    paystack_base_url: str = Field(
        default="https://api.paystack.co", description="Paystack API base URL"
    )

    # Payment Rules
    max_amount_per_transaction: float = Field(
        default=999999.99, description="Maximum amount accepted per transaction"
    )
    webhook_signature_validation: bool = Field(
        default=True, description="Reject webhooks with invalid signatures"
    )
    gateway_http_timeout: float = Field(
        default=30.0, description="Timeout for outbound gateway HTTP calls (seconds)"
    )

    # Application Configuration
    app_name: str = Field(default="payment-gateway", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8086, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8086",
        description="CORS allowed origins (comma-separated)"
    )

    # Resilience
    retry_max_attempts: int = Field(default=3, description="Max attempts per gateway call")
    retry_min_wait: float = Field(default=0.5, description="Minimum retry backoff (seconds)")
    retry_max_wait: float = Field(default=8.0, description="Maximum retry backoff (seconds)")
    bulkhead_max_concurrent_calls: int = Field(
        default=25, description="Concurrent calls allowed per downstream service"
    )
    bulkhead_max_wait: float = Field(
        default=0.5, description="Time to wait for a bulkhead slot (seconds)"
    )
    call_timeout: float = Field(default=10.0, description="Time limit per protected call (seconds)")
    queue_drain_interval: float = Field(
        default=30.0, ge=0, description="Seconds between drains of the payment queue (0 disables)"
    )

    # Authentication
    jwt_secret: str = Field(
        default="", description="Secret for signed access tokens (empty rejects all)"
    )
    jwt_algorithm: str = Field(default="HS256", description="Access token signing algorithm")

    # Event Publishing
    kafka_bootstrap_servers: str = Field(
        default="", description="Kafka bootstrap servers (empty disables publishing)"
    )
    kafka_payment_events_topic: str = Field(
        default="payment-events", description="Topic for payment events"
    )

    # Tracing
    otlp_endpoint: str = Field(default="", description="OTLP collector endpoint (empty disables export)")
    trace_sample_rate: float = Field(default=1.0, description="Fraction of requests traced")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("stripe_secret_key")
    @classmethod
    def validate_stripe_key(cls, v: str) -> str:
        """Validate that Stripe secret key is a test or live key."""
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Stripe secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("paystack_secret_key")
    @classmethod
    def validate_paystack_key(cls, v: str) -> str:
        """Validate Paystack secret key format."""
        if not v.startswith("sk_"):
            raise ValueError("Invalid Paystack secret key format. Key should start with 'sk_'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using Stripe test mode."""
        return self.stripe_secret_key.startswith("sk_test_")

    @property
    def kafka_enabled(self) -> bool:
        """Check if an event sink is configured."""
        return bool(self.kafka_bootstrap_servers)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
