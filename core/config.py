"""
Configuration management using Pydantic Settings
Handles environment variables and validation
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Environment
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    testing: bool = Field(default=False)

    # Application
    app_name: str = "Storefront Checkout"
    app_version: str = "0.1.0"
    base_url: str = Field(default="http://localhost:8000")
    cors_origins: List[str] = Field(default=["http://localhost:3000"])

    # Payment processor selection
    payment_processor: str = Field(default="stripe")  # stripe or clover

    # Stripe - use SecretStr for sensitive data
    stripe_secret_key: Optional[SecretStr] = Field(default=None)
    stripe_publishable_key: Optional[str] = Field(default=None)
    stripe_webhook_secret: Optional[SecretStr] = Field(default=None)
    stripe_api_version: str = Field(default="2024-11-20.acacia")

    # Clover
    clover_api_key: Optional[SecretStr] = Field(default=None)
    clover_merchant_id: Optional[str] = Field(default=None)
    clover_environment: str = Field(default="sandbox")  # sandbox or production

    # Pricing
    currency: str = Field(default="usd")
    tax_rate: float = Field(default=0.08)
    flat_shipping_cents: int = Field(default=1000)  # $10.00
    free_shipping_threshold_cents: Optional[int] = Field(default=None)
    order_number_prefix: str = Field(default="RLV")
    payment_order_prefix: str = Field(default="ORDER")
    subscription_order_prefix: str = Field(default="SUB")

    # Rate limiting
    rate_limit_backend: str = Field(default="memory")  # memory or redis
    rate_limit_requests: int = Field(default=10)
    rate_limit_window_seconds: int = Field(default=60)
    rate_limit_paths: List[str] = Field(default=["/api/checkout/", "/api/payment/"])

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Confirmation ledger
    ledger_backend: str = Field(default="memory")  # memory or redis
    ledger_ttl_seconds: int = Field(default=7 * 24 * 3600)

    # Webhooks
    webhook_path: str = Field(default="/api/checkout/webhook")
    webhook_max_event_age_hours: int = Field(default=24)

    # Subscription activation polling
    poll_base_delay_seconds: float = Field(default=1.0)
    poll_multiplier: float = Field(default=1.5)
    poll_max_attempts: int = Field(default=10)
    poll_max_duration_seconds: float = Field(default=60.0)

    # Notifications
    notification_email: Optional[str] = Field(default=None)

    # Performance
    request_timeout: int = Field(default=30)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("payment_processor")
    @classmethod
    def validate_payment_processor(cls, v):
        allowed = ["stripe", "clover"]
        v = v.lower()
        if v not in allowed:
            raise ValueError(f"Payment processor must be one of: {allowed}")
        return v

    @field_validator("clover_environment")
    @classmethod
    def validate_clover_environment(cls, v):
        if v not in ("sandbox", "production"):
            raise ValueError("Clover environment must be sandbox or production")
        return v

    @field_validator("rate_limit_backend", "ledger_backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in ("memory", "redis"):
            raise ValueError("Backend must be memory or redis")
        return v

    @field_validator("tax_rate")
    @classmethod
    def validate_tax_rate(cls, v):
        if not 0 <= v < 1:
            raise ValueError("Tax rate must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def validate_polling_settings(self):
        """Polling must be bounded and never shrink between attempts"""
        if self.poll_multiplier < 1:
            raise ValueError("Poll multiplier must be >= 1")
        if self.poll_max_attempts < 1:
            raise ValueError("Poll max attempts must be >= 1")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def clover_base_url(self) -> str:
        if self.clover_environment == "production":
            return "https://api.clover.com"
        return "https://sandbox.dev.clover.com"

    def get_processor_credentials(self, processor: str) -> dict:
        """
        Get credentials for a payment processor

        Missing credentials are an operator problem, so they surface at
        request time as a ConfigurationError instead of failing startup.
        """
        from core.exceptions import ConfigurationError

        if processor == "stripe":
            if not self.stripe_secret_key:
                raise ConfigurationError(
                    "Payment system not configured", setting="stripe_secret_key"
                )
            return {
                "api_key": self.stripe_secret_key.get_secret_value(),
                "api_version": self.stripe_api_version,
                "webhook_secret": self.stripe_webhook_secret.get_secret_value()
                if self.stripe_webhook_secret
                else None,
            }

        if processor == "clover":
            if not self.clover_api_key or not self.clover_merchant_id:
                raise ConfigurationError(
                    "Payment system not configured", setting="clover_api_key"
                )
            return {
                "api_key": self.clover_api_key.get_secret_value(),
                "merchant_id": self.clover_merchant_id,
                "base_url": self.clover_base_url,
            }

        raise ConfigurationError(
            f"Unknown payment processor: {processor}", setting="payment_processor"
        )

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    def model_dump(self, **kwargs):
        """Override to mask sensitive fields when serializing"""
        data = super().model_dump(**kwargs)

        sensitive_fields = [
            "stripe_secret_key",
            "stripe_webhook_secret",
            "clover_api_key",
        ]

        for field in sensitive_fields:
            if field in data and data[field]:
                if hasattr(data[field], "get_secret_value"):
                    value = data[field].get_secret_value()
                else:
                    value = str(data[field])

                # Keep first 4 chars for identification
                if len(value) > 4:
                    data[field] = value[:4] + "*" * (len(value) - 4)
                else:
                    data[field] = "*" * len(value)

        return data


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()
