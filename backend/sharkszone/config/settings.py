"""
Application Settings for SharksZone Billing

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    PayPal variables are kept under their original names so the same .env
    works for the web frontend and this service. Resolution of the active
    mode and credentials lives in ``config.paypal``; nothing here picks a
    PayPal mode from ENVIRONMENT.
    """

    # Supabase Configuration
    supabase_url: str
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    frontend_url: str = "http://localhost:3000"
    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # PayPal mode selector (PAYPAL_MODE wins over the public mirror)
    paypal_mode: Optional[str] = None
    next_public_paypal_mode: Optional[str] = None

    # PayPal live credentials
    paypal_live_client_id: Optional[str] = None
    next_public_paypal_client_id_live: Optional[str] = None
    paypal_live_client_secret: Optional[str] = None
    paypal_live_webhook_id: Optional[str] = None

    # PayPal sandbox credentials
    paypal_sandbox_client_id: Optional[str] = None
    next_public_paypal_client_id_sandbox: Optional[str] = None
    paypal_sandbox_client_secret: Optional[str] = None
    paypal_sandbox_webhook_id: Optional[str] = None

    # Legacy shared PayPal credentials (pre mode-split naming)
    paypal_client_id: Optional[str] = None
    next_public_paypal_client_id: Optional[str] = None
    paypal_client_secret: Optional[str] = None
    paypal_webhook_id: Optional[str] = None

    # Gateway HTTP behaviour
    paypal_timeout_seconds: float = 15.0
    paypal_token_refresh_margin_seconds: int = 60

    # Billing rules
    pro_plan_price: Decimal = Decimal("4.00")
    subscription_period_days: int = 30
    webhook_event_retention_days: int = 30

    # Database Configuration (SQLModel/SQLAlchemy)
    supabase_password: Optional[str] = None
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_billing_values(self) -> "Settings":
        """Reject values that would break the checkout and webhook flows."""
        if self.pro_plan_price <= 0:
            raise ValueError("PRO_PLAN_PRICE must be positive")

        if self.paypal_timeout_seconds <= 0:
            raise ValueError("PAYPAL_TIMEOUT_SECONDS must be positive")

        if self.subscription_period_days < 1:
            raise ValueError("SUBSCRIPTION_PERIOD_DAYS must be at least 1")

        return self

    def paypal_environment(self) -> dict[str, Optional[str]]:
        """
        Expose PayPal variables under their environment names.

        The resolution helpers in ``config.paypal`` work on this mapping so
        they can be exercised without building a full Settings object.
        """
        return {
            name.upper(): value
            for name, value in self.model_dump().items()
            if name.startswith(("paypal_", "next_public_paypal_"))
            and (value is None or isinstance(value, str))
        }

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
