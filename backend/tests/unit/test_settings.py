"""
Unit tests for Pydantic Settings configuration.

Tests settings loading and validation.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError


def make_settings(**overrides):
    from sharkszone.config.settings import Settings

    values = {"supabase_url": "https://x.supabase.co", **overrides}
    return Settings(_env_file=None, **values)


class TestSettings:
    """Tests for Settings configuration."""

    def test_settings_loads_from_env(self):
        """Settings should load from environment variables."""
        from sharkszone.config.settings import settings

        assert settings.supabase_url is not None
        assert settings.supabase_jwt_secret is not None

    def test_settings_has_billing_defaults(self):
        s = make_settings()

        assert s.pro_plan_price == Decimal("4.00")
        assert s.subscription_period_days == 30
        assert s.webhook_event_retention_days == 30
        assert s.paypal_timeout_seconds > 0

    def test_get_settings_is_cached(self):
        from sharkszone.config.settings import get_settings

        assert get_settings() is get_settings()

    def test_is_production_property(self):
        assert make_settings(environment="production").is_production is True
        assert make_settings(environment="Production").is_development is False
        assert make_settings(environment="development").is_development is True

    def test_allowed_origins_includes_localhost(self):
        s = make_settings()

        assert "http://localhost:3000" in s.allowed_origins

    def test_rejects_non_positive_price(self):
        with pytest.raises(ValidationError):
            make_settings(pro_plan_price="0")

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValidationError):
            make_settings(paypal_timeout_seconds=0)

    def test_rejects_empty_period(self):
        with pytest.raises(ValidationError):
            make_settings(subscription_period_days=0)

    def test_paypal_environment_uses_variable_names(self):
        s = make_settings(
            paypal_mode="live",
            next_public_paypal_client_id_live="public-live-id",
            paypal_live_client_secret="live-secret",
        )
        env = s.paypal_environment()

        assert env["PAYPAL_MODE"] == "live"
        assert env["NEXT_PUBLIC_PAYPAL_CLIENT_ID_LIVE"] == "public-live-id"
        assert env["PAYPAL_LIVE_CLIENT_SECRET"] == "live-secret"
        # Numeric PayPal settings are not credential sources
        assert "PAYPAL_TIMEOUT_SECONDS" not in env
