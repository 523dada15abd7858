"""
Payments Infrastructure Module

PayPal REST client used by checkout, reconciliation and webhooks.
"""

from sharkszone.infrastructure.payments.paypal_client import (
    AccessToken,
    PayPalClient,
    VERIFICATION_HEADERS,
)

__all__ = ["AccessToken", "PayPalClient", "VERIFICATION_HEADERS"]
