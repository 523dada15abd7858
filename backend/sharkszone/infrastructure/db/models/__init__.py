"""
SQLModel ORM Models for SharksZone Billing

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from sharkszone.infrastructure.db.models.base import (
    IDMixin,
    TimestampMixin,
    JSONType,
    utcnow,
)
from sharkszone.infrastructure.db.models.plan import DEFAULT_PLANS, SubscriptionPlan
from sharkszone.infrastructure.db.models.subscription import UserSubscription
from sharkszone.infrastructure.db.models.webhook_event import (
    WebhookEvent,
    WebhookEventStatus,
)
from sharkszone.infrastructure.db.models.subscription_event import (
    SubscriptionEvent,
    SubscriptionEventType,
)
from sharkszone.infrastructure.db.models.payment_transaction import PaymentTransaction


__all__ = [
    # Base
    "IDMixin",
    "TimestampMixin",
    "JSONType",
    "utcnow",
    # Billing tables
    "DEFAULT_PLANS",
    "SubscriptionPlan",
    "UserSubscription",
    "WebhookEvent",
    "WebhookEventStatus",
    "SubscriptionEvent",
    "SubscriptionEventType",
    "PaymentTransaction",
]
