"""
Repository Layer for SharksZone Billing

Exports all repository classes for dependency injection.
"""

from sharkszone.infrastructure.db.repositories.base_repository import BaseRepository
from sharkszone.infrastructure.db.repositories.plan_repository import PlanRepository
from sharkszone.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from sharkszone.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
)
from sharkszone.infrastructure.db.repositories.subscription_event_repository import (
    SubscriptionEventRepository,
)
from sharkszone.infrastructure.db.repositories.payment_transaction_repository import (
    PaymentTransactionRepository,
)


__all__ = [
    # Base
    "BaseRepository",
    # Repositories
    "PlanRepository",
    "SubscriptionRepository",
    "WebhookEventRepository",
    "SubscriptionEventRepository",
    "PaymentTransactionRepository",
]
