"""
Subscription Plan Model

Seeded once (free / pro) and read-only for the billing workflow.
"""

from decimal import Decimal

from sqlalchemy import Column, Numeric
from sqlmodel import Field

from sharkszone.infrastructure.db.models.base import IDMixin, TimestampMixin


class SubscriptionPlan(IDMixin, TimestampMixin, table=True):
    """Named tier with per-period usage quotas."""

    __tablename__ = "subscription_plans"

    name: str = Field(..., max_length=20, unique=True, index=True)
    display_name: str = Field(..., max_length=100)
    price_check_limit: int = Field(default=0, ge=0)
    post_creation_limit: int = Field(default=0, ge=0)
    price: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False, server_default="0"),
    )


# Plan catalog as seeded by the initial migration
DEFAULT_PLANS: tuple[dict, ...] = (
    {
        "name": "free",
        "display_name": "Free",
        "price_check_limit": 50,
        "post_creation_limit": 100,
        "price": Decimal("0.00"),
    },
    {
        "name": "pro",
        "display_name": "Pro",
        "price_check_limit": 300,
        "post_creation_limit": 500,
        "price": Decimal("4.00"),
    },
)
