"""
User Subscription Database Model

SQLModel table for subscription records. Rows are never deleted:
cancellation and expiry are status transitions.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field

from sharkszone.infrastructure.db.models.base import IDMixin, TimestampMixin


class UserSubscription(IDMixin, TimestampMixin, table=True):
    """
    Subscription table mapping a user to a plan and a PayPal reference.

    Maps to the 'user_subscriptions' table. The partial unique index keeps
    at most one active row per user even when two requests race.
    """

    __tablename__ = "user_subscriptions"
    __table_args__ = (
        Index(
            "uq_user_subscriptions_one_active",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    user_id: str = Field(..., max_length=36, index=True)
    plan_id: str = Field(..., foreign_key="subscription_plans.id", max_length=36)

    status: str = Field(default="active", max_length=20, index=True)
    restricted: bool = Field(default=False)

    # PayPal subscription id or, for one-off checkouts, the order id
    external_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)

    # Usage tracking
    price_checks_used: int = Field(default=0, ge=0)
    posts_created: int = Field(default=0, ge=0)

    started_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    expires_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancellation_reason: Optional[str] = Field(default=None, max_length=500)
    cancellation_source: Optional[str] = Field(default=None, max_length=50)

    # Optimistic lock, bumped by every conditional update
    version: int = Field(default=1, nullable=False)
