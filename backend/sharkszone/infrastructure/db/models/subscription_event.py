"""
Subscription Event Model

Audit trail of subscription state transitions.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field

from sharkszone.infrastructure.db.models.base import IDMixin, JSONType, utcnow


class SubscriptionEventType(str, Enum):
    """Types of subscription transitions recorded."""
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    PLAN_SWITCH = "plan_switch"
    SUBSCRIPTION_SYNCED = "subscription_synced"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_RESTRICTED = "subscription_restricted"


class SubscriptionEvent(IDMixin, table=True):
    """One transition of one user's subscription."""

    __tablename__ = "subscription_events"

    user_id: str = Field(..., max_length=36, index=True)
    event_type: str = Field(..., max_length=50)
    event_data: Optional[dict] = Field(default=None, sa_column=Column(JSONType))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
