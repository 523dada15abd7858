"""
Webhook Event Log Model

Append-only record of every verified PayPal delivery, written before
dispatch so a failed handler can be replayed.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from sharkszone.infrastructure.db.models.base import JSONType, utcnow


class WebhookEventStatus(str, Enum):
    """Processing state of a recorded webhook event."""
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookEvent(SQLModel, table=True):
    """PayPal webhook delivery keyed by the provider's event id."""

    __tablename__ = "webhook_events"

    event_id: str = Field(..., primary_key=True, max_length=255)
    event_type: str = Field(..., max_length=100)
    resource_id: Optional[str] = Field(default=None, max_length=255)

    payload: dict = Field(default_factory=dict, sa_column=Column(JSONType, nullable=False))

    status: str = Field(default=WebhookEventStatus.RECEIVED.value, max_length=20, index=True)
    attempts: int = Field(default=0)
    last_error: Optional[str] = Field(default=None)

    received_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        index=True,
    )
    processed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
