"""
Payment Transaction Model

One row per confirmed PayPal checkout.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, DateTime, Numeric
from sqlmodel import Field

from sharkszone.infrastructure.db.models.base import IDMixin, JSONType, utcnow


class PaymentTransaction(IDMixin, table=True):
    __tablename__ = "payment_transactions"

    user_id: str = Field(..., max_length=36, index=True)
    subscription_id: str = Field(..., foreign_key="user_subscriptions.id", max_length=36)
    amount: Decimal = Field(..., sa_column=Column(Numeric(10, 2), nullable=False))
    currency: str = Field(default="USD", max_length=3)
    payment_method: str = Field(default="paypal", max_length=20)
    # One confirmation per PayPal order
    paypal_order_id: Optional[str] = Field(default=None, max_length=255, index=True, unique=True)
    paypal_capture_id: Optional[str] = Field(default=None, max_length=255)
    status: str = Field(default="completed", max_length=20)
    transaction_data: Optional[dict] = Field(default=None, sa_column=Column(JSONType))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
