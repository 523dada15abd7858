"""
Payment Transaction Repository
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sharkszone.infrastructure.db.models.payment_transaction import PaymentTransaction
from sharkszone.infrastructure.db.repositories.base_repository import BaseRepository


class PaymentTransactionRepository(BaseRepository[PaymentTransaction]):
    """Repository for confirmed PayPal payments."""

    def __init__(self, session: AsyncSession):
        super().__init__(PaymentTransaction, session)

    async def get_by_order_id(self, order_id: str) -> Optional[PaymentTransaction]:
        """Get the payment recorded for a PayPal order, if it was confirmed before."""
        stmt = select(PaymentTransaction).where(PaymentTransaction.paypal_order_id == order_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
