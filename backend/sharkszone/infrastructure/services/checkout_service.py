"""
Checkout Service

Turns a captured PayPal payment into an active Pro subscription.
"""

import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sharkszone.domain.subscription import (
    CancellationSource,
    CheckoutResult,
    PlanName,
    SubscriptionStatus,
)
from sharkszone.infrastructure.db.models.base import utcnow
from sharkszone.infrastructure.db.models.payment_transaction import PaymentTransaction
from sharkszone.infrastructure.db.models.subscription import UserSubscription
from sharkszone.infrastructure.db.models.subscription_event import SubscriptionEventType
from sharkszone.infrastructure.db.repositories import (
    PaymentTransactionRepository,
    PlanRepository,
    SubscriptionEventRepository,
    SubscriptionRepository,
)
from sharkszone.infrastructure.exceptions import (
    ConcurrentModification,
    InvalidAmount,
    MissingOrderId,
    PermissionDenied,
)
from sharkszone.infrastructure.services.reconciliation_service import ReconciliationService


logger = logging.getLogger(__name__)


class CheckoutService:
    """
    Confirms a completed PayPal checkout.

    Args:
        session: Request-scoped database session
        reconciliation: Used to release the user's current record
        expected_price: Exact amount a Pro checkout must carry
        period_days: Length of the paid period
    """

    def __init__(
        self,
        session: AsyncSession,
        reconciliation: ReconciliationService,
        expected_price: Decimal,
        period_days: int = 30,
    ):
        self._session = session
        self._reconciliation = reconciliation
        self._expected_price = expected_price
        self._period_days = period_days
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._transactions = PaymentTransactionRepository(session)
        self._events = SubscriptionEventRepository(session)

    def _validate_amount(self, amount: Any) -> Decimal:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise InvalidAmount("Invalid payment amount", details={"amount": str(amount)})

        if not value.is_finite() or value != self._expected_price:
            logger.warning(f"Rejected checkout amount {value} (expected {self._expected_price})")
            raise InvalidAmount(
                "Invalid payment amount",
                details={"expected": str(self._expected_price), "received": str(value)},
            )
        return value

    async def confirm_checkout(
        self,
        user_id: str,
        order_id: Optional[str],
        capture_id: Optional[str],
        amount: Any,
        raw: Optional[dict[str, Any]] = None,
    ) -> CheckoutResult:
        """
        Activate Pro for the user after a successful capture.

        The previous active record (if any) is cancelled, the new record and
        its payment transaction are inserted, all in one transaction.
        Confirming an order a second time returns the first confirmation
        without writing anything.

        Raises:
            MissingOrderId: If no order id was given
            InvalidAmount: If the amount differs from the Pro price; nothing is written
            PermissionDenied: If the order was confirmed by another user
            ConcurrentModification: If a racing checkout activated first
        """
        if not order_id:
            raise MissingOrderId("Order ID is required")
        value = self._validate_amount(amount)

        confirmed = await self._transactions.get_by_order_id(order_id)
        if confirmed is not None:
            return await self._already_confirmed(user_id, confirmed)

        pro = await self._plans.require(PlanName.PRO)

        released = await self._reconciliation.release_active(
            user_id,
            reason="Replaced by new checkout",
            source=CancellationSource.CHECKOUT,
        )

        now = utcnow()
        expires_at = now + timedelta(days=self._period_days)
        try:
            subscription = await self._subscriptions.add(
                UserSubscription(
                    user_id=user_id,
                    plan_id=pro.id,
                    status=SubscriptionStatus.ACTIVE.value,
                    external_subscription_id=order_id,
                    price_checks_used=0,
                    posts_created=0,
                    started_at=now,
                    expires_at=expires_at,
                )
            )
        except IntegrityError as e:
            await self._session.rollback()
            logger.warning(f"Checkout for user {user_id} lost a race on the active record")
            raise ConcurrentModification(
                "Another checkout activated a subscription first",
            ) from e

        try:
            transaction = await self._transactions.add(
                PaymentTransaction(
                    user_id=user_id,
                    subscription_id=subscription.id,
                    amount=value,
                    currency="USD",
                    payment_method="paypal",
                    paypal_order_id=order_id,
                    paypal_capture_id=capture_id,
                    status="completed",
                    transaction_data=raw or {},
                )
            )
        except IntegrityError as e:
            await self._session.rollback()
            logger.warning(f"Order {order_id} was confirmed concurrently")
            raise ConcurrentModification(
                "This order is already being confirmed",
                details={"order_id": order_id},
            ) from e

        await self._events.append(
            user_id,
            SubscriptionEventType.SUBSCRIPTION_ACTIVATED,
            {
                "subscription_id": subscription.id,
                "order_id": order_id,
                "capture_id": capture_id,
                "amount": str(value),
                "replaced_subscription_id": released,
            },
        )
        await self._session.commit()

        logger.info(f"Activated Pro subscription {subscription.id} for user {user_id} (order {order_id})")
        return CheckoutResult(
            subscription_id=subscription.id,
            transaction_id=transaction.id,
            expires_at=expires_at,
            previous_subscription_cancelled=released is not None,
        )

    async def _already_confirmed(self, user_id: str, transaction: PaymentTransaction) -> CheckoutResult:
        if transaction.user_id != user_id:
            logger.warning(
                f"User {user_id} tried to confirm order {transaction.paypal_order_id} "
                f"owned by {transaction.user_id}"
            )
            raise PermissionDenied(
                "This order belongs to another account",
                details={"order_id": transaction.paypal_order_id},
            )

        subscription = await self._subscriptions.get_by_id(transaction.subscription_id)
        logger.info(f"Order {transaction.paypal_order_id} already confirmed for user {user_id}")
        return CheckoutResult(
            subscription_id=transaction.subscription_id,
            transaction_id=transaction.id,
            expires_at=subscription.expires_at if subscription else None,
            already_confirmed=True,
        )
