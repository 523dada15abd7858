"""
Tests for checkout confirmation (captured payment -> Pro subscription).
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update

from sharkszone.infrastructure.db.models import PaymentTransaction, SubscriptionEvent, UserSubscription
from sharkszone.infrastructure.exceptions import (
    ConcurrentModification,
    InvalidAmount,
    MissingOrderId,
    PermissionDenied,
)
from sharkszone.infrastructure.services.checkout_service import CheckoutService
from sharkszone.infrastructure.services.reconciliation_service import ReconciliationService

from conftest import OTHER_USER_ID, USER_ID


@pytest.fixture
def reconciliation(session, paypal_client) -> ReconciliationService:
    return ReconciliationService(session, paypal_client)


@pytest.fixture
def checkout(session, reconciliation) -> CheckoutService:
    return CheckoutService(session, reconciliation, expected_price=Decimal("4.00"), period_days=30)


class TestConfirmCheckout:

    @pytest.mark.asyncio
    async def test_activates_pro(self, checkout, fetch, plans):
        result = await checkout.confirm_checkout(USER_ID, "ORDER-1", "CAP-1", "4.00")

        assert result.plan == "pro"
        assert result.previous_subscription_cancelled is False

        [row] = await fetch(UserSubscription, user_id=USER_ID)
        assert row.id == result.subscription_id
        assert row.status == "active"
        assert row.plan_id == plans["pro"].id
        assert row.external_subscription_id == "ORDER-1"
        assert row.price_checks_used == 0
        assert (row.expires_at - row.started_at).days == 30

        [payment] = await fetch(PaymentTransaction, user_id=USER_ID)
        assert payment.id == result.transaction_id
        assert payment.amount == Decimal("4.00")
        assert payment.paypal_order_id == "ORDER-1"
        assert payment.paypal_capture_id == "CAP-1"
        assert payment.status == "completed"

        [event] = await fetch(SubscriptionEvent, user_id=USER_ID)
        assert event.event_type == "subscription_activated"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["3.99", "4.01", "0", "-4.00", "abc", None, "NaN", "Infinity"])
    async def test_rejects_wrong_amount_without_writes(self, checkout, fetch, amount):
        with pytest.raises(InvalidAmount):
            await checkout.confirm_checkout(USER_ID, "ORDER-1", "CAP-1", amount)

        assert await fetch(UserSubscription, user_id=USER_ID) == []
        assert await fetch(PaymentTransaction, user_id=USER_ID) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [4, 4.0, "4", "4.00", Decimal("4.000")])
    async def test_accepts_equivalent_amounts(self, checkout, amount):
        result = await checkout.confirm_checkout(USER_ID, "ORDER-1", None, amount)

        assert result.subscription_id

    @pytest.mark.asyncio
    async def test_requires_order_id(self, checkout, fetch):
        with pytest.raises(MissingOrderId):
            await checkout.confirm_checkout(USER_ID, None, "CAP-1", "4.00")

        assert await fetch(UserSubscription, user_id=USER_ID) == []

    @pytest.mark.asyncio
    async def test_replaces_current_active_record(self, checkout, make_subscription, fetch):
        previous = await make_subscription(external_id="I-OLD")

        result = await checkout.confirm_checkout(USER_ID, "ORDER-2", "CAP-2", "4.00")

        assert result.previous_subscription_cancelled is True
        rows = {row.id: row for row in await fetch(UserSubscription, user_id=USER_ID)}
        assert rows[previous.id].status == "cancelled"
        assert rows[previous.id].cancellation_source == "checkout"
        assert rows[result.subscription_id].status == "active"
        assert len([r for r in rows.values() if r.status == "active"]) == 1

    @pytest.mark.asyncio
    async def test_lost_race_on_active_index(self, checkout, reconciliation, make_subscription, fetch):
        async def nothing_released(*args, **kwargs):
            # Another checkout inserted its active row after our read
            await make_subscription(external_id="ORDER-RACER")
            return None

        reconciliation.release_active = nothing_released

        with pytest.raises(ConcurrentModification):
            await checkout.confirm_checkout(USER_ID, "ORDER-3", "CAP-3", "4.00")

        rows = await fetch(UserSubscription, user_id=USER_ID)
        assert [row.external_subscription_id for row in rows] == ["ORDER-RACER"]
        assert await fetch(PaymentTransaction, user_id=USER_ID) == []


class TestRepeatedConfirmation:

    @pytest.mark.asyncio
    async def test_same_order_is_confirmed_once(self, checkout, session_factory, fetch):
        first = await checkout.confirm_checkout(USER_ID, "ORDER-1", "CAP-1", "4.00")
        async with session_factory() as s:
            await s.execute(
                update(UserSubscription)
                .where(UserSubscription.id == first.subscription_id)
                .values(price_checks_used=300, posts_created=12)
            )
            await s.commit()

        again = await checkout.confirm_checkout(USER_ID, "ORDER-1", "CAP-1", "4.00")

        assert again.already_confirmed is True
        assert again.subscription_id == first.subscription_id
        assert again.transaction_id == first.transaction_id

        [row] = await fetch(UserSubscription, user_id=USER_ID)
        assert row.status == "active"
        assert row.price_checks_used == 300
        assert row.posts_created == 12
        assert len(await fetch(PaymentTransaction, paypal_order_id="ORDER-1")) == 1
        assert len(await fetch(SubscriptionEvent, user_id=USER_ID)) == 1

    @pytest.mark.asyncio
    async def test_order_of_another_user_is_refused(self, checkout, fetch):
        await checkout.confirm_checkout(USER_ID, "ORDER-1", "CAP-1", "4.00")

        with pytest.raises(PermissionDenied):
            await checkout.confirm_checkout(OTHER_USER_ID, "ORDER-1", "CAP-1", "4.00")

        assert await fetch(UserSubscription, user_id=OTHER_USER_ID) == []
        assert len(await fetch(PaymentTransaction)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_confirmation_of_same_order(self, checkout, fetch):
        first = await checkout.confirm_checkout(USER_ID, "ORDER-1", "CAP-1", "4.00")
        # The other request read before the first one committed
        checkout._transactions.get_by_order_id = AsyncMock(return_value=None)

        with pytest.raises(ConcurrentModification):
            await checkout.confirm_checkout(USER_ID, "ORDER-1", "CAP-1", "4.00")

        [row] = await fetch(UserSubscription, user_id=USER_ID)
        assert row.id == first.subscription_id
        assert row.status == "active"
        assert len(await fetch(PaymentTransaction)) == 1


class TestRoundTrip:

    @pytest.mark.asyncio
    async def test_checkout_then_cancel_then_cancel_again(self, checkout, reconciliation, fetch, fake_paypal):
        activated = await checkout.confirm_checkout(USER_ID, "ORDER-RT", "CAP-RT", "4.00")

        info = await reconciliation.get_subscription_info(USER_ID)
        assert info.plan_name == "pro"
        assert info.price_check_limit == 300

        cancelled = await reconciliation.cancel(USER_ID, reason="Trying free")
        assert cancelled.subscription_id == activated.subscription_id
        assert cancelled.previous_plan == "pro"
        # One-off orders are not PayPal billing subscriptions
        assert cancelled.paypal_cancelled is False
        assert len(cancelled.warnings) == 1

        again = await reconciliation.cancel(USER_ID)
        assert again.already_free is True

        info = await reconciliation.get_subscription_info(USER_ID)
        assert info.plan_name == "free"
        assert info.status == "cancelled"
