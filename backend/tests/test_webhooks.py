"""
Tests for PayPal webhook handling

Verifies:
- Verification failures are rejected and nothing is stored
- Verified events are recorded, then dispatched
- Idempotency (a processed event is never applied twice)
- Handler failures are kept for replay
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from sharkszone.infrastructure.db.models import UserSubscription, WebhookEvent, utcnow
from sharkszone.infrastructure.exceptions import (
    InvalidSignature,
    MissingVerificationHeaders,
    ValidationError,
)
from sharkszone.infrastructure.services.reconciliation_service import ReconciliationService
from sharkszone.infrastructure.services.webhook_service import (
    ALREADY_PROCESSED,
    FAILED,
    PROCESSED,
    WebhookService,
)


WEBHOOK_HEADERS = {
    "paypal-transmission-id": "tx-1",
    "paypal-transmission-time": "2026-10-18T10:00:00Z",
    "paypal-cert-url": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-1",
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-transmission-sig": "c2lnbmF0dXJl",
}


def event_body(event_type: str, resource_id: str = "I-SUB123", event_id: str = "WH-EVT-1") -> bytes:
    return json.dumps({
        "id": event_id,
        "event_type": event_type,
        "resource_type": "subscription",
        "resource": {"id": resource_id, "status": event_type.rsplit(".", 1)[-1]},
    }).encode()


@pytest.fixture
def reconciliation(session, paypal_client) -> ReconciliationService:
    return ReconciliationService(session, paypal_client)


@pytest.fixture
def webhooks(session, paypal_client, reconciliation) -> WebhookService:
    return WebhookService(session, paypal_client, reconciliation)


class TestVerification:

    @pytest.mark.asyncio
    async def test_missing_headers_store_nothing(self, webhooks, fetch, fake_paypal):
        with pytest.raises(MissingVerificationHeaders):
            await webhooks.receive({}, event_body("BILLING.SUBSCRIPTION.CANCELLED"))

        assert await fetch(WebhookEvent) == []
        assert fake_paypal.requests == []

    @pytest.mark.asyncio
    async def test_invalid_signature_stores_nothing(self, webhooks, fetch, fake_paypal):
        fake_paypal.verification_status = "FAILURE"

        with pytest.raises(InvalidSignature):
            await webhooks.receive(WEBHOOK_HEADERS, event_body("BILLING.SUBSCRIPTION.CANCELLED"))

        assert await fetch(WebhookEvent) == []

    @pytest.mark.asyncio
    async def test_invalid_json(self, webhooks, fake_paypal):
        with pytest.raises(ValidationError):
            await webhooks.receive(WEBHOOK_HEADERS, b"not json")

        assert fake_paypal.requests == []

    @pytest.mark.asyncio
    async def test_event_without_id(self, webhooks, fetch):
        with pytest.raises(ValidationError):
            await webhooks.receive(WEBHOOK_HEADERS, b'{"event_type": "BILLING.SUBSCRIPTION.CANCELLED"}')

        assert await fetch(WebhookEvent) == []


class TestDispatch:

    @pytest.mark.asyncio
    async def test_cancelled_downgrades(self, webhooks, make_subscription, fetch, fake_paypal):
        record = await make_subscription()

        outcome = await webhooks.receive(WEBHOOK_HEADERS, event_body("BILLING.SUBSCRIPTION.CANCELLED"))

        assert outcome == PROCESSED
        [row] = await fetch(UserSubscription, id=record.id)
        assert row.status == "cancelled"
        assert row.cancellation_source == "paypal_webhook"
        # The event came from PayPal; nothing to cancel there
        assert fake_paypal.calls("/cancel") == []

        [stored] = await fetch(WebhookEvent)
        assert stored.event_id == "WH-EVT-1"
        assert stored.status == "processed"
        assert stored.resource_id == "I-SUB123"
        assert stored.attempts == 1
        assert stored.processed_at is not None

    @pytest.mark.asyncio
    async def test_expired(self, webhooks, make_subscription, fetch):
        record = await make_subscription()

        await webhooks.receive(WEBHOOK_HEADERS, event_body("BILLING.SUBSCRIPTION.EXPIRED"))

        [row] = await fetch(UserSubscription, id=record.id)
        assert row.status == "expired"

    @pytest.mark.asyncio
    async def test_suspended_restricts(self, webhooks, make_subscription, fetch):
        record = await make_subscription()

        await webhooks.receive(WEBHOOK_HEADERS, event_body("BILLING.SUBSCRIPTION.SUSPENDED"))

        [row] = await fetch(UserSubscription, id=record.id)
        assert row.status == "active"
        assert row.restricted is True

    @pytest.mark.asyncio
    async def test_suspended_does_not_revive_cancelled(self, webhooks, make_subscription, fetch):
        record = await make_subscription(status="cancelled", plan="free")

        outcome = await webhooks.receive(WEBHOOK_HEADERS, event_body("BILLING.SUBSCRIPTION.SUSPENDED"))

        assert outcome == PROCESSED
        [row] = await fetch(UserSubscription, id=record.id)
        assert row.status == "cancelled"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_type",
        ["BILLING.SUBSCRIPTION.ACTIVATED", "BILLING.SUBSCRIPTION.RE-ACTIVATED", "BILLING.SUBSCRIPTION.RE_ACTIVATED"],
    )
    async def test_activation_events(self, webhooks, make_subscription, fetch, event_type):
        record = await make_subscription(restricted=True)

        await webhooks.receive(WEBHOOK_HEADERS, event_body(event_type))

        [row] = await fetch(UserSubscription, id=record.id)
        assert row.status == "active"
        assert row.restricted is False

    @pytest.mark.asyncio
    async def test_updated_syncs_with_paypal(self, webhooks, make_subscription, fetch, fake_paypal):
        record = await make_subscription()
        fake_paypal.subscriptions["I-SUB123"] = "SUSPENDED"

        await webhooks.receive(WEBHOOK_HEADERS, event_body("BILLING.SUBSCRIPTION.UPDATED"))

        assert len(fake_paypal.calls("/v1/billing/subscriptions/I-SUB123")) == 1
        [row] = await fetch(UserSubscription, id=record.id)
        assert row.restricted is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_type",
        ["BILLING.SUBSCRIPTION.CREATED", "PAYMENT.SALE.COMPLETED", "SOMETHING.NEW"],
    )
    async def test_informational_events_change_nothing(self, webhooks, make_subscription, fetch, event_type):
        record = await make_subscription()

        outcome = await webhooks.receive(WEBHOOK_HEADERS, event_body(event_type))

        assert outcome == PROCESSED
        [row] = await fetch(UserSubscription, id=record.id)
        assert row.version == 1

    @pytest.mark.asyncio
    async def test_unknown_subscription_is_acknowledged(self, webhooks, fetch):
        outcome = await webhooks.receive(
            WEBHOOK_HEADERS, event_body("BILLING.SUBSCRIPTION.CANCELLED", resource_id="I-UNKNOWN")
        )

        assert outcome == PROCESSED
        [stored] = await fetch(WebhookEvent)
        assert stored.status == "processed"


class TestIdempotency:

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, webhooks, make_subscription, fetch):
        await make_subscription()
        body = event_body("BILLING.SUBSCRIPTION.CANCELLED")

        first = await webhooks.receive(WEBHOOK_HEADERS, body)
        second = await webhooks.receive(WEBHOOK_HEADERS, body)

        assert first == PROCESSED
        assert second == ALREADY_PROCESSED
        [stored] = await fetch(WebhookEvent)
        assert stored.attempts == 1


class TestFailuresAndReplay:

    @pytest.mark.asyncio
    async def test_handler_failure_is_recorded(self, webhooks, reconciliation, make_subscription, fetch):
        record = await make_subscription()
        reconciliation.apply_remote_status = AsyncMock(side_effect=RuntimeError("database went away"))

        outcome = await webhooks.receive(WEBHOOK_HEADERS, event_body("BILLING.SUBSCRIPTION.CANCELLED"))

        assert outcome == FAILED
        [stored] = await fetch(WebhookEvent)
        assert stored.status == "failed"
        assert stored.attempts == 1
        assert "database went away" in stored.last_error
        [row] = await fetch(UserSubscription, id=record.id)
        assert row.status == "active"

    @pytest.mark.asyncio
    async def test_redelivery_retries_failed_event(self, webhooks, reconciliation, make_subscription, fetch):
        record = await make_subscription()
        original = reconciliation.apply_remote_status
        reconciliation.apply_remote_status = AsyncMock(side_effect=RuntimeError("boom"))
        body = event_body("BILLING.SUBSCRIPTION.CANCELLED")

        assert await webhooks.receive(WEBHOOK_HEADERS, body) == FAILED

        reconciliation.apply_remote_status = original
        assert await webhooks.receive(WEBHOOK_HEADERS, body) == PROCESSED

        [stored] = await fetch(WebhookEvent)
        assert stored.status == "processed"
        assert stored.attempts == 2
        [row] = await fetch(UserSubscription, id=record.id)
        assert row.status == "cancelled"

    @pytest.mark.asyncio
    async def test_replay_pending_events(self, webhooks, reconciliation, make_subscription, fetch):
        await make_subscription()
        await make_subscription(user_id="00000000-0000-4000-8000-00000000cccc", external_id="I-SUB456")
        original = reconciliation.apply_remote_status
        reconciliation.apply_remote_status = AsyncMock(side_effect=RuntimeError("boom"))

        await webhooks.receive(WEBHOOK_HEADERS, event_body("BILLING.SUBSCRIPTION.CANCELLED", event_id="WH-A"))
        await webhooks.receive(
            WEBHOOK_HEADERS,
            event_body("BILLING.SUBSCRIPTION.CANCELLED", resource_id="I-SUB456", event_id="WH-B"),
        )

        reconciliation.apply_remote_status = original
        counts = await webhooks.replay_pending_events(limit=10)

        assert counts == {PROCESSED: 2, FAILED: 0}
        assert {e.status for e in await fetch(WebhookEvent)} == {"processed"}
        assert {r.status for r in await fetch(UserSubscription)} == {"cancelled"}

    @pytest.mark.asyncio
    async def test_prune_keeps_unprocessed(self, webhooks, session, fetch):
        old = utcnow() - timedelta(days=45)
        session.add_all([
            WebhookEvent(event_id="WH-OLD-DONE", event_type="X", payload={}, status="processed", received_at=old),
            WebhookEvent(event_id="WH-OLD-FAILED", event_type="X", payload={}, status="failed", received_at=old),
            WebhookEvent(event_id="WH-NEW-DONE", event_type="X", payload={}, status="processed"),
        ])
        await session.commit()

        deleted = await webhooks.prune_processed_events(utcnow() - timedelta(days=30))

        assert deleted == 1
        assert sorted(e.event_id for e in await fetch(WebhookEvent)) == ["WH-NEW-DONE", "WH-OLD-FAILED"]