"""
PayPal Webhook Service

Verifies, records and dispatches PayPal webhook deliveries.

A delivery is acknowledged only after it is durably recorded in
``webhook_events``. Handler failures are stored on the event (status
``failed``) and picked up again by ``replay_pending_events``; they are not
reported back to PayPal as errors.
"""

import json
import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sharkszone.domain.subscription import CancellationSource
from sharkszone.infrastructure.db.models.webhook_event import WebhookEvent, WebhookEventStatus
from sharkszone.infrastructure.db.repositories import WebhookEventRepository
from sharkszone.infrastructure.exceptions import DatabaseError, ValidationError
from sharkszone.infrastructure.payments.paypal_client import PayPalClient
from sharkszone.infrastructure.services.reconciliation_service import ReconciliationService


logger = logging.getLogger(__name__)


# event type -> PayPal status the event implies for the referenced subscription
STATUS_EVENTS: dict[str, str] = {
    "BILLING.SUBSCRIPTION.CANCELLED": "CANCELLED",
    "BILLING.SUBSCRIPTION.EXPIRED": "EXPIRED",
    "BILLING.SUBSCRIPTION.SUSPENDED": "SUSPENDED",
    "BILLING.SUBSCRIPTION.ACTIVATED": "ACTIVE",
    "BILLING.SUBSCRIPTION.RE-ACTIVATED": "ACTIVE",
    "BILLING.SUBSCRIPTION.RE_ACTIVATED": "ACTIVE",
}

SYNC_EVENTS = {"BILLING.SUBSCRIPTION.UPDATED"}

LOG_ONLY_EVENTS = {
    "BILLING.SUBSCRIPTION.CREATED",
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED",
    "CHECKOUT.ORDER.APPROVED",
    "PAYMENT.SALE.COMPLETED",
}

ALREADY_PROCESSED = "already processed"
PROCESSED = "processed"
FAILED = "failed"


class WebhookService:
    """
    Receives PayPal webhook deliveries.

    Args:
        session: Request-scoped database session
        gateway: Shared PayPal client (signature verification)
        reconciliation: Applies the state change an event implies
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: PayPalClient,
        reconciliation: ReconciliationService,
    ):
        self._session = session
        self._gateway = gateway
        self._reconciliation = reconciliation
        self._events = WebhookEventRepository(session)

    async def receive(self, headers: Mapping[str, str], raw_body: bytes) -> str:
        """
        Handle one delivery end to end.

        Args:
            headers: Request headers
            raw_body: Raw request body

        Returns:
            "processed", "failed" or "already processed"

        Raises:
            ValidationError: Body is not a JSON event
            MissingVerificationHeaders / InvalidSignature: Not from PayPal
            DatabaseError: The event could not be recorded
        """
        try:
            event = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Invalid JSON body")
        if not isinstance(event, dict):
            raise ValidationError("Invalid JSON body")

        await self._gateway.verify_webhook_signature(headers, raw_body)

        event_id = event.get("id")
        event_type = event.get("event_type") or "UNKNOWN"
        if not event_id:
            raise ValidationError("Webhook event has no id")

        logger.info(f"PayPal webhook {event_id} received: {event_type}")

        stored = await self._record(event_id, event_type, event)
        if stored is None:
            logger.info(f"PayPal webhook {event_id} already processed, skipping")
            return ALREADY_PROCESSED

        return await self._process(stored.event_id)

    async def _record(self, event_id: str, event_type: str, event: dict[str, Any]) -> Optional[WebhookEvent]:
        """
        Durably log the event.

        Returns:
            The stored event, or None if it was already processed
        """
        existing = await self._events.get_by_id(event_id)
        if existing is not None:
            return None if existing.status == WebhookEventStatus.PROCESSED.value else existing

        resource = event.get("resource") or {}
        try:
            stored = await self._events.record(
                event_id=event_id,
                event_type=event_type,
                resource_id=resource.get("id"),
                payload=event,
            )
            await self._session.commit()
            return stored
        except IntegrityError:
            # Concurrent redelivery inserted it first
            await self._session.rollback()
            existing = await self._events.get_by_id(event_id)
            if existing is None or existing.status == WebhookEventStatus.PROCESSED.value:
                return None
            return existing
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error(f"Could not record PayPal webhook {event_id}: {e}")
            raise DatabaseError(
                "Failed to record webhook event",
                operation="insert",
                table="webhook_events",
                original_error=e,
            )

    async def _process(self, event_id: str) -> str:
        stored = await self._events.get_by_id(event_id)
        event_type = stored.event_type
        payload = stored.payload

        try:
            await self.dispatch(event_type, payload)
        except Exception as e:
            await self._session.rollback()
            logger.exception(f"PayPal webhook {event_id} ({event_type}) handler failed")
            failed = await self._events.get_by_id(event_id)
            await self._events.mark_failed(failed, f"{type(e).__name__}: {e}")
            await self._session.commit()
            return FAILED

        processed = await self._events.get_by_id(event_id)
        await self._events.mark_processed(processed)
        await self._session.commit()
        return PROCESSED

    async def dispatch(self, event_type: str, payload: dict[str, Any]) -> None:
        """Route one event to the reconciliation transition it implies."""
        resource = payload.get("resource") or {}
        resource_id = resource.get("id")

        if event_type in STATUS_EVENTS or event_type in SYNC_EVENTS:
            if not resource_id:
                logger.warning(f"{event_type} without resource id, ignoring")
                return

            if event_type in SYNC_EVENTS:
                result = await self._reconciliation.sync_external(resource_id)
            else:
                remote_status = STATUS_EVENTS[event_type]
                result = await self._reconciliation.apply_remote_status(
                    resource_id,
                    remote_status,
                    source=CancellationSource.PAYPAL_WEBHOOK,
                    allow_reactivation=remote_status != "SUSPENDED",
                )
            logger.info(
                f"{event_type} for {resource_id}: synced={result.synced} "
                f"changed={result.changed} reason={result.reason}"
            )
            return

        if event_type in LOG_ONLY_EVENTS:
            logger.info(f"{event_type} for {resource_id} acknowledged, no state change")
            return

        logger.info(f"Unhandled PayPal webhook type {event_type}")

    # =========================================================================
    # Operations
    # =========================================================================

    async def replay_pending_events(self, limit: int = 100) -> dict[str, int]:
        """
        Re-dispatch events that were recorded but never processed.

        Returns:
            Counts of processed and failed events
        """
        event_ids = [event.event_id for event in await self._events.list_pending(limit)]
        counts = {PROCESSED: 0, FAILED: 0}
        for event_id in event_ids:
            outcome = await self._process(event_id)
            counts[outcome] += 1
        logger.info(f"Replayed {len(event_ids)} webhook event(s): {counts}")
        return counts

    async def prune_processed_events(self, older_than: datetime) -> int:
        """Delete processed events received before ``older_than``."""
        deleted = await self._events.prune_processed(older_than)
        await self._session.commit()
        logger.info(f"Pruned {deleted} processed webhook event(s) older than {older_than.isoformat()}")
        return deleted
