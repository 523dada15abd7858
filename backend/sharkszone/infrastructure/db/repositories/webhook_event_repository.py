"""
Webhook Event Repository

Durable log of PayPal webhook deliveries, keyed by PayPal's event id.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from sharkszone.infrastructure.db.models.base import utcnow
from sharkszone.infrastructure.db.models.webhook_event import (
    WebhookEvent,
    WebhookEventStatus,
)
from sharkszone.infrastructure.db.repositories.base_repository import BaseRepository


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for the webhook event log."""

    def __init__(self, session: AsyncSession):
        super().__init__(WebhookEvent, session)

    async def record(
        self,
        event_id: str,
        event_type: str,
        resource_id: Optional[str],
        payload: dict,
    ) -> WebhookEvent:
        """
        Insert a newly received event.

        Raises:
            sqlalchemy.exc.IntegrityError: If the event id is already logged
        """
        event = WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            resource_id=resource_id,
            payload=payload,
            status=WebhookEventStatus.RECEIVED.value,
        )
        return await self.add(event)

    async def mark_processed(self, event: WebhookEvent) -> None:
        event.status = WebhookEventStatus.PROCESSED.value
        event.attempts += 1
        event.last_error = None
        event.processed_at = utcnow()
        self.session.add(event)
        await self.session.flush()

    async def mark_failed(self, event: WebhookEvent, error: str) -> None:
        event.status = WebhookEventStatus.FAILED.value
        event.attempts += 1
        event.last_error = error[:2000]
        self.session.add(event)
        await self.session.flush()

    async def list_pending(self, limit: int = 100) -> List[WebhookEvent]:
        """Events that were recorded but never processed successfully, oldest first."""
        stmt = (
            select(WebhookEvent)
            .where(
                WebhookEvent.status.in_([
                    WebhookEventStatus.RECEIVED.value,
                    WebhookEventStatus.FAILED.value,
                ])
            )
            .order_by(WebhookEvent.received_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def prune_processed(self, older_than: datetime) -> int:
        """
        Delete processed events received before ``older_than``.

        Failed and unprocessed events are kept for replay.

        Returns:
            Number of deleted events
        """
        stmt = delete(WebhookEvent).where(
            WebhookEvent.status == WebhookEventStatus.PROCESSED.value,
            WebhookEvent.received_at < older_than,
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
