"""
Subscription Event Repository

Append-only audit trail of subscription transitions.
"""

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sharkszone.infrastructure.db.models.subscription_event import (
    SubscriptionEvent,
    SubscriptionEventType,
)
from sharkszone.infrastructure.db.repositories.base_repository import BaseRepository


class SubscriptionEventRepository(BaseRepository[SubscriptionEvent]):
    """Repository for subscription audit events."""

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionEvent, session)

    async def append(
        self,
        user_id: str,
        event_type: SubscriptionEventType,
        data: Optional[dict[str, Any]] = None,
    ) -> SubscriptionEvent:
        """Record one transition in the current transaction."""
        event = SubscriptionEvent(
            user_id=user_id,
            event_type=event_type.value,
            event_data=data or {},
        )
        return await self.add(event)

