"""
Subscription Repository

Data access layer for subscription records.

Writes that change an existing row go through ``compare_and_swap`` so two
concurrent requests for the same user cannot both apply a transition.
"""

import logging
from typing import Any, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sharkszone.domain.subscription import SubscriptionStatus
from sharkszone.infrastructure.db.models.base import utcnow
from sharkszone.infrastructure.db.models.plan import SubscriptionPlan
from sharkszone.infrastructure.db.models.subscription import UserSubscription
from sharkszone.infrastructure.db.repositories.base_repository import BaseRepository


logger = logging.getLogger(__name__)


class SubscriptionRepository(BaseRepository[UserSubscription]):
    """
    Repository for user subscription records.

    Rows are never deleted; every lifecycle change is a status update.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(UserSubscription, session)

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_active(self, user_id: str) -> Optional[UserSubscription]:
        """
        Get the user's active subscription, if any.

        Args:
            user_id: Authenticated user ID

        Returns:
            Active record or None
        """
        stmt = select(UserSubscription).where(
            UserSubscription.user_id == user_id,
            UserSubscription.status == SubscriptionStatus.ACTIVE.value,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_with_plan(
        self,
        user_id: str,
    ) -> Optional[Tuple[UserSubscription, SubscriptionPlan]]:
        """Get the active record joined with its plan."""
        stmt = (
            select(UserSubscription, SubscriptionPlan)
            .join(SubscriptionPlan, SubscriptionPlan.id == UserSubscription.plan_id)
            .where(
                UserSubscription.user_id == user_id,
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
        )
        result = await self.session.execute(stmt)
        row = result.first()
        return (row[0], row[1]) if row else None

    async def get_current(self, user_id: str) -> Optional[UserSubscription]:
        """
        Get the record that describes the user's subscription right now.

        The active record when there is one, otherwise the most recently
        updated record of any status.
        """
        active = await self.get_active(user_id)
        if active:
            return active

        stmt = (
            select(UserSubscription)
            .where(UserSubscription.user_id == user_id)
            .order_by(UserSubscription.updated_at.desc(), UserSubscription.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_id: str) -> Optional[UserSubscription]:
        """
        Get the record linked to a PayPal subscription or order id.

        Prefers the active record when several rows share the id.
        """
        stmt = (
            select(UserSubscription)
            .where(UserSubscription.external_subscription_id == external_id)
            .order_by(
                (UserSubscription.status == SubscriptionStatus.ACTIVE.value).desc(),
                UserSubscription.updated_at.desc(),
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def compare_and_swap(
        self,
        record_id: str,
        expected_version: int,
        values: dict[str, Any],
        expected_status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> Optional[UserSubscription]:
        """
        Apply ``values`` only if the row still has the status and version we read.

        Args:
            record_id: Subscription id
            expected_version: Version observed when the row was read
            values: Column values to set
            expected_status: Status the row must still have

        Returns:
            The refreshed record, or None when another writer got there first
        """
        stmt = (
            update(UserSubscription)
            .where(
                UserSubscription.id == record_id,
                UserSubscription.status == expected_status.value,
                UserSubscription.version == expected_version,
            )
            .values(
                **values,
                version=UserSubscription.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            logger.info(
                f"Conditional update skipped for subscription {record_id} "
                f"(expected {expected_status.value} v{expected_version})"
            )
            return None

        return await self.session.get(UserSubscription, record_id, populate_existing=True)

    async def expire_previous_cancelled(self, user_id: str, keep_id: str) -> int:
        """
        Move older cancelled rows of a user to expired.

        Returns:
            Number of rows expired
        """
        stmt = (
            update(UserSubscription)
            .where(
                UserSubscription.user_id == user_id,
                UserSubscription.status == SubscriptionStatus.CANCELLED.value,
                UserSubscription.id != keep_id,
            )
            .values(
                status=SubscriptionStatus.EXPIRED.value,
                version=UserSubscription.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
