"""
Plan Repository

Read access to the seeded plan catalog.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sharkszone.domain.subscription import PlanName
from sharkszone.infrastructure.db.models.plan import SubscriptionPlan
from sharkszone.infrastructure.db.repositories.base_repository import BaseRepository
from sharkszone.infrastructure.exceptions import NotFoundError


class PlanRepository(BaseRepository[SubscriptionPlan]):
    """Repository for subscription plans."""

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionPlan, session)

    async def get_by_name(self, name: PlanName | str) -> Optional[SubscriptionPlan]:
        value = name.value if isinstance(name, PlanName) else name
        stmt = select(SubscriptionPlan).where(SubscriptionPlan.name == value)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def require(self, name: PlanName) -> SubscriptionPlan:
        """
        Get a plan that must exist (seeded by migration).

        Raises:
            NotFoundError: If the plan catalog was never seeded
        """
        plan = await self.get_by_name(name)
        if plan is None:
            raise NotFoundError(
                f"Plan '{name.value}' is not seeded",
                operation="select",
                table="subscription_plans",
            )
        return plan

    async def ensure(self, **fields) -> tuple[SubscriptionPlan, bool]:
        """
        Insert a plan unless one with the same name exists.

        Returns:
            (plan, created)
        """
        existing = await self.get_by_name(fields["name"])
        if existing is not None:
            return existing, False
        return await self.add(SubscriptionPlan(**fields)), True
