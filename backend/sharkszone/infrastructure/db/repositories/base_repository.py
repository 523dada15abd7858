"""
Base Repository for SharksZone Billing

Generic async repository over a single SQLModel table.
Repositories only flush; the calling service owns commit and rollback so
that a state transition and its audit rows land in one transaction.
"""

from typing import TypeVar, Generic, Optional, Type, Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel


ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic async repository with the operations every table needs.

    Args:
        model: The SQLModel class to operate on
        session: Async database session
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self._model = model
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Get the current session."""
        return self._session

    async def get_by_id(self, id: Any) -> Optional[ModelType]:
        """
        Get a single record by its primary key.

        Args:
            id: Primary key value

        Returns:
            Model instance or None if not found
        """
        return await self._session.get(self._model, id)

    async def add(self, db_obj: ModelType) -> ModelType:
        """
        Stage a new record and flush it so database defaults are applied.

        Args:
            db_obj: Unsaved model instance

        Returns:
            The same instance, now persistent in the session
        """
        self._session.add(db_obj)
        await self._session.flush()
        await self._session.refresh(db_obj)
        return db_obj

