"""
Dependency Injection Providers for SharksZone Billing

FastAPI dependency for database sessions.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sharkszone.infrastructure.db.database import get_session


# Type alias for session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]
