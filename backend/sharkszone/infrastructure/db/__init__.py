"""
Database Infrastructure Package for SharksZone Billing

Exports database utilities, models, and repositories.
"""

from sharkszone.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session,
    get_session_context,
    init_db,
    close_db,
)

from sharkszone.infrastructure.db.dependencies import SessionDep


__all__ = [
    # Database management
    "DatabaseManager",
    "get_db_manager",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "SessionDep",
]
