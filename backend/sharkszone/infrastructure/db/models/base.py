"""
Base Model for SQLModel ORM

Provides common fields and behavior for all database models.
Identifiers are stored as 36-char strings so the same tables work on
Supabase Postgres and on the SQLite database used in tests.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


# JSONB on Postgres, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current time; every stored timestamp goes through this."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class TimestampMixin(SQLModel):
    """
    Mixin providing timestamp fields for models.
    """

    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
        description="Record creation timestamp (UTC)"
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"onupdate": utcnow},
        description="Last update timestamp (UTC)"
    )


class IDMixin(SQLModel):
    """
    Mixin providing a string UUID primary key.
    """

    id: str = Field(
        default_factory=new_id,
        primary_key=True,
        max_length=36,
        nullable=False,
        description="Unique identifier (UUID v4)"
    )
