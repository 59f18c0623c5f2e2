"""Declarative base, shared column types and mixins."""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Numeric
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Monetary amounts are stored at 2 decimal places, rates at 4 (0.2050 = 20.5%)
MONEY = Numeric(15, 2)
RATE = Numeric(5, 4)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class TimestampMixin:
    """Adds created/updated timestamps populated on the Python side.

    Python-side defaults keep the values available after flush without a
    refresh, which matters under AsyncSession where lazy loads are not
    allowed.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
