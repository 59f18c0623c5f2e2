"""Audit trail SQLAlchemy model."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, JSONDocument, utcnow


class AuditAction(enum.Enum):
    """Kinds of change recorded in the audit trail."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"
    SUBMISSION = "SUBMISSION"
    CALCULATION = "CALCULATION"


class AuditTrail(Base):
    """Represents one before/after audit entry.

    Written in its own transaction by DatabaseAuditSink, so a row may exist
    for an operation whose main transaction later rolled back.
    """

    __tablename__ = "audit_trail"
    __table_args__ = (
        Index("ix_audit_trail_entity", "entity_type", "entity_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, name="audit_action"), nullable=False
    )
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument)
    changed_fields: Mapped[list[str] | None] = mapped_column(JSONDocument)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
