"""Audit event emission.

Business operations describe what changed as an ``AuditEvent`` and hand it
to an ``AuditEmitter``. The emitter forwards the event to a sink and never
lets a sink failure reach the caller: a failed audit write is logged and
the primary operation carries on.

Usage:
    emitter = AuditEmitter(DatabaseAuditSink(get_session_factory()))
    await emitter.emit(
        AuditEvent(
            entity_type=ENTITY_FILING,
            entity_id=filing.id,
            actor_id=user_id,
            action=AuditAction.CREATE,
            new_values=filing_values(filing),
        )
    )

Reads go through ``AuditQueryService``, newest entries first.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.audit import AuditAction, AuditTrail

logger = structlog.get_logger()

ENTITY_RULE_VERSION = "tax_rule_version"
ENTITY_FILING = "tax_filing"
ENTITY_SUBMISSION = "submission_record"

DEFAULT_PAGE_SIZE = 50


@dataclass
class AuditEvent:
    """A before/after description of one mutation."""

    entity_type: str
    entity_id: uuid.UUID
    actor_id: uuid.UUID | None
    action: AuditAction
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    changed_fields: list[str] | None = field(default=None)

    def __post_init__(self) -> None:
        if self.changed_fields is None and self.old_values and self.new_values:
            self.changed_fields = diff_fields(self.old_values, self.new_values)


def diff_fields(old: dict[str, Any], new: dict[str, Any]) -> list[str]:
    """Keys whose values differ between two snapshots, sorted."""
    return sorted(key for key in old.keys() | new.keys() if old.get(key) != new.get(key))


class AuditSink(Protocol):
    """Destination for audit events."""

    async def write(self, event: AuditEvent) -> None: ...


class DatabaseAuditSink:
    """Persist audit events as ``AuditTrail`` rows in a dedicated session.

    The dedicated session commits independently of the caller's unit of
    work.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write(self, event: AuditEvent) -> None:
        async with self._session_factory() as session:
            session.add(
                AuditTrail(
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    actor_id=event.actor_id,
                    action=event.action,
                    old_values=event.old_values,
                    new_values=event.new_values,
                    changed_fields=event.changed_fields,
                )
            )
            await session.commit()


class RecordingAuditSink:
    """Keeps events in memory; used by tests and local tooling."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def write(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions_for(self, entity_id: uuid.UUID) -> list[AuditAction]:
        return [e.action for e in self.events if e.entity_id == entity_id]


class AuditEmitter:
    """Fire-and-forget wrapper around an ``AuditSink``."""

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    async def emit(self, event: AuditEvent) -> None:
        """Forward an event to the sink, logging and swallowing any failure.

        Args:
            event: Event describing the mutation
        """
        try:
            await self._sink.write(event)
        except Exception:
            logger.exception(
                "audit_emit_failed",
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action.value,
            )
            return

        logger.debug(
            "audit_emitted",
            entity_type=event.entity_type,
            entity_id=str(event.entity_id),
            action=event.action.value,
        )


class AuditQueryService:
    """Read side of the audit trail.

    Usage:
        history = await AuditQueryService(session).entity_history(
            ENTITY_FILING, filing.id
        )
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def entity_history(
        self, entity_type: str, entity_id: uuid.UUID
    ) -> list[AuditTrail]:
        """Every entry for one entity, newest first."""
        result = await self.session.execute(
            select(AuditTrail)
            .where(
                AuditTrail.entity_type == entity_type,
                AuditTrail.entity_id == entity_id,
            )
            .order_by(AuditTrail.created_at.desc())
        )
        return list(result.scalars().all())

    async def actor_history(
        self, actor_id: uuid.UUID, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[AuditTrail]:
        """One page of the changes a user made, newest first."""
        result = await self.session.execute(
            select(AuditTrail)
            .where(AuditTrail.actor_id == actor_id)
            .order_by(AuditTrail.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def type_history(
        self, entity_type: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[AuditTrail]:
        """One page of entries for an entity type, newest first."""
        result = await self.session.execute(
            select(AuditTrail)
            .where(AuditTrail.entity_type == entity_type)
            .order_by(AuditTrail.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "ENTITY_FILING",
    "ENTITY_RULE_VERSION",
    "ENTITY_SUBMISSION",
    "AuditEmitter",
    "AuditEvent",
    "AuditQueryService",
    "AuditSink",
    "DatabaseAuditSink",
    "RecordingAuditSink",
    "diff_fields",
]
