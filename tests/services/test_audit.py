"""Tests for audit emission."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.audit import AuditAction, AuditTrail
from src.services import AuditEmitter, AuditEvent, AuditQueryService, DatabaseAuditSink
from src.services.audit import ENTITY_FILING, ENTITY_RULE_VERSION, diff_fields


class FailingSink:
    def __init__(self) -> None:
        self.calls = 0

    async def write(self, event: AuditEvent) -> None:
        self.calls += 1
        raise RuntimeError("audit store unavailable")


def _event(**overrides) -> AuditEvent:
    values = {
        "entity_type": ENTITY_FILING,
        "entity_id": uuid.uuid4(),
        "actor_id": uuid.uuid4(),
        "action": AuditAction.UPDATE,
        "old_values": {"status": "DRAFT", "taxYear": 2024},
        "new_values": {"status": "READY", "taxYear": 2024},
    }
    values.update(overrides)
    return AuditEvent(**values)


def test_diff_fields() -> None:
    old = {"a": 1, "b": "x", "c": None}
    new = {"a": 1, "b": "y", "d": True}

    assert diff_fields(old, new) == ["b", "d"]


def test_event_derives_changed_fields() -> None:
    assert _event().changed_fields == ["status"]
    assert _event(old_values=None).changed_fields is None
    assert _event(changed_fields=["custom"]).changed_fields == ["custom"]


@pytest.mark.asyncio
async def test_emitter_swallows_sink_failure() -> None:
    """A broken sink never fails the calling operation."""
    sink = FailingSink()
    emitter = AuditEmitter(sink)

    await emitter.emit(_event())

    assert sink.calls == 1


@pytest.mark.asyncio
async def test_database_sink_writes_row(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    event = _event(action=AuditAction.STATUS_CHANGE)
    emitter = AuditEmitter(DatabaseAuditSink(session_factory))

    await emitter.emit(event)

    async with session_factory() as session:
        rows = (
            await session.execute(
                select(AuditTrail).where(AuditTrail.entity_id == event.entity_id)
            )
        ).scalars().all()

    assert len(rows) == 1
    row = rows[0]
    assert row.entity_type == ENTITY_FILING
    assert row.action == AuditAction.STATUS_CHANGE
    assert row.actor_id == event.actor_id
    assert row.old_values == {"status": "DRAFT", "taxYear": 2024}
    assert row.new_values["status"] == "READY"
    assert row.changed_fields == ["status"]
    assert row.created_at is not None


def _entry(
    entity_id: uuid.UUID,
    actor_id: uuid.UUID,
    minutes: int,
    entity_type: str = ENTITY_FILING,
    action: AuditAction = AuditAction.UPDATE,
) -> AuditTrail:
    return AuditTrail(
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        action=action,
        created_at=datetime(2025, 3, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
    )


@pytest.mark.asyncio
async def test_entity_history_is_newest_first(db_session: AsyncSession) -> None:
    filing_id, actor = uuid.uuid4(), uuid.uuid4()
    db_session.add_all(
        [
            _entry(filing_id, actor, 0, action=AuditAction.CREATE),
            _entry(filing_id, actor, 2, action=AuditAction.STATUS_CHANGE),
            _entry(filing_id, actor, 1),
            _entry(uuid.uuid4(), actor, 3),
            _entry(filing_id, actor, 4, entity_type=ENTITY_RULE_VERSION),
        ]
    )
    await db_session.flush()

    history = await AuditQueryService(db_session).entity_history(ENTITY_FILING, filing_id)

    assert [e.action for e in history] == [
        AuditAction.STATUS_CHANGE,
        AuditAction.UPDATE,
        AuditAction.CREATE,
    ]


@pytest.mark.asyncio
async def test_actor_and_type_history_are_paged(db_session: AsyncSession) -> None:
    actor, other_actor = uuid.uuid4(), uuid.uuid4()
    entries = [_entry(uuid.uuid4(), actor, minutes) for minutes in range(5)]
    db_session.add_all(
        [*entries, _entry(uuid.uuid4(), other_actor, 10, entity_type=ENTITY_RULE_VERSION)]
    )
    await db_session.flush()
    queries = AuditQueryService(db_session)

    first_page = await queries.actor_history(actor, limit=2)
    second_page = await queries.actor_history(actor, limit=2, offset=2)
    filings = await queries.type_history(ENTITY_FILING)
    rules = await queries.type_history(ENTITY_RULE_VERSION)

    newest_first = [e.entity_id for e in reversed(entries)]
    assert [e.entity_id for e in first_page] == newest_first[:2]
    assert [e.entity_id for e in second_page] == newest_first[2:4]
    assert [e.entity_id for e in filings] == newest_first
    assert [e.actor_id for e in rules] == [other_actor]


@pytest.mark.asyncio
async def test_emitted_events_are_queryable(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    event = _event()
    await AuditEmitter(DatabaseAuditSink(session_factory)).emit(event)

    async with session_factory() as session:
        history = await AuditQueryService(session).actor_history(event.actor_id)

    assert [(e.entity_id, e.action) for e in history] == [
        (event.entity_id, AuditAction.UPDATE)
    ]
