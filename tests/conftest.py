"""Pytest configuration and shared fixtures for tests."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
from collections.abc import AsyncGenerator
from datetime import date
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.api.deps import get_audit_emitter, get_db
from src.core.database import create_session_factory
from src.main import app
from src.models import Base, IncomeType, TaxFiling, TaxRuleVersion
from src.services import (
    AuditEmitter,
    FilingService,
    RecordingAuditSink,
    RuleVersionService,
)

# 0-50000 @ 15%, 50000-100000 @ 20.5%, 100000+ @ 26%
STANDARD_BRACKETS: list[dict[str, Any]] = [
    {"min_income": "0", "max_income": "50000", "rate": "0.15"},
    {"min_income": "50000", "max_income": "100000", "rate": "0.205"},
    {"min_income": "100000", "max_income": None, "rate": "0.26"},
]

STANDARD_CREDIT_RULES: list[dict[str, Any]] = [
    {
        "credit_type": "CHILD_TAX_CREDIT",
        "name": "Child Tax Credit",
        "amount": "2000",
        "max_amount": "2000",
        "is_refundable": False,
    },
    {
        "credit_type": "GST_HST_CREDIT",
        "name": "GST/HST Credit",
        "amount": "500",
        "max_amount": "500",
        "is_refundable": True,
    },
]

STANDARD_DEDUCTION_RULES: list[dict[str, Any]] = [
    {"deduction_type": "RRSP", "name": "RRSP Contributions", "max_amount": "31560"},
]


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """Create a mock database session.

    Returns:
        AsyncMock configured to simulate database session.
    """
    session = AsyncMock()
    session.execute.return_value = MagicMock()
    return session


@pytest.fixture
def mock_db_session_failing() -> AsyncMock:
    """Create a mock database session that fails on execute.

    Returns:
        AsyncMock configured to raise exception on execute.
    """
    session = AsyncMock()
    session.execute.side_effect = Exception("Database connection failed")
    return session


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory sqlite engine with every table created.

    StaticPool keeps one connection so all sessions see the same database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def audit(audit_sink: RecordingAuditSink) -> AuditEmitter:
    return AuditEmitter(audit_sink)


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def rule_service(db_session: AsyncSession, audit: AuditEmitter) -> RuleVersionService:
    return RuleVersionService(db_session, audit)


@pytest.fixture
def filing_service(db_session: AsyncSession, audit: AuditEmitter) -> FilingService:
    return FilingService(db_session, audit)


@pytest_asyncio.fixture
async def active_rules(rule_service: RuleVersionService) -> TaxRuleVersion:
    """ACTIVE CA 2024 rule version with the standard brackets."""
    rule_version = await rule_service.create(
        name="CA 2024",
        jurisdiction="CA",
        tax_year=2024,
        effective_from=date(2024, 1, 1),
        effective_to=date(2024, 12, 31),
        brackets=STANDARD_BRACKETS,
        credit_rules=STANDARD_CREDIT_RULES,
        deduction_rules=STANDARD_DEDUCTION_RULES,
    )
    return await rule_service.activate(rule_version.id)


@pytest.fixture
def make_filing(filing_service: FilingService, user_id: uuid.UUID):
    """Factory for CA 2024 filings holding one employment income item."""

    async def _make(amount: str = "60000", tax_withheld: str = "0") -> TaxFiling:
        filing = await filing_service.create(user_id, 2024, "CA")
        await filing_service.add_income_item(
            filing.id,
            user_id,
            income_type=IncomeType.EMPLOYMENT,
            amount=amount,
            source="Acme Corp",
            tax_withheld=tax_withheld,
        )
        return filing

    return _make


@pytest_asyncio.fixture
async def api_client(
    session_factory: async_sessionmaker[AsyncSession],
    audit: AuditEmitter,
) -> AsyncGenerator[AsyncClient, None]:
    """Create API client with DB and audit dependency overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_audit_emitter() -> AuditEmitter:
        return audit

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_emitter] = override_get_audit_emitter
    app.state.async_session = session_factory
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
