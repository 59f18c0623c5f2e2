"""Async database engine factory and session management."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.core.config import settings

# Import all models to register them with Base.metadata
from src.models import (  # noqa: F401
    AuditTrail,
    Base,
    CalculationRun,
    CreditClaim,
    DeductionItem,
    DeductionRule,
    IncomeItem,
    SubmissionRecord,
    TaxBracket,
    TaxCreditRule,
    TaxFiling,
    TaxRuleVersion,
)


def create_engine(
    database_url: str | None = None,
    **engine_options: Any,
) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Args:
        database_url: PostgreSQL connection URL. Defaults to settings.database_url.
        **engine_options: Additional options passed to create_async_engine.

    Returns:
        Configured AsyncEngine instance.
    """
    url = database_url or settings.database_url

    default_options: dict[str, Any] = {
        "pool_pre_ping": True,
        "echo": settings.debug,
    }
    if not url.startswith("sqlite"):
        default_options.update(pool_size=settings.db_pool_size, max_overflow=0)
    default_options.update(engine_options)

    return create_async_engine(url, **default_options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory.

    Args:
        engine: AsyncEngine instance to bind sessions to.

    Returns:
        Configured async_sessionmaker instance.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Default engine and session factory (lazily initialized)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the default async engine."""
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the default session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error.

    Yields:
        AsyncSession instance for database operations.
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def violates_constraint(exc: IntegrityError, *markers: str) -> bool:
    """Check whether an IntegrityError came from a particular constraint.

    PostgreSQL reports the constraint name while SQLite reports the
    ``table.column`` list, so callers pass every marker that identifies the
    constraint on either backend.
    """
    text = str(exc.orig) if exc.orig is not None else str(exc)
    return any(marker in text for marker in markers)
