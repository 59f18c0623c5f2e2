"""FastAPI dependency injection for database sessions, identity and services."""

import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import filing_id_ctx, user_id_ctx
from src.services import (
    AuditEmitter,
    AuditQueryService,
    CalculationService,
    FilingService,
    RuleVersionService,
    SubmissionService,
)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session from the app's session factory.

    Args:
        request: FastAPI request containing app state.

    Yields:
        AsyncSession for database operations with automatic commit/rollback.
    """
    async with request.app.state.async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_audit_emitter(request: Request) -> AuditEmitter:
    """Get the audit emitter wired at startup."""
    return request.app.state.audit


async def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> uuid.UUID:
    """Resolve the acting user from the trusted X-User-Id header.

    Raises:
        HTTPException: 401 if the header is missing or not a UUID.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header",
        ) from exc

    user_id_ctx.set(str(user_id))
    return user_id


DbSession = Annotated[AsyncSession, Depends(get_db)]
Audit = Annotated[AuditEmitter, Depends(get_audit_emitter)]
CurrentUser = Annotated[uuid.UUID, Depends(get_current_user_id)]


def get_rule_version_service(db: DbSession, audit: Audit) -> RuleVersionService:
    return RuleVersionService(db, audit)


def get_filing_service(db: DbSession, audit: Audit) -> FilingService:
    return FilingService(db, audit)


def get_calculation_service(db: DbSession, audit: Audit) -> CalculationService:
    return CalculationService(db, audit)


def get_submission_service(db: DbSession, audit: Audit) -> SubmissionService:
    return SubmissionService(db, audit)


def get_audit_query_service(db: DbSession) -> AuditQueryService:
    return AuditQueryService(db)


async def bind_filing_id(filing_id: uuid.UUID) -> uuid.UUID:
    """Expose the path's filing id to every log event of the request."""
    filing_id_ctx.set(str(filing_id))
    return filing_id


FilingId = Annotated[uuid.UUID, Depends(bind_filing_id)]
