"""Audit trail API endpoints.

Read-only views over the entries written by ``DatabaseAuditSink``. Every
listing is newest first.
"""

import uuid
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from src.api.deps import CurrentUser, get_audit_query_service
from src.models.audit import AuditAction, AuditTrail
from src.services import AuditQueryService
from src.services.audit import DEFAULT_PAGE_SIZE

router = APIRouter(prefix="/api/audit", tags=["audit"])

AuditQueries = Annotated[AuditQueryService, Depends(get_audit_query_service)]


class AuditTrailResponse(BaseModel):
    """Audit entry response model."""

    id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    action: AuditAction
    actor_id: uuid.UUID | None
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    changed_fields: list[str] | None
    created_at: datetime


def _to_response(entry: AuditTrail) -> AuditTrailResponse:
    return AuditTrailResponse(
        id=entry.id,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        action=entry.action,
        actor_id=entry.actor_id,
        old_values=entry.old_values,
        new_values=entry.new_values,
        changed_fields=entry.changed_fields,
        created_at=entry.created_at,
    )


@router.get("/entity/{entity_type}/{entity_id}", response_model=list[AuditTrailResponse])
async def get_entity_history(
    entity_type: str, entity_id: uuid.UUID, audit: AuditQueries, user_id: CurrentUser
) -> list[AuditTrailResponse]:
    """Full history of one entity."""
    return [_to_response(e) for e in await audit.entity_history(entity_type, entity_id)]


@router.get("/actor/{actor_id}", response_model=list[AuditTrailResponse])
async def get_actor_history(
    actor_id: uuid.UUID,
    audit: AuditQueries,
    user_id: CurrentUser,
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[AuditTrailResponse]:
    entries = await audit.actor_history(actor_id, limit=limit, offset=offset)
    return [_to_response(e) for e in entries]


@router.get("/type/{entity_type}", response_model=list[AuditTrailResponse])
async def get_type_history(
    entity_type: str,
    audit: AuditQueries,
    user_id: CurrentUser,
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[AuditTrailResponse]:
    entries = await audit.type_history(entity_type, limit=limit, offset=offset)
    return [_to_response(e) for e in entries]
