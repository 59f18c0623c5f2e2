"""Submission API endpoints."""

import uuid
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from src.api.calculations import CalculationResponse, to_calculation_response
from src.api.deps import CurrentUser, FilingId, get_submission_service
from src.models.calculation import SubmissionRecord
from src.services import SubmissionService

router = APIRouter(tags=["submissions"])

Submissions = Annotated[SubmissionService, Depends(get_submission_service)]


class SubmissionResponse(BaseModel):
    """Submission record response model."""

    id: uuid.UUID
    filing_id: uuid.UUID
    confirmation_number: str
    submitted_at: datetime
    submitted_by: uuid.UUID
    calculation: CalculationResponse
    filing_snapshot: dict[str, Any]


class SubmissionSummaryResponse(BaseModel):
    id: uuid.UUID
    filing_id: uuid.UUID
    confirmation_number: str
    submitted_at: datetime


def _to_submission_response(record: SubmissionRecord) -> SubmissionResponse:
    return SubmissionResponse(
        id=record.id,
        filing_id=record.filing_id,
        confirmation_number=record.confirmation_number,
        submitted_at=record.submitted_at,
        submitted_by=record.submitted_by,
        calculation=to_calculation_response(record.calculation_run),
        filing_snapshot=record.filing_snapshot,
    )


@router.post(
    "/api/filings/{filing_id}/submit",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_filing(
    filing_id: FilingId,
    request: Request,
    submissions: Submissions,
    user_id: CurrentUser,
) -> SubmissionResponse:
    """Submit a filing, calculating it first if it has never been calculated."""
    record = await submissions.submit(
        filing_id,
        user_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return _to_submission_response(record)


@router.get("/api/filings/{filing_id}/submission", response_model=SubmissionResponse)
async def get_filing_submission(
    filing_id: FilingId, submissions: Submissions, user_id: CurrentUser
) -> SubmissionResponse:
    return _to_submission_response(await submissions.get_submission(filing_id, user_id))


@router.get("/api/submissions", response_model=list[SubmissionSummaryResponse])
async def list_submissions(
    submissions: Submissions, user_id: CurrentUser
) -> list[SubmissionSummaryResponse]:
    records = await submissions.list_for_user(user_id)
    return [
        SubmissionSummaryResponse(
            id=r.id,
            filing_id=r.filing_id,
            confirmation_number=r.confirmation_number,
            submitted_at=r.submitted_at,
        )
        for r in records
    ]


@router.get(
    "/api/submissions/{confirmation_number}", response_model=SubmissionResponse
)
async def get_submission_by_confirmation(
    confirmation_number: str, submissions: Submissions, user_id: CurrentUser
) -> SubmissionResponse:
    """Look up one of the caller's submissions by confirmation number."""
    record = await submissions.get_by_confirmation(confirmation_number, user_id)
    return _to_submission_response(record)
