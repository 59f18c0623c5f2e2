"""Tax filing API endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from src.api.deps import CurrentUser, FilingId, get_filing_service
from src.models.filing import (
    CreditClaim,
    DeductionItem,
    DeductionType,
    FilingStatus,
    IncomeItem,
    IncomeType,
    TaxFiling,
)
from src.services import FilingService

router = APIRouter(prefix="/api/filings", tags=["filings"])

Filings = Annotated[FilingService, Depends(get_filing_service)]

Amount = Annotated[Decimal, Field(ge=0, max_digits=15, decimal_places=2)]


class FilingCreateRequest(BaseModel):
    """Payload for creating an ORIGINAL filing."""

    tax_year: int = Field(ge=1900, le=2100)
    jurisdiction: str = Field(pattern=r"^[A-Z]{2,50}$")
    metadata: dict[str, Any] | None = None


class IncomeItemRequest(BaseModel):
    income_type: IncomeType
    amount: Amount
    source: str | None = Field(default=None, max_length=255)
    tax_withheld: Amount = Decimal("0")
    metadata: dict[str, Any] | None = None


class IncomeItemUpdateRequest(BaseModel):
    income_type: IncomeType | None = None
    amount: Amount | None = None
    source: str | None = Field(default=None, max_length=255)
    tax_withheld: Amount | None = None
    metadata: dict[str, Any] | None = None


class DeductionItemRequest(BaseModel):
    deduction_type: DeductionType
    amount: Amount
    description: str | None = Field(default=None, max_length=255)
    metadata: dict[str, Any] | None = None


class DeductionItemUpdateRequest(BaseModel):
    deduction_type: DeductionType | None = None
    amount: Amount | None = None
    description: str | None = Field(default=None, max_length=255)
    metadata: dict[str, Any] | None = None


class CreditClaimRequest(BaseModel):
    credit_type: str = Field(min_length=1, max_length=50)
    claimed_amount: Amount
    metadata: dict[str, Any] | None = None


class CreditClaimUpdateRequest(BaseModel):
    credit_type: str | None = Field(default=None, min_length=1, max_length=50)
    claimed_amount: Amount | None = None
    metadata: dict[str, Any] | None = None


class IncomeItemResponse(BaseModel):
    id: uuid.UUID
    income_type: str
    source: str | None
    amount: Decimal
    tax_withheld: Decimal
    metadata: dict[str, Any]


class DeductionItemResponse(BaseModel):
    id: uuid.UUID
    deduction_type: str
    description: str | None
    amount: Decimal
    metadata: dict[str, Any]


class CreditClaimResponse(BaseModel):
    id: uuid.UUID
    credit_type: str
    claimed_amount: Decimal
    metadata: dict[str, Any]


class FilingResponse(BaseModel):
    """Filing response model with line items."""

    id: uuid.UUID
    user_id: uuid.UUID
    tax_year: int
    jurisdiction: str
    status: str
    filing_type: str
    original_filing_id: uuid.UUID | None
    metadata: dict[str, Any]
    income_items: list[IncomeItemResponse]
    deduction_items: list[DeductionItemResponse]
    credit_claims: list[CreditClaimResponse]
    created_at: datetime | None
    updated_at: datetime | None


class FilingSummaryResponse(BaseModel):
    """Filing list entry without line items."""

    id: uuid.UUID
    tax_year: int
    jurisdiction: str
    status: str
    filing_type: str
    original_filing_id: uuid.UUID | None
    income_item_count: int
    total_income: Decimal
    created_at: datetime | None


def _to_income_item_response(item: IncomeItem) -> IncomeItemResponse:
    return IncomeItemResponse(
        id=item.id,
        income_type=item.income_type.value,
        source=item.source,
        amount=item.amount,
        tax_withheld=item.tax_withheld,
        metadata=item.metadata_ or {},
    )


def _to_deduction_item_response(item: DeductionItem) -> DeductionItemResponse:
    return DeductionItemResponse(
        id=item.id,
        deduction_type=item.deduction_type.value,
        description=item.description,
        amount=item.amount,
        metadata=item.metadata_ or {},
    )


def _to_credit_claim_response(claim: CreditClaim) -> CreditClaimResponse:
    return CreditClaimResponse(
        id=claim.id,
        credit_type=claim.credit_type,
        claimed_amount=claim.claimed_amount,
        metadata=claim.metadata_ or {},
    )


def _to_filing_response(filing: TaxFiling) -> FilingResponse:
    """Map SQLAlchemy filing model to response model."""
    return FilingResponse(
        id=filing.id,
        user_id=filing.user_id,
        tax_year=filing.tax_year,
        jurisdiction=filing.jurisdiction,
        status=filing.status.value,
        filing_type=filing.filing_type.value,
        original_filing_id=filing.original_filing_id,
        metadata=filing.metadata_ or {},
        income_items=[_to_income_item_response(i) for i in filing.income_items],
        deduction_items=[_to_deduction_item_response(i) for i in filing.deduction_items],
        credit_claims=[_to_credit_claim_response(c) for c in filing.credit_claims],
        created_at=filing.created_at,
        updated_at=filing.updated_at,
    )


def _to_filing_summary(filing: TaxFiling) -> FilingSummaryResponse:
    return FilingSummaryResponse(
        id=filing.id,
        tax_year=filing.tax_year,
        jurisdiction=filing.jurisdiction,
        status=filing.status.value,
        filing_type=filing.filing_type.value,
        original_filing_id=filing.original_filing_id,
        income_item_count=len(filing.income_items),
        total_income=sum((i.amount for i in filing.income_items), Decimal("0.00")),
        created_at=filing.created_at,
    )


@router.post("", response_model=FilingResponse, status_code=status.HTTP_201_CREATED)
async def create_filing(
    payload: FilingCreateRequest, filings: Filings, user_id: CurrentUser
) -> FilingResponse:
    """Create the ORIGINAL filing for a tax year and jurisdiction."""
    filing = await filings.create(
        user_id, payload.tax_year, payload.jurisdiction, metadata=payload.metadata
    )
    return _to_filing_response(filing)


@router.get("", response_model=list[FilingSummaryResponse])
async def list_filings(
    filings: Filings,
    user_id: CurrentUser,
    filing_status: FilingStatus | None = Query(default=None, alias="status"),
    tax_year: int | None = Query(default=None),
) -> list[FilingSummaryResponse]:
    """List the caller's filings, optionally filtered."""
    items = await filings.list_for_user(user_id, status=filing_status, tax_year=tax_year)
    return [_to_filing_summary(f) for f in items]


@router.get("/{filing_id}", response_model=FilingResponse)
async def get_filing(
    filing_id: FilingId, filings: Filings, user_id: CurrentUser
) -> FilingResponse:
    return _to_filing_response(await filings.get(filing_id, user_id))


@router.delete("/{filing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_filing(filing_id: FilingId, filings: Filings, user_id: CurrentUser) -> None:
    await filings.delete(filing_id, user_id)


@router.post(
    "/{filing_id}/amendments",
    response_model=FilingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_amendment(
    filing_id: FilingId, filings: Filings, user_id: CurrentUser
) -> FilingResponse:
    """Open an amendment of a submitted filing."""
    return _to_filing_response(await filings.create_amendment(filing_id, user_id))


@router.get("/{filing_id}/amendments", response_model=list[FilingSummaryResponse])
async def list_amendments(
    filing_id: FilingId, filings: Filings, user_id: CurrentUser
) -> list[FilingSummaryResponse]:
    return [_to_filing_summary(f) for f in await filings.list_amendments(filing_id, user_id)]


@router.post("/{filing_id}/mark-ready", response_model=FilingResponse)
async def mark_ready(
    filing_id: FilingId, filings: Filings, user_id: CurrentUser
) -> FilingResponse:
    return _to_filing_response(await filings.mark_as_ready(filing_id, user_id))


@router.post("/{filing_id}/unmark-ready", response_model=FilingResponse)
async def unmark_ready(
    filing_id: FilingId, filings: Filings, user_id: CurrentUser
) -> FilingResponse:
    return _to_filing_response(await filings.unmark_as_ready(filing_id, user_id))


# Income items


@router.post(
    "/{filing_id}/income-items",
    response_model=IncomeItemResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_income_item(
    filing_id: FilingId,
    payload: IncomeItemRequest,
    filings: Filings,
    user_id: CurrentUser,
) -> IncomeItemResponse:
    item = await filings.add_income_item(
        filing_id,
        user_id,
        income_type=payload.income_type,
        amount=payload.amount,
        source=payload.source,
        tax_withheld=payload.tax_withheld,
        metadata=payload.metadata,
    )
    return _to_income_item_response(item)


@router.patch("/{filing_id}/income-items/{item_id}", response_model=IncomeItemResponse)
async def update_income_item(
    filing_id: FilingId,
    item_id: uuid.UUID,
    payload: IncomeItemUpdateRequest,
    filings: Filings,
    user_id: CurrentUser,
) -> IncomeItemResponse:
    item = await filings.update_income_item(
        filing_id, item_id, user_id, **payload.model_dump(exclude_unset=True)
    )
    return _to_income_item_response(item)


@router.delete(
    "/{filing_id}/income-items/{item_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_income_item(
    filing_id: FilingId, item_id: uuid.UUID, filings: Filings, user_id: CurrentUser
) -> None:
    await filings.remove_income_item(filing_id, item_id, user_id)


# Deduction items


@router.post(
    "/{filing_id}/deduction-items",
    response_model=DeductionItemResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_deduction_item(
    filing_id: FilingId,
    payload: DeductionItemRequest,
    filings: Filings,
    user_id: CurrentUser,
) -> DeductionItemResponse:
    item = await filings.add_deduction_item(
        filing_id,
        user_id,
        deduction_type=payload.deduction_type,
        amount=payload.amount,
        description=payload.description,
        metadata=payload.metadata,
    )
    return _to_deduction_item_response(item)


@router.patch(
    "/{filing_id}/deduction-items/{item_id}", response_model=DeductionItemResponse
)
async def update_deduction_item(
    filing_id: FilingId,
    item_id: uuid.UUID,
    payload: DeductionItemUpdateRequest,
    filings: Filings,
    user_id: CurrentUser,
) -> DeductionItemResponse:
    item = await filings.update_deduction_item(
        filing_id, item_id, user_id, **payload.model_dump(exclude_unset=True)
    )
    return _to_deduction_item_response(item)


@router.delete(
    "/{filing_id}/deduction-items/{item_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_deduction_item(
    filing_id: FilingId, item_id: uuid.UUID, filings: Filings, user_id: CurrentUser
) -> None:
    await filings.remove_deduction_item(filing_id, item_id, user_id)


# Credit claims


@router.post(
    "/{filing_id}/credit-claims",
    response_model=CreditClaimResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_credit_claim(
    filing_id: FilingId,
    payload: CreditClaimRequest,
    filings: Filings,
    user_id: CurrentUser,
) -> CreditClaimResponse:
    claim = await filings.add_credit_claim(
        filing_id,
        user_id,
        credit_type=payload.credit_type,
        claimed_amount=payload.claimed_amount,
        metadata=payload.metadata,
    )
    return _to_credit_claim_response(claim)


@router.patch(
    "/{filing_id}/credit-claims/{claim_id}", response_model=CreditClaimResponse
)
async def update_credit_claim(
    filing_id: FilingId,
    claim_id: uuid.UUID,
    payload: CreditClaimUpdateRequest,
    filings: Filings,
    user_id: CurrentUser,
) -> CreditClaimResponse:
    claim = await filings.update_credit_claim(
        filing_id, claim_id, user_id, **payload.model_dump(exclude_unset=True)
    )
    return _to_credit_claim_response(claim)


@router.delete(
    "/{filing_id}/credit-claims/{claim_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_credit_claim(
    filing_id: FilingId, claim_id: uuid.UUID, filings: Filings, user_id: CurrentUser
) -> None:
    await filings.remove_credit_claim(filing_id, claim_id, user_id)
