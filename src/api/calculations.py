"""Calculation API endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from src.api.deps import CurrentUser, FilingId, get_calculation_service
from src.models.calculation import CalculationRun
from src.services import CalculationService

router = APIRouter(prefix="/api/filings", tags=["calculations"])

Calculations = Annotated[CalculationService, Depends(get_calculation_service)]


class CalculationResponse(BaseModel):
    """Calculation run response model."""

    id: uuid.UUID
    filing_id: uuid.UUID
    rule_version_id: uuid.UUID
    rule_version: int | None
    total_income: Decimal
    total_deductions: Decimal
    taxable_income: Decimal
    gross_tax: Decimal
    total_credits: Decimal
    tax_withheld: Decimal
    net_tax_owing: Decimal
    is_refund: bool
    refund_or_owing_amount: Decimal
    effective_tax_rate: Decimal
    marginal_tax_rate: Decimal
    bracket_breakdown: list[dict[str, Any]]
    credits_breakdown: list[dict[str, Any]]
    calculation_trace: list[dict[str, Any]]
    created_at: datetime


def to_calculation_response(run: CalculationRun) -> CalculationResponse:
    """Map SQLAlchemy calculation run to response model."""
    return CalculationResponse(
        id=run.id,
        filing_id=run.filing_id,
        rule_version_id=run.rule_version_id,
        rule_version=run.rule_version.version if run.rule_version else None,
        total_income=run.total_income,
        total_deductions=run.total_deductions,
        taxable_income=run.taxable_income,
        gross_tax=run.gross_tax,
        total_credits=run.total_credits,
        tax_withheld=run.tax_withheld,
        net_tax_owing=run.net_tax_owing,
        is_refund=run.is_refund,
        refund_or_owing_amount=run.absolute_amount,
        effective_tax_rate=run.effective_tax_rate,
        marginal_tax_rate=run.marginal_tax_rate,
        bracket_breakdown=run.bracket_breakdown,
        credits_breakdown=run.credits_breakdown,
        calculation_trace=run.calculation_trace or [],
        created_at=run.created_at,
    )


@router.post(
    "/{filing_id}/calculate",
    response_model=CalculationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def calculate_filing(
    filing_id: FilingId, calculations: Calculations, user_id: CurrentUser
) -> CalculationResponse:
    """Calculate a filing against the ACTIVE rules and store the run."""
    return to_calculation_response(await calculations.calculate(filing_id, user_id))


@router.get("/{filing_id}/calculations/latest", response_model=CalculationResponse)
async def get_latest_calculation(
    filing_id: FilingId, calculations: Calculations, user_id: CurrentUser
) -> CalculationResponse:
    return to_calculation_response(await calculations.get_latest(filing_id, user_id))


@router.get("/{filing_id}/calculations", response_model=list[CalculationResponse])
async def get_calculation_history(
    filing_id: FilingId, calculations: Calculations, user_id: CurrentUser
) -> list[CalculationResponse]:
    """All calculation runs for a filing, most recent first."""
    runs = await calculations.get_history(filing_id, user_id)
    return [to_calculation_response(run) for run in runs]
