"""Tax rule version API endpoints."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.api.deps import CurrentUser, get_rule_version_service
from src.models.rule import (
    DeductionRule,
    RuleStatus,
    TaxBracket,
    TaxCreditRule,
    TaxRuleVersion,
)
from src.services import RuleVersionService

router = APIRouter(prefix="/api/rules", tags=["rules"])

Rules = Annotated[RuleVersionService, Depends(get_rule_version_service)]


class BracketRequest(BaseModel):
    """Payload for a tax bracket."""

    min_income: Decimal = Field(ge=0, max_digits=15, decimal_places=2)
    max_income: Decimal | None = Field(default=None, max_digits=15, decimal_places=2)
    rate: Decimal = Field(ge=0, le=1, max_digits=5, decimal_places=4)
    bracket_order: int | None = Field(default=None, gt=0)


class CreditRuleRequest(BaseModel):
    """Payload for a credit rule."""

    credit_type: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(ge=0, max_digits=15, decimal_places=2)
    is_refundable: bool = False
    max_amount: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    phase_out_start: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    phase_out_rate: Decimal | None = Field(default=None, ge=0, le=1, max_digits=5, decimal_places=4)
    eligibility_rules: dict[str, Any] | None = None


class DeductionRuleRequest(BaseModel):
    """Payload for a deduction rule."""

    deduction_type: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100)
    max_amount: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    max_percentage: Decimal | None = Field(default=None, ge=0, le=1, max_digits=5, decimal_places=4)
    eligibility_rules: dict[str, Any] | None = None


class RuleVersionCreateRequest(BaseModel):
    """Payload for creating a DRAFT rule version."""

    name: str = Field(min_length=1, max_length=100)
    jurisdiction: str = Field(pattern=r"^[A-Z]{2,50}$")
    tax_year: int = Field(ge=1900, le=2100)
    effective_from: date
    effective_to: date | None = None
    brackets: list[BracketRequest] = Field(default_factory=list)
    credit_rules: list[CreditRuleRequest] = Field(default_factory=list)
    deduction_rules: list[DeductionRuleRequest] = Field(default_factory=list)


class BracketResponse(BaseModel):
    id: uuid.UUID
    bracket_order: int
    min_income: Decimal
    max_income: Decimal | None
    rate: Decimal


class CreditRuleResponse(BaseModel):
    id: uuid.UUID
    credit_type: str
    name: str
    amount: Decimal
    is_refundable: bool
    max_amount: Decimal | None
    phase_out_start: Decimal | None
    phase_out_rate: Decimal | None
    eligibility_rules: dict[str, Any] | None


class DeductionRuleResponse(BaseModel):
    id: uuid.UUID
    deduction_type: str
    name: str
    max_amount: Decimal | None
    max_percentage: Decimal | None
    eligibility_rules: dict[str, Any] | None


class RuleVersionResponse(BaseModel):
    """Rule version response model."""

    id: uuid.UUID
    name: str
    jurisdiction: str
    tax_year: int
    version: int
    status: str
    effective_from: date
    effective_to: date | None
    created_by: uuid.UUID | None
    created_at: datetime | None
    brackets: list[BracketResponse]
    credit_rules: list[CreditRuleResponse]
    deduction_rules: list[DeductionRuleResponse]


def _to_bracket_response(bracket: TaxBracket) -> BracketResponse:
    return BracketResponse(
        id=bracket.id,
        bracket_order=bracket.bracket_order,
        min_income=bracket.min_income,
        max_income=bracket.max_income,
        rate=bracket.rate,
    )


def _to_credit_rule_response(rule: TaxCreditRule) -> CreditRuleResponse:
    return CreditRuleResponse(
        id=rule.id,
        credit_type=rule.credit_type,
        name=rule.name,
        amount=rule.amount,
        is_refundable=rule.is_refundable,
        max_amount=rule.max_amount,
        phase_out_start=rule.phase_out_start,
        phase_out_rate=rule.phase_out_rate,
        eligibility_rules=rule.eligibility_rules,
    )


def _to_deduction_rule_response(rule: DeductionRule) -> DeductionRuleResponse:
    return DeductionRuleResponse(
        id=rule.id,
        deduction_type=rule.deduction_type,
        name=rule.name,
        max_amount=rule.max_amount,
        max_percentage=rule.max_percentage,
        eligibility_rules=rule.eligibility_rules,
    )


def _to_rule_version_response(rule_version: TaxRuleVersion) -> RuleVersionResponse:
    """Map SQLAlchemy rule version model to response model."""
    return RuleVersionResponse(
        id=rule_version.id,
        name=rule_version.name,
        jurisdiction=rule_version.jurisdiction,
        tax_year=rule_version.tax_year,
        version=rule_version.version,
        status=rule_version.status.value,
        effective_from=rule_version.effective_from,
        effective_to=rule_version.effective_to,
        created_by=rule_version.created_by,
        created_at=rule_version.created_at,
        brackets=[
            _to_bracket_response(b)
            for b in sorted(rule_version.brackets, key=lambda b: b.bracket_order)
        ],
        credit_rules=[_to_credit_rule_response(r) for r in rule_version.credit_rules],
        deduction_rules=[
            _to_deduction_rule_response(r) for r in rule_version.deduction_rules
        ],
    )


@router.post("", response_model=RuleVersionResponse, status_code=status.HTTP_201_CREATED)
async def create_rule_version(
    payload: RuleVersionCreateRequest, rules: Rules, user_id: CurrentUser
) -> RuleVersionResponse:
    """Create a DRAFT rule version."""
    rule_version = await rules.create(
        name=payload.name,
        jurisdiction=payload.jurisdiction,
        tax_year=payload.tax_year,
        effective_from=payload.effective_from,
        effective_to=payload.effective_to,
        brackets=[b.model_dump() for b in payload.brackets],
        credit_rules=[c.model_dump() for c in payload.credit_rules],
        deduction_rules=[d.model_dump() for d in payload.deduction_rules],
        actor=user_id,
    )
    return _to_rule_version_response(rule_version)


@router.get("", response_model=list[RuleVersionResponse])
async def list_rule_versions(
    rules: Rules,
    jurisdiction: str | None = Query(default=None),
    tax_year: int | None = Query(default=None),
    rule_status: RuleStatus | None = Query(default=None, alias="status"),
) -> list[RuleVersionResponse]:
    """List versions for a jurisdiction and year, or every version in a status."""
    if jurisdiction is not None and tax_year is not None:
        versions = await rules.list_versions(jurisdiction, tax_year)
        if rule_status is not None:
            versions = [v for v in versions if v.status == rule_status]
    elif rule_status is not None:
        versions = await rules.list_by_status(rule_status)
    else:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Provide jurisdiction and tax_year, or status",
        )
    return [_to_rule_version_response(v) for v in versions]


@router.get("/active", response_model=RuleVersionResponse)
async def get_active_rule_version(
    rules: Rules,
    jurisdiction: str = Query(min_length=1),
    tax_year: int = Query(),
) -> RuleVersionResponse:
    """Get the ACTIVE version for a jurisdiction and year."""
    return _to_rule_version_response(await rules.find_active(jurisdiction, tax_year))


@router.post(
    "/presets/{jurisdiction}/{tax_year}",
    response_model=RuleVersionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def seed_rule_preset(
    jurisdiction: str,
    tax_year: int,
    rules: Rules,
    user_id: CurrentUser,
    activate: bool = Query(default=True),
) -> RuleVersionResponse:
    """Create a version from the built-in presets."""
    rule_version = await rules.seed_preset(
        jurisdiction, tax_year, actor=user_id, activate=activate
    )
    return _to_rule_version_response(rule_version)


@router.get("/{rule_version_id}", response_model=RuleVersionResponse)
async def get_rule_version(rule_version_id: uuid.UUID, rules: Rules) -> RuleVersionResponse:
    return _to_rule_version_response(await rules.get(rule_version_id))


@router.post("/{rule_version_id}/activate", response_model=RuleVersionResponse)
async def activate_rule_version(
    rule_version_id: uuid.UUID, rules: Rules, user_id: CurrentUser
) -> RuleVersionResponse:
    """Activate a DRAFT version, deprecating the current ACTIVE one."""
    return _to_rule_version_response(await rules.activate(rule_version_id, actor=user_id))


@router.post("/{rule_version_id}/deprecate", response_model=RuleVersionResponse)
async def deprecate_rule_version(
    rule_version_id: uuid.UUID, rules: Rules, user_id: CurrentUser
) -> RuleVersionResponse:
    return _to_rule_version_response(await rules.deprecate(rule_version_id, actor=user_id))


@router.post(
    "/{rule_version_id}/brackets",
    response_model=BracketResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_bracket(
    rule_version_id: uuid.UUID,
    payload: BracketRequest,
    rules: Rules,
    user_id: CurrentUser,
) -> BracketResponse:
    bracket = await rules.add_bracket(rule_version_id, payload.model_dump(), actor=user_id)
    return _to_bracket_response(bracket)


@router.delete(
    "/{rule_version_id}/brackets/{bracket_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_bracket(
    rule_version_id: uuid.UUID,
    bracket_id: uuid.UUID,
    rules: Rules,
    user_id: CurrentUser,
) -> None:
    await rules.delete_bracket(rule_version_id, bracket_id, actor=user_id)


@router.post(
    "/{rule_version_id}/credit-rules",
    response_model=CreditRuleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_credit_rule(
    rule_version_id: uuid.UUID,
    payload: CreditRuleRequest,
    rules: Rules,
    user_id: CurrentUser,
) -> CreditRuleResponse:
    rule = await rules.add_credit_rule(rule_version_id, payload.model_dump(), actor=user_id)
    return _to_credit_rule_response(rule)


@router.delete(
    "/{rule_version_id}/credit-rules/{credit_rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_credit_rule(
    rule_version_id: uuid.UUID,
    credit_rule_id: uuid.UUID,
    rules: Rules,
    user_id: CurrentUser,
) -> None:
    await rules.delete_credit_rule(rule_version_id, credit_rule_id, actor=user_id)


@router.post(
    "/{rule_version_id}/deduction-rules",
    response_model=DeductionRuleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_deduction_rule(
    rule_version_id: uuid.UUID,
    payload: DeductionRuleRequest,
    rules: Rules,
    user_id: CurrentUser,
) -> DeductionRuleResponse:
    rule = await rules.add_deduction_rule(
        rule_version_id, payload.model_dump(), actor=user_id
    )
    return _to_deduction_rule_response(rule)


@router.delete(
    "/{rule_version_id}/deduction-rules/{deduction_rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_deduction_rule(
    rule_version_id: uuid.UUID,
    deduction_rule_id: uuid.UUID,
    rules: Rules,
    user_id: CurrentUser,
) -> None:
    await rules.delete_deduction_rule(rule_version_id, deduction_rule_id, actor=user_id)
