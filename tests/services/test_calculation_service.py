"""Tests for CalculationService."""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import AccessDeniedError, NotFoundError
from src.models.audit import AuditAction
from src.models.rule import TaxRuleVersion
from src.services import (
    AuditEmitter,
    CalculationService,
    FilingService,
    RecordingAuditSink,
    RuleVersionService,
)


@pytest.fixture
def calculation_service(db_session: AsyncSession, audit: AuditEmitter) -> CalculationService:
    return CalculationService(db_session, audit)


@pytest.mark.asyncio
async def test_calculate_persists_run(
    active_rules: TaxRuleVersion,
    make_filing,
    calculation_service: CalculationService,
    user_id: uuid.UUID,
    audit_sink: RecordingAuditSink,
) -> None:
    filing = await make_filing(tax_withheld="8000")

    run = await calculation_service.calculate(filing.id, user_id)

    assert run.rule_version_id == active_rules.id
    assert run.gross_tax == Decimal("9550.00")
    assert run.net_tax_owing == Decimal("1550.00")
    assert run.is_refund is False
    assert run.effective_tax_rate == Decimal("15.92")
    assert run.marginal_tax_rate == Decimal("20.50")
    assert run.bracket_breakdown[1]["taxFromBracket"] == "2050.00"
    assert run.calculation_trace[0]["step"] == 1
    assert run.input_snapshot["incomeItems"][0]["taxWithheld"] == "8000.00"
    assert audit_sink.actions_for(filing.id)[-1] == AuditAction.CALCULATION


@pytest.mark.asyncio
async def test_credit_claim_against_active_rules(
    active_rules: TaxRuleVersion,
    make_filing,
    filing_service: FilingService,
    calculation_service: CalculationService,
    user_id: uuid.UUID,
) -> None:
    filing = await make_filing(tax_withheld="8000")
    await filing_service.add_credit_claim(filing.id, user_id, "child_tax_credit", "2000")

    run = await calculation_service.calculate(filing.id, user_id)

    assert run.total_credits == Decimal("2000.00")
    assert run.net_tax_owing == Decimal("-450.00")
    assert run.is_refund is True
    assert run.absolute_amount == Decimal("450.00")
    assert run.credits_breakdown[0]["isRefundable"] is False


@pytest.mark.asyncio
async def test_history_keeps_every_run(
    active_rules: TaxRuleVersion,
    make_filing,
    filing_service: FilingService,
    calculation_service: CalculationService,
    user_id: uuid.UUID,
) -> None:
    filing = await make_filing()
    first = await calculation_service.calculate(filing.id, user_id)
    await filing_service.add_income_item(filing.id, user_id, "INVESTMENT", "1000")
    second = await calculation_service.calculate(filing.id, user_id)

    history = await calculation_service.get_history(filing.id, user_id)
    latest = await calculation_service.get_latest(filing.id, user_id)

    assert [run.id for run in history] == [second.id, first.id]
    assert latest.id == second.id
    assert first.total_income == Decimal("60000.00")
    assert second.total_income == Decimal("61000.00")


@pytest.mark.asyncio
async def test_runs_keep_their_rule_version(
    active_rules: TaxRuleVersion,
    make_filing,
    rule_service: RuleVersionService,
    calculation_service: CalculationService,
    user_id: uuid.UUID,
) -> None:
    """A later activation changes future runs only."""
    filing = await make_filing()
    first = await calculation_service.calculate(filing.id, user_id)

    replacement = await rule_service.create(
        name="CA 2024 flat",
        jurisdiction="CA",
        tax_year=2024,
        effective_from=active_rules.effective_from,
        brackets=[{"min_income": "0", "max_income": None, "rate": "0.10"}],
    )
    await rule_service.activate(replacement.id)
    second = await calculation_service.calculate(filing.id, user_id)

    assert first.rule_version_id == active_rules.id
    assert first.gross_tax == Decimal("9550.00")
    assert second.rule_version_id == replacement.id
    assert second.gross_tax == Decimal("6000.00")
    assert second.rule_version.version == 2


@pytest.mark.asyncio
async def test_calculate_without_active_rules(
    make_filing, calculation_service: CalculationService, user_id: uuid.UUID
) -> None:
    filing = await make_filing()

    with pytest.raises(NotFoundError) as exc_info:
        await calculation_service.calculate(filing.id, user_id)

    assert exc_info.value.code == "NO_ACTIVE_RULES"


@pytest.mark.asyncio
async def test_latest_without_runs(
    make_filing, calculation_service: CalculationService, user_id: uuid.UUID
) -> None:
    filing = await make_filing()

    with pytest.raises(NotFoundError) as exc_info:
        await calculation_service.get_latest(filing.id, user_id)

    assert exc_info.value.code == "NO_CALCULATION"


@pytest.mark.asyncio
async def test_calculate_checks_ownership(
    active_rules: TaxRuleVersion, make_filing, calculation_service: CalculationService
) -> None:
    filing = await make_filing()

    with pytest.raises(AccessDeniedError):
        await calculation_service.calculate(filing.id, uuid.uuid4())
    with pytest.raises(AccessDeniedError):
        await calculation_service.get_history(filing.id, uuid.uuid4())
