"""Calculation persistence.

Runs the pure calculation engine against a filing and the ACTIVE rule
version for its scope, and stores every result as a new CalculationRun.
Runs are never updated.
"""

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import NotFoundError
from src.models.audit import AuditAction
from src.models.base import utcnow
from src.models.calculation import CalculationRun
from src.models.filing import TaxFiling
from src.services.audit import ENTITY_FILING, AuditEmitter, AuditEvent
from src.services.filings import FilingService
from src.services.rule_versions import RuleVersionService
from src.tax.calculator import build_input_snapshot, calculate

logger = structlog.get_logger()


class CalculationService:
    """Calculates filings and reads back stored runs.

    Usage:
        service = CalculationService(session, audit)
        run = await service.calculate(filing_id, user_id)
        history = await service.get_history(filing_id, user_id)
    """

    def __init__(self, session: AsyncSession, audit: AuditEmitter) -> None:
        self.session = session
        self.audit = audit
        self.filings = FilingService(session, audit)
        self.rules = RuleVersionService(session, audit)

    async def calculate(self, filing_id: uuid.UUID, user_id: uuid.UUID) -> CalculationRun:
        """Calculate a filing and persist the run.

        Raises:
            NotFoundError: FILING_NOT_FOUND or NO_ACTIVE_RULES
            AccessDeniedError: if another user owns the filing
        """
        filing = await self.filings.get(filing_id, user_id)
        return await self.calculate_filing(filing, user_id)

    async def calculate_filing(self, filing: TaxFiling, user_id: uuid.UUID) -> CalculationRun:
        """Calculate an already loaded and ownership-checked filing."""
        rule_version = await self.rules.find_active(filing.jurisdiction, filing.tax_year)
        result = calculate(filing, rule_version)

        run = CalculationRun(
            filing_id=filing.id,
            rule_version_id=rule_version.id,
            rule_version=rule_version,
            total_income=result.total_income,
            total_deductions=result.total_deductions,
            taxable_income=result.taxable_income,
            gross_tax=result.gross_tax,
            total_credits=result.total_credits,
            tax_withheld=result.tax_withheld,
            net_tax_owing=result.net_tax_owing,
            bracket_breakdown=[entry.as_dict() for entry in result.bracket_breakdown],
            credits_breakdown=[entry.as_dict() for entry in result.credits_breakdown],
            calculation_trace=result.trace_entries(),
            input_snapshot=build_input_snapshot(filing),
            created_at=utcnow(),
        )
        self.session.add(run)
        await self.session.flush()

        logger.info(
            "calculation_completed",
            filing_id=str(filing.id),
            calculation_run_id=str(run.id),
            rule_version_id=str(rule_version.id),
            net_tax_owing=str(run.net_tax_owing),
        )
        await self.audit.emit(
            AuditEvent(
                entity_type=ENTITY_FILING,
                entity_id=filing.id,
                actor_id=user_id,
                action=AuditAction.CALCULATION,
                new_values={
                    "calculationRunId": str(run.id),
                    "netTaxOwing": str(run.net_tax_owing),
                    "ruleVersionId": str(rule_version.id),
                },
            )
        )
        return run

    async def latest_run(self, filing_id: uuid.UUID) -> CalculationRun | None:
        """Most recent run for a filing, or None. No ownership check."""
        result = await self.session.execute(
            select(CalculationRun)
            .where(CalculationRun.filing_id == filing_id)
            .order_by(CalculationRun.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_latest(self, filing_id: uuid.UUID, user_id: uuid.UUID) -> CalculationRun:
        """Most recent run for an owned filing.

        Raises:
            NotFoundError: FILING_NOT_FOUND or NO_CALCULATION
        """
        await self.filings.get(filing_id, user_id)
        run = await self.latest_run(filing_id)
        if run is None:
            raise NotFoundError("NO_CALCULATION", "No calculation found for this filing")
        return run

    async def get_history(
        self, filing_id: uuid.UUID, user_id: uuid.UUID
    ) -> list[CalculationRun]:
        """All runs for an owned filing, most recent first."""
        await self.filings.get(filing_id, user_id)
        result = await self.session.execute(
            select(CalculationRun)
            .where(CalculationRun.filing_id == filing_id)
            .order_by(CalculationRun.created_at.desc())
        )
        return list(result.scalars().all())


__all__ = ["CalculationService"]
