"""Submission finalizer.

Turns an editable filing into an immutable SubmissionRecord with a unique
confirmation number and a point-in-time snapshot, then moves the filing to
SUBMITTED. A filing is submitted at most once: the status check rejects the
common case and the unique ``filing_id`` constraint rejects the race.
"""

import secrets
import string
import uuid
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.database import violates_constraint
from src.core.exceptions import ConflictError, NotFoundError, ValidationError
from src.lifecycle import FilingLifecycle, fire
from src.models.audit import AuditAction
from src.models.base import utcnow
from src.models.calculation import SubmissionRecord
from src.models.filing import FilingStatus, TaxFiling
from src.services.audit import ENTITY_SUBMISSION, AuditEmitter, AuditEvent
from src.services.calculations import CalculationService
from src.services.filings import FilingService, ensure_owner
from src.services.snapshots import submission_snapshot

logger = structlog.get_logger()

CONFIRMATION_ALPHABET = string.ascii_uppercase + string.digits
CONFIRMATION_SUFFIX_LENGTH = 8

FILING_ID_MARKERS = ("uq_submission_records_filing_id", "submission_records.filing_id")
CONFIRMATION_MARKERS = (
    "uq_submission_records_confirmation_number",
    "submission_records.confirmation_number",
)


def generate_confirmation_number(filing: TaxFiling, submitted_at: datetime) -> str:
    """Build ``{JJ}-{YYYYMMDD}-{taxYear}-{8 random [A-Z0-9]}``.

    Example:
        >>> generate_confirmation_number(filing, datetime(2024, 1, 15))  # doctest: +SKIP
        'CA-20240115-2024-7KQ2ZP0M'
    """
    jurisdiction_code = filing.jurisdiction[:2].upper()
    suffix = "".join(
        secrets.choice(CONFIRMATION_ALPHABET) for _ in range(CONFIRMATION_SUFFIX_LENGTH)
    )
    return f"{jurisdiction_code}-{submitted_at:%Y%m%d}-{filing.tax_year}-{suffix}"


class SubmissionService:
    """Submits filings and reads back submission records.

    Usage:
        service = SubmissionService(session, audit)
        record = await service.submit(filing_id, user_id, ip_address="203.0.113.7")
        print(record.confirmation_number)
    """

    def __init__(
        self,
        session: AsyncSession,
        audit: AuditEmitter,
        max_confirmation_attempts: int | None = None,
    ) -> None:
        self.session = session
        self.audit = audit
        self.filings = FilingService(session, audit)
        self.calculations = CalculationService(session, audit)
        self.max_confirmation_attempts = (
            max_confirmation_attempts or settings.confirmation_number_attempts
        )

    async def submit(
        self,
        filing_id: uuid.UUID,
        user_id: uuid.UUID,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SubmissionRecord:
        """Submit a filing.

        Uses the latest calculation run, calculating first when none exists.

        Args:
            filing_id: Filing to submit
            user_id: Submitting user, who must own the filing
            ip_address: Optional client address recorded on the receipt
            user_agent: Optional client user agent recorded on the receipt

        Returns:
            The new SubmissionRecord

        Raises:
            NotFoundError: FILING_NOT_FOUND or NO_ACTIVE_RULES
            AccessDeniedError: if another user owns the filing
            ConflictError: ALREADY_SUBMITTED, including a lost race
            ValidationError: INCOMPLETE_FILING without income items
        """
        filing = await self.filings.get(filing_id, user_id)
        if filing.is_submitted:
            raise self._already_submitted()

        if not filing.income_items:
            raise ValidationError(
                "INCOMPLETE_FILING", "Filing must have at least one income item"
            )

        run = await self.calculations.latest_run(filing.id)
        if run is None:
            logger.info("calculating_before_submission", filing_id=str(filing.id))
            run = await self.calculations.calculate_filing(filing, user_id)

        submitted_at = utcnow()
        confirmation_number = await self._unique_confirmation_number(filing, submitted_at)

        record = SubmissionRecord(
            filing_id=filing.id,
            calculation_run_id=run.id,
            calculation_run=run,
            confirmation_number=confirmation_number,
            submitted_at=submitted_at,
            submitted_by=user_id,
            filing_snapshot=submission_snapshot(filing, run, submitted_at),
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        fire(FilingLifecycle(filing), "submit")
        self.session.add(record)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            if violates_constraint(exc, *FILING_ID_MARKERS):
                raise self._already_submitted() from exc
            if violates_constraint(exc, *CONFIRMATION_MARKERS):
                raise ConflictError(
                    "CONFIRMATION_COLLISION",
                    "Confirmation number collided with an existing submission; retry",
                ) from exc
            raise

        logger.info(
            "filing_submitted",
            filing_id=str(filing.id),
            submission_id=str(record.id),
            confirmation_number=confirmation_number,
            ip_address=ip_address,
        )
        await self.audit.emit(
            AuditEvent(
                entity_type=ENTITY_SUBMISSION,
                entity_id=record.id,
                actor_id=user_id,
                action=AuditAction.SUBMISSION,
                new_values={
                    "filingId": str(filing.id),
                    "confirmationNumber": confirmation_number,
                    "calculationRunId": str(run.id),
                    "netTaxOwing": str(run.net_tax_owing),
                },
            )
        )
        return record

    async def get_submission(
        self, filing_id: uuid.UUID, user_id: uuid.UUID
    ) -> SubmissionRecord:
        """Submission record for an owned filing.

        Raises:
            NotFoundError: FILING_NOT_FOUND or NOT_SUBMITTED
        """
        await self.filings.get(filing_id, user_id)
        record = await self.session.scalar(
            select(SubmissionRecord).where(SubmissionRecord.filing_id == filing_id)
        )
        if record is None:
            raise NotFoundError("NOT_SUBMITTED", "Filing has not been submitted")
        return record

    async def get_by_confirmation(
        self, confirmation_number: str, user_id: uuid.UUID
    ) -> SubmissionRecord:
        """Look up a submission by confirmation number, checking ownership.

        Raises:
            NotFoundError: SUBMISSION_NOT_FOUND
            AccessDeniedError: if another user owns the filing
        """
        record = await self.session.scalar(
            select(SubmissionRecord).where(
                SubmissionRecord.confirmation_number == confirmation_number
            )
        )
        if record is None:
            raise NotFoundError("SUBMISSION_NOT_FOUND", "Submission not found")
        filing = await self.filings.load(record.filing_id)
        ensure_owner(filing, user_id)
        return record

    async def list_for_user(self, user_id: uuid.UUID) -> list[SubmissionRecord]:
        """All of a user's submissions, most recent first."""
        result = await self.session.execute(
            select(SubmissionRecord)
            .join(TaxFiling, TaxFiling.id == SubmissionRecord.filing_id)
            .where(
                TaxFiling.user_id == user_id,
                TaxFiling.status == FilingStatus.SUBMITTED,
            )
            .order_by(SubmissionRecord.submitted_at.desc())
        )
        return list(result.scalars().all())

    async def _unique_confirmation_number(
        self, filing: TaxFiling, submitted_at: datetime
    ) -> str:
        for attempt in range(1, self.max_confirmation_attempts + 1):
            candidate = generate_confirmation_number(filing, submitted_at)
            taken = await self.session.scalar(
                select(SubmissionRecord.id).where(
                    SubmissionRecord.confirmation_number == candidate
                )
            )
            if taken is None:
                return candidate
            logger.warning(
                "confirmation_number_collision",
                filing_id=str(filing.id),
                attempt=attempt,
            )

        raise ConflictError(
            "CONFIRMATION_COLLISION",
            f"Could not generate a unique confirmation number after "
            f"{self.max_confirmation_attempts} attempts",
        )

    @staticmethod
    def _already_submitted() -> ConflictError:
        return ConflictError("ALREADY_SUBMITTED", "Filing has already been submitted")


__all__ = ["SubmissionService", "generate_confirmation_number"]
