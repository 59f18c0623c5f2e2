"""Filing aggregate service.

All changes to a filing and its line items go through FilingService so that
the ownership check, the editability check and the audit event apply
uniformly. Items are never mutated directly by other services.
"""

import copy
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import violates_constraint
from src.core.exceptions import (
    AccessDeniedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from src.lifecycle import FilingLifecycle, fire
from src.models.audit import AuditAction
from src.models.calculation import CalculationRun
from src.models.filing import (
    CreditClaim,
    DeductionItem,
    DeductionType,
    FilingStatus,
    FilingType,
    IncomeItem,
    IncomeType,
    TaxFiling,
)
from src.services.audit import ENTITY_FILING, AuditEmitter, AuditEvent
from src.services.rule_versions import validate_jurisdiction
from src.services.snapshots import (
    credit_claim_values,
    deduction_item_values,
    filing_values,
    income_item_values,
)

logger = structlog.get_logger()

ORIGINAL_INDEX_MARKERS = ("uq_tax_filings_one_original", "tax_filings.user_id")


def validate_amount(value: Any, field_name: str = "amount") -> Decimal:
    """Coerce an amount to Decimal and reject negatives.

    Raises:
        ValidationError: INVALID_AMOUNT if not a number or negative
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError("INVALID_AMOUNT", f"{field_name} must be a number") from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError("INVALID_AMOUNT", f"{field_name} must not be negative")
    return amount


def ensure_owner(filing: TaxFiling, user_id: uuid.UUID) -> None:
    if filing.user_id != user_id:
        raise AccessDeniedError()


class FilingService:
    """Filing aggregate operations within one unit of work.

    Usage:
        service = FilingService(session, audit)
        filing = await service.create(user_id, 2024, "CA")
        await service.add_income_item(filing.id, user_id, IncomeType.EMPLOYMENT, "60000")
        await service.mark_as_ready(filing.id, user_id)
    """

    def __init__(self, session: AsyncSession, audit: AuditEmitter) -> None:
        self.session = session
        self.audit = audit

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def load(self, filing_id: uuid.UUID) -> TaxFiling:
        """Load a filing with every item collection, without an ownership check."""
        filing = await self.session.get(TaxFiling, filing_id)
        if filing is None:
            raise NotFoundError("FILING_NOT_FOUND", "Filing not found")
        return filing

    async def get(self, filing_id: uuid.UUID, user_id: uuid.UUID) -> TaxFiling:
        """Load a filing owned by ``user_id``.

        Raises:
            NotFoundError: FILING_NOT_FOUND
            AccessDeniedError: if another user owns the filing
        """
        filing = await self.load(filing_id)
        ensure_owner(filing, user_id)
        return filing

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        status: FilingStatus | None = None,
        tax_year: int | None = None,
    ) -> list[TaxFiling]:
        query = select(TaxFiling).where(TaxFiling.user_id == user_id)
        if status is not None:
            query = query.where(TaxFiling.status == status)
        if tax_year is not None:
            query = query.where(TaxFiling.tax_year == tax_year)
        query = query.order_by(TaxFiling.tax_year.desc(), TaxFiling.created_at.desc())

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_amendments(
        self, original_id: uuid.UUID, user_id: uuid.UUID
    ) -> list[TaxFiling]:
        original = await self.get(original_id, user_id)
        result = await self.session.execute(
            select(TaxFiling)
            .where(TaxFiling.original_filing_id == original.id)
            .order_by(TaxFiling.created_at)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Creation and deletion
    # ------------------------------------------------------------------

    async def create(
        self,
        user_id: uuid.UUID,
        tax_year: int,
        jurisdiction: str,
        metadata: dict[str, Any] | None = None,
    ) -> TaxFiling:
        """Create the ORIGINAL filing for (user, tax_year, jurisdiction).

        Raises:
            ConflictError: FILING_EXISTS if an ORIGINAL already exists, whether
                found up front or rejected by the unique index
            ValidationError: INVALID_JURISDICTION unless 2-50 upper-case letters
        """
        validate_jurisdiction(jurisdiction)
        existing = await self.session.scalar(
            select(TaxFiling.id).where(
                TaxFiling.user_id == user_id,
                TaxFiling.tax_year == tax_year,
                TaxFiling.jurisdiction == jurisdiction,
                TaxFiling.filing_type == FilingType.ORIGINAL,
            )
        )
        if existing is not None:
            raise self._filing_exists(tax_year, jurisdiction)

        filing = TaxFiling(
            user_id=user_id,
            tax_year=tax_year,
            jurisdiction=jurisdiction,
            status=FilingStatus.DRAFT,
            filing_type=FilingType.ORIGINAL,
            metadata_=dict(metadata or {}),
            income_items=[],
            deduction_items=[],
            credit_claims=[],
        )
        self.session.add(filing)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            if violates_constraint(exc, *ORIGINAL_INDEX_MARKERS):
                raise self._filing_exists(tax_year, jurisdiction) from exc
            raise

        logger.info(
            "filing_created",
            filing_id=str(filing.id),
            tax_year=tax_year,
            jurisdiction=jurisdiction,
        )
        await self._emit(filing, user_id, AuditAction.CREATE, new_values=filing_values(filing))
        return filing

    async def create_amendment(
        self, original_id: uuid.UUID, user_id: uuid.UUID
    ) -> TaxFiling:
        """Open a DRAFT amendment carrying copies of the original's items.

        Raises:
            InvalidStateError: ORIGINAL_NOT_SUBMITTED unless the original is SUBMITTED
        """
        original = await self.get(original_id, user_id)
        if not original.is_submitted:
            raise InvalidStateError(
                "ORIGINAL_NOT_SUBMITTED", "Can only amend submitted filings"
            )

        amendment = TaxFiling(
            user_id=user_id,
            tax_year=original.tax_year,
            jurisdiction=original.jurisdiction,
            status=FilingStatus.DRAFT,
            filing_type=FilingType.AMENDMENT,
            original_filing_id=original.id,
            metadata_={"amendedFrom": str(original.id)},
            income_items=[
                IncomeItem(
                    income_type=item.income_type,
                    source=item.source,
                    amount=item.amount,
                    tax_withheld=item.tax_withheld,
                    metadata_=copy.deepcopy(item.metadata_),
                )
                for item in original.income_items
            ],
            deduction_items=[
                DeductionItem(
                    deduction_type=item.deduction_type,
                    description=item.description,
                    amount=item.amount,
                    metadata_=copy.deepcopy(item.metadata_),
                )
                for item in original.deduction_items
            ],
            credit_claims=[
                CreditClaim(
                    credit_type=claim.credit_type,
                    claimed_amount=claim.claimed_amount,
                    metadata_=copy.deepcopy(claim.metadata_),
                )
                for claim in original.credit_claims
            ],
        )
        self.session.add(amendment)
        await self.session.flush()

        logger.info(
            "amendment_created",
            filing_id=str(amendment.id),
            original_filing_id=str(original.id),
        )
        await self._emit(
            amendment, user_id, AuditAction.CREATE, new_values=filing_values(amendment)
        )
        return amendment

    async def delete(self, filing_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Delete an unsubmitted filing with its items and calculation runs.

        Raises:
            InvalidStateError: CANNOT_DELETE_SUBMITTED
        """
        filing = await self.get(filing_id, user_id)
        if filing.is_submitted:
            raise InvalidStateError(
                "CANNOT_DELETE_SUBMITTED", "Cannot delete a submitted filing"
            )

        old_values = filing_values(filing)
        await self.session.execute(
            delete(CalculationRun).where(CalculationRun.filing_id == filing.id)
        )
        await self.session.delete(filing)
        await self.session.flush()

        logger.info("filing_deleted", filing_id=str(filing_id))
        await self._emit_for(filing_id, user_id, AuditAction.DELETE, old_values=old_values)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def mark_as_ready(self, filing_id: uuid.UUID, user_id: uuid.UUID) -> TaxFiling:
        """DRAFT -> READY.

        Raises:
            InvalidStateError: INVALID_STATUS unless DRAFT
            ValidationError: INCOMPLETE_FILING without income items
        """
        return await self._transition(filing_id, user_id, "mark_ready")

    async def unmark_as_ready(self, filing_id: uuid.UUID, user_id: uuid.UUID) -> TaxFiling:
        """READY -> DRAFT.

        Raises:
            InvalidStateError: INVALID_STATUS unless READY
        """
        return await self._transition(filing_id, user_id, "unmark_ready")

    # ------------------------------------------------------------------
    # Income items
    # ------------------------------------------------------------------

    async def add_income_item(
        self,
        filing_id: uuid.UUID,
        user_id: uuid.UUID,
        income_type: IncomeType,
        amount: Any,
        source: str | None = None,
        tax_withheld: Any = Decimal("0"),
        metadata: dict[str, Any] | None = None,
    ) -> IncomeItem:
        filing = await self._get_editable(filing_id, user_id)
        item = IncomeItem(
            income_type=IncomeType(income_type),
            source=source,
            amount=validate_amount(amount),
            tax_withheld=validate_amount(tax_withheld or 0, "tax_withheld"),
            metadata_=dict(metadata or {}),
        )
        filing.income_items.append(item)
        await self.session.flush()
        await self._emit_item_change(
            filing, user_id, new_values={"addedIncomeItem": income_item_values(item)}
        )
        return item

    async def update_income_item(
        self,
        filing_id: uuid.UUID,
        item_id: uuid.UUID,
        user_id: uuid.UUID,
        income_type: IncomeType | None = None,
        amount: Any = None,
        source: str | None = None,
        tax_withheld: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> IncomeItem:
        """Update the given fields of an income item; None leaves a field as is."""
        filing = await self._get_editable(filing_id, user_id)
        item = self._find(filing.income_items, item_id, "ITEM_NOT_FOUND", "Income item")
        old_values = income_item_values(item)

        if income_type is not None:
            item.income_type = IncomeType(income_type)
        if amount is not None:
            item.amount = validate_amount(amount)
        if source is not None:
            item.source = source
        if tax_withheld is not None:
            item.tax_withheld = validate_amount(tax_withheld, "tax_withheld")
        if metadata is not None:
            item.metadata_ = dict(metadata)

        await self.session.flush()
        await self._emit_item_change(
            filing,
            user_id,
            old_values={"incomeItem": old_values},
            new_values={"incomeItem": income_item_values(item)},
        )
        return item

    async def remove_income_item(
        self, filing_id: uuid.UUID, item_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        filing = await self._get_editable(filing_id, user_id)
        item = self._find(filing.income_items, item_id, "ITEM_NOT_FOUND", "Income item")
        removed = income_item_values(item)
        filing.income_items.remove(item)
        await self.session.flush()
        await self._emit_item_change(
            filing, user_id, old_values={"removedIncomeItem": removed}
        )

    # ------------------------------------------------------------------
    # Deduction items
    # ------------------------------------------------------------------

    async def add_deduction_item(
        self,
        filing_id: uuid.UUID,
        user_id: uuid.UUID,
        deduction_type: DeductionType,
        amount: Any,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DeductionItem:
        filing = await self._get_editable(filing_id, user_id)
        item = DeductionItem(
            deduction_type=DeductionType(deduction_type),
            description=description,
            amount=validate_amount(amount),
            metadata_=dict(metadata or {}),
        )
        filing.deduction_items.append(item)
        await self.session.flush()
        await self._emit_item_change(
            filing, user_id, new_values={"addedDeductionItem": deduction_item_values(item)}
        )
        return item

    async def update_deduction_item(
        self,
        filing_id: uuid.UUID,
        item_id: uuid.UUID,
        user_id: uuid.UUID,
        deduction_type: DeductionType | None = None,
        amount: Any = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DeductionItem:
        filing = await self._get_editable(filing_id, user_id)
        item = self._find(
            filing.deduction_items, item_id, "ITEM_NOT_FOUND", "Deduction item"
        )
        old_values = deduction_item_values(item)

        if deduction_type is not None:
            item.deduction_type = DeductionType(deduction_type)
        if amount is not None:
            item.amount = validate_amount(amount)
        if description is not None:
            item.description = description
        if metadata is not None:
            item.metadata_ = dict(metadata)

        await self.session.flush()
        await self._emit_item_change(
            filing,
            user_id,
            old_values={"deductionItem": old_values},
            new_values={"deductionItem": deduction_item_values(item)},
        )
        return item

    async def remove_deduction_item(
        self, filing_id: uuid.UUID, item_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        filing = await self._get_editable(filing_id, user_id)
        item = self._find(
            filing.deduction_items, item_id, "ITEM_NOT_FOUND", "Deduction item"
        )
        removed = deduction_item_values(item)
        filing.deduction_items.remove(item)
        await self.session.flush()
        await self._emit_item_change(
            filing, user_id, old_values={"removedDeductionItem": removed}
        )

    # ------------------------------------------------------------------
    # Credit claims
    # ------------------------------------------------------------------

    async def add_credit_claim(
        self,
        filing_id: uuid.UUID,
        user_id: uuid.UUID,
        credit_type: str,
        claimed_amount: Any,
        metadata: dict[str, Any] | None = None,
    ) -> CreditClaim:
        filing = await self._get_editable(filing_id, user_id)
        if not credit_type or not credit_type.strip():
            raise ValidationError("INVALID_CREDIT_TYPE", "credit_type must not be empty")

        claim = CreditClaim(
            credit_type=credit_type.strip(),
            claimed_amount=validate_amount(claimed_amount, "claimed_amount"),
            metadata_=dict(metadata or {}),
        )
        filing.credit_claims.append(claim)
        await self.session.flush()
        await self._emit_item_change(
            filing, user_id, new_values={"addedCreditClaim": credit_claim_values(claim)}
        )
        return claim

    async def update_credit_claim(
        self,
        filing_id: uuid.UUID,
        claim_id: uuid.UUID,
        user_id: uuid.UUID,
        credit_type: str | None = None,
        claimed_amount: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> CreditClaim:
        filing = await self._get_editable(filing_id, user_id)
        claim = self._find(filing.credit_claims, claim_id, "CLAIM_NOT_FOUND", "Credit claim")
        old_values = credit_claim_values(claim)

        if credit_type is not None:
            if not credit_type.strip():
                raise ValidationError(
                    "INVALID_CREDIT_TYPE", "credit_type must not be empty"
                )
            claim.credit_type = credit_type.strip()
        if claimed_amount is not None:
            claim.claimed_amount = validate_amount(claimed_amount, "claimed_amount")
        if metadata is not None:
            claim.metadata_ = dict(metadata)

        await self.session.flush()
        await self._emit_item_change(
            filing,
            user_id,
            old_values={"creditClaim": old_values},
            new_values={"creditClaim": credit_claim_values(claim)},
        )
        return claim

    async def remove_credit_claim(
        self, filing_id: uuid.UUID, claim_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        filing = await self._get_editable(filing_id, user_id)
        claim = self._find(filing.credit_claims, claim_id, "CLAIM_NOT_FOUND", "Credit claim")
        removed = credit_claim_values(claim)
        filing.credit_claims.remove(claim)
        await self.session.flush()
        await self._emit_item_change(
            filing, user_id, old_values={"removedCreditClaim": removed}
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_editable(self, filing_id: uuid.UUID, user_id: uuid.UUID) -> TaxFiling:
        filing = await self.get(filing_id, user_id)
        if not filing.is_editable:
            raise InvalidStateError(
                "FILING_NOT_EDITABLE", "Submitted filings cannot be modified"
            )
        return filing

    async def _transition(
        self, filing_id: uuid.UUID, user_id: uuid.UUID, event: str
    ) -> TaxFiling:
        filing = await self.get(filing_id, user_id)
        old_values = filing_values(filing)
        fire(FilingLifecycle(filing), event)
        await self.session.flush()
        await self._emit(
            filing,
            user_id,
            AuditAction.STATUS_CHANGE,
            old_values=old_values,
            new_values=filing_values(filing),
        )
        return filing

    @staticmethod
    def _find(items: list[Any], item_id: uuid.UUID, code: str, label: str) -> Any:
        item = next((i for i in items if i.id == item_id), None)
        if item is None:
            raise NotFoundError(code, f"{label} not found")
        return item

    @staticmethod
    def _filing_exists(tax_year: int, jurisdiction: str) -> ConflictError:
        return ConflictError(
            "FILING_EXISTS",
            f"An original filing already exists for {jurisdiction} {tax_year}",
        )

    async def _emit_item_change(
        self,
        filing: TaxFiling,
        user_id: uuid.UUID,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> None:
        logger.info(
            "filing_items_changed",
            filing_id=str(filing.id),
            changes=sorted((new_values or old_values or {}).keys()),
        )
        await self._emit(
            filing, user_id, AuditAction.UPDATE, old_values=old_values, new_values=new_values
        )

    async def _emit(
        self,
        filing: TaxFiling,
        user_id: uuid.UUID,
        action: AuditAction,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> None:
        await self._emit_for(filing.id, user_id, action, old_values, new_values)

    async def _emit_for(
        self,
        filing_id: uuid.UUID,
        user_id: uuid.UUID,
        action: AuditAction,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> None:
        await self.audit.emit(
            AuditEvent(
                entity_type=ENTITY_FILING,
                entity_id=filing_id,
                actor_id=user_id,
                action=action,
                old_values=old_values,
                new_values=new_values,
            )
        )


__all__ = ["FilingService", "ensure_owner", "validate_amount"]
