"""Calculation and submission SQLAlchemy models.

Both are append-only records: a CalculationRun is written once per
calculation request and a SubmissionRecord once per submitted filing.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import MONEY, Base, JSONDocument, utcnow
from src.models.rule import TaxRuleVersion
from src.tax.calculator import marginal_rate
from src.tax.money import effective_rate


class CalculationRun(Base):
    """One immutable execution of the calculation engine against a filing."""

    __tablename__ = "calculation_runs"
    __table_args__ = (
        Index("ix_calculation_runs_filing_created", "filing_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    filing_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tax_filings.id", ondelete="CASCADE"), nullable=False
    )
    rule_version_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tax_rule_versions.id"), nullable=False, index=True
    )
    total_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    taxable_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    gross_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_credits: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_withheld: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    net_tax_owing: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    bracket_breakdown: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONDocument, nullable=False
    )
    credits_breakdown: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONDocument, nullable=False
    )
    calculation_trace: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONDocument)
    input_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Relationships
    rule_version: Mapped[TaxRuleVersion] = relationship(lazy="selectin")

    @property
    def is_refund(self) -> bool:
        return self.net_tax_owing < 0

    @property
    def absolute_amount(self) -> Decimal:
        """Refund amount or amount owing, always non-negative."""
        return abs(self.net_tax_owing)

    @property
    def effective_tax_rate(self) -> Decimal:
        return effective_rate(self.gross_tax, self.total_income)

    @property
    def marginal_tax_rate(self) -> Decimal:
        return marginal_rate(self.bracket_breakdown)


class SubmissionRecord(Base):
    """Immutable receipt of a filing's final submission.

    ``filing_id`` is unique: a concurrent double submit that slips past the
    status check is rejected here.
    """

    __tablename__ = "submission_records"
    __table_args__ = (
        UniqueConstraint("filing_id", name="uq_submission_records_filing_id"),
        UniqueConstraint(
            "confirmation_number", name="uq_submission_records_confirmation_number"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    filing_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tax_filings.id"), nullable=False
    )
    calculation_run_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("calculation_runs.id"), nullable=False
    )
    confirmation_number: Mapped[str] = mapped_column(String(50), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    submitted_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    filing_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(String(500))

    # Relationships
    calculation_run: Mapped[CalculationRun] = relationship(lazy="selectin")
