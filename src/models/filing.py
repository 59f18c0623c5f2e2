"""Tax filing aggregate SQLAlchemy models."""

import enum
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import MONEY, Base, JSONDocument, TimestampMixin


class FilingStatus(enum.Enum):
    """Lifecycle status of a tax filing."""

    DRAFT = "DRAFT"
    READY = "READY"
    SUBMITTED = "SUBMITTED"


class FilingType(enum.Enum):
    """Whether a filing is the first one for its year or a correction."""

    ORIGINAL = "ORIGINAL"
    AMENDMENT = "AMENDMENT"


class IncomeType(enum.Enum):
    """Categories of reported income."""

    EMPLOYMENT = "EMPLOYMENT"
    SELF_EMPLOYMENT = "SELF_EMPLOYMENT"
    INVESTMENT = "INVESTMENT"
    RENTAL = "RENTAL"
    CAPITAL_GAINS = "CAPITAL_GAINS"
    PENSION = "PENSION"
    EI_BENEFITS = "EI_BENEFITS"
    OTHER = "OTHER"


class DeductionType(enum.Enum):
    """Categories of claimed deductions."""

    RRSP = "RRSP"
    UNION_DUES = "UNION_DUES"
    CHILDCARE = "CHILDCARE"
    MOVING = "MOVING"
    CHARITABLE = "CHARITABLE"
    MEDICAL = "MEDICAL"
    STUDENT_LOAN_INTEREST = "STUDENT_LOAN_INTEREST"
    HOME_OFFICE = "HOME_OFFICE"
    OTHER = "OTHER"


class TaxFiling(Base, TimestampMixin):
    """A taxpayer's filing for one (tax_year, jurisdiction).

    Line items are owned exclusively by the filing and are only changed
    through FilingService so that status and ownership checks always apply.
    """

    __tablename__ = "tax_filings"
    __table_args__ = (
        Index(
            "uq_tax_filings_one_original",
            "user_id",
            "tax_year",
            "jurisdiction",
            unique=True,
            postgresql_where=text("filing_type = 'ORIGINAL'"),
            sqlite_where=text("filing_type = 'ORIGINAL'"),
        ),
        Index("ix_tax_filings_user_id", "user_id"),
        Index("ix_tax_filings_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    tax_year: Mapped[int] = mapped_column(Integer, nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[FilingStatus] = mapped_column(
        Enum(FilingStatus, name="filing_status"),
        default=FilingStatus.DRAFT,
        nullable=False,
    )
    filing_type: Mapped[FilingType] = mapped_column(
        Enum(FilingType, name="filing_type"),
        default=FilingType.ORIGINAL,
        nullable=False,
    )
    original_filing_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("tax_filings.id")
    )
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONDocument, default=dict, nullable=False
    )

    # Relationships
    income_items: Mapped[list["IncomeItem"]] = relationship(
        back_populates="filing",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    deduction_items: Mapped[list["DeductionItem"]] = relationship(
        back_populates="filing",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    credit_claims: Mapped[list["CreditClaim"]] = relationship(
        back_populates="filing",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_submitted(self) -> bool:
        return self.status == FilingStatus.SUBMITTED

    @property
    def is_editable(self) -> bool:
        """DRAFT and READY filings both accept line-item changes."""
        return not self.is_submitted


class IncomeItem(Base, TimestampMixin):
    """A single income source reported on a filing."""

    __tablename__ = "income_items"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_income_items_amount"),
        CheckConstraint("tax_withheld >= 0", name="ck_income_items_tax_withheld"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    filing_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tax_filings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    income_type: Mapped[IncomeType] = mapped_column(
        Enum(IncomeType, name="income_type"), nullable=False
    )
    source: Mapped[str | None] = mapped_column(String(255))
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_withheld: Mapped[Decimal] = mapped_column(
        MONEY, default=Decimal("0.00"), nullable=False
    )
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONDocument, default=dict, nullable=False
    )

    # Relationships
    filing: Mapped["TaxFiling"] = relationship(back_populates="income_items")


class DeductionItem(Base, TimestampMixin):
    """A deduction claimed on a filing."""

    __tablename__ = "deduction_items"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_deduction_items_amount"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    filing_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tax_filings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    deduction_type: Mapped[DeductionType] = mapped_column(
        Enum(DeductionType, name="deduction_type"), nullable=False
    )
    description: Mapped[str | None] = mapped_column(String(255))
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONDocument, default=dict, nullable=False
    )

    # Relationships
    filing: Mapped["TaxFiling"] = relationship(back_populates="deduction_items")


class CreditClaim(Base, TimestampMixin):
    """A tax credit claimed on a filing, keyed by a free-form credit type."""

    __tablename__ = "credit_claims"
    __table_args__ = (
        CheckConstraint("claimed_amount >= 0", name="ck_credit_claims_claimed_amount"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    filing_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tax_filings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    credit_type: Mapped[str] = mapped_column(String(50), nullable=False)
    claimed_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONDocument, default=dict, nullable=False
    )

    # Relationships
    filing: Mapped["TaxFiling"] = relationship(back_populates="credit_claims")
