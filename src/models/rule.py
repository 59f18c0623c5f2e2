"""Tax rule version SQLAlchemy models."""

import enum
import uuid
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import MONEY, RATE, Base, JSONDocument, TimestampMixin


class RuleStatus(enum.Enum):
    """Lifecycle status of a tax rule version."""

    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    DEPRECATED = "DEPRECATED"


class TaxRuleVersion(Base, TimestampMixin):
    """A versioned set of brackets, credit rules and deduction rules.

    Scoped to one (jurisdiction, tax_year). At most one version per scope may
    be ACTIVE; the partial unique index below is the storage-level backstop
    for concurrent activations.
    """

    __tablename__ = "tax_rule_versions"
    __table_args__ = (
        UniqueConstraint(
            "jurisdiction",
            "tax_year",
            "version",
            name="uq_tax_rule_versions_jurisdiction_year_version",
        ),
        Index(
            "uq_tax_rule_versions_one_active",
            "jurisdiction",
            "tax_year",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_tax_rule_versions_jurisdiction_year", "jurisdiction", "tax_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String(50), nullable=False)
    tax_year: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[RuleStatus] = mapped_column(
        Enum(RuleStatus, name="rule_status"),
        default=RuleStatus.DRAFT,
        nullable=False,
    )
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    # Relationships
    brackets: Mapped[list["TaxBracket"]] = relationship(
        back_populates="rule_version",
        cascade="all, delete-orphan",
        order_by="TaxBracket.bracket_order",
        lazy="selectin",
    )
    credit_rules: Mapped[list["TaxCreditRule"]] = relationship(
        back_populates="rule_version",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    deduction_rules: Mapped[list["DeductionRule"]] = relationship(
        back_populates="rule_version",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_editable(self) -> bool:
        """Children may only change while the version is a draft."""
        return self.status == RuleStatus.DRAFT

    def find_credit_rule(self, credit_type: str) -> "TaxCreditRule | None":
        """Case-insensitive lookup of a credit rule by its type key."""
        key = credit_type.casefold()
        return next(
            (rule for rule in self.credit_rules if rule.credit_type.casefold() == key),
            None,
        )

    def find_deduction_rule(self, deduction_type: str) -> "DeductionRule | None":
        """Case-insensitive lookup of a deduction rule by its type key."""
        key = deduction_type.casefold()
        return next(
            (
                rule
                for rule in self.deduction_rules
                if rule.deduction_type.casefold() == key
            ),
            None,
        )


class TaxBracket(Base, TimestampMixin):
    """One marginal-rate income band within a rule version."""

    __tablename__ = "tax_brackets"
    __table_args__ = (
        UniqueConstraint(
            "rule_version_id", "bracket_order", name="uq_tax_brackets_rule_version_order"
        ),
        CheckConstraint(
            "max_income IS NULL OR max_income > min_income",
            name="ck_tax_brackets_income_range",
        ),
        CheckConstraint("rate >= 0 AND rate <= 1", name="ck_tax_brackets_rate_range"),
        CheckConstraint("min_income >= 0", name="ck_tax_brackets_min_income"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rule_version_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tax_rule_versions.id", ondelete="CASCADE"), nullable=False
    )
    min_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    max_income: Mapped[Decimal | None] = mapped_column(MONEY)
    rate: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    bracket_order: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    rule_version: Mapped["TaxRuleVersion"] = relationship(back_populates="brackets")


class TaxCreditRule(Base, TimestampMixin):
    """Limits and refundability for a credit type within a rule version."""

    __tablename__ = "tax_credit_rules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rule_version_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tax_rule_versions.id", ondelete="CASCADE"), nullable=False
    )
    credit_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    is_refundable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    eligibility_rules: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument)
    max_amount: Mapped[Decimal | None] = mapped_column(MONEY)
    phase_out_start: Mapped[Decimal | None] = mapped_column(MONEY)
    phase_out_rate: Mapped[Decimal | None] = mapped_column(RATE)

    # Relationships
    rule_version: Mapped["TaxRuleVersion"] = relationship(back_populates="credit_rules")


class DeductionRule(Base, TimestampMixin):
    """Limits for a deduction type within a rule version."""

    __tablename__ = "deduction_rules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rule_version_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tax_rule_versions.id", ondelete="CASCADE"), nullable=False
    )
    deduction_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    max_amount: Mapped[Decimal | None] = mapped_column(MONEY)
    max_percentage: Mapped[Decimal | None] = mapped_column(RATE)
    eligibility_rules: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument)

    # Relationships
    rule_version: Mapped["TaxRuleVersion"] = relationship(
        back_populates="deduction_rules"
    )
