"""Built-in tax rule presets keyed by jurisdiction and tax year.

This module centralizes published bracket, credit and deduction values so a
rule version can be seeded without hand-entering every row.

Example:
    >>> from src.tax.year_config import get_rule_preset
    >>> preset = get_rule_preset("CA", 2024)
    >>> print(preset.brackets[0].rate)
    0.15
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class BracketPreset:
    """One marginal bracket (max_income None means unbounded)."""

    min_income: Decimal
    max_income: Decimal | None
    rate: Decimal


@dataclass(frozen=True)
class CreditRulePreset:
    """A credit rule; ``max_amount`` caps each claim."""

    credit_type: str
    name: str
    amount: Decimal
    is_refundable: bool = False
    max_amount: Decimal | None = None
    description: str = ""


@dataclass(frozen=True)
class DeductionRulePreset:
    """A deduction rule; ``max_percentage`` is informational only."""

    deduction_type: str
    name: str
    max_amount: Decimal | None = None
    max_percentage: Decimal | None = None
    description: str = ""


@dataclass(frozen=True)
class RulePreset:
    """A complete rule set for one (jurisdiction, tax_year).

    This dataclass is frozen to prevent accidental modification; seeding
    copies its values into fresh ORM rows.

    Attributes:
        jurisdiction: Taxing authority code, e.g. "CA".
        tax_year: The tax year these values apply to.
        name: Display name for the seeded rule version.
        brackets: Brackets in ascending order; bracket_order follows position.
        credit_rules: Credit rules by type.
        deduction_rules: Deduction rules by type.
    """

    jurisdiction: str
    tax_year: int
    name: str
    brackets: tuple[BracketPreset, ...]
    credit_rules: tuple[CreditRulePreset, ...] = field(default_factory=tuple)
    deduction_rules: tuple[DeductionRulePreset, ...] = field(default_factory=tuple)

    @property
    def effective_from(self) -> date:
        return date(self.tax_year, 1, 1)

    @property
    def effective_to(self) -> date:
        return date(self.tax_year, 12, 31)

    def bracket_rows(self) -> list[dict[str, Any]]:
        """Bracket keyword arguments with 1-based ``bracket_order``."""
        return [
            {
                "min_income": b.min_income,
                "max_income": b.max_income,
                "rate": b.rate,
                "bracket_order": order,
            }
            for order, b in enumerate(self.brackets, start=1)
        ]

    def credit_rule_rows(self) -> list[dict[str, Any]]:
        return [
            {
                "credit_type": c.credit_type,
                "name": c.name,
                "amount": c.amount,
                "is_refundable": c.is_refundable,
                "max_amount": c.max_amount,
                "eligibility_rules": {"description": c.description} if c.description else None,
            }
            for c in self.credit_rules
        ]

    def deduction_rule_rows(self) -> list[dict[str, Any]]:
        return [
            {
                "deduction_type": d.deduction_type,
                "name": d.name,
                "max_amount": d.max_amount,
                "max_percentage": d.max_percentage,
                "eligibility_rules": {"description": d.description} if d.description else None,
            }
            for d in self.deduction_rules
        ]


def _bracket(low: str, high: str | None, rate: str) -> BracketPreset:
    return BracketPreset(
        min_income=Decimal(low),
        max_income=None if high is None else Decimal(high),
        rate=Decimal(rate),
    )


def _non_refundable(credit_type: str, name: str, amount: str, description: str) -> CreditRulePreset:
    return CreditRulePreset(
        credit_type=credit_type,
        name=name,
        amount=Decimal(amount),
        max_amount=Decimal(amount),
        description=description,
    )


def _refundable(credit_type: str, name: str, amount: str, description: str) -> CreditRulePreset:
    return CreditRulePreset(
        credit_type=credit_type,
        name=name,
        amount=Decimal(amount),
        is_refundable=True,
        max_amount=Decimal(amount),
        description=description,
    )


# Canada 2024 federal values
CA_2024 = RulePreset(
    jurisdiction="CA",
    tax_year=2024,
    name="Canadian Federal Tax Rules 2024",
    brackets=(
        _bracket("0", "55867", "0.15"),
        _bracket("55867", "111733", "0.205"),
        _bracket("111733", "173205", "0.26"),
        _bracket("173205", "246752", "0.29"),
        _bracket("246752", None, "0.33"),
    ),
    credit_rules=(
        _non_refundable(
            "BASIC_PERSONAL", "Basic Personal Amount", "15705",
            "Non-refundable tax credit for all taxpayers",
        ),
        _non_refundable(
            "SPOUSE_AMOUNT", "Spouse or Common-Law Partner Amount", "15705",
            "Credit for supporting a spouse with low income",
        ),
        _non_refundable(
            "CANADA_EMPLOYMENT", "Canada Employment Amount", "1368",
            "Credit for employment income earners",
        ),
        _non_refundable(
            "AGE_AMOUNT", "Age Amount", "8396", "Credit for taxpayers 65+",
        ),
        _non_refundable(
            "DISABILITY_AMOUNT", "Disability Tax Credit", "9428",
            "Credit for persons with disabilities",
        ),
        _refundable(
            "GST_HST_CREDIT", "GST/HST Credit", "496", "Refundable quarterly payment",
        ),
        _refundable(
            "CLIMATE_ACTION", "Climate Action Incentive", "488",
            "Refundable climate incentive payment",
        ),
        _refundable(
            "CANADA_WORKERS_BENEFIT", "Canada Workers Benefit", "1428",
            "Refundable credit for low-income workers",
        ),
    ),
    deduction_rules=(
        DeductionRulePreset(
            "RRSP", "RRSP Contribution", Decimal("31560"), Decimal("0.18"),
            "18% of earned income, max $31,560 for 2024",
        ),
        DeductionRulePreset("UNION_DUES", "Union and Professional Dues", description="Fully deductible"),
        DeductionRulePreset(
            "CHILDCARE", "Child Care Expenses", Decimal("8000"),
            description="Up to $8,000 per child under 7",
        ),
        DeductionRulePreset(
            "MOVING", "Moving Expenses",
            description="Deductible if moving 40km closer to work",
        ),
        DeductionRulePreset(
            "CHARITABLE", "Charitable Donations", max_percentage=Decimal("0.75"),
            description="Up to 75% of net income",
        ),
        DeductionRulePreset(
            "MEDICAL", "Medical Expenses", description="Expenses over 3% of net income",
        ),
        DeductionRulePreset(
            "HOME_OFFICE", "Home Office Expenses", Decimal("500"),
            description="Flat rate up to $500",
        ),
    ),
)

# Canada 2023 federal values
CA_2023 = RulePreset(
    jurisdiction="CA",
    tax_year=2023,
    name="Canadian Federal Tax Rules 2023",
    brackets=(
        _bracket("0", "53359", "0.15"),
        _bracket("53359", "106717", "0.205"),
        _bracket("106717", "165430", "0.26"),
        _bracket("165430", "235675", "0.29"),
        _bracket("235675", None, "0.33"),
    ),
    credit_rules=(
        _non_refundable(
            "BASIC_PERSONAL", "Basic Personal Amount", "15000",
            "2023 basic personal amount",
        ),
        _non_refundable(
            "CANADA_EMPLOYMENT", "Canada Employment Amount", "1287",
            "2023 employment credit",
        ),
    ),
    deduction_rules=(
        DeductionRulePreset(
            "RRSP", "RRSP Contribution", Decimal("30780"), Decimal("0.18"),
            "2023 RRSP limit",
        ),
    ),
)

# US 2024 federal values (single filer)
US_2024 = RulePreset(
    jurisdiction="US",
    tax_year=2024,
    name="US Federal Tax Rules 2024",
    brackets=(
        _bracket("0", "11600", "0.10"),
        _bracket("11600", "47150", "0.12"),
        _bracket("47150", "100525", "0.22"),
        _bracket("100525", "191950", "0.24"),
        _bracket("191950", "243725", "0.32"),
        _bracket("243725", "609350", "0.35"),
        _bracket("609350", None, "0.37"),
    ),
    credit_rules=(
        _non_refundable(
            "STANDARD_DEDUCTION", "Standard Deduction", "14600",
            "2024 standard deduction single filer",
        ),
    ),
    deduction_rules=(
        DeductionRulePreset(
            "OTHER", "401(k) Contribution", Decimal("23000"),
            description="2024 401(k) limit",
        ),
    ),
)

# Registry of available presets
RULE_PRESETS: dict[tuple[str, int], RulePreset] = {
    ("CA", 2023): CA_2023,
    ("CA", 2024): CA_2024,
    ("US", 2024): US_2024,
}


def get_rule_preset(jurisdiction: str, tax_year: int) -> RulePreset:
    """Get the built-in preset for a jurisdiction and tax year.

    Args:
        jurisdiction: Taxing authority code (case-insensitive).
        tax_year: The tax year (e.g., 2024).

    Returns:
        RulePreset for the requested scope.

    Raises:
        ValueError: If no preset exists for the requested scope.
    """
    key = (jurisdiction.upper(), tax_year)
    if key not in RULE_PRESETS:
        available = sorted(f"{j} {y}" for j, y in RULE_PRESETS)
        raise ValueError(
            f"No rule preset for {jurisdiction} {tax_year}. Available: {available}"
        )
    return RULE_PRESETS[key]
