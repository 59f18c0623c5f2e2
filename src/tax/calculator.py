"""Progressive income tax calculation engine.

This module provides a pure function that turns a filing's line items and a
rule version into a fully itemized result:
- Income aggregation and tax withheld
- Deductions capped by their rule's ``max_amount``
- Gross tax through ordered marginal brackets
- Credits split into a non-refundable pool (capped at gross tax) and
  refundable credits (honored in full)

Nothing here touches the database; callers pass ORM instances (or any
objects with the same attributes) and persist the result themselves. Every
step appends a human-readable line to the trace.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from src.tax.money import (
    CENTS,
    ZERO,
    effective_rate,
    format_rate,
    rate_as_percentage,
    sum_money,
    to_money,
)

if TYPE_CHECKING:
    from src.models.filing import TaxFiling
    from src.models.rule import TaxBracket, TaxRuleVersion


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class BracketBreakdown:
    """Tax contributed by one touched bracket.

    Attributes:
        bracket_order: Position of the bracket within its rule version.
        min_income: Lower bound of the bracket.
        max_income: Upper bound, or None for the unbounded top bracket.
        rate: Marginal rate as a 0-1 fraction.
        taxable_in_bracket: Portion of taxable income that fell in this bracket.
        tax_from_bracket: ``taxable_in_bracket * rate`` rounded to cents.
    """

    bracket_order: int
    min_income: Decimal
    max_income: Decimal | None
    rate: Decimal
    taxable_in_bracket: Decimal
    tax_from_bracket: Decimal

    def as_dict(self) -> dict[str, Any]:
        """JSON-safe form stored on the calculation run."""
        return {
            "bracketOrder": self.bracket_order,
            "minIncome": str(self.min_income),
            "maxIncome": None if self.max_income is None else str(self.max_income),
            "rate": str(self.rate),
            "taxableInBracket": str(self.taxable_in_bracket),
            "taxFromBracket": str(self.tax_from_bracket),
        }


@dataclass
class CreditBreakdown:
    """Outcome of a single credit claim.

    Attributes:
        credit_type: Claimed credit type as entered on the filing.
        claimed_amount: Amount the taxpayer asked for.
        allowed_amount: Amount after the rule's cap.
        is_refundable: Whether the matching rule marks the credit refundable.
        reason: "Allowed" or "Capped to max X".
    """

    credit_type: str
    claimed_amount: Decimal
    allowed_amount: Decimal
    is_refundable: bool
    reason: str = "Allowed"

    def as_dict(self) -> dict[str, Any]:
        return {
            "creditType": self.credit_type,
            "claimedAmount": str(self.claimed_amount),
            "allowedAmount": str(self.allowed_amount),
            "isRefundable": self.is_refundable,
            "reason": self.reason,
        }


@dataclass
class CalculationResult:
    """Result of a tax calculation.

    Attributes:
        rule_version_id: Rule version the result was computed against.
        total_income: Sum of income item amounts.
        total_deductions: Sum of allowed deduction amounts.
        taxable_income: ``max(0, total_income - total_deductions)``.
        gross_tax: Sum of per-bracket tax.
        total_credits: Capped non-refundable credits plus refundable credits.
        tax_withheld: Sum of tax withheld across income items.
        net_tax_owing: ``gross_tax - total_credits - tax_withheld``.
        bracket_breakdown: One entry per touched bracket, in bracket order.
        credits_breakdown: One entry per credit claim.
        trace: Ordered human-readable calculation steps.
    """

    rule_version_id: Any
    total_income: Decimal
    total_deductions: Decimal
    taxable_income: Decimal
    gross_tax: Decimal
    total_credits: Decimal
    tax_withheld: Decimal
    net_tax_owing: Decimal
    bracket_breakdown: list[BracketBreakdown] = field(default_factory=list)
    credits_breakdown: list[CreditBreakdown] = field(default_factory=list)
    trace: list[str] = field(default_factory=list)

    @property
    def is_refund(self) -> bool:
        return self.net_tax_owing < 0

    @property
    def refund_or_owing_amount(self) -> Decimal:
        return abs(self.net_tax_owing)

    @property
    def effective_tax_rate(self) -> Decimal:
        """Gross tax as a percentage of total income, 2 places."""
        return effective_rate(self.gross_tax, self.total_income)

    @property
    def marginal_tax_rate(self) -> Decimal:
        """Rate of the last bracket with taxable income, as a percentage."""
        return marginal_rate(self.bracket_breakdown)

    def trace_entries(self) -> list[dict[str, Any]]:
        """Trace in its stored form: ``[{"step": 1, "message": ...}, ...]``."""
        return [
            {"step": step, "message": message}
            for step, message in enumerate(self.trace, start=1)
        ]


# =============================================================================
# Calculation
# =============================================================================


def calculate(filing: TaxFiling, rule_version: TaxRuleVersion) -> CalculationResult:
    """Calculate tax for a filing under a rule version.

    Args:
        filing: Filing with its income items, deduction items and credit claims.
        rule_version: Rule version providing brackets, credit and deduction rules.

    Returns:
        CalculationResult with totals, breakdowns and trace.

    Example:
        With brackets 0-50000 @ 15%, 50000-100000 @ 20.5%, 100000+ @ 26% and a
        single 60000 income item, ``gross_tax`` is ``Decimal('9550.00')``.
    """
    trace: list[str] = [
        f"Starting calculation for {filing.jurisdiction} {filing.tax_year} "
        f"using rule version {rule_version.version}"
    ]

    total_income = _total_income(filing, trace)
    total_deductions = _total_deductions(filing, rule_version, trace)

    taxable_income = max(ZERO, total_income - total_deductions)
    trace.append(
        f"Taxable income: {total_income} - {total_deductions} = {taxable_income}"
    )

    bracket_breakdown = apply_brackets(taxable_income, rule_version.brackets, trace)
    gross_tax = sum_money(entry.tax_from_bracket for entry in bracket_breakdown)
    trace.append(f"Gross tax: {gross_tax}")

    credits_breakdown, total_credits = _apply_credits(
        filing, rule_version, gross_tax, trace
    )

    tax_withheld = sum_money(item.tax_withheld for item in filing.income_items)
    trace.append(f"Total tax withheld: {tax_withheld}")

    net_tax_owing = to_money(gross_tax - total_credits - tax_withheld)
    trace.append(
        f"Net tax owing: {gross_tax} (gross) - {total_credits} (credits) "
        f"- {tax_withheld} (withheld) = {net_tax_owing}"
    )

    return CalculationResult(
        rule_version_id=rule_version.id,
        total_income=total_income,
        total_deductions=total_deductions,
        taxable_income=taxable_income,
        gross_tax=gross_tax,
        total_credits=total_credits,
        tax_withheld=tax_withheld,
        net_tax_owing=net_tax_owing,
        bracket_breakdown=bracket_breakdown,
        credits_breakdown=credits_breakdown,
        trace=trace,
    )


def apply_brackets(
    taxable_income: Decimal,
    brackets: list[TaxBracket],
    trace: list[str] | None = None,
) -> list[BracketBreakdown]:
    """Walk the brackets in ``bracket_order`` consuming taxable income.

    A bounded bracket absorbs at most ``max_income - min_income``; the
    unbounded bracket absorbs whatever remains. The walk stops as soon as
    nothing remains, so only touched brackets appear in the breakdown.

    Args:
        taxable_income: Income to distribute, already floored at zero.
        brackets: Brackets in any order.
        trace: Optional list that receives one line per touched bracket.

    Returns:
        Breakdown entries whose ``taxable_in_bracket`` values sum to
        ``taxable_income`` whenever the brackets cover it.
    """
    if trace is None:
        trace = []
    trace.append("Calculating progressive tax through brackets:")

    remaining = to_money(taxable_income)
    breakdown: list[BracketBreakdown] = []

    for bracket in sorted(brackets, key=lambda b: b.bracket_order):
        if remaining <= 0:
            break

        bracket_min = to_money(bracket.min_income)
        bracket_max = None if bracket.max_income is None else to_money(bracket.max_income)
        rate = Decimal(bracket.rate)

        if bracket_max is None:
            in_bracket = remaining
        else:
            in_bracket = min(remaining, bracket_max - bracket_min)

        tax = (in_bracket * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
        remaining -= in_bracket

        upper = "unlimited" if bracket_max is None else str(bracket_max)
        trace.append(
            f"  Bracket {bracket.bracket_order} ({bracket_min}-{upper} "
            f"@ {format_rate(rate)}%): {in_bracket} taxable = {tax} tax"
        )
        breakdown.append(
            BracketBreakdown(
                bracket_order=bracket.bracket_order,
                min_income=bracket_min,
                max_income=bracket_max,
                rate=rate,
                taxable_in_bracket=in_bracket,
                tax_from_bracket=tax,
            )
        )

    return breakdown


def marginal_rate(breakdown: list[BracketBreakdown] | list[dict[str, Any]]) -> Decimal:
    """Marginal rate as a percentage from either breakdown form.

    Accepts the dataclass entries or their stored dict form so the same rule
    applies to fresh results and persisted runs.
    """
    if not breakdown:
        return ZERO
    last = breakdown[-1]
    if isinstance(last, dict):
        taxable = Decimal(last["taxableInBracket"])
        rate = Decimal(last["rate"])
    else:
        taxable = last.taxable_in_bracket
        rate = last.rate
    if taxable <= 0:
        return ZERO
    return rate_as_percentage(rate)


def build_input_snapshot(filing: TaxFiling) -> dict[str, Any]:
    """Capture the line items a calculation ran against, amounts as strings."""
    return {
        "filingId": str(filing.id),
        "taxYear": filing.tax_year,
        "jurisdiction": filing.jurisdiction,
        "incomeItems": [
            {
                "type": item.income_type.value,
                "amount": str(to_money(item.amount)),
                "taxWithheld": str(to_money(item.tax_withheld)),
            }
            for item in filing.income_items
        ],
        "deductionItems": [
            {
                "type": item.deduction_type.value,
                "amount": str(to_money(item.amount)),
            }
            for item in filing.deduction_items
        ],
        "creditClaims": [
            {
                "type": claim.credit_type,
                "amount": str(to_money(claim.claimed_amount)),
            }
            for claim in filing.credit_claims
        ],
    }


# =============================================================================
# Steps
# =============================================================================


def _total_income(filing: TaxFiling, trace: list[str]) -> Decimal:
    total = sum_money(item.amount for item in filing.income_items)
    trace.append(f"Total income from {len(filing.income_items)} items: {total}")
    for item in filing.income_items:
        trace.append(f"  - {item.income_type.value}: {to_money(item.amount)}")
    return total


def _total_deductions(
    filing: TaxFiling, rule_version: TaxRuleVersion, trace: list[str]
) -> Decimal:
    allowed_amounts: list[Decimal] = []

    for item in filing.deduction_items:
        deduction_type = item.deduction_type.value
        claimed = to_money(item.amount)
        allowed = claimed

        rule = rule_version.find_deduction_rule(deduction_type)
        if rule is not None and rule.max_amount is not None and claimed > rule.max_amount:
            allowed = to_money(rule.max_amount)
            trace.append(f"  - {deduction_type} capped from {claimed} to max {allowed}")
        else:
            trace.append(f"  - {deduction_type}: {allowed}")

        allowed_amounts.append(allowed)

    total = sum_money(allowed_amounts)
    trace.append(
        f"Total deductions from {len(filing.deduction_items)} items: {total}"
    )
    return total


def _apply_credits(
    filing: TaxFiling,
    rule_version: TaxRuleVersion,
    gross_tax: Decimal,
    trace: list[str],
) -> tuple[list[CreditBreakdown], Decimal]:
    trace.append("Calculating tax credits:")

    breakdown: list[CreditBreakdown] = []
    non_refundable = ZERO
    refundable = ZERO

    for claim in filing.credit_claims:
        claimed = to_money(claim.claimed_amount)
        entry = CreditBreakdown(
            credit_type=claim.credit_type,
            claimed_amount=claimed,
            allowed_amount=claimed,
            is_refundable=False,
        )

        # No rule: accept the claim as-is and treat it as non-refundable
        rule = rule_version.find_credit_rule(claim.credit_type)
        if rule is not None:
            entry.is_refundable = bool(rule.is_refundable)
            if rule.max_amount is not None and claimed > rule.max_amount:
                entry.allowed_amount = to_money(rule.max_amount)
                entry.reason = f"Capped to max {entry.allowed_amount}"

        if entry.is_refundable:
            refundable += entry.allowed_amount
        else:
            non_refundable += entry.allowed_amount

        kind = "refundable" if entry.is_refundable else "non-refundable"
        trace.append(
            f"  - {entry.credit_type}: claimed {claimed}, "
            f"allowed {entry.allowed_amount} ({kind})"
        )
        breakdown.append(entry)

    usable_non_refundable = min(non_refundable, gross_tax)
    if usable_non_refundable < non_refundable:
        trace.append(
            "Non-refundable credits capped to gross tax: "
            f"{non_refundable} -> {usable_non_refundable}"
        )

    total_credits = to_money(usable_non_refundable + refundable)
    trace.append(
        f"Total credits: {total_credits} (non-refundable: {usable_non_refundable}, "
        f"refundable: {refundable})"
    )
    return breakdown, total_credits


__all__ = [
    "BracketBreakdown",
    "CreditBreakdown",
    "CalculationResult",
    "calculate",
    "apply_brackets",
    "marginal_rate",
    "build_input_snapshot",
]
