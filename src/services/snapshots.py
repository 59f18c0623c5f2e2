"""JSON-safe views of entities for audit events and submission snapshots.

Amounts are rendered as strings with 2 decimal places and identifiers as
strings, so every document survives a round trip through a JSON column.
"""

from datetime import date, datetime
from typing import Any

from src.models.calculation import CalculationRun
from src.models.filing import CreditClaim, DeductionItem, IncomeItem, TaxFiling
from src.models.rule import DeductionRule, TaxBracket, TaxCreditRule, TaxRuleVersion
from src.tax.money import to_money


def _money(value: Any) -> str | None:
    return None if value is None else str(to_money(value))


def _iso(value: date | datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def _id(value: Any) -> str | None:
    return None if value is None else str(value)


def rule_version_values(rule_version: TaxRuleVersion) -> dict[str, Any]:
    return {
        "name": rule_version.name,
        "jurisdiction": rule_version.jurisdiction,
        "taxYear": rule_version.tax_year,
        "version": rule_version.version,
        "status": rule_version.status.value,
        "effectiveFrom": _iso(rule_version.effective_from),
        "effectiveTo": _iso(rule_version.effective_to),
        "bracketCount": len(rule_version.brackets),
        "creditRuleCount": len(rule_version.credit_rules),
        "deductionRuleCount": len(rule_version.deduction_rules),
    }


def bracket_values(bracket: TaxBracket) -> dict[str, Any]:
    return {
        "id": _id(bracket.id),
        "bracketOrder": bracket.bracket_order,
        "minIncome": _money(bracket.min_income),
        "maxIncome": _money(bracket.max_income),
        "rate": str(bracket.rate),
    }


def credit_rule_values(rule: TaxCreditRule) -> dict[str, Any]:
    return {
        "id": _id(rule.id),
        "creditType": rule.credit_type,
        "name": rule.name,
        "amount": _money(rule.amount),
        "isRefundable": bool(rule.is_refundable),
        "maxAmount": _money(rule.max_amount),
    }


def deduction_rule_values(rule: DeductionRule) -> dict[str, Any]:
    return {
        "id": _id(rule.id),
        "deductionType": rule.deduction_type,
        "name": rule.name,
        "maxAmount": _money(rule.max_amount),
        "maxPercentage": None if rule.max_percentage is None else str(rule.max_percentage),
    }


def filing_values(filing: TaxFiling) -> dict[str, Any]:
    return {
        "userId": _id(filing.user_id),
        "taxYear": filing.tax_year,
        "jurisdiction": filing.jurisdiction,
        "status": filing.status.value,
        "filingType": filing.filing_type.value,
        "originalFilingId": _id(filing.original_filing_id),
        "incomeItemCount": len(filing.income_items),
        "deductionItemCount": len(filing.deduction_items),
        "creditClaimCount": len(filing.credit_claims),
    }


def income_item_values(item: IncomeItem) -> dict[str, Any]:
    return {
        "id": _id(item.id),
        "type": item.income_type.value,
        "source": item.source,
        "amount": _money(item.amount),
        "taxWithheld": _money(item.tax_withheld),
    }


def deduction_item_values(item: DeductionItem) -> dict[str, Any]:
    return {
        "id": _id(item.id),
        "type": item.deduction_type.value,
        "description": item.description,
        "amount": _money(item.amount),
    }


def credit_claim_values(claim: CreditClaim) -> dict[str, Any]:
    return {
        "id": _id(claim.id),
        "type": claim.credit_type,
        "amount": _money(claim.claimed_amount),
    }


def submission_snapshot(
    filing: TaxFiling, run: CalculationRun, snapshot_at: datetime
) -> dict[str, Any]:
    """Point-in-time copy of a filing and the calculation it was submitted with."""
    return {
        "filingId": _id(filing.id),
        "userId": _id(filing.user_id),
        "taxYear": filing.tax_year,
        "jurisdiction": filing.jurisdiction,
        "filingType": filing.filing_type.value,
        "originalFilingId": _id(filing.original_filing_id),
        "snapshotAt": _iso(snapshot_at),
        "incomeItems": [income_item_values(item) for item in filing.income_items],
        "deductionItems": [deduction_item_values(item) for item in filing.deduction_items],
        "creditClaims": [credit_claim_values(claim) for claim in filing.credit_claims],
        "calculation": {
            "calculationRunId": _id(run.id),
            "ruleVersionId": _id(run.rule_version_id),
            "ruleVersion": run.rule_version.version,
            "totalIncome": _money(run.total_income),
            "totalDeductions": _money(run.total_deductions),
            "taxableIncome": _money(run.taxable_income),
            "grossTax": _money(run.gross_tax),
            "totalCredits": _money(run.total_credits),
            "taxWithheld": _money(run.tax_withheld),
            "netTaxOwing": _money(run.net_tax_owing),
            "isRefund": run.is_refund,
            "bracketBreakdown": run.bracket_breakdown,
            "creditsBreakdown": run.credits_breakdown,
        },
    }
