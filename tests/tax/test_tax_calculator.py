"""Tests for the progressive tax calculation engine."""

import uuid
from decimal import Decimal

import pytest

from src.models.filing import (
    CreditClaim,
    DeductionItem,
    DeductionType,
    IncomeItem,
    IncomeType,
    TaxFiling,
)
from src.models.rule import DeductionRule, TaxBracket, TaxCreditRule, TaxRuleVersion
from src.tax.calculator import (
    BracketBreakdown,
    apply_brackets,
    build_input_snapshot,
    calculate,
    marginal_rate,
)


def _brackets() -> list[TaxBracket]:
    return [
        TaxBracket(
            bracket_order=1,
            min_income=Decimal("0"),
            max_income=Decimal("50000"),
            rate=Decimal("0.15"),
        ),
        TaxBracket(
            bracket_order=2,
            min_income=Decimal("50000"),
            max_income=Decimal("100000"),
            rate=Decimal("0.205"),
        ),
        TaxBracket(
            bracket_order=3,
            min_income=Decimal("100000"),
            max_income=None,
            rate=Decimal("0.26"),
        ),
    ]


def _rule_version(
    credit_rules: list[TaxCreditRule] | None = None,
    deduction_rules: list[DeductionRule] | None = None,
    brackets: list[TaxBracket] | None = None,
) -> TaxRuleVersion:
    return TaxRuleVersion(
        id=uuid.uuid4(),
        name="CA 2024",
        jurisdiction="CA",
        tax_year=2024,
        version=1,
        brackets=brackets if brackets is not None else _brackets(),
        credit_rules=credit_rules or [],
        deduction_rules=deduction_rules or [],
    )


def _filing(
    incomes: list[tuple[str, str]] | None = None,
    deductions: list[tuple[DeductionType, str]] | None = None,
    claims: list[tuple[str, str]] | None = None,
) -> TaxFiling:
    """Build a transient filing from (amount, withheld), (type, amount) pairs."""
    return TaxFiling(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        tax_year=2024,
        jurisdiction="CA",
        income_items=[
            IncomeItem(
                income_type=IncomeType.EMPLOYMENT,
                amount=Decimal(amount),
                tax_withheld=Decimal(withheld),
            )
            for amount, withheld in incomes or []
        ],
        deduction_items=[
            DeductionItem(deduction_type=deduction_type, amount=Decimal(amount))
            for deduction_type, amount in deductions or []
        ],
        credit_claims=[
            CreditClaim(credit_type=credit_type, claimed_amount=Decimal(amount))
            for credit_type, amount in claims or []
        ],
    )


class TestBrackets:
    """Tests for progressive bracket application."""

    def test_income_spanning_two_brackets(self) -> None:
        result = calculate(_filing(incomes=[("60000", "0")]), _rule_version())

        assert result.gross_tax == Decimal("9550.00")
        assert [b.tax_from_bracket for b in result.bracket_breakdown] == [
            Decimal("7500.00"),
            Decimal("2050.00"),
        ]
        assert result.marginal_tax_rate == Decimal("20.50")

    def test_income_reaching_unbounded_bracket(self) -> None:
        result = calculate(_filing(incomes=[("200000", "0")]), _rule_version())

        assert result.gross_tax == Decimal("43750.00")
        assert result.marginal_tax_rate == Decimal("26.00")
        assert result.bracket_breakdown[-1].max_income is None
        assert result.bracket_breakdown[-1].taxable_in_bracket == Decimal("100000.00")

    def test_bracket_amounts_partition_taxable_income(self) -> None:
        for amount in ["0.01", "49999.99", "50000", "50000.01", "123456.78"]:
            breakdown = apply_brackets(Decimal(amount), _brackets())
            assert sum(b.taxable_in_bracket for b in breakdown) == Decimal(amount)

    def test_bracket_order_not_list_order(self) -> None:
        in_order = apply_brackets(Decimal("75000"), _brackets())
        reversed_input = apply_brackets(Decimal("75000"), list(reversed(_brackets())))

        assert [b.as_dict() for b in in_order] == [b.as_dict() for b in reversed_input]
        assert [b.bracket_order for b in reversed_input] == [1, 2]

    def test_untouched_brackets_are_omitted(self) -> None:
        breakdown = apply_brackets(Decimal("30000"), _brackets())

        assert len(breakdown) == 1
        assert breakdown[0].taxable_in_bracket == Decimal("30000.00")

    def test_zero_income_has_empty_breakdown(self) -> None:
        result = calculate(_filing(), _rule_version())

        assert result.bracket_breakdown == []
        assert result.gross_tax == Decimal("0.00")
        assert result.marginal_tax_rate == Decimal("0.00")
        assert result.effective_tax_rate == Decimal("0.00")

    def test_tax_rounds_half_up_per_bracket(self) -> None:
        brackets = [
            TaxBracket(
                bracket_order=1,
                min_income=Decimal("0"),
                max_income=None,
                rate=Decimal("0.15"),
            )
        ]
        breakdown = apply_brackets(Decimal("0.03"), brackets)

        # 0.03 * 0.15 = 0.0045
        assert breakdown[0].tax_from_bracket == Decimal("0.00")
        breakdown = apply_brackets(Decimal("0.10"), brackets)
        # 0.10 * 0.15 = 0.015
        assert breakdown[0].tax_from_bracket == Decimal("0.02")


class TestDeductions:
    """Tests for deduction capping and taxable income."""

    def test_deductions_exceeding_income_clamp_taxable_to_zero(self) -> None:
        filing = _filing(
            incomes=[("10000", "1000")],
            deductions=[(DeductionType.RRSP, "15000")],
        )

        result = calculate(filing, _rule_version())

        assert result.taxable_income == Decimal("0.00")
        assert result.gross_tax == Decimal("0.00")
        assert result.is_refund is True
        assert result.refund_or_owing_amount == Decimal("1000.00")

    def test_deduction_capped_by_rule(self) -> None:
        rules = [
            DeductionRule(
                deduction_type="rrsp", name="RRSP", max_amount=Decimal("5000")
            )
        ]
        filing = _filing(
            incomes=[("60000", "0")],
            deductions=[(DeductionType.RRSP, "8000"), (DeductionType.UNION_DUES, "700")],
        )

        result = calculate(filing, _rule_version(deduction_rules=rules))

        assert result.total_deductions == Decimal("5700.00")
        assert result.taxable_income == Decimal("54300.00")
        assert any("capped from 8000.00 to max 5000.00" in line for line in result.trace)

    def test_deduction_without_rule_is_taken_in_full(self) -> None:
        filing = _filing(
            incomes=[("60000", "0")],
            deductions=[(DeductionType.MEDICAL, "1234.56")],
        )

        result = calculate(filing, _rule_version())

        assert result.total_deductions == Decimal("1234.56")


class TestCredits:
    """Tests for credit capping and refundability."""

    def test_non_refundable_credit_fully_usable_below_gross_tax(self) -> None:
        rules = [
            TaxCreditRule(
                credit_type="CHILD_TAX_CREDIT",
                name="Child Tax Credit",
                amount=Decimal("2000"),
                max_amount=Decimal("2000"),
                is_refundable=False,
            )
        ]
        filing = _filing(
            incomes=[("60000", "8000")],
            claims=[("CHILD_TAX_CREDIT", "2000")],
        )

        result = calculate(filing, _rule_version(credit_rules=rules))

        assert result.gross_tax == Decimal("9550.00")
        assert result.total_credits == Decimal("2000.00")
        assert result.net_tax_owing == Decimal("-450.00")
        assert result.is_refund is True
        assert result.refund_or_owing_amount == Decimal("450.00")
        assert result.credits_breakdown[0].reason == "Allowed"

    def test_claim_above_rule_max_is_capped(self) -> None:
        rules = [
            TaxCreditRule(
                credit_type="CHILD_TAX_CREDIT",
                name="Child Tax Credit",
                amount=Decimal("2000"),
                max_amount=Decimal("2000"),
            )
        ]
        filing = _filing(
            incomes=[("60000", "0")],
            claims=[("child_tax_credit", "3500")],
        )

        result = calculate(filing, _rule_version(credit_rules=rules))
        entry = result.credits_breakdown[0]

        assert entry.claimed_amount == Decimal("3500.00")
        assert entry.allowed_amount == Decimal("2000.00")
        assert entry.reason == "Capped to max 2000.00"
        assert entry.credit_type == "child_tax_credit"

    def test_non_refundable_pool_capped_at_gross_tax(self) -> None:
        filing = _filing(
            incomes=[("10000", "0")],
            claims=[("DISABILITY", "1000"), ("TUITION", "1000")],
        )

        result = calculate(filing, _rule_version())

        # gross tax 1500, claims 2000 with no rules
        assert result.gross_tax == Decimal("1500.00")
        assert result.total_credits == Decimal("1500.00")
        assert result.net_tax_owing == Decimal("0.00")
        assert sum(c.allowed_amount for c in result.credits_breakdown) == Decimal("2000.00")

    def test_refundable_credit_survives_zero_gross_tax(self) -> None:
        rules = [
            TaxCreditRule(
                credit_type="GST_HST_CREDIT",
                name="GST/HST Credit",
                amount=Decimal("500"),
                max_amount=Decimal("500"),
                is_refundable=True,
            )
        ]
        filing = _filing(claims=[("GST_HST_CREDIT", "400")])

        result = calculate(filing, _rule_version(credit_rules=rules))

        assert result.gross_tax == Decimal("0.00")
        assert result.total_credits == Decimal("400.00")
        assert result.net_tax_owing == Decimal("-400.00")
        assert result.credits_breakdown[0].is_refundable is True

    def test_total_credits_matches_breakdown(self) -> None:
        rules = [
            TaxCreditRule(
                credit_type="GST_HST_CREDIT",
                name="GST/HST Credit",
                amount=Decimal("500"),
                is_refundable=True,
            )
        ]
        filing = _filing(
            incomes=[("40000", "0")],
            claims=[("GST_HST_CREDIT", "300"), ("BASIC_PERSONAL", "1200")],
        )

        result = calculate(filing, _rule_version(credit_rules=rules))

        refundable = sum(c.allowed_amount for c in result.credits_breakdown if c.is_refundable)
        non_refundable = sum(
            c.allowed_amount for c in result.credits_breakdown if not c.is_refundable
        )
        assert result.total_credits == min(non_refundable, result.gross_tax) + refundable


class TestResult:
    """Tests for the derived result fields and stored forms."""

    def test_net_tax_owing_identity(self) -> None:
        filing = _filing(
            incomes=[("45000", "5000"), ("20000", "1500")],
            deductions=[(DeductionType.CHILDCARE, "3000")],
            claims=[("TUITION", "600")],
        )

        result = calculate(filing, _rule_version())

        assert result.total_income == Decimal("65000.00")
        assert result.tax_withheld == Decimal("6500.00")
        assert result.net_tax_owing == (
            result.gross_tax - result.total_credits - result.tax_withheld
        )

    def test_effective_rate_rounds_ratio_first(self) -> None:
        result = calculate(_filing(incomes=[("60000", "0")]), _rule_version())

        assert result.effective_tax_rate == Decimal("15.92")

    def test_trace_is_ordered_and_numbered(self) -> None:
        result = calculate(_filing(incomes=[("60000", "0")]), _rule_version())
        entries = result.trace_entries()

        assert entries[0] == {
            "step": 1,
            "message": "Starting calculation for CA 2024 using rule version 1",
        }
        assert [e["step"] for e in entries] == list(range(1, len(entries) + 1))
        assert "Bracket 2 (50000.00-100000.00 @ 20.5%): 10000.00 taxable = 2050.00 tax" in (
            result.trace[7]
        )
        assert result.trace[-1].startswith("Net tax owing: 9550.00 (gross)")

    def test_calculation_is_deterministic(self) -> None:
        filing = _filing(incomes=[("87654.32", "1000")], claims=[("TUITION", "250")])
        rule_version = _rule_version()

        first = calculate(filing, rule_version)
        second = calculate(filing, rule_version)

        assert first == second

    def test_item_order_does_not_change_totals(self) -> None:
        rule_version = _rule_version(
            credit_rules=[
                TaxCreditRule(
                    credit_type="GST_HST_CREDIT",
                    name="GST/HST Credit",
                    amount=Decimal("500"),
                    is_refundable=True,
                )
            ],
            deduction_rules=[
                DeductionRule(deduction_type="RRSP", name="RRSP", max_amount=Decimal("2000"))
            ],
        )
        incomes = [("12000", "500"), ("8000", "300"), ("5000", "200")]
        deductions = [(DeductionType.RRSP, "3000"), (DeductionType.UNION_DUES, "500")]
        # Non-refundable claims exceed gross tax so the pool cap applies
        claims = [
            ("TUITION", "2000"),
            ("GST_HST_CREDIT", "300"),
            ("DISABILITY", "1500"),
            ("CHILD_CARE", "1000"),
        ]

        forward = calculate(_filing(incomes, deductions, claims), rule_version)
        backward = calculate(
            _filing(incomes[::-1], deductions[::-1], claims[::-1]), rule_version
        )
        shuffled = calculate(
            _filing(
                [incomes[1], incomes[2], incomes[0]],
                deductions[::-1],
                [claims[2], claims[0], claims[3], claims[1]],
            ),
            rule_version,
        )

        assert forward.gross_tax == Decimal("3375.00")
        assert forward.total_credits == Decimal("3675.00")
        assert forward.net_tax_owing == Decimal("-1300.00")
        for other in (backward, shuffled):
            assert other.total_income == forward.total_income
            assert other.total_deductions == forward.total_deductions
            assert other.taxable_income == forward.taxable_income
            assert other.gross_tax == forward.gross_tax
            assert other.total_credits == forward.total_credits
            assert other.tax_withheld == forward.tax_withheld
            assert other.net_tax_owing == forward.net_tax_owing

    def test_breakdown_dicts_use_string_amounts(self) -> None:
        result = calculate(_filing(incomes=[("60000", "0")]), _rule_version())

        assert result.bracket_breakdown[1].as_dict() == {
            "bracketOrder": 2,
            "minIncome": "50000.00",
            "maxIncome": "100000.00",
            "rate": "0.205",
            "taxableInBracket": "10000.00",
            "taxFromBracket": "2050.00",
        }

    def test_marginal_rate_from_stored_breakdown(self) -> None:
        stored = [
            {"rate": "0.15", "taxableInBracket": "50000.00"},
            {"rate": "0.205", "taxableInBracket": "10000.00"},
        ]

        assert marginal_rate(stored) == Decimal("20.50")
        assert marginal_rate([]) == Decimal("0.00")

    def test_marginal_rate_ignores_empty_last_bracket(self) -> None:
        entry = BracketBreakdown(
            bracket_order=1,
            min_income=Decimal("0"),
            max_income=None,
            rate=Decimal("0.15"),
            taxable_in_bracket=Decimal("0.00"),
            tax_from_bracket=Decimal("0.00"),
        )

        assert marginal_rate([entry]) == Decimal("0.00")

    def test_input_snapshot_captures_items(self) -> None:
        filing = _filing(
            incomes=[("60000", "9000")],
            deductions=[(DeductionType.RRSP, "5000")],
            claims=[("TUITION", "250.5")],
        )

        snapshot = build_input_snapshot(filing)

        assert snapshot["incomeItems"] == [
            {"type": "EMPLOYMENT", "amount": "60000.00", "taxWithheld": "9000.00"}
        ]
        assert snapshot["deductionItems"] == [{"type": "RRSP", "amount": "5000.00"}]
        assert snapshot["creditClaims"] == [{"type": "TUITION", "amount": "250.50"}]


def test_float_amounts_are_rejected() -> None:
    filing = _filing()
    filing.income_items.append(
        IncomeItem(income_type=IncomeType.EMPLOYMENT, amount=100.5, tax_withheld=Decimal("0"))
    )

    with pytest.raises(TypeError):
        calculate(filing, _rule_version())
