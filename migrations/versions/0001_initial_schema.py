"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:12:44.318205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

rule_status = sa.Enum("DRAFT", "ACTIVE", "DEPRECATED", name="rule_status")
filing_status = sa.Enum("DRAFT", "READY", "SUBMITTED", name="filing_status")
filing_type = sa.Enum("ORIGINAL", "AMENDMENT", name="filing_type")
income_type = sa.Enum(
    "EMPLOYMENT",
    "SELF_EMPLOYMENT",
    "INVESTMENT",
    "RENTAL",
    "CAPITAL_GAINS",
    "PENSION",
    "EI_BENEFITS",
    "OTHER",
    name="income_type",
)
deduction_type = sa.Enum(
    "RRSP",
    "UNION_DUES",
    "CHILDCARE",
    "MOVING",
    "CHARITABLE",
    "MEDICAL",
    "STUDENT_LOAN_INTEREST",
    "HOME_OFFICE",
    "OTHER",
    name="deduction_type",
)
audit_action = sa.Enum(
    "CREATE",
    "UPDATE",
    "DELETE",
    "STATUS_CHANGE",
    "SUBMISSION",
    "CALCULATION",
    name="audit_action",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create rule version, filing, calculation, submission and audit tables."""
    op.create_table(
        "tax_rule_versions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("jurisdiction", sa.String(length=50), nullable=False),
        sa.Column("tax_year", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("status", rule_status, nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "jurisdiction",
            "tax_year",
            "version",
            name="uq_tax_rule_versions_jurisdiction_year_version",
        ),
    )
    op.create_index(
        "ix_tax_rule_versions_jurisdiction_year",
        "tax_rule_versions",
        ["jurisdiction", "tax_year"],
    )
    # At most one ACTIVE version per (jurisdiction, tax_year)
    op.create_index(
        "uq_tax_rule_versions_one_active",
        "tax_rule_versions",
        ["jurisdiction", "tax_year"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "tax_brackets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("rule_version_id", sa.Uuid(), nullable=False),
        sa.Column("min_income", sa.Numeric(15, 2), nullable=False),
        sa.Column("max_income", sa.Numeric(15, 2), nullable=True),
        sa.Column("rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("bracket_order", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["rule_version_id"], ["tax_rule_versions.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "rule_version_id", "bracket_order", name="uq_tax_brackets_rule_version_order"
        ),
        sa.CheckConstraint(
            "max_income IS NULL OR max_income > min_income",
            name="ck_tax_brackets_income_range",
        ),
        sa.CheckConstraint("rate >= 0 AND rate <= 1", name="ck_tax_brackets_rate_range"),
        sa.CheckConstraint("min_income >= 0", name="ck_tax_brackets_min_income"),
    )

    op.create_table(
        "tax_credit_rules",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("rule_version_id", sa.Uuid(), nullable=False),
        sa.Column("credit_type", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("is_refundable", sa.Boolean(), nullable=False),
        sa.Column("eligibility_rules", postgresql.JSONB(), nullable=True),
        sa.Column("max_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("phase_out_start", sa.Numeric(15, 2), nullable=True),
        sa.Column("phase_out_rate", sa.Numeric(5, 4), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["rule_version_id"], ["tax_rule_versions.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_tax_credit_rules_credit_type", "tax_credit_rules", ["credit_type"]
    )

    op.create_table(
        "deduction_rules",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("rule_version_id", sa.Uuid(), nullable=False),
        sa.Column("deduction_type", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("max_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("max_percentage", sa.Numeric(5, 4), nullable=True),
        sa.Column("eligibility_rules", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["rule_version_id"], ["tax_rule_versions.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_deduction_rules_deduction_type", "deduction_rules", ["deduction_type"]
    )

    op.create_table(
        "tax_filings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("tax_year", sa.Integer(), nullable=False),
        sa.Column("jurisdiction", sa.String(length=50), nullable=False),
        sa.Column("status", filing_status, nullable=False),
        sa.Column("filing_type", filing_type, nullable=False),
        sa.Column("original_filing_id", sa.Uuid(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["original_filing_id"], ["tax_filings.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tax_filings_user_id", "tax_filings", ["user_id"])
    op.create_index("ix_tax_filings_status", "tax_filings", ["status"])
    # One ORIGINAL per (user, tax_year, jurisdiction); amendments are unrestricted
    op.create_index(
        "uq_tax_filings_one_original",
        "tax_filings",
        ["user_id", "tax_year", "jurisdiction"],
        unique=True,
        postgresql_where=sa.text("filing_type = 'ORIGINAL'"),
    )

    op.create_table(
        "income_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("filing_id", sa.Uuid(), nullable=False),
        sa.Column("income_type", income_type, nullable=False),
        sa.Column("source", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("tax_withheld", sa.Numeric(15, 2), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["filing_id"], ["tax_filings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount >= 0", name="ck_income_items_amount"),
        sa.CheckConstraint("tax_withheld >= 0", name="ck_income_items_tax_withheld"),
    )
    op.create_index("ix_income_items_filing_id", "income_items", ["filing_id"])

    op.create_table(
        "deduction_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("filing_id", sa.Uuid(), nullable=False),
        sa.Column("deduction_type", deduction_type, nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["filing_id"], ["tax_filings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount >= 0", name="ck_deduction_items_amount"),
    )
    op.create_index("ix_deduction_items_filing_id", "deduction_items", ["filing_id"])

    op.create_table(
        "credit_claims",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("filing_id", sa.Uuid(), nullable=False),
        sa.Column("credit_type", sa.String(length=50), nullable=False),
        sa.Column("claimed_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["filing_id"], ["tax_filings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("claimed_amount >= 0", name="ck_credit_claims_claimed_amount"),
    )
    op.create_index("ix_credit_claims_filing_id", "credit_claims", ["filing_id"])

    op.create_table(
        "calculation_runs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("filing_id", sa.Uuid(), nullable=False),
        sa.Column("rule_version_id", sa.Uuid(), nullable=False),
        sa.Column("total_income", sa.Numeric(15, 2), nullable=False),
        sa.Column("total_deductions", sa.Numeric(15, 2), nullable=False),
        sa.Column("taxable_income", sa.Numeric(15, 2), nullable=False),
        sa.Column("gross_tax", sa.Numeric(15, 2), nullable=False),
        sa.Column("total_credits", sa.Numeric(15, 2), nullable=False),
        sa.Column("tax_withheld", sa.Numeric(15, 2), nullable=False),
        sa.Column("net_tax_owing", sa.Numeric(15, 2), nullable=False),
        sa.Column("bracket_breakdown", postgresql.JSONB(), nullable=False),
        sa.Column("credits_breakdown", postgresql.JSONB(), nullable=False),
        sa.Column("calculation_trace", postgresql.JSONB(), nullable=True),
        sa.Column("input_snapshot", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["filing_id"], ["tax_filings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rule_version_id"], ["tax_rule_versions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_calculation_runs_filing_created",
        "calculation_runs",
        ["filing_id", "created_at"],
    )
    op.create_index(
        "ix_calculation_runs_rule_version_id", "calculation_runs", ["rule_version_id"]
    )

    op.create_table(
        "submission_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("filing_id", sa.Uuid(), nullable=False),
        sa.Column("calculation_run_id", sa.Uuid(), nullable=False),
        sa.Column("confirmation_number", sa.String(length=50), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("submitted_by", sa.Uuid(), nullable=False),
        sa.Column("filing_snapshot", postgresql.JSONB(), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.ForeignKeyConstraint(["filing_id"], ["tax_filings.id"]),
        sa.ForeignKeyConstraint(["calculation_run_id"], ["calculation_runs.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("filing_id", name="uq_submission_records_filing_id"),
        sa.UniqueConstraint(
            "confirmation_number", name="uq_submission_records_confirmation_number"
        ),
    )

    op.create_table(
        "audit_trail",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("action", audit_action, nullable=False),
        sa.Column("actor_id", sa.Uuid(), nullable=True),
        sa.Column("old_values", postgresql.JSONB(), nullable=True),
        sa.Column("new_values", postgresql.JSONB(), nullable=True),
        sa.Column("changed_fields", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_audit_trail_entity",
        "audit_trail",
        ["entity_type", "entity_id", "created_at"],
    )
    op.create_index("ix_audit_trail_actor_id", "audit_trail", ["actor_id"])


def downgrade() -> None:
    """Drop every table and enum type created by this revision."""
    op.drop_table("audit_trail")
    op.drop_table("submission_records")
    op.drop_table("calculation_runs")
    op.drop_table("credit_claims")
    op.drop_table("deduction_items")
    op.drop_table("income_items")
    op.drop_index("uq_tax_filings_one_original", table_name="tax_filings")
    op.drop_table("tax_filings")
    op.drop_table("deduction_rules")
    op.drop_table("tax_credit_rules")
    op.drop_table("tax_brackets")
    op.drop_index("uq_tax_rule_versions_one_active", table_name="tax_rule_versions")
    op.drop_table("tax_rule_versions")

    bind = op.get_bind()
    for enum_type in (
        audit_action,
        deduction_type,
        income_type,
        filing_type,
        filing_status,
        rule_status,
    ):
        enum_type.drop(bind, checkfirst=True)
