"""SQLAlchemy models for the tax filing service."""

from src.models.audit import AuditAction, AuditTrail
from src.models.base import Base
from src.models.calculation import CalculationRun, SubmissionRecord
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
from src.models.rule import (
    DeductionRule,
    RuleStatus,
    TaxBracket,
    TaxCreditRule,
    TaxRuleVersion,
)

__all__ = [
    "Base",
    "TaxRuleVersion",
    "TaxBracket",
    "TaxCreditRule",
    "DeductionRule",
    "RuleStatus",
    "TaxFiling",
    "IncomeItem",
    "DeductionItem",
    "CreditClaim",
    "FilingStatus",
    "FilingType",
    "IncomeType",
    "DeductionType",
    "CalculationRun",
    "SubmissionRecord",
    "AuditTrail",
    "AuditAction",
]
