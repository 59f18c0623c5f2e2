"""Tax calculation engine, money helpers and built-in rule presets."""

from src.tax.calculator import (
    BracketBreakdown,
    CalculationResult,
    CreditBreakdown,
    apply_brackets,
    build_input_snapshot,
    calculate,
    marginal_rate,
)
from src.tax.year_config import RULE_PRESETS, RulePreset, get_rule_preset

__all__ = [
    "BracketBreakdown",
    "CalculationResult",
    "CreditBreakdown",
    "apply_brackets",
    "build_input_snapshot",
    "calculate",
    "marginal_rate",
    "RULE_PRESETS",
    "RulePreset",
    "get_rule_preset",
]
