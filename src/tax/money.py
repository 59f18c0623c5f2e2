"""Decimal helpers shared by the calculator, services and API schemas.

Monetary values are quantized to cents with ROUND_HALF_UP at every
arithmetic boundary. Floats are never accepted.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")
RATIO = Decimal("0.0001")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: Decimal | int | str | None) -> Decimal:
    """Quantize a value to 2 decimal places (None counts as zero).

    Example:
        >>> to_money(Decimal("10.005"))
        Decimal('10.01')
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        raise TypeError("Monetary values must not be floats")
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Decimal | None]) -> Decimal:
    """Sum monetary values and quantize the total."""
    return to_money(sum((to_money(v) for v in values), ZERO))


def effective_rate(gross_tax: Decimal, total_income: Decimal) -> Decimal:
    """Gross tax as a percentage of total income.

    The ratio is taken at 4 places before scaling, so 9550 / 60000 gives
    0.1592 and then 15.92. Zero income yields 0.00.
    """
    if total_income <= 0:
        return ZERO
    ratio = (gross_tax / total_income).quantize(RATIO, rounding=ROUND_HALF_UP)
    return to_money(ratio * HUNDRED)


def rate_as_percentage(rate: Decimal) -> Decimal:
    """Convert a 0-1 rate to a percentage with 2 places (0.205 -> 20.50)."""
    return to_money(rate * HUNDRED)


def format_rate(rate: Decimal) -> str:
    """Render a 0-1 rate as a compact percentage string (0.2050 -> "20.5")."""
    return format((rate * HUNDRED).normalize(), "f")
