"""
Fixed-point money arithmetic.

All amounts are Decimal with two fractional digits (NUMERIC(12,2) in Postgres).
Rounding happens in exactly two places: after a line item's quantity * price,
and after tax computation. Everything else is exact addition/subtraction.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

CENT = Decimal("0.01")
QUANTITY_STEP = Decimal("0.0001")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """
    Coerce a value to a two-place Decimal.

    Floats go through str() first so 0.1 becomes Decimal("0.10"), not the
    binary expansion. None becomes 0.00.
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_quantity(value: Decimal | int | float | str) -> Decimal:
    """Coerce a quantity to the four places a line item row stores."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def line_amount(quantity: Decimal | int | float | str, unit_price: Decimal | int | float | str) -> Decimal:
    """Line item amount: quantity * unit_price, rounded to cents."""
    qty = Decimal(str(quantity)) if isinstance(quantity, float) else Decimal(quantity)
    price = Decimal(str(unit_price)) if isinstance(unit_price, float) else Decimal(unit_price)
    return (qty * price).quantize(CENT, rounding=ROUND_HALF_UP)


def tax_amount(subtotal: Decimal, tax_rate: Decimal | int | float | str) -> Decimal:
    """Tax on a subtotal, tax_rate is a percentage (8 = 8%)."""
    rate = Decimal(str(tax_rate)) if isinstance(tax_rate, float) else Decimal(tax_rate)
    return (Decimal(subtotal) * rate / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Decimal]) -> Decimal:
    return sum((to_money(v) for v in values), ZERO)


def to_cents(amount: Decimal) -> int:
    """Convert a money amount to integer minor units for the payment provider."""
    return int((to_money(amount) * HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))


def format_usd(amount: Decimal) -> str:
    """Render an amount for human-readable messages, e.g. $1,234.50."""
    value = to_money(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"
