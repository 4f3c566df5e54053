"""
Money helpers.

Prices travel as text at the edges (form fields, JSON) and as integer cents
everywhere else. Nothing in the application compares floats.
"""

from decimal import Context, Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from errors import ValidationError

Number = Union[str, int, float, Decimal]

_CENT = Decimal("0.01")
ZERO = "0.00"

# largest amount a MongoDB int64 can hold
MAX_CENTS = 2 ** 63 - 1

# wide enough to quantize anything up to MAX_CENTS and beyond without traps
_CONTEXT = Context(prec=64, rounding=ROUND_HALF_UP)


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, bool):
        raise InvalidOperation("booleans are not amounts")
    if isinstance(value, float):
        # repr() keeps the shortest round-tripping form, e.g. 0.1 -> "0.1"
        value = repr(value)
    if isinstance(value, str):
        value = value.strip()
    amount = Decimal(value)
    if not amount.is_finite():
        raise InvalidOperation(f"non-finite amount {value!r}")
    return amount


def format_money(value) -> str:
    """Canonical two-decimal string. Garbage in gives "0.00", never an error."""
    try:
        amount = _to_decimal(value).quantize(_CENT, context=_CONTEXT)
    except (ArithmeticError, TypeError, ValueError):
        return ZERO
    return str(amount)


def to_cents(value: Number) -> int:
    """Parse an amount into integer cents, raising ValidationError on bad or out-of-range input."""
    try:
        cents = int(_CONTEXT.multiply(_to_decimal(value), 100).quantize(Decimal(1), context=_CONTEXT))
    except (ArithmeticError, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}", field="amount")
    if abs(cents) > MAX_CENTS:
        raise ValidationError(f"Amount out of range: {value!r}", field="amount")
    return cents


def from_cents(cents: int) -> str:
    return str((Decimal(cents) / 100).quantize(_CENT, context=_CONTEXT))


def as_cents(value) -> int:
    """Integer cents pass through (range-checked); anything else goes through ``to_cents``."""
    if isinstance(value, int) and not isinstance(value, bool):
        if abs(value) > MAX_CENTS:
            raise ValidationError(f"Amount out of range: {value!r}", field="amount")
        return value
    return to_cents(value)
