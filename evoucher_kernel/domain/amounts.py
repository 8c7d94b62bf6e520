"""
Amounts -- Decimal coercion and currency-unit tolerance.

Responsibility:
    Every monetary value that enters the engine passes through ``to_amount``
    so that domain logic only ever sees ``Decimal`` quantized to the
    currency's minor unit.  Comparisons that must tolerate rounding use
    ``amounts_equal`` with the currency-unit tolerance.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Monetary amounts are Decimal, never float.
    - Float inputs are converted through ``str()`` so that 0.1 stays 0.1.
    - Tolerance is one minor unit (0.01 for PHP/USD).

Failure modes:
    - ValueError on non-numeric input, NaN or infinity.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0")

# One minor currency unit; used for every "equal within rounding" check.
AMOUNT_TOLERANCE = CENT

DEFAULT_CURRENCY = "PHP"


def to_amount(value: Decimal | int | float | str | None) -> Decimal:
    """
    Coerce a form/store value to a Decimal quantized to cents.

    ``None`` and the empty string are treated as zero (an untouched form
    field), matching how line items arrive from the UI.
    """
    if value is None or value == "":
        return ZERO.quantize(CENT)
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        if isinstance(value, float):
            amount = Decimal(str(value))
        else:
            amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a finite monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_amounts(values: Iterable[Decimal]) -> Decimal:
    """Sum Decimals starting from a cent-quantized zero."""
    return sum(values, ZERO.quantize(CENT))


def amounts_equal(
    left: Decimal, right: Decimal, tolerance: Decimal = AMOUNT_TOLERANCE,
) -> bool:
    """True when two amounts differ by no more than ``tolerance``."""
    return abs(left - right) <= tolerance


def safe_ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Ratio guarded against a zero denominator (returns 0, never NaN)."""
    if denominator == ZERO:
        return ZERO
    return numerator / denominator
