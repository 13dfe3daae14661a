"""Financial rounding helpers.

Floats are rounded through their shortest decimal representation, so
2.675 rounds to 2.68 the way a cashier would, not to 2.67 as the binary
value 2.67499999... would under ``round()``.
"""

from decimal import ROUND_HALF_UP, Decimal

_CENTS = Decimal("0.01")
_AUDIT = Decimal("0.0001")


def _quantize(value: float, step: Decimal) -> float:
    return float(Decimal(repr(value)).quantize(step, rounding=ROUND_HALF_UP))


def round2(value: float) -> float:
    """Round to display precision, half away from zero."""
    return _quantize(value, _CENTS)


def round4(value: float) -> float:
    """Round to audit precision, half away from zero."""
    return _quantize(value, _AUDIT)
