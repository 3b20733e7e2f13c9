"""
Ledger Core - Monetary Helpers

All amounts are Decimal quantized to 2 places (ROUND_HALF_UP).
FX rates are carried to at least 4 places.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from ledger_core.config import settings

TWO_PLACES = Decimal("0.01")
RATE_PLACES = Decimal("0.000001")
ZERO = Decimal("0")


def quantize(amount) -> Decimal:
    """Round an amount to 2 decimal places, half-up."""
    return Decimal(str(amount)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def quantize_rate(rate) -> Decimal:
    return Decimal(str(rate)).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


def money_sum(amounts: Iterable[Decimal]) -> Decimal:
    return quantize(sum(amounts, ZERO))


def within_tolerance(a: Decimal, b: Decimal, tolerance: Optional[Decimal] = None) -> bool:
    """Compare two amounts using the configured epsilon instead of exact equality."""
    if tolerance is None:
        tolerance = settings.balance_tolerance
    return abs(a - b) <= tolerance


def is_iso_currency(code: Optional[str]) -> bool:
    return bool(code) and len(code) == 3 and code.isalpha() and code.isupper()
