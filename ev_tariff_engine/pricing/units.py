from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from ..config import MONEY_QUANTUM

_MICROS_PER_MINUTE = Decimal(60 * 1_000_000)


def round_money(amount: Decimal) -> Decimal:
    """Round half-up to cents: 0.005 -> 0.01, -0.005 -> -0.01."""
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def micros_between(start: datetime, end: datetime) -> int:
    # Integer microseconds keep slice durations exact; total_seconds() is a float.
    return (end - start) // timedelta(microseconds=1)


def micros_to_minutes(micros: int) -> Decimal:
    return Decimal(micros) / _MICROS_PER_MINUTE


def tax_on(amount: Decimal, tax_percentage: Decimal) -> Decimal:
    return round_money(amount * tax_percentage / Decimal(100))
