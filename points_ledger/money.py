"""
Point amounts are stored as integer hundredths ("cents") and exposed as
two-place Decimals.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

from .errors import ValidationError

CENT = Decimal("0.01")
# Largest magnitude accepted for a single amount, in cents
MAX_AMOUNT_CENTS = 10 ** 15 - 1


def to_cents(amount: Union[Decimal, int, str], field: str = "amount") -> int:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} is not a valid number: {amount!r}")
    if not value.is_finite():
        raise ValidationError(f"{field} must be finite")
    if abs(value) * 100 > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} is out of range: {amount}")
    if value != value.quantize(CENT):
        raise ValidationError(f"{field} has more than two decimal places: {amount}")
    return int(value * 100)


def from_cents(cents: Optional[int]) -> Optional[Decimal]:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(CENT)


def scale_cents(cents: int, factor: Decimal) -> int:
    return int((Decimal(cents) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)
