from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from .errors import ValidationError

MINOR_UNITS_PER_MAJOR = 100


def to_minor_units(amount: Union[Decimal, int, float, str]) -> int:
    """Convert a major-unit amount (e.g. naira) to minor units (kobo), rounding half up."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Amount must be a positive finite number, got {amount!r}")
    minor = int((value * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if minor <= 0:
        raise ValidationError(f"Amount {amount!r} is below the smallest currency unit")
    return minor


def to_major_units(amount_minor: int) -> Decimal:
    return (Decimal(amount_minor) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))
