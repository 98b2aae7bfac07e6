# Overview: Fixed-point money helpers; every amount that reaches the ledger passes through here.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from .errors import ValidationError


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Upper bound matches Numeric(12, 2)
MAX_AMOUNT = Decimal("9999999999.99")


def to_money(value, *, field: str = "amount") -> Decimal:
    """
    Coerce client or gateway input to a 2-place Decimal.

    Floats are routed through str() so 0.1 stays 0.10 instead of
    0.1000000000000000055511151231257827.
    Booleans, scientific notation and non-finite values are rejected.
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain decimal (scientific notation not allowed)")
        try:
            amount = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite")

    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT}")
    return amount


def to_positive_money(value, *, field: str = "amount") -> Decimal:
    amount = to_money(value, field=field)
    if amount <= ZERO:
        raise ValidationError(f"{field} must be positive")
    return amount


def from_minor_units(cents) -> Decimal:
    """Gateway amounts arrive in minor units (cents)."""
    if isinstance(cents, bool) or not isinstance(cents, int):
        raise ValidationError("Gateway amount must be an integer number of minor units")
    return (Decimal(cents) / 100).quantize(CENT)


def money_sum(amounts: Iterable[Decimal]) -> Decimal:
    return sum((Decimal(a) for a in amounts), ZERO).quantize(CENT)


def money_str(amount) -> str | None:
    if amount is None:
        return None
    return str(Decimal(amount).quantize(CENT))
