"""
Money conversion at the API boundary.

The ledger stores and sums integer cents. Decimals from requests are converted
here; anything finer than a cent is rejected rather than rounded.
"""
from decimal import Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")


def to_cents(amount: Union[Decimal, int, str]) -> int:
    """Convert a decimal amount with at most two fractional digits to cents."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"'{amount}' is not a valid amount")
    if not value.is_finite():
        raise ValueError(f"'{amount}' is not a valid amount")
    if value.quantize(CENT) != value:
        raise ValueError(f"'{amount}' has more than two decimal places")
    return int(value * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)
