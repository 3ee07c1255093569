"""
Fixed-point money helpers.

Amounts are `Decimal` quantized to cents everywhere in the ledger; providers
receive integer minor units. Floats are only accepted at the edges and are
converted through their string form so 10.99 stays 10.99.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from domain.common.exceptions import DomainValidationException


CENT = Decimal("0.01")

# ISO-4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "CLP", "ISK", "UGX"})

MoneyLike = Union[Decimal, int, float, str]


def to_money(value: MoneyLike, *, field: str = "amount") -> Decimal:
    """Convert to a cent-quantized Decimal."""
    if isinstance(value, bool):
        raise DomainValidationException(f"Invalid {field}: {value!r}", field=field)
    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, float):
            amount = Decimal(repr(value))
        else:
            amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise DomainValidationException(f"Invalid {field}: {value!r}", field=field) from exc
    if not amount.is_finite():
        raise DomainValidationException(f"Invalid {field}: {value!r}", field=field)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor(amount: Decimal, currency: str) -> int:
    exponent = 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2
    return int((amount * (Decimal(10) ** exponent)).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor(minor: int, currency: str) -> Decimal:
    exponent = 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2
    return (Decimal(minor) / (Decimal(10) ** exponent)).quantize(CENT)
