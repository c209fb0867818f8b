"""Fixed-rate conversion into the canonical accounting currency (EUR)."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from expenseflow.common.exceptions import UnsupportedCurrencyException

SUPPORTED_CURRENCIES: tuple[str, ...] = ("EUR", "LEI", "USD")

CANONICAL_CURRENCY = "EUR"

# Multiplier from each supported currency into EUR
EUR_CONVERSION_RATES: dict[str, Decimal] = {
    "EUR": Decimal("1"),
    "LEI": Decimal("0.2"),
    "USD": Decimal("0.92"),
}

_CENTS = Decimal("0.01")


def is_supported_currency(currency: str) -> bool:
    return currency in EUR_CONVERSION_RATES


def ensure_supported_currency(currency: str) -> str:
    """Return *currency* unchanged or raise ``UnsupportedCurrencyException``."""
    if not is_supported_currency(currency):
        raise UnsupportedCurrencyException(currency, SUPPORTED_CURRENCIES)
    return currency


def to_canonical(amount: Union[Decimal, int, float, str], currency: str) -> Decimal:
    """Convert *amount* in *currency* to EUR, rounded half-up to cents."""
    ensure_supported_currency(currency)
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return (value * EUR_CONVERSION_RATES[currency]).quantize(_CENTS, rounding=ROUND_HALF_UP)
