"""Money formatting helpers.

Amounts travel as integer minor units (cents) everywhere; these helpers are the
only place that turns them into display strings, so splits, settlements and
balance explanations render identically.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_DOLLAR_CURRENCIES = {"USD", "CAD", "AUD"}
_SYMBOLS = {"EUR": "€", "GBP": "£"}


def cents_to_decimal(amount_cents: int) -> Decimal:
    return (Decimal(amount_cents) / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_amount(amount_cents: int, currency_code: str = "USD") -> str:
    code = currency_code.upper()
    value = cents_to_decimal(amount_cents)
    if code in _DOLLAR_CURRENCIES:
        return f"${value}"
    if code in _SYMBOLS:
        return f"{_SYMBOLS[code]}{value}"
    if code == "JPY":
        return f"¥{value.quantize(Decimal('1'), rounding=ROUND_HALF_UP)}"
    return f"{code} {value}"
