from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

BASE_CURRENCY = "EUR"

SUPPORTED_CURRENCIES: tuple[str, ...] = ("GBP", "EUR", "CZK", "USD")

CENTS = Decimal("0.01")
RATE_PRECISION = Decimal("0.000001")


def normalize_currency(raw: str | None) -> str | None:
    """Return the upper-cased code when it is one of the supported currencies."""
    if not isinstance(raw, str):
        return None
    code = raw.strip().upper()
    if code in SUPPORTED_CURRENCIES:
        return code
    return None


def is_supported(code: str | None) -> bool:
    return normalize_currency(code) is not None


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def round_rate(rate: Decimal) -> Decimal:
    return rate.quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)
