from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel


class CurrenciesOut(BaseModel):
    base_currency: str
    supported: list[str]


class ConversionOut(BaseModel):
    amount_base: Decimal
    original_amount: Decimal
    original_currency: str
    exchange_rate: Decimal
    base_currency: str
