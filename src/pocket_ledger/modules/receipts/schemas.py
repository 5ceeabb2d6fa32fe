from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel


class ReceiptAnalysis(BaseModel):
    amount: Decimal
    original_amount: Decimal
    original_currency: str
    exchange_rate: Decimal
    description: str
    category: str
    date: dt.date


class ReceiptAnalysisOut(BaseModel):
    success: bool = True
    data: ReceiptAnalysis


class ReceiptFailureOut(BaseModel):
    success: bool = False
    message: str
    stage: str | None = None
    kind: str | None = None
