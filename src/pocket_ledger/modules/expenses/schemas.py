from __future__ import annotations

import uuid
import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field


class ExpenseFields(BaseModel):
    amount: Decimal = Field(ge=Decimal("0.01"), max_digits=12, decimal_places=2)
    description: str | None = Field(default=None, max_length=1000)
    category: str | None = Field(default=None, max_length=255)
    date: dt.date
    original_amount: Decimal | None = Field(default=None, gt=0)
    original_currency: str | None = Field(default=None, min_length=3, max_length=3)
    exchange_rate: Decimal | None = Field(default=None, gt=0)


class ExpenseOut(BaseModel):
    id: uuid.UUID
    amount: Decimal
    original_amount: Decimal | None
    original_currency: str | None
    exchange_rate: Decimal | None
    description: str | None
    category: str | None
    date: dt.date
    receipt_path: str | None
    created_at: dt.datetime
    updated_at: dt.datetime


class ExpenseSummary(BaseModel):
    total: Decimal
    count: int
    this_month: Decimal


class ExpenseListOut(BaseModel):
    expenses: list[ExpenseOut]
    summary: ExpenseSummary
