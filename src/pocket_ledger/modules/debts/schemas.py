from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from pocket_ledger.modules.debts.models import DebtType


def _not_in_past(value: dt.date | None) -> dt.date | None:
    if value is not None and value < dt.date.today():
        raise ValueError("The due date must be today or later.")
    return value


class DebtCreateIn(BaseModel):
    debtor_name: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(ge=Decimal("0.01"), max_digits=12, decimal_places=2)
    type: DebtType
    description: str | None = Field(default=None, max_length=1000)
    due_date: dt.date | None = None
    is_paid: bool = False

    @field_validator("due_date")
    @classmethod
    def check_due_date(cls, value: dt.date | None) -> dt.date | None:
        return _not_in_past(value)


class DebtUpdateIn(BaseModel):
    debtor_name: str | None = Field(default=None, min_length=1, max_length=255)
    amount: Decimal | None = Field(default=None, ge=Decimal("0.01"), max_digits=12, decimal_places=2)
    type: DebtType | None = None
    description: str | None = Field(default=None, max_length=1000)
    due_date: dt.date | None = None
    is_paid: bool | None = None

    @field_validator("due_date")
    @classmethod
    def check_due_date(cls, value: dt.date | None) -> dt.date | None:
        return _not_in_past(value)


class DebtOut(BaseModel):
    id: uuid.UUID
    debtor_name: str
    amount: Decimal
    type: DebtType
    description: str | None
    due_date: dt.date | None
    is_paid: bool
    total_paid: Decimal
    remaining_balance: Decimal
    created_at: dt.datetime
    updated_at: dt.datetime


class DebtSummary(BaseModel):
    total_owed_to_me: Decimal
    total_i_owe: Decimal


class DebtListOut(BaseModel):
    debts: list[DebtOut]
    summary: DebtSummary


class PaymentCreateIn(BaseModel):
    amount: Decimal = Field(ge=Decimal("0.01"), max_digits=12, decimal_places=2)
    payment_date: dt.date
    notes: str | None = Field(default=None, max_length=1000)


class PaymentUpdateIn(BaseModel):
    amount: Decimal | None = Field(default=None, ge=Decimal("0.01"), max_digits=12, decimal_places=2)
    payment_date: dt.date | None = None
    notes: str | None = Field(default=None, max_length=1000)


class PaymentOut(BaseModel):
    id: uuid.UUID
    debt_id: uuid.UUID
    amount: Decimal
    payment_date: dt.date
    notes: str | None
    created_at: dt.datetime
    updated_at: dt.datetime


class PaymentSummary(BaseModel):
    total_paid: Decimal
    remaining_balance: Decimal
    payment_count: int


class PaymentListOut(BaseModel):
    payments: list[PaymentOut]
    summary: PaymentSummary
