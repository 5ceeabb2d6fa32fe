from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import Date, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pocket_ledger.core.models import Base, OwnedByUser, Timestamped, UUIDPrimaryKey


class Expense(UUIDPrimaryKey, OwnedByUser, Timestamped, Base):
    __tablename__ = "expenses_expense"

    # Always EUR; the original_* columns keep what was on the receipt.
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    original_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    original_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 6), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date: Mapped[dt.date] = mapped_column(Date, index=True)
    receipt_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    user = relationship("User")
