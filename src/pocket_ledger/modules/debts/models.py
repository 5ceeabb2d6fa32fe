from __future__ import annotations

import datetime as dt
import enum
import uuid
from decimal import Decimal

from sqlalchemy import Boolean, Date, Enum, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pocket_ledger.core.models import Base, OwnedByUser, Timestamped, UUIDPrimaryKey


class DebtType(str, enum.Enum):
    OWED_TO_ME = "owed_to_me"
    I_OWE = "i_owe"


class Debt(UUIDPrimaryKey, OwnedByUser, Timestamped, Base):
    __tablename__ = "debts_debt"

    debtor_name: Mapped[str] = mapped_column(String(255))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    type: Mapped[DebtType] = mapped_column(Enum(DebtType, native_enum=False), index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)

    user = relationship("User")
    payments: Mapped[list[Payment]] = relationship(
        back_populates="debt",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Payment.payment_date.desc()",
    )

    @property
    def total_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0.00"))

    @property
    def remaining_balance(self) -> Decimal:
        return self.amount - self.total_paid


class Payment(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "debts_payment"

    debt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("debts_debt.id", ondelete="CASCADE"), index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    payment_date: Mapped[dt.date] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    debt: Mapped[Debt] = relationship(back_populates="payments")
