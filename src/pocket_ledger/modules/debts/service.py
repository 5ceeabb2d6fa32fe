from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pocket_ledger.core.logging import get_logger, log_event
from pocket_ledger.modules.debts.models import Debt, DebtType, Payment
from pocket_ledger.modules.debts.schemas import DebtSummary, PaymentSummary
from pocket_ledger.modules.identity.models import User

logger = get_logger(__name__)


def list_debts(session: Session, *, user: User) -> list[Debt]:
    return list(
        session.scalars(
            select(Debt).where(Debt.user_id == user.id).order_by(Debt.created_at.desc())
        )
    )


def debt_summary(session: Session, *, user: User) -> DebtSummary:
    rows = session.execute(
        select(Debt.type, func.coalesce(func.sum(Debt.amount), 0))
        .where(Debt.user_id == user.id, Debt.is_paid.is_(False))
        .group_by(Debt.type)
    ).all()
    totals = {t: Decimal(str(total)).quantize(Decimal("0.01")) for t, total in rows}
    return DebtSummary(
        total_owed_to_me=totals.get(DebtType.OWED_TO_ME, Decimal("0.00")),
        total_i_owe=totals.get(DebtType.I_OWE, Decimal("0.00")),
    )


def get_debt_for_user(session: Session, *, debt_id: uuid.UUID, user: User) -> Debt:
    debt = session.scalar(select(Debt).where(Debt.id == debt_id))
    if not debt:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Debt not found")
    if debt.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return debt


def create_debt(session: Session, *, user: User, fields: dict[str, Any]) -> Debt:
    debt = Debt(user_id=user.id, **fields)
    session.add(debt)
    session.commit()
    session.refresh(debt)
    log_event(logger, "debt.created", debt_id=str(debt.id), debt_type=debt.type.value)
    return debt


def update_debt(session: Session, *, debt: Debt, changes: dict[str, Any]) -> Debt:
    for key, value in changes.items():
        if key in {"debtor_name", "amount", "type"} and value is None:
            continue
        setattr(debt, key, value)
    session.add(debt)
    session.commit()
    session.refresh(debt)
    return debt


def delete_debt(session: Session, *, debt: Debt) -> None:
    debt_id = str(debt.id)
    session.delete(debt)
    session.commit()
    log_event(logger, "debt.deleted", debt_id=debt_id)


def payment_summary(debt: Debt) -> PaymentSummary:
    return PaymentSummary(
        total_paid=debt.total_paid,
        remaining_balance=debt.remaining_balance,
        payment_count=len(debt.payments),
    )


def get_payment_for_debt(session: Session, *, debt: Debt, payment_id: uuid.UUID) -> Payment:
    payment = session.scalar(select(Payment).where(Payment.id == payment_id))
    if not payment or payment.debt_id != debt.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return payment


def record_payment(session: Session, *, debt: Debt, fields: dict[str, Any]) -> Payment:
    payment = Payment(debt_id=debt.id, **fields)
    session.add(payment)
    session.commit()
    session.refresh(payment)
    session.refresh(debt)
    log_event(
        logger,
        "debt.payment.recorded",
        debt_id=str(debt.id),
        payment_id=str(payment.id),
        remaining_balance=str(debt.remaining_balance),
    )
    return payment


def update_payment(session: Session, *, payment: Payment, changes: dict[str, Any]) -> Payment:
    for key, value in changes.items():
        if key in {"amount", "payment_date"} and value is None:
            continue
        setattr(payment, key, value)
    session.add(payment)
    session.commit()
    session.refresh(payment)
    return payment


def delete_payment(session: Session, *, payment: Payment) -> None:
    session.delete(payment)
    session.commit()
