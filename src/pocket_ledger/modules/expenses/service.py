from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import extract, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pocket_ledger.core.logging import get_logger, log_event, log_exception
from pocket_ledger.core.storage import ObjectStorage, StorageFailure
from pocket_ledger.modules.expenses.models import Expense
from pocket_ledger.modules.expenses.schemas import ExpenseSummary
from pocket_ledger.modules.identity.models import User
from pocket_ledger.modules.receipts.pipeline import IngestionResult

logger = get_logger(__name__)

_EDITABLE_FIELDS = {
    "amount",
    "description",
    "category",
    "date",
    "original_amount",
    "original_currency",
    "exchange_rate",
}


def list_expenses(session: Session, *, user: User) -> list[Expense]:
    return list(
        session.scalars(
            select(Expense)
            .where(Expense.user_id == user.id)
            .order_by(Expense.date.desc(), Expense.created_at.desc())
        )
    )


def expense_summary(session: Session, *, user: User, today: dt.date | None = None) -> ExpenseSummary:
    today = today or dt.date.today()
    total, count = session.execute(
        select(func.coalesce(func.sum(Expense.amount), 0), func.count(Expense.id)).where(
            Expense.user_id == user.id
        )
    ).one()
    this_month = session.scalar(
        select(func.coalesce(func.sum(Expense.amount), 0)).where(
            Expense.user_id == user.id,
            extract("year", Expense.date) == today.year,
            extract("month", Expense.date) == today.month,
        )
    )
    return ExpenseSummary(
        total=Decimal(str(total)).quantize(Decimal("0.01")),
        count=int(count),
        this_month=Decimal(str(this_month)).quantize(Decimal("0.01")),
    )


def get_expense_for_user(session: Session, *, expense_id: uuid.UUID, user: User) -> Expense:
    expense = session.scalar(select(Expense).where(Expense.id == expense_id))
    if not expense:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found")
    if expense.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return expense


def create_expense(
    session: Session,
    *,
    user: User,
    fields: dict[str, Any],
    storage: ObjectStorage,
    receipt_key: str | None = None,
) -> Expense:
    """Insert an expense. A receipt already uploaded for it is removed if the insert fails."""
    expense = Expense(user_id=user.id, receipt_path=receipt_key)
    for key, value in fields.items():
        if key in _EDITABLE_FIELDS:
            setattr(expense, key, value)
    if expense.original_currency:
        expense.original_currency = expense.original_currency.upper()
    try:
        session.add(expense)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        if receipt_key:
            _discard_receipt(storage, receipt_key)
        raise
    session.refresh(expense)
    log_event(
        logger,
        "expense.created",
        expense_id=str(expense.id),
        has_receipt=receipt_key is not None,
    )
    return expense


def create_expense_from_receipt(
    session: Session,
    *,
    user: User,
    result: IngestionResult,
    storage: ObjectStorage,
    today: dt.date | None = None,
) -> Expense:
    conversion = result.conversion
    extraction = result.extraction
    return create_expense(
        session,
        user=user,
        fields={
            "amount": conversion.amount_base,
            "original_amount": conversion.original_amount,
            "original_currency": conversion.original_currency,
            "exchange_rate": conversion.exchange_rate,
            "description": extraction.description,
            "category": extraction.category,
            "date": today or dt.date.today(),
        },
        storage=storage,
        receipt_key=result.storage_key,
    )


def update_expense(
    session: Session,
    *,
    expense: Expense,
    changes: dict[str, Any],
    storage: ObjectStorage,
    receipt_key: str | None = None,
) -> Expense:
    """Apply changes; with a new receipt, the old object is deleted only once the swap is committed."""
    previous_key = expense.receipt_path
    for key, value in changes.items():
        if key in _EDITABLE_FIELDS:
            setattr(expense, key, value)
    if expense.original_currency:
        expense.original_currency = expense.original_currency.upper()
    if receipt_key:
        expense.receipt_path = receipt_key
    try:
        session.add(expense)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        if receipt_key:
            _discard_receipt(storage, receipt_key)
        raise
    session.refresh(expense)

    if receipt_key and previous_key and previous_key != receipt_key:
        _discard_receipt(storage, previous_key)
    log_event(
        logger,
        "expense.updated",
        expense_id=str(expense.id),
        receipt_replaced=bool(receipt_key),
    )
    return expense


def delete_expense(session: Session, *, expense: Expense, storage: ObjectStorage) -> None:
    receipt_key = expense.receipt_path
    expense_id = str(expense.id)
    session.delete(expense)
    session.commit()
    if receipt_key:
        _discard_receipt(storage, receipt_key)
    log_event(logger, "expense.deleted", expense_id=expense_id, had_receipt=receipt_key is not None)


def read_receipt(*, expense: Expense, storage: ObjectStorage) -> bytes:
    if not expense.receipt_path:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")
    try:
        return storage.get(key=expense.receipt_path)
    except StorageFailure as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found") from e


def _discard_receipt(storage: ObjectStorage, key: str) -> None:
    # The record no longer points at this object; a failed delete leaves an orphan, not a dangling reference.
    try:
        storage.delete(key=key)
    except StorageFailure:
        log_exception(logger, "expense.receipt.orphaned", storage_key=key)
