from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from pocket_ledger.api.deps import get_current_user
from pocket_ledger.core.db import db_session
from pocket_ledger.modules.debts.schemas import (
    DebtCreateIn,
    DebtListOut,
    DebtOut,
    DebtUpdateIn,
    PaymentCreateIn,
    PaymentListOut,
    PaymentOut,
    PaymentUpdateIn,
)
from pocket_ledger.modules.debts.service import (
    create_debt,
    debt_summary,
    delete_debt,
    delete_payment,
    get_debt_for_user,
    get_payment_for_debt,
    list_debts,
    payment_summary,
    record_payment,
    update_debt,
    update_payment,
)
from pocket_ledger.modules.identity.models import User

router = APIRouter(tags=["debts"])


@router.get("/debts", response_model=DebtListOut)
def list_debts_endpoint(
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> DebtListOut:
    debts = list_debts(session, user=user)
    return DebtListOut(
        debts=[DebtOut.model_validate(d, from_attributes=True) for d in debts],
        summary=debt_summary(session, user=user),
    )


@router.post("/debts", response_model=DebtOut, status_code=status.HTTP_201_CREATED)
def create_debt_endpoint(
    payload: DebtCreateIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> DebtOut:
    debt = create_debt(session, user=user, fields=payload.model_dump())
    return DebtOut.model_validate(debt, from_attributes=True)


@router.get("/debts/{debt_id}", response_model=DebtOut)
def get_debt_endpoint(
    debt_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> DebtOut:
    debt = get_debt_for_user(session, debt_id=debt_id, user=user)
    return DebtOut.model_validate(debt, from_attributes=True)


@router.patch("/debts/{debt_id}", response_model=DebtOut)
def update_debt_endpoint(
    debt_id: uuid.UUID,
    payload: DebtUpdateIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> DebtOut:
    debt = get_debt_for_user(session, debt_id=debt_id, user=user)
    debt = update_debt(session, debt=debt, changes=payload.model_dump(exclude_unset=True))
    return DebtOut.model_validate(debt, from_attributes=True)


@router.delete("/debts/{debt_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_debt_endpoint(
    debt_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> Response:
    debt = get_debt_for_user(session, debt_id=debt_id, user=user)
    delete_debt(session, debt=debt)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/debts/{debt_id}/payments", response_model=PaymentListOut)
def list_payments_endpoint(
    debt_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> PaymentListOut:
    debt = get_debt_for_user(session, debt_id=debt_id, user=user)
    return PaymentListOut(
        payments=[PaymentOut.model_validate(p, from_attributes=True) for p in debt.payments],
        summary=payment_summary(debt),
    )


@router.post(
    "/debts/{debt_id}/payments", response_model=PaymentOut, status_code=status.HTTP_201_CREATED
)
def record_payment_endpoint(
    debt_id: uuid.UUID,
    payload: PaymentCreateIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> PaymentOut:
    debt = get_debt_for_user(session, debt_id=debt_id, user=user)
    payment = record_payment(session, debt=debt, fields=payload.model_dump())
    return PaymentOut.model_validate(payment, from_attributes=True)


@router.get("/debts/{debt_id}/payments/{payment_id}", response_model=PaymentOut)
def get_payment_endpoint(
    debt_id: uuid.UUID,
    payment_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> PaymentOut:
    debt = get_debt_for_user(session, debt_id=debt_id, user=user)
    payment = get_payment_for_debt(session, debt=debt, payment_id=payment_id)
    return PaymentOut.model_validate(payment, from_attributes=True)


@router.patch("/debts/{debt_id}/payments/{payment_id}", response_model=PaymentOut)
def update_payment_endpoint(
    debt_id: uuid.UUID,
    payment_id: uuid.UUID,
    payload: PaymentUpdateIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> PaymentOut:
    debt = get_debt_for_user(session, debt_id=debt_id, user=user)
    payment = get_payment_for_debt(session, debt=debt, payment_id=payment_id)
    payment = update_payment(session, payment=payment, changes=payload.model_dump(exclude_unset=True))
    return PaymentOut.model_validate(payment, from_attributes=True)


@router.delete("/debts/{debt_id}/payments/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment_endpoint(
    debt_id: uuid.UUID,
    payment_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> Response:
    debt = get_debt_for_user(session, debt_id=debt_id, user=user)
    payment = get_payment_for_debt(session, debt=debt, payment_id=payment_id)
    delete_payment(session, payment=payment)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
