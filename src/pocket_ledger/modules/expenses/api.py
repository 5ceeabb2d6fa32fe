from __future__ import annotations

import mimetypes
import uuid
from typing import Any

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from pocket_ledger.api.deps import get_current_user, get_object_storage, get_receipt_pipeline
from pocket_ledger.core.db import db_session
from pocket_ledger.core.storage import ObjectStorage
from pocket_ledger.modules.expenses.schemas import ExpenseFields, ExpenseListOut, ExpenseOut
from pocket_ledger.modules.expenses.service import (
    create_expense,
    create_expense_from_receipt,
    delete_expense,
    expense_summary,
    get_expense_for_user,
    list_expenses,
    read_receipt,
    update_expense,
)
from pocket_ledger.modules.identity.models import User
from pocket_ledger.modules.receipts.api import failure_response, has_upload, read_receipt_upload
from pocket_ledger.modules.receipts.errors import IngestionFailed, UploadValidationError
from pocket_ledger.modules.receipts.pipeline import IngestMode, ReceiptPipeline

router = APIRouter(tags=["expenses"])


def _form_fields(raw: dict[str, str | None]) -> dict[str, Any]:
    return {k: v for k, v in raw.items() if v is not None and v.strip() != ""}


def _validation_response(errors: list[dict[str, Any]]) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(errors)},
    )


def _receipt_error(error: UploadValidationError | IngestionFailed) -> JSONResponse:
    message = error.message if isinstance(error, IngestionFailed) else str(error)
    return _validation_response(
        [{"loc": ["body", "receipt"], "msg": message, "type": error.kind}]
    )


def _redirect_to(expense_id: uuid.UUID) -> RedirectResponse:
    return RedirectResponse(url=f"/api/expenses/{expense_id}", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/expenses", response_model=ExpenseListOut)
def list_expenses_endpoint(
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseListOut:
    expenses = list_expenses(session, user=user)
    return ExpenseListOut(
        expenses=[ExpenseOut.model_validate(e, from_attributes=True) for e in expenses],
        summary=expense_summary(session, user=user),
    )


@router.post("/expenses")
async def create_expense_endpoint(
    amount: str | None = Form(None),
    description: str | None = Form(None),
    category: str | None = Form(None),
    date: str | None = Form(None),
    original_amount: str | None = Form(None),
    original_currency: str | None = Form(None),
    exchange_rate: str | None = Form(None),
    receipt: UploadFile | None = File(None),
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    pipeline: ReceiptPipeline = Depends(get_receipt_pipeline),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    try:
        fields = ExpenseFields.model_validate(
            _form_fields(
                {
                    "amount": amount,
                    "description": description,
                    "category": category,
                    "date": date,
                    "original_amount": original_amount,
                    "original_currency": original_currency,
                    "exchange_rate": exchange_rate,
                }
            )
        )
    except ValidationError as e:
        return _validation_response(e.errors(include_url=False, include_context=False))

    receipt_key = None
    if has_upload(receipt):
        try:
            document = await read_receipt_upload(receipt)
            receipt_key = await run_in_threadpool(pipeline.archive, document)
        except (UploadValidationError, IngestionFailed) as e:
            return _receipt_error(e)

    expense = create_expense(
        session,
        user=user,
        fields=fields.model_dump(exclude_none=True),
        storage=storage,
        receipt_key=receipt_key,
    )
    return _redirect_to(expense.id)


@router.post("/expenses/from-receipt")
async def create_expense_from_receipt_endpoint(
    receipt: UploadFile | None = File(None),
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    pipeline: ReceiptPipeline = Depends(get_receipt_pipeline),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    try:
        document = await read_receipt_upload(receipt)
        result = await run_in_threadpool(pipeline.run, document, mode=IngestMode.PERSIST)
    except (UploadValidationError, IngestionFailed) as e:
        return failure_response(e)
    expense = create_expense_from_receipt(session, user=user, result=result, storage=storage)
    return _redirect_to(expense.id)


@router.get("/expenses/{expense_id}", response_model=ExpenseOut)
def get_expense_endpoint(
    expense_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseOut:
    expense = get_expense_for_user(session, expense_id=expense_id, user=user)
    return ExpenseOut.model_validate(expense, from_attributes=True)


@router.put("/expenses/{expense_id}")
async def update_expense_endpoint(
    expense_id: uuid.UUID,
    amount: str | None = Form(None),
    description: str | None = Form(None),
    category: str | None = Form(None),
    date: str | None = Form(None),
    original_amount: str | None = Form(None),
    original_currency: str | None = Form(None),
    exchange_rate: str | None = Form(None),
    receipt: UploadFile | None = File(None),
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    pipeline: ReceiptPipeline = Depends(get_receipt_pipeline),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    expense = get_expense_for_user(session, expense_id=expense_id, user=user)
    try:
        fields = ExpenseFields.model_validate(
            _form_fields(
                {
                    "amount": amount,
                    "description": description,
                    "category": category,
                    "date": date,
                    "original_amount": original_amount,
                    "original_currency": original_currency,
                    "exchange_rate": exchange_rate,
                }
            )
        )
    except ValidationError as e:
        return _validation_response(e.errors(include_url=False, include_context=False))

    receipt_key = None
    if has_upload(receipt):
        try:
            document = await read_receipt_upload(receipt, images_only=True)
            receipt_key = await run_in_threadpool(pipeline.archive, document)
        except (UploadValidationError, IngestionFailed) as e:
            return _receipt_error(e)

    update_expense(
        session,
        expense=expense,
        changes=fields.model_dump(),
        storage=storage,
        receipt_key=receipt_key,
    )
    return _redirect_to(expense.id)


@router.delete("/expenses/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_expense_endpoint(
    expense_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    expense = get_expense_for_user(session, expense_id=expense_id, user=user)
    delete_expense(session, expense=expense, storage=storage)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/expenses/{expense_id}/receipt")
def download_receipt(
    expense_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    expense = get_expense_for_user(session, expense_id=expense_id, user=user)
    body = read_receipt(expense=expense, storage=storage)
    media_type, _ = mimetypes.guess_type(expense.receipt_path or "")
    return Response(content=body, media_type=media_type or "application/octet-stream")
