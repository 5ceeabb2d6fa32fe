from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from pocket_ledger.api.deps import get_current_user, get_receipt_pipeline
from pocket_ledger.core.config import settings
from pocket_ledger.core.logging import get_logger, log_event
from pocket_ledger.modules.identity.models import User
from pocket_ledger.modules.receipts.documents import (
    IMAGE_CONTENT_TYPES,
    RECEIPT_CONTENT_TYPES,
    UploadedDocument,
    build_document,
)
from pocket_ledger.modules.receipts.errors import IngestionFailed, UploadValidationError
from pocket_ledger.modules.receipts.pipeline import IngestionResult, IngestMode, ReceiptPipeline
from pocket_ledger.modules.receipts.schemas import (
    ReceiptAnalysis,
    ReceiptAnalysisOut,
    ReceiptFailureOut,
)

router = APIRouter(tags=["receipts"])
logger = get_logger(__name__)


def has_upload(upload: UploadFile | None) -> bool:
    return upload is not None and bool(upload.filename)


async def read_receipt_upload(
    upload: UploadFile | None, *, images_only: bool = False
) -> UploadedDocument:
    if not has_upload(upload):
        raise UploadValidationError("Please attach a receipt file.")
    body = await upload.read()
    log_event(
        logger,
        "upload.received",
        filename=upload.filename,
        content_type=upload.content_type,
        byte_size=len(body),
    )
    return build_document(
        filename=upload.filename,
        content_type=upload.content_type,
        body=body,
        max_bytes=settings.max_upload_bytes,
        allowed=IMAGE_CONTENT_TYPES if images_only else RECEIPT_CONTENT_TYPES,
    )


def analysis_payload(result: IngestionResult, *, today: dt.date | None = None) -> ReceiptAnalysis:
    return ReceiptAnalysis(
        amount=result.conversion.amount_base,
        original_amount=result.conversion.original_amount,
        original_currency=result.conversion.original_currency,
        exchange_rate=result.conversion.exchange_rate,
        description=result.extraction.description,
        category=result.extraction.category,
        date=today or dt.date.today(),
    )


def failure_response(error: UploadValidationError | IngestionFailed) -> JSONResponse:
    if isinstance(error, IngestionFailed):
        body = ReceiptFailureOut(message=error.message, stage=error.stage.value, kind=error.kind)
    else:
        body = ReceiptFailureOut(message=str(error), kind=error.kind)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body.model_dump(exclude_none=True),
    )


@router.post("/expenses/analyze-receipt", response_model=ReceiptAnalysisOut)
async def analyze_receipt(
    receipt: UploadFile | None = File(None),
    pipeline: ReceiptPipeline = Depends(get_receipt_pipeline),
    _: User = Depends(get_current_user),
):
    try:
        document = await read_receipt_upload(receipt)
        result = await run_in_threadpool(pipeline.run, document, mode=IngestMode.ANALYZE)
    except (UploadValidationError, IngestionFailed) as e:
        return failure_response(e)
    return ReceiptAnalysisOut(data=analysis_payload(result))
