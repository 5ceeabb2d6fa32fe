"""
Receipt ingestion: one uploaded document in, one normalized reading out.

Stages run strictly in order. The first failing stage ends the run with an
IngestionFailed naming that stage; every scratch file created along the way is
removed by the ScratchSpace on the way out, on success and failure alike.
Nothing is retried.
"""

from __future__ import annotations

import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from pocket_ledger.core.config import Settings
from pocket_ledger.core.logging import get_logger, log_context, log_event, monotonic_ms
from pocket_ledger.core.scratch import ScratchSpace
from pocket_ledger.core.storage import ObjectStorage, StorageFailure, get_storage
from pocket_ledger.modules.fx.service import ConversionResult, CurrencyConverter, RateUnavailable
from pocket_ledger.modules.receipts.compression import ImageCompressor
from pocket_ledger.modules.receipts.documents import UploadedDocument
from pocket_ledger.modules.receipts.errors import (
    ConversionFailed,
    ConversionUnavailable,
    IngestionFailed,
    IngestionStage,
    ReceiptError,
    UploadValidationError,
)
from pocket_ledger.modules.receipts.rasterizer import PdfRasterizer, Unavailable
from pocket_ledger.modules.receipts.vision import ExtractionResult, ReceiptVisionExtractor

logger = get_logger(__name__)

RECEIPT_PREFIX = "receipts"

_STAGE_ERRORS = (ReceiptError, RateUnavailable, StorageFailure)


class IngestMode(str, enum.Enum):
    ANALYZE = "analyze"
    PERSIST = "persist"


@dataclass(frozen=True)
class IngestionResult:
    extraction: ExtractionResult
    conversion: ConversionResult
    stages: tuple[IngestionStage, ...]
    storage_key: str | None = None


@dataclass
class _Run:
    ingest_id: str
    stage: IngestionStage = IngestionStage.RECEIVED
    visited: list[IngestionStage] = field(default_factory=lambda: [IngestionStage.RECEIVED])

    def begin(self, stage: IngestionStage) -> None:
        self.stage = stage

    def complete(self) -> None:
        self.visited.append(self.stage)
        log_event(logger, "ingest.stage.complete", stage=self.stage.value)

    def fail(self) -> tuple[IngestionStage, ...]:
        self.visited.append(IngestionStage.FAILED)
        return tuple(self.visited)


def new_receipt_key(extension: str) -> str:
    return f"{RECEIPT_PREFIX}/{uuid.uuid4()}.{extension}"


class ReceiptPipeline:
    def __init__(
        self,
        *,
        rasterizer: PdfRasterizer,
        compressor: ImageCompressor,
        extractor: ReceiptVisionExtractor,
        converter: CurrencyConverter,
        storage: ObjectStorage,
        scratch_root: Path,
    ) -> None:
        self._rasterizer = rasterizer
        self._compressor = compressor
        self._extractor = extractor
        self._converter = converter
        self._storage = storage
        self._scratch_root = scratch_root

    @classmethod
    def from_settings(cls, cfg: Settings, *, storage: ObjectStorage | None = None) -> ReceiptPipeline:
        scratch_root = cfg.scratch_path
        if not scratch_root.is_absolute():
            scratch_root = Path.cwd() / scratch_root
        return cls(
            rasterizer=PdfRasterizer.from_settings(cfg),
            compressor=ImageCompressor.from_settings(cfg),
            extractor=ReceiptVisionExtractor.from_settings(cfg),
            converter=CurrencyConverter.from_settings(cfg),
            storage=storage or get_storage(),
            scratch_root=scratch_root,
        )

    @property
    def scratch_root(self) -> Path:
        return self._scratch_root

    def run(self, document: UploadedDocument, *, mode: IngestMode) -> IngestionResult:
        run = _Run(ingest_id=uuid.uuid4().hex)
        start = time.monotonic()
        with log_context(ingest_id=run.ingest_id):
            log_event(
                logger,
                "ingest.start",
                mode=mode.value,
                content_type=document.content_type,
                byte_size=document.byte_size,
            )
            try:
                with ScratchSpace(self._scratch_root) as scratch:
                    result = self._run_stages(run, scratch, document, mode)
            except _STAGE_ERRORS as e:
                raise self._failed(run, e, start) from e

            log_event(
                logger,
                "ingest.success",
                mode=mode.value,
                stages=[s.value for s in result.stages],
                storage_key=result.storage_key,
                duration_ms=monotonic_ms(start),
            )
        return result

    def archive(self, document: UploadedDocument) -> str:
        """Store a receipt without analyzing it: PDFs as uploaded, images compressed first."""
        run = _Run(ingest_id=uuid.uuid4().hex)
        start = time.monotonic()
        with log_context(ingest_id=run.ingest_id):
            try:
                with ScratchSpace(self._scratch_root) as scratch:
                    run.begin(IngestionStage.STAGED)
                    source = scratch.write("upload", f".{document.extension}", document.body)
                    run.complete()
                    if document.is_pdf:
                        body = document.body
                    else:
                        run.begin(IngestionStage.COMPRESSED)
                        compressed = scratch.artifact("compressed", source.suffix)
                        self._compressor.compress(source, compressed)
                        body = compressed.read_bytes()
                        run.complete()
                    run.begin(IngestionStage.PERSISTED)
                    key = self._store(body, document.extension)
                    run.complete()
            except _STAGE_ERRORS as e:
                raise self._failed(run, e, start) from e
            log_event(logger, "ingest.archived", storage_key=key, duration_ms=monotonic_ms(start))
        return key

    def _run_stages(
        self,
        run: _Run,
        scratch: ScratchSpace,
        document: UploadedDocument,
        mode: IngestMode,
    ) -> IngestionResult:
        run.begin(IngestionStage.STAGED)
        source = scratch.write("upload", f".{document.extension}", document.body)
        run.complete()

        image = source
        if document.is_pdf:
            run.begin(IngestionStage.RASTERIZED)
            capability = self._rasterizer.probe()
            if isinstance(capability, Unavailable):
                raise ConversionUnavailable(capability.reason)
            image = scratch.artifact("rasterized", ".jpg")
            if not self._rasterizer.to_image(source, image, capability=capability):
                raise ConversionFailed(
                    "Failed to convert PDF to image. Please try uploading an image "
                    "(JPG, PNG) of the receipt instead."
                )
            run.complete()
        elif not document.is_image:
            raise UploadValidationError("Only images and PDFs can be analyzed.")

        run.begin(IngestionStage.COMPRESSED)
        compressed = scratch.artifact("compressed", image.suffix)
        self._compressor.compress(image, compressed)
        run.complete()

        run.begin(IngestionStage.EXTRACTED)
        extraction = self._extractor.extract(compressed)
        run.complete()

        run.begin(IngestionStage.NORMALIZED)
        conversion = self._converter.convert(extraction.amount, extraction.currency)
        run.complete()

        storage_key = None
        if mode is IngestMode.PERSIST:
            run.begin(IngestionStage.PERSISTED)
            # The durable record keeps the original PDF; the JPEG only fed the extractor.
            if document.is_pdf:
                storage_key = self._store(document.body, document.extension)
            else:
                storage_key = self._store(compressed.read_bytes(), document.extension)
            run.complete()

        return IngestionResult(
            extraction=extraction,
            conversion=conversion,
            stages=tuple(run.visited),
            storage_key=storage_key,
        )

    def _store(self, body: bytes, extension: str) -> str:
        key = new_receipt_key(extension)
        self._storage.put(key=key, body=body, visibility="public")
        return key

    def _failed(self, run: _Run, error: Exception, start: float) -> IngestionFailed:
        kind = getattr(error, "kind", type(error).__name__)
        stages = run.fail()
        log_event(
            logger,
            "ingest.failure",
            level=logging.ERROR,
            stage=run.stage.value,
            stages=[s.value for s in stages],
            kind=kind,
            error=str(error),
            duration_ms=monotonic_ms(start),
        )
        return IngestionFailed(stage=run.stage, kind=kind, message=str(error), stages=stages)
