from __future__ import annotations

import json
from decimal import Decimal

import pytest

from pocket_ledger.core.storage import ObjectStorage, StorageFailure
from pocket_ledger.modules.receipts.documents import UploadedDocument
from pocket_ledger.modules.receipts.errors import IngestionFailed, IngestionStage
from pocket_ledger.modules.receipts.pipeline import IngestMode
from pocket_ledger.modules.receipts.rasterizer import PdfRasterizer
from receipt_fixtures import (
    build_pipeline,
    make_huge_png,
    make_jpeg,
    make_pdf,
    receipt_json,
    scratch_leftovers,
)


def _pdf(pages: int) -> UploadedDocument:
    return UploadedDocument(body=make_pdf(pages), content_type="application/pdf", filename="r.pdf")


def _jpeg() -> UploadedDocument:
    return UploadedDocument(body=make_jpeg(), content_type="image/jpeg", filename="r.jpg")


def test_two_page_czk_pdf_is_analyzed_converted_and_stored(tmp_path):
    seen = []
    pipeline = build_pipeline(tmp_path, content=receipt_json("1462.50", "CZK"), seen=seen)
    document = _pdf(2)

    result = pipeline.run(document, mode=IngestMode.PERSIST)

    assert result.conversion.amount_base == Decimal("58.50")
    assert result.conversion.original_amount == Decimal("1462.50")
    assert result.conversion.original_currency == "CZK"
    assert result.conversion.exchange_rate == Decimal("0.040000")
    assert result.stages == (
        IngestionStage.RECEIVED,
        IngestionStage.STAGED,
        IngestionStage.RASTERIZED,
        IngestionStage.COMPRESSED,
        IngestionStage.EXTRACTED,
        IngestionStage.NORMALIZED,
        IngestionStage.PERSISTED,
    )

    # The extractor saw a JPEG; storage keeps the original PDF.
    payload = json.loads(seen[0].content)
    assert payload["messages"][0]["content"][1]["image_url"]["url"].startswith("data:image/jpeg")
    assert result.storage_key.startswith("receipts/")
    assert result.storage_key.endswith(".pdf")
    assert pipeline._storage.get(key=result.storage_key) == document.body

    assert scratch_leftovers(pipeline) == []


def test_analyze_mode_stores_nothing(tmp_path):
    pipeline = build_pipeline(tmp_path, content=receipt_json(9.99, "EUR"))

    result = pipeline.run(_jpeg(), mode=IngestMode.ANALYZE)

    assert result.storage_key is None
    assert IngestionStage.RASTERIZED not in result.stages
    assert IngestionStage.PERSISTED not in result.stages
    assert result.conversion.exchange_rate == Decimal("1")
    assert not (tmp_path / "store" / "receipts").exists()
    assert scratch_leftovers(pipeline) == []


def test_unavailable_rasterizer_fails_at_rasterize_stage_and_cleans_up(tmp_path):
    pipeline = build_pipeline(
        tmp_path,
        content=receipt_json(1),
        rasterizer=PdfRasterizer(enabled=False),
    )

    with pytest.raises(IngestionFailed) as excinfo:
        pipeline.run(_pdf(1), mode=IngestMode.PERSIST)

    assert excinfo.value.stage is IngestionStage.RASTERIZED
    assert excinfo.value.kind == "conversion_unavailable"
    assert "upload an image" in excinfo.value.message
    assert scratch_leftovers(pipeline) == []
    assert not (tmp_path / "store" / "receipts").exists()


def test_extraction_failure_reports_stage_and_stores_nothing(tmp_path):
    pipeline = build_pipeline(tmp_path, content="I cannot read this receipt")

    with pytest.raises(IngestionFailed) as excinfo:
        pipeline.run(_jpeg(), mode=IngestMode.PERSIST)

    assert excinfo.value.stage is IngestionStage.EXTRACTED
    assert excinfo.value.kind == "extraction_failed"
    assert scratch_leftovers(pipeline) == []
    assert not (tmp_path / "store" / "receipts").exists()


def test_missing_rate_fails_at_normalize_stage(tmp_path):
    pipeline = build_pipeline(tmp_path, content=receipt_json(20, "USD"), rates={})

    with pytest.raises(IngestionFailed) as excinfo:
        pipeline.run(_jpeg(), mode=IngestMode.ANALYZE)

    assert excinfo.value.stage is IngestionStage.NORMALIZED
    assert excinfo.value.kind == "rate_unavailable"
    assert scratch_leftovers(pipeline) == []


def test_archive_stores_pdf_as_uploaded(tmp_path):
    pipeline = build_pipeline(tmp_path, content=receipt_json(1))
    document = _pdf(1)

    key = pipeline.archive(document)

    assert key.endswith(".pdf")
    assert pipeline._storage.get(key=key) == document.body
    assert scratch_leftovers(pipeline) == []


def test_archive_compresses_images(tmp_path):
    pipeline = build_pipeline(tmp_path, content=receipt_json(1))

    key = pipeline.archive(_jpeg())

    assert key.endswith(".jpg")
    assert pipeline._storage.exists(key=key)


class _UnreachableStorage(ObjectStorage):
    def put(self, *, key, body, visibility="private"):
        raise StorageFailure("S3 put_object failed (EndpointConnectionError)", key=key)


def test_storage_failure_fails_at_persist_stage_and_cleans_up(tmp_path):
    pipeline = build_pipeline(
        tmp_path, content=receipt_json("1462.50", "CZK"), storage=_UnreachableStorage()
    )

    with pytest.raises(IngestionFailed) as excinfo:
        pipeline.run(_pdf(2), mode=IngestMode.PERSIST)

    assert excinfo.value.stage is IngestionStage.PERSISTED
    assert excinfo.value.kind == "storage_failure"
    assert excinfo.value.stages[-2:] == (IngestionStage.NORMALIZED, IngestionStage.FAILED)
    assert scratch_leftovers(pipeline) == []


def test_failure_trail_ends_in_failed(tmp_path):
    pipeline = build_pipeline(tmp_path, content="no json here")

    with pytest.raises(IngestionFailed) as excinfo:
        pipeline.run(_jpeg(), mode=IngestMode.ANALYZE)

    assert excinfo.value.stages == (
        IngestionStage.RECEIVED,
        IngestionStage.STAGED,
        IngestionStage.COMPRESSED,
        IngestionStage.FAILED,
    )


def test_decompression_bomb_sized_image_is_image_too_large(tmp_path):
    seen = []
    pipeline = build_pipeline(tmp_path, content=receipt_json(1), seen=seen)
    document = UploadedDocument(body=make_huge_png(), content_type="image/png", filename="r.png")

    with pytest.raises(IngestionFailed) as excinfo:
        pipeline.run(document, mode=IngestMode.ANALYZE)

    assert excinfo.value.stage is IngestionStage.EXTRACTED
    assert excinfo.value.kind == "image_too_large"
    assert "196.0 megapixels" in excinfo.value.message
    assert seen == []
    assert scratch_leftovers(pipeline) == []
