from __future__ import annotations

import pytest

from pocket_ledger.modules.receipts.documents import (
    IMAGE_CONTENT_TYPES,
    build_document,
    detect_content_type,
)
from pocket_ledger.modules.receipts.errors import UploadValidationError
from receipt_fixtures import make_jpeg, make_pdf


def test_magic_bytes_win_over_declared_type():
    assert detect_content_type(filename="x.png", declared="image/png", body=make_pdf(1)) == (
        "application/pdf"
    )
    assert detect_content_type(filename="x", declared=None, body=make_jpeg()) == "image/jpeg"


def test_declared_type_then_extension_are_fallbacks():
    assert detect_content_type(filename="a.bin", declared="image/jpg", body=b"??") == "image/jpeg"
    assert detect_content_type(filename="scan.webp", declared=None, body=b"??") == "image/webp"
    assert detect_content_type(filename="notes.txt", declared="text/plain", body=b"hi") is None


def test_build_document_resolves_extension():
    document = build_document(
        filename="scan.PDF", content_type=None, body=make_pdf(1), max_bytes=5 * 1024 * 1024
    )
    assert document.is_pdf
    assert document.extension == "pdf"


def test_empty_upload_is_rejected():
    with pytest.raises(UploadValidationError, match="empty"):
        build_document(filename="a.jpg", content_type="image/jpeg", body=b"", max_bytes=10)


def test_oversized_upload_is_rejected():
    with pytest.raises(UploadValidationError, match="must not exceed 5MB"):
        build_document(
            filename="a.jpg",
            content_type="image/jpeg",
            body=b"\xff\xd8\xff" + b"0" * (5 * 1024 * 1024),
            max_bytes=5 * 1024 * 1024,
        )


def test_images_only_rejects_pdf():
    with pytest.raises(UploadValidationError) as excinfo:
        build_document(
            filename="a.pdf",
            content_type="application/pdf",
            body=make_pdf(1),
            max_bytes=5 * 1024 * 1024,
            allowed=IMAGE_CONTENT_TYPES,
        )
    assert str(excinfo.value) == "The receipt must be a file of type: jpg, png, webp."
