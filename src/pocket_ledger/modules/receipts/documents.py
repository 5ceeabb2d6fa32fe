from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import PurePath

from pocket_ledger.modules.receipts.errors import UploadValidationError

PDF_CONTENT_TYPE = "application/pdf"
IMAGE_CONTENT_TYPES: frozenset[str] = frozenset({"image/jpeg", "image/png", "image/webp"})
RECEIPT_CONTENT_TYPES: frozenset[str] = IMAGE_CONTENT_TYPES | {PDF_CONTENT_TYPE}

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    PDF_CONTENT_TYPE: "pdf",
}
_EXTENSION_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "pdf": PDF_CONTENT_TYPE,
}


@dataclass(frozen=True)
class UploadedDocument:
    body: bytes
    content_type: str
    filename: str

    @property
    def extension(self) -> str:
        return _EXTENSIONS.get(self.content_type, "bin")

    @property
    def byte_size(self) -> int:
        return len(self.body)

    @property
    def is_pdf(self) -> bool:
        return self.content_type == PDF_CONTENT_TYPE

    @property
    def is_image(self) -> bool:
        return self.content_type in IMAGE_CONTENT_TYPES


def detect_content_type(*, filename: str | None, declared: str | None, body: bytes) -> str | None:
    """Resolve the upload's content type from magic bytes, the declared type, then the name."""
    if body.startswith(b"%PDF"):
        return PDF_CONTENT_TYPE
    if body.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if body.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if body[:4] == b"RIFF" and body[8:12] == b"WEBP":
        return "image/webp"

    declared = (declared or "").split(";")[0].strip().lower()
    if declared == "image/jpg":
        declared = "image/jpeg"
    if declared in RECEIPT_CONTENT_TYPES:
        return declared

    ext = PurePath(filename or "").suffix.lower().lstrip(".")
    if ext in _EXTENSION_TYPES:
        return _EXTENSION_TYPES[ext]
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed if guessed in RECEIPT_CONTENT_TYPES else None


def build_document(
    *,
    filename: str | None,
    content_type: str | None,
    body: bytes,
    max_bytes: int,
    allowed: frozenset[str] = RECEIPT_CONTENT_TYPES,
) -> UploadedDocument:
    if not body:
        raise UploadValidationError("The receipt file is empty.")
    if len(body) > max_bytes:
        raise UploadValidationError(
            f"The receipt file must not exceed {max_bytes // (1024 * 1024)}MB."
        )
    resolved = detect_content_type(filename=filename, declared=content_type, body=body)
    if resolved is None or resolved not in allowed:
        names = ", ".join(sorted(_EXTENSIONS[t] for t in allowed))
        raise UploadValidationError(f"The receipt must be a file of type: {names}.")
    return UploadedDocument(body=body, content_type=resolved, filename=filename or "receipt")
