from __future__ import annotations

import enum


class ReceiptError(Exception):
    """Base class for receipt-processing failures; `kind` is the stable error code."""

    kind = "receipt_error"


class UploadValidationError(ReceiptError):
    kind = "validation_error"

    def __init__(self, message: str, *, field: str = "receipt") -> None:
        super().__init__(message)
        self.field = field


class ConversionUnavailable(ReceiptError):
    kind = "conversion_unavailable"

    def __init__(self, reason: str) -> None:
        super().__init__(
            "PDF conversion is not available on this server "
            f"({reason}). Install PDF rendering support or upload an image "
            "(JPG, PNG, WEBP) of the receipt instead."
        )
        self.reason = reason


class ConversionFailed(ReceiptError):
    kind = "conversion_failed"


class NoStitchBackend(ReceiptError):
    kind = "no_stitch_backend"

    def __init__(self) -> None:
        super().__init__("No image library is available to combine PDF pages")


class ImageTooLarge(ReceiptError):
    kind = "image_too_large"

    def __init__(
        self,
        *,
        byte_size: int,
        megapixels: float | None = None,
        max_bytes: int,
        max_megapixels: float,
        subject: str = "Receipt image",
        hint: str = "Try a smaller or lower-resolution image.",
    ) -> None:
        self.byte_size = byte_size
        self.megapixels = megapixels
        self.max_bytes = max_bytes
        self.max_megapixels = max_megapixels
        if megapixels is not None and megapixels > max_megapixels:
            message = (
                f"{subject} resolution is too high ({megapixels:.1f} megapixels). "
                f"Maximum is {max_megapixels:g} megapixels. {hint}"
            )
        else:
            message = (
                f"{subject} is too large ({byte_size / 1024 / 1024:.1f}MB). "
                f"Maximum size is {max_bytes / 1024 / 1024:g}MB. {hint}"
            )
        super().__init__(message)


class CompressionCause(str, enum.Enum):
    ACCOUNT = "account"
    REQUEST = "request"
    SERVER = "server"
    CONNECTION = "connection"


_COMPRESSION_MESSAGES = {
    CompressionCause.ACCOUNT: "Invalid TinyPNG API key or limit reached",
    CompressionCause.REQUEST: "Invalid request",
    CompressionCause.SERVER: "TinyPNG server error",
    CompressionCause.CONNECTION: "Network connection error",
}


class CompressionFailed(ReceiptError):
    kind = "compression_failed"

    def __init__(self, cause: CompressionCause, detail: str | None = None) -> None:
        message = _COMPRESSION_MESSAGES[cause]
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.cause = cause


class ExtractionFailed(ReceiptError):
    kind = "extraction_failed"

    def __init__(self, detail: str) -> None:
        super().__init__(f"Failed to analyze receipt: {detail}")
        self.detail = detail


class IngestionStage(str, enum.Enum):
    RECEIVED = "received"
    STAGED = "staged"
    RASTERIZED = "rasterized"
    COMPRESSED = "compressed"
    EXTRACTED = "extracted"
    NORMALIZED = "normalized"
    PERSISTED = "persisted"
    FAILED = "failed"


class IngestionFailed(Exception):
    """Raised at the pipeline boundary; `stage` is the stage that was being attempted.

    `stages` is the trail of completed stages, ending in FAILED.
    """

    def __init__(
        self,
        *,
        stage: IngestionStage,
        kind: str,
        message: str,
        stages: tuple[IngestionStage, ...] = (),
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.stages = stages
        self.kind = kind
        self.message = message
