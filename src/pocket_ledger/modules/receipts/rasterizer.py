from __future__ import annotations

import importlib
import importlib.util
import logging
import time
import uuid
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType

from pocket_ledger.core.config import Settings
from pocket_ledger.core.logging import get_logger, log_event, log_exception, monotonic_ms
from pocket_ledger.core.scratch import scratch_artifact
from pocket_ledger.modules.receipts.errors import ImageTooLarge, NoStitchBackend
from pocket_ledger.modules.receipts.vision import bomb_megapixels

logger = get_logger(__name__)

_OVERSIZE_HINT = "Try a PDF with fewer pages or lower resolution."


@dataclass(frozen=True)
class Available:
    renderer: ModuleType


@dataclass(frozen=True)
class Unavailable:
    reason: str


Capability = Available | Unavailable


def _module_present(name: str) -> bool:
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False


class StitchBackend:
    name = "base"

    def stitch(self, pages: list[Path], output_path: Path, *, quality: int) -> None:  # pragma: no cover
        raise NotImplementedError


class PyMuPdfStitcher(StitchBackend):
    name = "pymupdf"

    def stitch(self, pages: list[Path], output_path: Path, *, quality: int) -> None:
        import fitz

        pixmaps = []
        for page in pages:
            pix = fitz.Pixmap(str(page))
            if pix.alpha:
                pix = fitz.Pixmap(pix, 0)
            if pix.n != 3:
                pix = fitz.Pixmap(fitz.csRGB, pix)
            pixmaps.append(pix)

        width = max(p.width for p in pixmaps)
        height = sum(p.height for p in pixmaps)
        canvas = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, width, height), False)
        canvas.clear_with(255)

        y = 0
        for pix in pixmaps:
            pix.set_origin(0, y)
            canvas.copy(pix, pix.irect)
            y += pix.height
        canvas.save(str(output_path), output="jpg", jpg_quality=quality)


class PillowStitcher(StitchBackend):
    name = "pillow"

    def stitch(self, pages: list[Path], output_path: Path, *, quality: int) -> None:
        from PIL import Image

        with ExitStack() as stack:
            images = [stack.enter_context(Image.open(page)) for page in pages]
            width = max(im.width for im in images)
            height = sum(im.height for im in images)
            canvas = Image.new("RGB", (width, height), (255, 255, 255))
            y = 0
            for im in images:
                canvas.paste(im.convert("RGB"), (0, y))
                y += im.height
            canvas.save(output_path, format="JPEG", quality=quality)


def select_stitcher() -> StitchBackend:
    if _module_present("fitz"):
        return PyMuPdfStitcher()
    if _module_present("PIL"):
        return PillowStitcher()
    raise NoStitchBackend()


class PdfRasterizer:
    """Turns a PDF into one JPEG: page 1 alone, or every page stacked top to bottom."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        dpi: int = 150,
        jpeg_quality: int = 85,
        max_image_bytes: int = 3 * 1024 * 1024,
        max_megapixels: float = 33.0,
    ) -> None:
        self._enabled = enabled
        self._dpi = dpi
        self._quality = jpeg_quality
        self._max_bytes = max_image_bytes
        self._max_megapixels = max_megapixels

    @classmethod
    def from_settings(cls, cfg: Settings) -> PdfRasterizer:
        return cls(
            enabled=cfg.pdf_rasterizer_enabled,
            dpi=cfg.pdf_render_dpi,
            jpeg_quality=cfg.jpeg_quality,
            max_image_bytes=cfg.max_image_bytes,
            max_megapixels=cfg.max_image_megapixels,
        )

    def probe(self) -> Capability:
        if not self._enabled:
            return Unavailable("PDF rendering is disabled")
        try:
            renderer = importlib.import_module("fitz")
        except ImportError:
            return Unavailable("PyMuPDF is not installed")
        return Available(renderer)

    def is_available(self) -> bool:
        return isinstance(self.probe(), Available)

    def to_image(
        self, document_path: Path, output_path: Path, *, capability: Capability | None = None
    ) -> bool:
        capability = capability if capability is not None else self.probe()
        if isinstance(capability, Unavailable):
            log_event(
                logger, "rasterize.unavailable", level=logging.WARNING, reason=capability.reason
            )
            return False
        if not document_path.exists():
            log_event(
                logger,
                "rasterize.failure",
                level=logging.ERROR,
                reason="PDF file not found",
                path=str(document_path),
            )
            return False

        start = time.monotonic()
        fitz = capability.renderer
        try:
            page_count = self.page_count(document_path, renderer=fitz)
            if page_count == 1:
                self._render_page(fitz, document_path, 0, output_path)
            else:
                self._render_stitched(fitz, document_path, page_count, output_path)
            if not output_path.exists():
                log_event(logger, "rasterize.failure", level=logging.ERROR, reason="no output")
                return False
            width, height = self.enforce_ceiling(output_path)
        except (ImageTooLarge, NoStitchBackend):
            raise
        except Exception:  # noqa: BLE001
            log_exception(logger, "rasterize.failure", path=str(document_path))
            return False

        log_event(
            logger,
            "rasterize.success",
            page_count=page_count,
            width=width,
            height=height,
            byte_size=output_path.stat().st_size,
            duration_ms=monotonic_ms(start),
        )
        return True

    def page_count(self, document_path: Path, *, renderer: ModuleType | None = None) -> int:
        from pypdf import PdfReader
        from pypdf.errors import PdfReadError

        try:
            return len(PdfReader(str(document_path)).pages)
        except (PdfReadError, OSError, ValueError, KeyError):
            pass
        if renderer is not None:
            try:
                with renderer.open(str(document_path)) as doc:
                    if doc.page_count > 0:
                        return doc.page_count
            except (RuntimeError, ValueError):
                pass
        log_event(
            logger,
            "rasterize.page_count.unknown",
            level=logging.WARNING,
            path=str(document_path),
        )
        return 1

    def _render_page(self, fitz: ModuleType, document_path: Path, index: int, out: Path) -> None:
        zoom = self._dpi / 72
        with fitz.open(str(document_path)) as doc:
            page = doc.load_page(index)
            pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
            pix.save(str(out), output="jpg", jpg_quality=self._quality)

    def _render_stitched(
        self, fitz: ModuleType, document_path: Path, page_count: int, output_path: Path
    ) -> None:
        pages_dir = output_path.parent / f"pdf_pages_{uuid.uuid4().hex}"
        with scratch_artifact(pages_dir):
            pages_dir.mkdir(parents=True)
            pages: list[Path] = []
            for index in range(page_count):
                page_path = pages_dir / f"page_{index + 1}.jpg"
                try:
                    self._render_page(fitz, document_path, index, page_path)
                except (IndexError, ValueError):
                    # Declared page count overshoots the document.
                    break
                pages.append(page_path)
            if not pages:
                raise RuntimeError("No pages could be rendered")
            stitcher = select_stitcher()
            stitcher.stitch(pages, output_path, quality=self._quality)
            log_event(logger, "rasterize.stitched", backend=stitcher.name, page_count=len(pages))

    def enforce_ceiling(self, image_path: Path) -> tuple[int, int]:
        from PIL import Image

        byte_size = image_path.stat().st_size
        width = height = 0
        try:
            with Image.open(image_path) as im:
                width, height = im.size
            megapixels = (width * height) / 1_000_000
        except Image.DecompressionBombError as e:
            megapixels = bomb_megapixels(e)
        if byte_size > self._max_bytes or megapixels > self._max_megapixels:
            raise ImageTooLarge(
                byte_size=byte_size,
                megapixels=megapixels,
                max_bytes=self._max_bytes,
                max_megapixels=self._max_megapixels,
                subject="Combined PDF image",
                hint=_OVERSIZE_HINT,
            )
        return width, height
