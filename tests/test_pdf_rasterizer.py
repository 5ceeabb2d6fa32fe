from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from pocket_ledger.modules.receipts.errors import ImageTooLarge
from pocket_ledger.modules.receipts.rasterizer import (
    Available,
    PdfRasterizer,
    PillowStitcher,
    PyMuPdfStitcher,
    Unavailable,
)
from receipt_fixtures import make_huge_png, make_pdf


def _write(tmp_path: Path, name: str, body: bytes) -> Path:
    path = tmp_path / name
    path.write_bytes(body)
    return path


def test_single_page_pdf_renders_one_jpeg(tmp_path):
    pdf = _write(tmp_path, "one.pdf", make_pdf(1))
    out = tmp_path / "one.jpg"

    assert PdfRasterizer(dpi=144).to_image(pdf, out) is True

    with Image.open(out) as im:
        assert im.format == "JPEG"
        assert im.size == (400, 600)


def test_multi_page_pdf_is_stacked_vertically(tmp_path):
    rasterizer = PdfRasterizer()
    single = tmp_path / "single.jpg"
    stacked = tmp_path / "stacked.jpg"
    assert rasterizer.to_image(_write(tmp_path, "a.pdf", make_pdf(1)), single)
    assert rasterizer.to_image(_write(tmp_path, "b.pdf", make_pdf(3)), stacked)

    with Image.open(single) as one, Image.open(stacked) as three:
        assert three.width == one.width
        assert three.height == 3 * one.height

    # Per-page renders live in a temporary directory that is gone afterwards.
    assert not list(tmp_path.glob("pdf_pages_*"))


def test_page_count_reads_the_document(tmp_path):
    assert PdfRasterizer().page_count(_write(tmp_path, "c.pdf", make_pdf(3))) == 3


def test_missing_document_returns_false(tmp_path):
    assert PdfRasterizer().to_image(tmp_path / "absent.pdf", tmp_path / "out.jpg") is False


def test_disabled_rasterizer_reports_unavailable(tmp_path):
    rasterizer = PdfRasterizer(enabled=False)
    capability = rasterizer.probe()

    assert isinstance(capability, Unavailable)
    assert rasterizer.is_available() is False
    pdf = _write(tmp_path, "d.pdf", make_pdf(1))
    assert rasterizer.to_image(pdf, tmp_path / "out.jpg") is False


def test_enabled_rasterizer_probes_renderer():
    assert isinstance(PdfRasterizer().probe(), Available)


def test_oversized_combined_image_is_rejected(tmp_path):
    pdf = _write(tmp_path, "big.pdf", make_pdf(3))
    rasterizer = PdfRasterizer(max_megapixels=0.1)

    with pytest.raises(ImageTooLarge) as excinfo:
        rasterizer.to_image(pdf, tmp_path / "out.jpg")

    message = str(excinfo.value)
    assert message.startswith("Combined PDF image resolution is too high")
    assert "fewer pages" in message


def test_pillow_stitcher_stacks_pages(tmp_path):
    pages = []
    for i, height in enumerate((50, 70)):
        path = tmp_path / f"page_{i}.jpg"
        Image.new("RGB", (40, height), (i * 100, 0, 0)).save(path, format="JPEG")
        pages.append(path)
    out = tmp_path / "stacked.jpg"

    PillowStitcher().stitch(pages, out, quality=80)

    with Image.open(out) as im:
        assert im.size == (40, 120)


@pytest.mark.parametrize("stitcher", [PyMuPdfStitcher(), PillowStitcher()], ids=lambda s: s.name)
def test_stitched_canvas_takes_widest_page_and_fills_white(tmp_path, stitcher):
    pages = []
    for i, (width, height) in enumerate(((40, 50), (80, 30))):
        path = tmp_path / f"page_{i}.png"
        Image.new("RGB", (width, height), (0, 0, 160)).save(path, format="PNG")
        pages.append(path)
    out = tmp_path / "stacked.jpg"

    stitcher.stitch(pages, out, quality=90)

    with Image.open(out) as im:
        assert im.size == (80, 80)
        rgb = im.convert("RGB")
        # Right of the narrow first page is padding; the wide second page spans it.
        assert all(channel >= 240 for channel in rgb.getpixel((75, 5)))
        assert rgb.getpixel((75, 70))[2] >= 120


def test_ceiling_rejects_decompression_bomb_sized_output(tmp_path):
    image = _write(tmp_path, "combined.png", make_huge_png())

    with pytest.raises(ImageTooLarge) as excinfo:
        PdfRasterizer().enforce_ceiling(image)

    assert excinfo.value.megapixels == pytest.approx(196.0)
    assert str(excinfo.value).startswith("Combined PDF image resolution is too high")
