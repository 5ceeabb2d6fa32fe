from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from pocket_ledger.modules.receipts.errors import ExtractionFailed, ImageTooLarge
from pocket_ledger.modules.receipts.vision import (
    DEFAULT_CATEGORY,
    DEFAULT_DESCRIPTION,
    ReceiptVisionExtractor,
    parse_extraction,
)
from receipt_fixtures import make_huge_png, make_jpeg, receipt_json, vision_client


def _extractor(client: httpx.Client, **kwargs) -> ReceiptVisionExtractor:
    return ReceiptVisionExtractor(
        api_key=kwargs.pop("api_key", "test-key"),
        base_url="https://vision.test/v1",
        model="vision-model",
        client=client,
        **kwargs,
    )


def test_parse_extraction_strips_code_fences():
    content = "```json\n" + receipt_json("1462.50", "czk") + "\n```"

    result = parse_extraction(content)

    assert result.amount == Decimal("1462.50")
    assert result.currency == "CZK"
    assert result.currency_detected is True
    assert result.category == "Food"


def test_parse_extraction_finds_object_in_prose():
    content = 'Here you go: {"amount": "1,234.5", "description": "", "category": "Gadgets"} thanks'

    result = parse_extraction(content)

    assert result.amount == Decimal("1234.50")
    assert result.currency == "EUR"
    assert result.currency_detected is False
    assert result.description == DEFAULT_DESCRIPTION
    assert result.category == DEFAULT_CATEGORY


def test_parse_extraction_truncates_long_description():
    result = parse_extraction(json.dumps({"amount": 3, "description": "x" * 250}))
    assert len(result.description) == 100


@pytest.mark.parametrize(
    "content", ["not json at all", '{"description": "no amount"}', '{"amount": 0}']
)
def test_parse_extraction_rejects_unusable_content(content):
    with pytest.raises(ValueError):
        parse_extraction(content)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("12,5", Decimal("12.50")),
        ("12,50", Decimal("12.50")),
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("1 234,50 K\u010d", Decimal("1234.50")),
        ("1,234", Decimal("1234.00")),
        ("1.234.567", Decimal("1234567.00")),
        ("EUR 9.99", Decimal("9.99")),
        (1462.5, Decimal("1462.50")),
    ],
)
def test_parse_extraction_reads_local_number_formats(raw, expected):
    assert parse_extraction(receipt_json(raw, "CZK")).amount == expected


def test_extract_sends_image_and_parses_reply(tmp_path):
    image = tmp_path / "receipt.jpg"
    image.write_bytes(make_jpeg())
    seen: list[httpx.Request] = []

    result = _extractor(vision_client(receipt_json(12.5, "GBP"), seen=seen)).extract(image)

    assert result.amount == Decimal("12.50")
    assert result.currency == "GBP"
    assert seen[0].url.path == "/v1/chat/completions"
    assert seen[0].headers["authorization"] == "Bearer test-key"
    payload = json.loads(seen[0].content)
    assert payload["model"] == "vision-model"
    image_part = payload["messages"][0]["content"][1]
    assert image_part["image_url"]["url"].startswith("data:image/jpeg;base64,")


def test_extract_rejects_oversized_image_before_calling_provider(tmp_path):
    image = tmp_path / "receipt.jpg"
    image.write_bytes(make_jpeg())
    seen: list[httpx.Request] = []

    extractor = _extractor(vision_client(receipt_json(1), seen=seen), max_image_bytes=100)
    with pytest.raises(ImageTooLarge) as excinfo:
        extractor.extract(image)

    assert "Maximum size is" in str(excinfo.value)
    assert seen == []


def test_extract_rejects_too_many_megapixels(tmp_path):
    image = tmp_path / "receipt.jpg"
    image.write_bytes(make_jpeg(1000, 1000))

    with pytest.raises(ImageTooLarge) as excinfo:
        _extractor(vision_client(receipt_json(1)), max_megapixels=0.5).extract(image)
    assert "megapixels" in str(excinfo.value)


def test_extract_without_api_key_fails(tmp_path):
    image = tmp_path / "receipt.jpg"
    image.write_bytes(make_jpeg())

    with pytest.raises(ExtractionFailed):
        _extractor(vision_client(receipt_json(1)), api_key=None).extract(image)


def test_extract_provider_error_is_extraction_failure(tmp_path):
    image = tmp_path / "receipt.jpg"
    image.write_bytes(make_jpeg())
    client = httpx.Client(
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    )

    with pytest.raises(ExtractionFailed) as excinfo:
        _extractor(client).extract(image)
    assert str(excinfo.value).startswith("Failed to analyze receipt:")


def test_extract_rejects_decompression_bomb_sized_image(tmp_path):
    image = tmp_path / "receipt.png"
    image.write_bytes(make_huge_png())
    seen: list[httpx.Request] = []

    with pytest.raises(ImageTooLarge) as excinfo:
        _extractor(vision_client(receipt_json(1), seen=seen)).extract(image)

    assert excinfo.value.megapixels == pytest.approx(196.0)
    assert "resolution is too high" in str(excinfo.value)
    assert seen == []
