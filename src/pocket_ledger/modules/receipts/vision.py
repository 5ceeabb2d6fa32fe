from __future__ import annotations

import base64
import json
import logging
import mimetypes
import re
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import httpx

from pocket_ledger.core.config import Settings
from pocket_ledger.core.currencies import (
    BASE_CURRENCY,
    SUPPORTED_CURRENCIES,
    normalize_currency,
    round_money,
)
from pocket_ledger.core.logging import get_logger, log_event, monotonic_ms
from pocket_ledger.modules.receipts.errors import ExtractionFailed, ImageTooLarge

logger = get_logger(__name__)

RECEIPT_CATEGORIES: tuple[str, ...] = (
    "Food",
    "Transportation",
    "Shopping",
    "Utilities",
    "Entertainment",
    "Healthcare",
    "Other",
)
DEFAULT_DESCRIPTION = "Unknown purchase"
DEFAULT_CATEGORY = "Other"
MAX_DESCRIPTION_CHARS = 100

_SUPPORTED_FORMATS = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}

_PROMPT = (
    "Analyze this receipt image and extract the following information in JSON format: "
    "total amount (as a number), currency (the ISO 4217 code printed on the receipt, one of: "
    + ", ".join(SUPPORTED_CURRENCIES)
    + "), description (what was purchased - be brief, max 100 characters), and category "
    "(choose one from: "
    + ", ".join(RECEIPT_CATEGORIES)
    + "). Return ONLY valid JSON with keys: amount, currency, description, category. "
    "Do not include any markdown formatting or code blocks."
)

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.I)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_LEADING_DIGITS_RE = re.compile(r"\d+")
_BOMB_PIXELS_RE = re.compile(r"\((\d+) pixels\)")


@dataclass(frozen=True)
class ExtractionResult:
    amount: Decimal
    currency: str
    description: str
    category: str
    currency_detected: bool


def strip_code_fences(content: str) -> str:
    return _FENCE_RE.sub("", content).replace("```", "").strip()


def _parse_json_object(text: str) -> dict[str, Any] | None:
    try:
        obj = json.loads(text)
        return obj if isinstance(obj, dict) else None
    except json.JSONDecodeError:
        pass
    m = re.search(r"\{.*\}", text, flags=re.S)
    if not m:
        return None
    try:
        obj = json.loads(m.group(0))
        return obj if isinstance(obj, dict) else None
    except json.JSONDecodeError:
        return None


def _normalize_separators(text: str) -> str:
    """Rewrite `1.234,56` / `1,234.56` / `12,5` style amounts as plain decimals."""
    if "," in text and "." in text:
        # Whichever separator comes last is the decimal mark.
        if text.rfind(",") > text.rfind("."):
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")
    if "," in text:
        whole, _, frac = text.rpartition(",")
        digits = _LEADING_DIGITS_RE.match(frac)
        if "," not in whole and digits and len(digits.group(0)) in (1, 2):
            return f"{whole}.{frac}"
        return text.replace(",", "")
    if text.count(".") > 1:
        return text.replace(".", "")
    return text


def _parse_amount(raw: Any) -> Decimal | None:
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float, Decimal)):
        text = str(raw)
    else:
        text = _normalize_separators(str(raw).replace(" ", "").replace("\u00a0", ""))
    m = _NUMBER_RE.search(text)
    if not m:
        return None
    try:
        value = Decimal(m.group(0))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def _normalize_category(raw: Any) -> str:
    if not isinstance(raw, str):
        return DEFAULT_CATEGORY
    for category in RECEIPT_CATEGORIES:
        if category.lower() == raw.strip().lower():
            return category
    return DEFAULT_CATEGORY


def _normalize_description(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.strip():
        return DEFAULT_DESCRIPTION
    return raw.strip()[:MAX_DESCRIPTION_CHARS]


def parse_extraction(content: str, *, base_currency: str = BASE_CURRENCY) -> ExtractionResult:
    obj = _parse_json_object(strip_code_fences(content))
    if obj is None or "amount" not in obj:
        raise ValueError("Failed to parse model response")
    amount = _parse_amount(obj.get("amount"))
    if amount is None or amount <= 0:
        raise ValueError(f"Invalid amount in model response: {obj.get('amount')!r}")

    currency = normalize_currency(obj.get("currency"))
    return ExtractionResult(
        amount=round_money(amount),
        currency=currency or base_currency,
        description=_normalize_description(obj.get("description")),
        category=_normalize_category(obj.get("category")),
        currency_detected=currency is not None,
    )


def bomb_megapixels(error: Exception) -> float:
    """Megapixel count named in a Pillow DecompressionBombError, or the limit it tripped."""
    from PIL import Image

    m = _BOMB_PIXELS_RE.search(str(error))
    pixels = int(m.group(1)) if m else 2 * (Image.MAX_IMAGE_PIXELS or 0)
    return pixels / 1_000_000


def inspect_image(path: Path) -> tuple[str | None, float | None]:
    """Return the supported MIME type (content first, then extension) and the megapixel count."""
    from PIL import Image, UnidentifiedImageError

    fmt = ""
    megapixels: float | None = None
    try:
        with Image.open(path) as im:
            fmt = (im.format or "").upper()
            megapixels = (im.width * im.height) / 1_000_000
    except Image.DecompressionBombError as e:
        megapixels = bomb_megapixels(e)
    except (UnidentifiedImageError, OSError):
        pass
    if fmt in _SUPPORTED_FORMATS:
        return _SUPPORTED_FORMATS[fmt], megapixels
    guessed, _ = mimetypes.guess_type(path.name)
    return (guessed if guessed in _SUPPORTED_FORMATS.values() else None), megapixels


class ReceiptVisionExtractor:
    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        model: str,
        timeout_seconds: float = 30.0,
        max_image_bytes: int = 3 * 1024 * 1024,
        max_megapixels: float = 33.0,
        base_currency: str = BASE_CURRENCY,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key or None
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout_seconds
        self._max_bytes = max_image_bytes
        self._max_megapixels = max_megapixels
        self._base_currency = base_currency
        self._client = client

    @classmethod
    def from_settings(
        cls, cfg: Settings, *, client: httpx.Client | None = None
    ) -> ReceiptVisionExtractor:
        return cls(
            api_key=cfg.vision_api_key,
            base_url=cfg.vision_base_url,
            model=cfg.vision_model,
            timeout_seconds=cfg.vision_timeout_seconds,
            max_image_bytes=cfg.max_image_bytes,
            max_megapixels=cfg.max_image_megapixels,
            base_currency=cfg.base_currency,
            client=client,
        )

    def extract(self, image_path: Path) -> ExtractionResult:
        if not image_path.is_file():
            raise self._failed("Image file not found")
        mime_type, megapixels = inspect_image(image_path)
        byte_size = image_path.stat().st_size
        if byte_size > self._max_bytes or (megapixels or 0) > self._max_megapixels:
            raise ImageTooLarge(
                byte_size=byte_size,
                megapixels=megapixels,
                max_bytes=self._max_bytes,
                max_megapixels=self._max_megapixels,
            )
        if mime_type is None:
            raise self._failed("Unsupported image format")
        if not self._api_key:
            raise self._failed("Vision API key is not configured")

        start = time.monotonic()
        image_b64 = base64.b64encode(image_path.read_bytes()).decode("ascii")
        payload = {
            "model": self._model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": _PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime_type};base64,{image_b64}"},
                        },
                    ],
                }
            ],
            "temperature": 0.2,
            "max_tokens": 300,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        url = self._base_url + "/chat/completions"

        try:
            if self._client is not None:
                resp = self._client.post(url, headers=headers, json=payload, timeout=self._timeout)
            else:
                resp = httpx.post(url, headers=headers, json=payload, timeout=self._timeout)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._failed(f"Vision API returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise self._failed(f"Vision API unreachable ({type(e).__name__})") from e

        try:
            raw = resp.json()
            content = str(raw["choices"][0]["message"]["content"] or "")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise self._failed("Unexpected response shape") from e

        try:
            result = parse_extraction(content, base_currency=self._base_currency)
        except ValueError as e:
            raise self._failed(str(e)) from e

        log_event(
            logger,
            "vision.extract.success",
            amount=str(result.amount),
            currency=result.currency,
            currency_detected=result.currency_detected,
            category=result.category,
            duration_ms=monotonic_ms(start),
        )
        return result

    def _failed(self, detail: str) -> ExtractionFailed:
        log_event(logger, "vision.extract.failure", level=logging.ERROR, reason=detail)
        return ExtractionFailed(detail)
