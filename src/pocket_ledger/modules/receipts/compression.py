from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path

import httpx

from pocket_ledger.core.config import Settings
from pocket_ledger.core.logging import get_logger, log_event, monotonic_ms
from pocket_ledger.modules.receipts.errors import CompressionCause, CompressionFailed

logger = get_logger(__name__)


def _cause_for_status(status_code: int) -> CompressionCause:
    if status_code in {401, 429}:
        return CompressionCause.ACCOUNT
    if 400 <= status_code < 500:
        return CompressionCause.REQUEST
    return CompressionCause.SERVER


def _error_detail(resp: httpx.Response) -> str | None:
    try:
        data = resp.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        return str(message) if message else None
    return None


class ImageCompressor:
    """Shrinks images through the TinyPNG API; copies the file untouched when no key is set."""

    def __init__(
        self,
        *,
        api_key: str | None,
        api_url: str = "https://api.tinify.com",
        timeout_seconds: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key or None
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout_seconds
        self._client = client
        self._compression_count: int | None = None

    @classmethod
    def from_settings(cls, cfg: Settings, *, client: httpx.Client | None = None) -> ImageCompressor:
        return cls(
            api_key=cfg.tinypng_api_key,
            api_url=cfg.tinypng_api_url,
            timeout_seconds=cfg.tinypng_timeout_seconds,
            client=client,
        )

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    def compression_count(self) -> int | None:
        """Compressions used this month, as last reported by the service."""
        return self._compression_count

    def compress(self, source_path: Path, destination_path: Path) -> bool:
        if not source_path.is_file():
            raise CompressionFailed(CompressionCause.REQUEST, f"file not found: {source_path.name}")

        if not self.configured:
            log_event(
                logger,
                "compression.skipped",
                level=logging.WARNING,
                reason="no api key configured",
            )
            if source_path.resolve() != destination_path.resolve():
                shutil.copyfile(source_path, destination_path)
            return True

        start = time.monotonic()
        body = source_path.read_bytes()
        shrink = self._request("POST", f"{self._api_url}/shrink", content=body)
        self._record_count(shrink)
        try:
            output_url = shrink.json()["output"]["url"]
        except (ValueError, KeyError, TypeError) as e:
            output_url = shrink.headers.get("location")
            if not output_url:
                raise CompressionFailed(CompressionCause.SERVER, "missing output url") from e

        result = self._request("GET", output_url)
        destination_path.write_bytes(result.content)
        log_event(
            logger,
            "compression.success",
            input_bytes=len(body),
            output_bytes=len(result.content),
            compression_count=self._compression_count,
            duration_ms=monotonic_ms(start),
        )
        return True

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        auth = ("api", self._api_key or "")
        try:
            if self._client is not None:
                resp = self._client.request(
                    method, url, auth=auth, timeout=self._timeout, **kwargs
                )
            else:
                resp = httpx.request(method, url, auth=auth, timeout=self._timeout, **kwargs)
        except httpx.HTTPError as e:
            log_event(
                logger,
                "compression.failure",
                level=logging.ERROR,
                cause=CompressionCause.CONNECTION.value,
                error_type=type(e).__name__,
            )
            raise CompressionFailed(CompressionCause.CONNECTION, str(e) or None) from e

        if resp.status_code >= 400:
            cause = _cause_for_status(resp.status_code)
            detail = _error_detail(resp)
            log_event(
                logger,
                "compression.failure",
                level=logging.ERROR,
                cause=cause.value,
                status_code=resp.status_code,
                detail=detail,
            )
            raise CompressionFailed(cause, detail)
        return resp

    def _record_count(self, resp: httpx.Response) -> None:
        raw = resp.headers.get("compression-count")
        if raw is None:
            return
        try:
            self._compression_count = int(raw)
        except ValueError:
            return
