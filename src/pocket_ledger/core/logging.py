from __future__ import annotations

import contextvars
import json
import logging
import os
import time
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Correlation fields (request_id, user_id, ingest_id) stamped onto every event.
_context_var: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "log_context", default=MappingProxyType({})
)

_configured = False


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        payload: dict[str, Any] = {
            "ts": ts.replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "event": getattr(record, "event", None) or record.getMessage(),
        }
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update((k, v) for k, v in fields.items() if v is not None)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def configure_logging() -> None:
    global _configured  # noqa: PLW0603
    if _configured:
        return
    level = logging.getLevelNamesMapping().get(os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger("pocket_ledger")
    root.setLevel(level)
    root.handlers = [handler]
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


@contextmanager
def log_context(**fields: str | None) -> Iterator[None]:
    """Attach correlation fields to every event logged inside the block."""
    merged = dict(_context_var.get())
    merged.update({k: v for k, v in fields.items() if v})
    token = _context_var.set(MappingProxyType(merged))
    try:
        yield
    finally:
        _context_var.reset(token)


def set_user_context(user_id: str | None) -> None:
    # Lives until the enclosing log_context (the request) exits.
    if user_id:
        _context_var.set(MappingProxyType({**_context_var.get(), "user_id": user_id}))


def _merge_fields(fields: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = dict(_context_var.get())
    payload.update((k, v) for k, v in fields.items() if v is not None)
    return payload


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any
) -> None:
    logger.log(level, event, extra={"event": event, "fields": _merge_fields(fields)})


def log_exception(logger: logging.Logger, event: str, **fields: Any) -> None:
    logger.exception(event, extra={"event": event, "fields": _merge_fields(fields)})


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        logger = get_logger(__name__)
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        start = time.monotonic()
        with log_context(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception:
                log_exception(
                    logger,
                    "http.request.error",
                    method=request.method,
                    path=request.url.path,
                    duration_ms=monotonic_ms(start),
                )
                raise
            response.headers["x-request-id"] = request_id
            log_event(
                logger,
                "http.request.finish",
                level=logging.WARNING if response.status_code >= 500 else logging.INFO,
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=monotonic_ms(start),
            )
            return response


def monotonic_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
