from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import httpx

from pocket_ledger.core.config import Settings
from pocket_ledger.core.currencies import (
    BASE_CURRENCY,
    SUPPORTED_CURRENCIES,
    is_supported,
    normalize_currency,
    round_money,
    round_rate,
)
from pocket_ledger.core.logging import get_logger, log_event, monotonic_ms

logger = get_logger(__name__)


class RateUnavailable(Exception):
    kind = "rate_unavailable"

    def __init__(self, message: str, *, from_currency: str, to_currency: str) -> None:
        super().__init__(message)
        self.from_currency = from_currency
        self.to_currency = to_currency


@dataclass(frozen=True)
class ConversionResult:
    amount_base: Decimal
    original_amount: Decimal
    original_currency: str
    exchange_rate: Decimal


class RateCache:
    """Process-wide, time-bounded cache of exchange rates keyed by currency pair.

    The lock only guards dict access. Two callers missing at once may both fetch;
    the later write wins, which is acceptable for advisory rates.
    """

    def __init__(self, *, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[Decimal, float]] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, pair: tuple[str, str]) -> Decimal | None:
        with self._lock:
            entry = self._entries.get(pair)
        if entry is None:
            return None
        rate, stored_at = entry
        if self._clock() - stored_at >= self._ttl:
            return None
        return rate

    def put(self, pair: tuple[str, str], rate: Decimal) -> None:
        with self._lock:
            self._entries[pair] = (rate, self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_rate_cache: RateCache | None = None


def get_rate_cache(ttl_seconds: float) -> RateCache:
    global _rate_cache  # noqa: PLW0603
    if _rate_cache is None or _rate_cache.ttl_seconds != ttl_seconds:
        _rate_cache = RateCache(ttl_seconds=ttl_seconds)
    return _rate_cache


class CurrencyConverter:
    def __init__(
        self,
        *,
        api_url: str,
        timeout_seconds: float,
        cache: RateCache,
        base_currency: str = BASE_CURRENCY,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout_seconds
        self._cache = cache
        self._base = base_currency.upper()
        self._client = client

    @classmethod
    def from_settings(
        cls, cfg: Settings, *, client: httpx.Client | None = None
    ) -> CurrencyConverter:
        return cls(
            api_url=cfg.fx_api_url,
            timeout_seconds=cfg.fx_timeout_seconds,
            cache=get_rate_cache(cfg.fx_cache_ttl_seconds),
            base_currency=cfg.base_currency,
            client=client,
        )

    @property
    def base_currency(self) -> str:
        return self._base

    def supported_currencies(self) -> tuple[str, ...]:
        return SUPPORTED_CURRENCIES

    def is_supported(self, code: str | None) -> bool:
        return is_supported(code)

    def convert(self, amount: Decimal, from_currency: str) -> ConversionResult:
        if not isinstance(amount, Decimal):
            amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("Amount must be positive")
        code = normalize_currency(from_currency)
        if code is None:
            raise ValueError(f"Unsupported currency: {from_currency}")

        if code == self._base:
            return ConversionResult(
                amount_base=amount,
                original_amount=amount,
                original_currency=code,
                exchange_rate=Decimal("1"),
            )

        rate = self.rate(code)
        return ConversionResult(
            amount_base=round_money(amount * rate),
            original_amount=amount,
            original_currency=code,
            exchange_rate=round_rate(rate),
        )

    def rate(self, from_currency: str) -> Decimal:
        code = from_currency.upper()
        if code == self._base:
            return Decimal("1")
        pair = (code, self._base)
        cached = self._cache.get(pair)
        if cached is not None:
            log_event(logger, "fx.rate.cache_hit", from_currency=code, to_currency=self._base)
            return cached
        rate = self._fetch_rate(code)
        self._cache.put(pair, rate)
        return rate

    def _fetch_rate(self, from_currency: str) -> Decimal:
        start = time.monotonic()
        url = f"{self._api_url}/{from_currency}"

        def _fail(message: str, **fields) -> RateUnavailable:
            log_event(
                logger,
                "fx.rate.failure",
                level=logging.ERROR,
                from_currency=from_currency,
                to_currency=self._base,
                reason=message,
                duration_ms=monotonic_ms(start),
                **fields,
            )
            return RateUnavailable(
                f"Exchange rate {from_currency}->{self._base} unavailable: {message}",
                from_currency=from_currency,
                to_currency=self._base,
            )

        try:
            if self._client is not None:
                resp = self._client.get(url, timeout=self._timeout, follow_redirects=True)
            else:
                resp = httpx.get(url, timeout=self._timeout, follow_redirects=True)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise _fail("provider returned an error", status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise _fail("provider unreachable", error_type=type(e).__name__) from e

        try:
            data = resp.json()
        except ValueError as e:
            raise _fail("malformed response") from e

        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict):
            raise _fail("response has no rates")
        raw = rates.get(self._base)
        if raw is None or isinstance(raw, bool):
            raise _fail("base currency rate missing")
        try:
            rate = Decimal(str(raw))
        except InvalidOperation as e:
            raise _fail("rate is not a number") from e
        if not rate.is_finite() or rate <= 0:
            raise _fail("rate is not positive")

        log_event(
            logger,
            "fx.rate.fetched",
            from_currency=from_currency,
            to_currency=self._base,
            rate=str(rate),
            duration_ms=monotonic_ms(start),
        )
        return rate
