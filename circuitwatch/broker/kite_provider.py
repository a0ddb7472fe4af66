"""Kite provider facade.

Wires session, rate limiting and the instrument cache, and delegates to the
specialised modules:
  * Instrument catalog -> circuitwatch.broker.kite.instruments
  * Quote / LTP logic  -> circuitwatch.broker.kite.quotes

Implements the `InstrumentCatalog`, `QuoteProvider` and `SessionProvider`
protocols used by the collection cycle.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Any

from circuitwatch.broker.kite.auth import KiteSession
from circuitwatch.broker.kite.instruments import InstrumentCache
from circuitwatch.broker.kite.quotes import fetch_index_prices, fetch_quote_batch
from circuitwatch.broker.kite.rate_limit import RateLimiter, build_default_rate_limiter
from circuitwatch.domain.models import Quote
from circuitwatch.errors import AuthenticationError, CatalogError
from circuitwatch.utils.retry import call_with_retry
from circuitwatch.utils.timeouts import timed_call

logger = logging.getLogger(__name__)


class KiteProvider:
    def __init__(self, session: KiteSession, *,
                 quote_timeout: float = 10.0,
                 catalog_timeout: float = 30.0,
                 instrument_cache_ttl: float = 600.0,
                 rate_limiter: RateLimiter | None = None,
                 shutdown: threading.Event | None = None):
        self.session = session
        self._quote_timeout = quote_timeout
        self._catalog_timeout = catalog_timeout
        self._limiter = rate_limiter if rate_limiter is not None else build_default_rate_limiter()
        self._shutdown = shutdown
        self._instruments = InstrumentCache(self._fetch_raw_instruments, ttl=instrument_cache_ttl)

    @classmethod
    def from_settings(cls, settings: Any, session: KiteSession,
                      shutdown: threading.Event | None = None) -> KiteProvider:
        return cls(
            session,
            quote_timeout=settings.quote_timeout,
            catalog_timeout=settings.catalog_timeout,
            instrument_cache_ttl=settings.instrument_cache_ttl,
            rate_limiter=build_default_rate_limiter(settings.kite_qps),
            shutdown=shutdown,
        )

    # SessionProvider
    def has_credential(self) -> bool:
        if self.session.has_credential():
            return True
        if self.session.reload_from_env():
            logger.info("kite_credentials_reloaded; resuming collection")
        return self.session.has_credential()

    def _client(self) -> Any:
        try:
            return self.session.client()
        except RuntimeError as e:
            raise AuthenticationError(str(e)) from e

    # InstrumentCatalog
    def _fetch_raw_instruments(self, segment: str) -> Any:
        try:
            client = self._client()
        except AuthenticationError as e:
            raise CatalogError(str(e)) from e

        def _once() -> Any:
            self._limiter.acquire()
            return timed_call(lambda: client.instruments(segment), self._catalog_timeout, self._shutdown)

        return call_with_retry(_once)

    def fetch_instruments(self, segment: str) -> list[dict[str, Any]]:
        return self._instruments.get(segment)

    # QuoteProvider
    def fetch_quotes(self, tokens: Sequence[int]) -> dict[int, Quote]:
        client = self._client()
        try:
            return fetch_quote_batch(client, tokens, timeout=self._quote_timeout,
                                     shutdown=self._shutdown, limiter=self._limiter)
        except AuthenticationError as e:
            self.session.mark_auth_failed(e)
            raise

    def fetch_index_prices(self, underlyings: Iterable[str]) -> dict[str, Decimal]:
        client = self._client()
        try:
            return fetch_index_prices(client, underlyings, timeout=self._quote_timeout,
                                      shutdown=self._shutdown, limiter=self._limiter)
        except AuthenticationError as e:
            self.session.mark_auth_failed(e)
            raise


__all__ = ["KiteProvider"]
