"""Batch quote & index LTP retrieval over a kiteconnect client.

  - fetch_quote_batch(client, tokens, ...) -> dict[int, Quote]
  - fetch_index_prices(client, underlyings, ...) -> dict[str, Decimal]

Every call is rate limited, bounded by `timed_call`, retried on transient
transport errors, and any remaining failure is re-raised as a
`BatchFailure` subtype. A response that does not cover every requested
token is rejected whole (`PartialQuoteResponseError`); no partial batch is
ever returned.
"""
from __future__ import annotations

import datetime as dt
import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from decimal import Decimal
from typing import Any

from circuitwatch.broker.kite.rate_limit import RateLimiter, is_rate_limit_error
from circuitwatch.domain.models import Quote, to_decimal
from circuitwatch.errors import (
    BatchFailure,
    MalformedQuoteError,
    PartialQuoteResponseError,
    ShutdownRequested,
    classify_provider_exception,
)
from circuitwatch.utils.retry import call_with_retry
from circuitwatch.utils.timeouts import timed_call

logger = logging.getLogger(__name__)

INDEX_PRICE_KEYS: dict[str, str] = {
    "NIFTY": "NSE:NIFTY 50",
    "BANKNIFTY": "NSE:NIFTY BANK",
    "FINNIFTY": "NSE:NIFTY FIN SERVICE",
    "MIDCPNIFTY": "NSE:NIFTY MID SELECT",
    "SENSEX": "BSE:SENSEX",
    "BANKEX": "BSE:BANKEX",
}


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def parse_quote_response(tokens: Sequence[int], raw: Any, observed_at: dt.datetime) -> dict[int, Quote]:
    if not isinstance(raw, dict):
        raise MalformedQuoteError(f"quote response is {type(raw).__name__}, expected dict")
    quotes: dict[int, Quote] = {}
    missing: list[int] = []
    for token in tokens:
        row = raw.get(str(token))
        if row is None:
            row = raw.get(token)
        if row is None:
            missing.append(token)
            continue
        try:
            quotes[token] = Quote.from_kite(token, row, observed_at)
        except (TypeError, ValueError) as e:
            raise MalformedQuoteError(f"token={token}: {e}") from e
    if missing:
        raise PartialQuoteResponseError(missing)
    return quotes


def _guarded(call: Callable[[], Any], *, what: str, timeout: float,
             shutdown: threading.Event | None, limiter: RateLimiter | None) -> Any:
    def _once() -> Any:
        if limiter is not None:
            limiter.acquire()
        return timed_call(call, timeout, shutdown)

    try:
        raw = call_with_retry(_once)
    except (ShutdownRequested, BatchFailure):
        raise
    except Exception as e:
        if limiter is not None and is_rate_limit_error(e):
            limiter.record_rate_limit_error()
        kind = classify_provider_exception(e)
        raise kind(f"{what} failed: {e}") from e
    if limiter is not None:
        limiter.record_success()
    return raw


def fetch_quote_batch(client: Any, tokens: Sequence[int], *, timeout: float,
                      shutdown: threading.Event | None = None,
                      limiter: RateLimiter | None = None,
                      clock: Callable[[], dt.datetime] = _utc_now) -> dict[int, Quote]:
    if not tokens:
        return {}
    keys = [str(t) for t in tokens]
    raw = _guarded(lambda: client.quote(keys), what=f"quote({len(keys)})",
                   timeout=timeout, shutdown=shutdown, limiter=limiter)
    return parse_quote_response(tokens, raw, clock())


def fetch_index_prices(client: Any, underlyings: Iterable[str], *, timeout: float,
                       shutdown: threading.Event | None = None,
                       limiter: RateLimiter | None = None) -> dict[str, Decimal]:
    """LTP of each known underlying index; unknown names and absent rows are skipped."""
    wanted = {u.upper(): INDEX_PRICE_KEYS[u.upper()] for u in underlyings if u.upper() in INDEX_PRICE_KEYS}
    if not wanted:
        return {}
    raw = _guarded(lambda: client.ltp(list(wanted.values())), what="ltp(indices)",
                   timeout=timeout, shutdown=shutdown, limiter=limiter)
    if not isinstance(raw, dict):
        raise MalformedQuoteError(f"ltp response is {type(raw).__name__}, expected dict")
    prices: dict[str, Decimal] = {}
    for underlying, key in wanted.items():
        row = raw.get(key)
        if not isinstance(row, dict) or row.get("last_price") is None:
            logger.debug("index_price_missing underlying=%s key=%s", underlying, key)
            continue
        try:
            prices[underlying] = to_decimal(row["last_price"])
        except ValueError:
            logger.debug("index_price_unparseable underlying=%s raw=%r", underlying, row.get("last_price"))
    return prices


__all__ = ["INDEX_PRICE_KEYS", "parse_quote_response", "fetch_quote_batch", "fetch_index_prices"]
