from decimal import Decimal

import pytest

from circuitwatch.broker.kite.quotes import fetch_index_prices, fetch_quote_batch, parse_quote_response
from circuitwatch.broker.kite.rate_limit import RateLimiter
from circuitwatch.errors import (
    AuthenticationError,
    MalformedQuoteError,
    PartialQuoteResponseError,
    QuoteFetchError,
)
from tests._helpers import T0, kite_quote_row


class TokenException(Exception):
    pass


class FakeKite:
    def __init__(self, quote_payload=None, ltp_payload=None, error=None):
        self.quote_payload = quote_payload
        self.ltp_payload = ltp_payload
        self.error = error
        self.quote_keys = []
        self.ltp_keys = []

    def quote(self, keys):
        self.quote_keys.append(list(keys))
        if self.error:
            raise self.error
        return self.quote_payload

    def ltp(self, keys):
        self.ltp_keys.append(list(keys))
        if self.error:
            raise self.error
        return self.ltp_payload


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
    monkeypatch.setenv("CW_RETRY_BACKOFF", "0")


def _limiter(**kw):
    return RateLimiter(qps=1000.0, **kw)


def test_parse_accepts_string_and_int_keys():
    raw = {"11": kite_quote_row(100.5, 200.25, 150.1), 12: kite_quote_row()}
    quotes = parse_quote_response([11, 12], raw, T0)
    q = quotes[11]
    assert q.lower_circuit_limit == Decimal("100.5")
    assert q.upper_circuit_limit == Decimal("200.25")
    assert q.last_price == Decimal("150.1")
    assert q.observed_at == T0
    assert q.volume == 1200 and q.open_interest == 3400
    assert q.close == Decimal("145.0")
    assert set(quotes) == {11, 12}


def test_parse_rejects_partial_response_whole():
    with pytest.raises(PartialQuoteResponseError) as info:
        parse_quote_response([1, 2, 3], {"1": kite_quote_row()}, T0)
    assert info.value.missing == [2, 3]


def test_parse_rejects_malformed_rows():
    with pytest.raises(MalformedQuoteError):
        parse_quote_response([1], ["not", "a", "dict"], T0)
    row = kite_quote_row()
    del row["upper_circuit_limit"]
    with pytest.raises(MalformedQuoteError, match="token=1"):
        parse_quote_response([1], {"1": row}, T0)
    with pytest.raises(MalformedQuoteError):
        parse_quote_response([1], {"1": dict(kite_quote_row(), last_price="n/a")}, T0)


def test_fetch_quote_batch_requests_string_tokens():
    client = FakeKite(quote_payload={"7": kite_quote_row(), "8": kite_quote_row()})
    quotes = fetch_quote_batch(client, [7, 8], timeout=1.0, limiter=_limiter(), clock=lambda: T0)
    assert client.quote_keys == [["7", "8"]]
    assert set(quotes) == {7, 8}
    assert fetch_quote_batch(client, [], timeout=1.0) == {}
    assert len(client.quote_keys) == 1


def test_fetch_quote_batch_classifies_failures():
    with pytest.raises(AuthenticationError):
        fetch_quote_batch(FakeKite(error=TokenException("Token expired")), [1], timeout=1.0, limiter=_limiter())
    with pytest.raises(QuoteFetchError):
        fetch_quote_batch(FakeKite(error=RuntimeError("gateway exploded")), [1], timeout=1.0, limiter=_limiter())


def test_rate_limit_failures_feed_the_limiter():
    limiter = _limiter(consecutive_threshold=1, cooldown_seconds=5.0)
    with pytest.raises(QuoteFetchError):
        fetch_quote_batch(FakeKite(error=RuntimeError("Too many requests")), [1], timeout=1.0, limiter=limiter)
    assert limiter.cooldown_active()


def test_fetch_index_prices_maps_known_underlyings():
    client = FakeKite(ltp_payload={
        "NSE:NIFTY 50": {"instrument_token": 256265, "last_price": 25012.35},
        "BSE:SENSEX": {"instrument_token": 265, "last_price": None},
    })
    prices = fetch_index_prices(client, ["nifty", "SENSEX", "UNKNOWN"], timeout=1.0, limiter=_limiter())
    assert prices == {"NIFTY": Decimal("25012.35")}
    assert client.ltp_keys == [["NSE:NIFTY 50", "BSE:SENSEX"]]


def test_fetch_index_prices_skips_call_without_known_underlyings():
    client = FakeKite(ltp_payload={})
    assert fetch_index_prices(client, ["XYZ"], timeout=1.0) == {}
    assert client.ltp_keys == []
    with pytest.raises(MalformedQuoteError):
        fetch_index_prices(FakeKite(ltp_payload=[]), ["NIFTY"], timeout=1.0)
