"""Shared factories and fakes for the tracker tests."""
from __future__ import annotations

import datetime as dt
from decimal import Decimal

from circuitwatch.domain.models import Instrument, OptionType, Quote
from circuitwatch.errors import QuoteTimeoutError

T0 = dt.datetime(2026, 10, 19, 5, 0, tzinfo=dt.UTC)  # 10:30 IST, a Monday
EXPIRY = dt.date(2026, 10, 27)


def make_instrument(token: int, underlying: str = "NIFTY", strike: int | str = 25000,
                    option_type: str = "CE", expiry: dt.date = EXPIRY, exchange: str = "NFO") -> Instrument:
    return Instrument(
        token=token,
        tradingsymbol=f"{underlying}26OCT{strike}{option_type}",
        underlying=underlying,
        strike=Decimal(str(strike)),
        option_type=OptionType(option_type),
        expiry=expiry,
        exchange=exchange,
        lot_size=75,
    )


def catalog_row(token: int, name: str = "NIFTY", strike: float = 25000.0, itype: str = "CE",
                expiry: dt.date | None = EXPIRY, exchange: str = "NFO") -> dict:
    return {
        "instrument_token": token,
        "tradingsymbol": f"{name}{token}{itype}",
        "name": name,
        "strike": strike,
        "instrument_type": itype,
        "expiry": expiry,
        "exchange": exchange,
        "lot_size": 75,
    }


def make_quote(token: int, lower: str | float = "100", upper: str | float = "200", ltp: str | float = "150",
               observed_at: dt.datetime = T0) -> Quote:
    return Quote(
        token=token,
        last_price=Decimal(str(ltp)),
        lower_circuit_limit=Decimal(str(lower)),
        upper_circuit_limit=Decimal(str(upper)),
        observed_at=observed_at,
        volume=1000,
        open_interest=5000,
    )


def kite_quote_row(lower: float = 100.0, upper: float = 200.0, ltp: float = 150.0) -> dict:
    return {
        "last_price": ltp,
        "lower_circuit_limit": lower,
        "upper_circuit_limit": upper,
        "volume": 1200,
        "oi": 3400,
        "ohlc": {"open": 140.0, "high": 160.0, "low": 130.0, "close": 145.0},
    }


class FakeQuotes:
    """Quote provider returning `limits[token]` (lower, upper); tokens in a failing batch raise."""

    def __init__(self, limits: dict[int, tuple[str, str]] | None = None, *, ltp: str = "150",
                 fail_calls: set[int] | None = None, index_prices: dict[str, Decimal] | None = None):
        self.limits = dict(limits or {})
        self.ltp = ltp
        self.fail_calls = set(fail_calls or ())
        self.calls: list[list[int]] = []
        self.index_calls = 0
        self.prices = dict(index_prices or {})
        self.observed_at = T0

    def fetch_quotes(self, tokens):
        self.calls.append(list(tokens))
        if len(self.calls) in self.fail_calls:
            raise QuoteTimeoutError("simulated provider timeout")
        out = {}
        for t in tokens:
            lower, upper = self.limits.get(t, ("100", "200"))
            out[t] = make_quote(t, lower, upper, self.ltp, self.observed_at)
        return out

    def fetch_index_prices(self, underlyings):
        self.index_calls += 1
        return {u: p for u, p in self.prices.items() if u in set(underlyings)}


class FakeCatalog:
    def __init__(self, rows_by_segment: dict[str, list[dict]] | None = None, error: Exception | None = None):
        self.rows = rows_by_segment or {}
        self.error = error
        self.calls: list[str] = []

    def fetch_instruments(self, segment):
        self.calls.append(segment)
        if self.error is not None:
            raise self.error
        return list(self.rows.get(segment, []))


class FakeSession:
    def __init__(self, ok: bool = True):
        self.ok = ok

    def has_credential(self):
        return self.ok


class FixedCalendar:
    def __init__(self, open_: bool = True):
        self.open = open_
        self.checks = 0

    def is_market_open(self, now=None):
        self.checks += 1
        return self.open


class MemoryStore:
    def __init__(self, fail_events: bool = False):
        self.events = []
        self.snapshots = []
        self.states = []
        self.fail_events = fail_events

    def persist_change_event(self, event):
        from circuitwatch.errors import PersistenceFailure
        if self.fail_events:
            raise PersistenceFailure("disk full")
        self.events.append(event)

    def persist_snapshot(self, instrument, quote, underlying_price):
        self.snapshots.append((instrument.token, quote, underlying_price))

    def save_state(self, states):
        self.states.append(dict(states))

    def load_state(self):
        return {}


class RecordingSink:
    name = "recording"

    def __init__(self, explode: bool = False):
        self.deliveries: list[tuple[str, list]] = []
        self.explode = explode

    def deliver(self, underlying, events):
        if self.explode:
            raise RuntimeError("sink down")
        self.deliveries.append((underlying, list(events)))
