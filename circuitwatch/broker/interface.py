"""Collaborator contracts consumed by the tracking engine.

The engine never imports `kiteconnect` or touches the filesystem directly;
it talks to these protocols so tests (and alternative brokers) can supply
lightweight fakes.
"""
from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from circuitwatch.domain.models import ChangeEvent, CircuitState, Instrument, Quote


@runtime_checkable
class InstrumentCatalog(Protocol):
    def fetch_instruments(self, segment: str) -> list[dict[str, Any]]:
        """Raw catalog rows for one exchange segment. Raises CatalogError."""
        ...


@runtime_checkable
class QuoteProvider(Protocol):
    def fetch_quotes(self, tokens: Sequence[int]) -> dict[int, Quote]:
        """Quotes for every requested token, or a BatchFailure subclass."""
        ...

    def fetch_index_prices(self, underlyings: Iterable[str]) -> dict[str, Decimal]:
        ...


@runtime_checkable
class SessionProvider(Protocol):
    def has_credential(self) -> bool: ...


@runtime_checkable
class MarketCalendar(Protocol):
    def is_market_open(self, now: dt.datetime | None = None) -> bool: ...


@runtime_checkable
class ChangeStore(Protocol):
    def persist_change_event(self, event: ChangeEvent) -> None: ...

    def persist_snapshot(self, instrument: Instrument, quote: Quote, underlying_price: Decimal | None) -> None: ...

    def save_state(self, states: Mapping[int, CircuitState]) -> None: ...

    def load_state(self) -> dict[int, CircuitState]: ...


@runtime_checkable
class ChangeSink(Protocol):
    name: str

    def deliver(self, underlying: str, events: Sequence[ChangeEvent]) -> None: ...


__all__ = [
    "InstrumentCatalog",
    "QuoteProvider",
    "SessionProvider",
    "MarketCalendar",
    "ChangeStore",
    "ChangeSink",
]
