"""CSV change history + JSON state checkpoint.

Layout under `base_dir`:

    changes/YYYY-MM-DD.csv     one row per ChangeEvent (trading-day file)
    snapshots/YYYY-MM-DD.csv   one row per persisted quote snapshot
    state.json                 last known limits per token (warm start)

Days are IST calendar days. Every write failure surfaces as
`PersistenceFailure`; the caller decides whether to continue.
"""
from __future__ import annotations

import csv
import datetime as dt
import json
import logging
import os
import threading
from collections.abc import Callable, Mapping
from decimal import Decimal
from pathlib import Path
from typing import Any

from circuitwatch.domain.models import (
    CHANGE_EVENT_FIELDS,
    ChangeEvent,
    CircuitState,
    Instrument,
    Quote,
    circuit_status,
)
from circuitwatch.errors import PersistenceFailure
from circuitwatch.utils.market_hours import IST

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = [
    "observed_at", "instrument_token", "tradingsymbol", "underlying", "strike", "option_type",
    "expiry", "exchange", "last_price", "open", "high", "low", "close", "volume", "open_interest",
    "lower_circuit_limit", "upper_circuit_limit", "underlying_price", "circuit_status",
]

STATE_VERSION = 1


def ist_day(ts: dt.datetime) -> dt.date:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.UTC)
    return ts.astimezone(IST).date()


def snapshot_row(instrument: Instrument, quote: Quote, underlying_price: Decimal | None) -> dict[str, Any]:
    return {
        "observed_at": quote.observed_at.isoformat(),
        "instrument_token": instrument.token,
        "tradingsymbol": instrument.tradingsymbol,
        "underlying": instrument.underlying,
        "strike": str(instrument.strike),
        "option_type": instrument.option_type.value,
        "expiry": instrument.expiry.isoformat(),
        "exchange": instrument.exchange,
        "last_price": str(quote.last_price),
        "open": str(quote.open),
        "high": str(quote.high),
        "low": str(quote.low),
        "close": str(quote.close),
        "volume": quote.volume,
        "open_interest": quote.open_interest,
        "lower_circuit_limit": str(quote.lower_circuit_limit),
        "upper_circuit_limit": str(quote.upper_circuit_limit),
        "underlying_price": "" if underlying_price is None else str(underlying_price),
        "circuit_status": circuit_status(quote.last_price, quote.lower_circuit_limit,
                                         quote.upper_circuit_limit).value,
    }


class CsvChangeStore:
    """File-backed `ChangeStore`."""

    def __init__(self, base_dir: str | os.PathLike[str] = "data/circuitwatch",
                 day_of: Callable[[dt.datetime], dt.date] = ist_day):
        self.base_dir = Path(base_dir).resolve()
        self.changes_dir = self.base_dir / "changes"
        self.snapshots_dir = self.base_dir / "snapshots"
        self.state_path = self.base_dir / "state.json"
        self._day_of = day_of
        self._lock = threading.Lock()
        self.changes_dir.mkdir(parents=True, exist_ok=True)
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("CsvChangeStore initialized base_dir=%s", self.base_dir)

    def _append_row(self, path: Path, fields: list[str], row: dict[str, Any]) -> None:
        with self._lock:
            file_exists = path.is_file()
            with path.open("a" if file_exists else "w", newline="", encoding="utf-8") as fh:
                writer = csv.DictWriter(fh, fieldnames=fields)
                if not file_exists:
                    writer.writeheader()
                writer.writerow(row)

    def changes_path(self, day: dt.date) -> Path:
        return self.changes_dir / f"{day.isoformat()}.csv"

    def snapshots_path(self, day: dt.date) -> Path:
        return self.snapshots_dir / f"{day.isoformat()}.csv"

    def persist_change_event(self, event: ChangeEvent) -> None:
        path = self.changes_path(self._day_of(event.detected_at))
        try:
            self._append_row(path, CHANGE_EVENT_FIELDS, event.as_row())
        except OSError as e:
            raise PersistenceFailure(f"change event {event.instrument.tradingsymbol} not written: {e}") from e

    def persist_snapshot(self, instrument: Instrument, quote: Quote, underlying_price: Decimal | None) -> None:
        path = self.snapshots_path(self._day_of(quote.observed_at))
        try:
            self._append_row(path, SNAPSHOT_FIELDS, snapshot_row(instrument, quote, underlying_price))
        except OSError as e:
            raise PersistenceFailure(f"snapshot {instrument.tradingsymbol} not written: {e}") from e

    def save_state(self, states: Mapping[int, CircuitState]) -> None:
        payload = {
            "version": STATE_VERSION,
            "saved_at": dt.datetime.now(dt.UTC).isoformat(),
            "states": {str(token): s.as_dict() for token, s in states.items()},
        }
        tmp = self.state_path.with_suffix(".json.tmp")
        try:
            with self._lock:
                with tmp.open("w", encoding="utf-8") as fh:
                    json.dump(payload, fh, indent=1, sort_keys=True)
                os.replace(tmp, self.state_path)
        except OSError as e:
            raise PersistenceFailure(f"state checkpoint not written: {e}") from e

    def load_state(self) -> dict[int, CircuitState]:
        if not self.state_path.is_file():
            return {}
        try:
            with self.state_path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
            raw = payload.get("states") or {}
            return {int(token): CircuitState.from_dict(data) for token, data in raw.items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("state_checkpoint_unreadable path=%s err=%s; starting cold", self.state_path, e)
            return {}

    def change_days(self) -> list[dt.date]:
        days: list[dt.date] = []
        for p in self.changes_dir.glob("*.csv"):
            try:
                days.append(dt.date.fromisoformat(p.stem))
            except ValueError:
                continue
        return sorted(days)

    def read_changes(self, day: dt.date) -> list[ChangeEvent]:
        path = self.changes_path(day)
        if not path.is_file():
            return []
        events: list[ChangeEvent] = []
        with path.open("r", newline="", encoding="utf-8") as fh:
            for lineno, row in enumerate(csv.DictReader(fh), start=2):
                try:
                    events.append(ChangeEvent.from_row(row))
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning("change_row_unreadable file=%s line=%d err=%s", path.name, lineno, e)
        return events


__all__ = ["CsvChangeStore", "SNAPSHOT_FIELDS", "snapshot_row", "ist_day"]
