"""Read-side queries over the persisted change history."""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from circuitwatch.domain.models import ZERO, ChangeEvent, Severity
from circuitwatch.storage.csv_store import CsvChangeStore, ist_day

logger = logging.getLogger(__name__)

CHANGES_BETWEEN_LIMIT = 1000
CRITICAL_ALERTS_LIMIT = 100


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


@dataclass(slots=True)
class UnderlyingStatistics:
    underlying: str
    total_changes: int = 0
    lower_limit_changes: int = 0
    upper_limit_changes: int = 0
    both_limits_changed: int = 0
    by_severity: dict[str, int] = field(default_factory=lambda: {s.label: 0 for s in Severity})
    max_lower_change_pct: Decimal = ZERO
    max_upper_change_pct: Decimal = ZERO
    last_change_at: dt.datetime | None = None

    def add(self, event: ChangeEvent) -> None:
        self.total_changes += 1
        if event.lower_changed:
            self.lower_limit_changes += 1
        if event.upper_changed:
            self.upper_limit_changes += 1
        if event.lower_changed and event.upper_changed:
            self.both_limits_changed += 1
        self.by_severity[event.severity.label] += 1
        self.max_lower_change_pct = max(self.max_lower_change_pct, abs(event.lower_change_pct))
        self.max_upper_change_pct = max(self.max_upper_change_pct, abs(event.upper_change_pct))
        if self.last_change_at is None or event.detected_at > self.last_change_at:
            self.last_change_at = event.detected_at


class ChangeHistory:
    def __init__(self, store: CsvChangeStore, *,
                 clock: Callable[[], dt.datetime] = _utc_now,
                 day_of: Callable[[dt.datetime], dt.date] = ist_day):
        self._store = store
        self._clock = clock
        self._day_of = day_of

    def _events(self, start: dt.datetime | None, end: dt.datetime | None) -> list[ChangeEvent]:
        first = self._day_of(start) if start is not None else None
        last = self._day_of(end) if end is not None else None
        events: list[ChangeEvent] = []
        for day in self._store.change_days():
            if (first is not None and day < first) or (last is not None and day > last):
                continue
            for ev in self._store.read_changes(day):
                if start is not None and ev.detected_at < start:
                    continue
                if end is not None and ev.detected_at > end:
                    continue
                events.append(ev)
        events.sort(key=lambda e: e.detected_at, reverse=True)
        return events

    @staticmethod
    def _filter(events: Iterable[ChangeEvent], underlying: str | None,
                severity: Severity | None) -> list[ChangeEvent]:
        out = list(events)
        if underlying:
            out = [e for e in out if e.underlying == underlying.upper()]
        if severity is not None:
            out = [e for e in out if e.severity == severity]
        return out

    def todays_changes(self, underlying: str | None = None,
                       severity: Severity | None = None) -> list[ChangeEvent]:
        """Changes detected on the current trading day, newest first."""
        today = self._day_of(self._clock())
        events = self._store.read_changes(today)
        events.sort(key=lambda e: e.detected_at, reverse=True)
        return self._filter(events, underlying, severity)

    def changes_between(self, start: dt.datetime | None = None, end: dt.datetime | None = None, *,
                        underlying: str | None = None, severity: Severity | None = None,
                        limit: int = CHANGES_BETWEEN_LIMIT) -> list[ChangeEvent]:
        return self._filter(self._events(start, end), underlying, severity)[:limit]

    def critical_alerts(self, since: dt.datetime | None = None,
                        limit: int = CRITICAL_ALERTS_LIMIT) -> list[ChangeEvent]:
        """HIGH and CRITICAL changes since `since` (default: the last 24 hours)."""
        cutoff = since if since is not None else self._clock() - dt.timedelta(hours=24)
        alerts = [e for e in self._events(cutoff, None) if e.severity >= Severity.HIGH]
        return alerts[:limit]

    def statistics(self, since: dt.datetime, underlyings: Iterable[str] | None = None) -> dict[str, UnderlyingStatistics]:
        stats: dict[str, UnderlyingStatistics] = {}
        if underlyings is not None:
            for u in underlyings:
                stats[u.upper()] = UnderlyingStatistics(u.upper())
        for ev in self._events(since, None):
            entry = stats.get(ev.underlying)
            if entry is None:
                if underlyings is not None:
                    continue
                entry = stats[ev.underlying] = UnderlyingStatistics(ev.underlying)
            entry.add(ev)
        return stats


__all__ = ["ChangeHistory", "UnderlyingStatistics", "CHANGES_BETWEEN_LIMIT", "CRITICAL_ALERTS_LIMIT"]
