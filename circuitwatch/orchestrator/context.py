"""Runtime context container for the collection loop.

Centralizes the collaborators a cycle needs so they are not threaded through
long function signatures or held in module-level singletons.
"""
from __future__ import annotations

import datetime as dt
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from circuitwatch.broker.interface import (
    ChangeSink,
    ChangeStore,
    InstrumentCatalog,
    MarketCalendar,
    QuoteProvider,
    SessionProvider,
)
from circuitwatch.config.settings import TrackerSettings
from circuitwatch.metrics.metrics import TrackerMetrics
from circuitwatch.storage.csv_store import ist_day
from circuitwatch.tracker.cooldown import NotificationCooldownGate
from circuitwatch.tracker.detector import ChangeDetector
from circuitwatch.tracker.state import CircuitStateStore


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


@dataclass(slots=True)
class RuntimeContext:
    settings: TrackerSettings
    catalog: InstrumentCatalog
    quotes: QuoteProvider
    session: SessionProvider
    calendar: MarketCalendar
    store: ChangeStore
    sinks: list[ChangeSink] = field(default_factory=list)
    state: CircuitStateStore = field(default_factory=CircuitStateStore)
    detector: ChangeDetector | None = None
    gate: NotificationCooldownGate | None = None
    metrics: TrackerMetrics = field(default_factory=TrackerMetrics)
    # Cooperative shutdown signal set by signal handlers
    shutdown: threading.Event = field(default_factory=threading.Event)
    clock: Callable[[], dt.datetime] = _utc_now
    sleep: Callable[[float], None] | None = None
    start_time: dt.datetime = field(default_factory=_utc_now)
    cycle_count: int = 0

    def __post_init__(self) -> None:
        if self.detector is None:
            self.detector = ChangeDetector(self.state, self.settings.severity_thresholds)
        if self.gate is None:
            self.gate = NotificationCooldownGate(
                cooldown=dt.timedelta(seconds=self.settings.cooldown_seconds),
                daily_cap=self.settings.daily_notification_cap,
                clock=self.clock,
                day_of=ist_day,
            )


__all__ = ["RuntimeContext"]
