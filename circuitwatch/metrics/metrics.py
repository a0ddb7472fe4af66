"""Prometheus metrics for the tracker.

Each `TrackerMetrics` owns its `CollectorRegistry`, so several instances
(one per test) never collide on metric names. `start_metrics_server`
exposes one registry over HTTP.
"""
from __future__ import annotations

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from circuitwatch.domain.models import Severity

logger = logging.getLogger(__name__)

CYCLE_STATUSES = ("ok", "market_closed", "no_credential", "catalog_error", "error")


class TrackerMetrics:
    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        r = self.registry
        self.cycles = Counter('cw_cycles_total', 'Collection cycles by final status', ['status'], registry=r)
        self.batches = Counter('cw_batches_total', 'Quote batches by outcome', ['outcome'], registry=r)
        self.quotes_obtained = Counter('cw_quotes_obtained_total', 'Quotes received from the provider', registry=r)
        self.change_events = Counter('cw_change_events_total', 'Circuit-limit change events', ['severity'], registry=r)
        self.persist_failures = Counter('cw_persist_failures_total', 'Records that failed to persist', ['kind'], registry=r)
        self.notifications = Counter('cw_notifications_total', 'Change batches offered to sinks', ['outcome'], registry=r)
        self.sink_errors = Counter('cw_sink_errors_total', 'Sink deliveries that raised', ['sink'], registry=r)
        self.cycle_errors = Counter('cw_cycle_errors_total', 'Cycles that raised, by error scope', ['kind'], registry=r)
        self.cycle_duration = Histogram(
            'cw_cycle_duration_seconds', 'Wall time of one collection cycle',
            buckets=(1, 5, 10, 20, 30, 60, 120, 300), registry=r,
        )
        self.last_cycle_duration = Gauge('cw_last_cycle_duration_seconds', 'Duration of the last cycle', registry=r)
        self.tracked_instruments = Gauge('cw_tracked_instruments', 'Instruments in the resolved universe', registry=r)
        self.known_states = Gauge('cw_known_states', 'Instruments with a stored circuit state', registry=r)
        # pre-seed label sets so scrapers see zeros
        for status in CYCLE_STATUSES:
            self.cycles.labels(status=status)
        for outcome in ("ok", "failed"):
            self.batches.labels(outcome=outcome)
        for outcome in ("sent", "suppressed"):
            self.notifications.labels(outcome=outcome)
        for sev in Severity:
            self.change_events.labels(severity=sev.label)

    def observe_cycle(self, status: str, duration: float) -> None:
        self.cycles.labels(status=status).inc()
        self.cycle_duration.observe(duration)
        self.last_cycle_duration.set(duration)

    def observe_batches(self, ok: int, failed: int, obtained: int) -> None:
        if ok:
            self.batches.labels(outcome="ok").inc(ok)
        if failed:
            self.batches.labels(outcome="failed").inc(failed)
        if obtained:
            self.quotes_obtained.inc(obtained)

    def observe_change(self, severity: Severity) -> None:
        self.change_events.labels(severity=severity.label).inc()

    def value(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current sample value (0.0 when absent); handy in tests and status dumps."""
        v = self.registry.get_sample_value(name, labels or {})
        return float(v) if v is not None else 0.0


def start_metrics_server(metrics: TrackerMetrics, port: int, host: str = "0.0.0.0") -> bool:
    """Serve `/metrics` on `port`; 0 disables. Returns True when started."""
    if port <= 0:
        return False
    try:
        start_http_server(port, addr=host, registry=metrics.registry)
    except OSError as e:
        logger.error("metrics_server_start_failed host=%s port=%d err=%s", host, port, e)
        return False
    logger.info("metrics_server_started url=http://%s:%d/metrics", host, port)
    return True


__all__ = ["TrackerMetrics", "start_metrics_server", "CYCLE_STATUSES"]
