"""Wire settings into a ready `RuntimeContext`.

Builds the Kite provider (catalog, quotes, session), market calendar, CSV
store, sinks and metrics, then warm-starts the circuit state from the last
checkpoint so a restart does not re-initialise every instrument.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from pathlib import Path

from circuitwatch.broker.kite.auth import KiteSession
from circuitwatch.broker.kite_provider import KiteProvider
from circuitwatch.config.settings import TrackerSettings
from circuitwatch.metrics.metrics import TrackerMetrics, start_metrics_server
from circuitwatch.orchestrator.context import RuntimeContext
from circuitwatch.sinks.console import LogBannerSink
from circuitwatch.sinks.csv_export import CsvExportSink
from circuitwatch.storage.csv_store import CsvChangeStore
from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger(__name__)


def build_context(settings: TrackerSettings, *, shutdown: threading.Event | None = None,
                  env: Mapping[str, str] | None = None, start_metrics: bool = True) -> RuntimeContext:
    shutdown = shutdown or threading.Event()
    session = KiteSession.from_env(env)
    provider = KiteProvider.from_settings(settings, session, shutdown=shutdown)
    store = CsvChangeStore(settings.data_dir)
    sinks = [LogBannerSink(), CsvExportSink(Path(settings.data_dir) / "exports")]
    metrics = TrackerMetrics()
    ctx = RuntimeContext(
        settings=settings,
        catalog=provider,
        quotes=provider,
        session=provider,
        calendar=MarketCalendar(force_open=settings.force_market_open),
        store=store,
        sinks=sinks,
        metrics=metrics,
        shutdown=shutdown,
    )
    ctx.state.warm_start(store.load_state())
    if start_metrics:
        start_metrics_server(metrics, settings.metrics_port)
    logger.info(
        "tracker_bootstrapped data_dir=%s underlyings=%s segments=%s credential=%s",
        store.base_dir, ",".join(settings.supported_underlyings), ",".join(settings.segments),
        session.has_credential(),
    )
    return ctx


__all__ = ["build_context"]
