"""circuitwatch command line entry point.

    python -m circuitwatch.main [--config path] [--once] [--max-cycles N]
    python -m circuitwatch.main --report today|critical|stats [--underlying NIFTY]
"""
from __future__ import annotations

import argparse
import datetime as dt
import logging
import signal
import sys
import threading
from collections.abc import Sequence
from dataclasses import replace

from circuitwatch.config.loader import load_settings
from circuitwatch.config.settings import SettingsError, TrackerSettings
from circuitwatch.domain.models import Severity
from circuitwatch.orchestrator.bootstrap import build_context
from circuitwatch.orchestrator.cycle import CollectionCycle
from circuitwatch.orchestrator.loop import run_loop
from circuitwatch.sinks.console import format_change
from circuitwatch.storage.csv_store import CsvChangeStore
from circuitwatch.storage.history import ChangeHistory
from circuitwatch.utils.logging_utils import setup_logging

logger = logging.getLogger(__name__)

__version__ = "0.1.0"


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="circuitwatch",
                                     description="Track circuit-limit changes of index option contracts")
    parser.add_argument('--config', default=None, help='Path to JSON config file (default: $CW_CONFIG)')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], default=None,
                        help='Override the configured log level')
    parser.add_argument('--log-file', default=None, help='Also write logs to this file')
    parser.add_argument('--data-dir', default=None, help='Override the data directory')
    parser.add_argument('--once', action='store_true', help='Run a single cycle and exit')
    parser.add_argument('--max-cycles', type=int, default=None, help='Stop after N cycles')
    parser.add_argument('--force-open', action='store_true', help='Ignore market hours (dry runs)')
    parser.add_argument('--report', choices=['today', 'critical', 'stats'], default=None,
                        help='Print a report from the stored change history and exit')
    parser.add_argument('--underlying', default=None, help='Filter reports by underlying')
    parser.add_argument('--severity', choices=[s.name for s in Severity], default=None,
                        help='Filter the "today" report by severity')
    parser.add_argument('--version', action='version', version=f'circuitwatch {__version__}')
    return parser.parse_args(argv)


def apply_cli_overrides(settings: TrackerSettings, args: argparse.Namespace) -> TrackerSettings:
    updates: dict[str, object] = {}
    if args.log_level:
        updates['log_level'] = args.log_level
    if args.log_file:
        updates['log_file'] = args.log_file
    if args.data_dir:
        updates['data_dir'] = args.data_dir
    if args.force_open:
        updates['force_market_open'] = True
    if args.once:
        updates['max_cycles'] = 1
    elif args.max_cycles is not None:
        updates['max_cycles'] = args.max_cycles
    return replace(settings, **updates) if updates else settings


def setup_signal_handling(shutdown: threading.Event) -> None:
    def _handler(sig: int, _frame: object) -> None:
        logger.info("signal_received sig=%s; shutting down gracefully", sig)
        shutdown.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def print_report(settings: TrackerSettings, args: argparse.Namespace, out=None) -> int:
    out = out or sys.stdout
    history = ChangeHistory(CsvChangeStore(settings.data_dir))
    if args.report == 'today':
        severity = Severity[args.severity] if args.severity else None
        events = history.todays_changes(args.underlying, severity)
    elif args.report == 'critical':
        events = history.critical_alerts()
        if args.underlying:
            events = [e for e in events if e.underlying == args.underlying.upper()]
    else:
        since = dt.datetime.now(dt.UTC) - dt.timedelta(days=1)
        stats = history.statistics(since, settings.supported_underlyings)
        for name, s in stats.items():
            if args.underlying and name != args.underlying.upper():
                continue
            sev = " ".join(f"{k}={v}" for k, v in s.by_severity.items())
            last = s.last_change_at.isoformat() if s.last_change_at else "-"
            print(f"{name}: total={s.total_changes} lower={s.lower_limit_changes} upper={s.upper_limit_changes} "
                  f"both={s.both_limits_changed} {sev} max_lower={s.max_lower_change_pct}% "
                  f"max_upper={s.max_upper_change_pct}% last={last}", file=out)
        return 0
    for ev in events:
        print(f"{ev.detected_at.isoformat()} {format_change(ev)}", file=out)
    if not events:
        print("no changes", file=out)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_arguments(argv)
    try:
        settings = apply_cli_overrides(load_settings(args.config), args)
    except SettingsError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2
    setup_logging(settings.log_level, settings.log_file)
    if args.report:
        return print_report(settings, args)

    shutdown = threading.Event()
    setup_signal_handling(shutdown)
    ctx = build_context(settings, shutdown=shutdown)
    logger.info("circuitwatch_starting version=%s %s", __version__,
                " ".join(f"{k}={v}" for k, v in settings.summary().items()))
    run_loop(
        CollectionCycle(ctx),
        interval=settings.cycle_interval,
        backoff=settings.error_backoff,
        shutdown=shutdown,
        max_cycles=settings.max_cycles or None,
        market_check_interval=settings.market_check_interval,
    )
    logger.info("circuitwatch_stopped cycles=%d", ctx.cycle_count)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
