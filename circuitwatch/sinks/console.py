"""Log banner sink: one summary block per delivered change batch."""
from __future__ import annotations

import logging
from collections.abc import Sequence

from circuitwatch.domain.models import ChangeEvent, Severity

logger = logging.getLogger(__name__)

TOP_N = 3


def top_changes(events: Sequence[ChangeEvent], n: int = TOP_N) -> list[ChangeEvent]:
    """Most significant first: severity, then magnitude, then symbol for ties."""
    return sorted(events, key=lambda e: (-int(e.severity), -e.max_abs_change_pct,
                                         e.instrument.tradingsymbol))[:n]


def format_change(event: ChangeEvent) -> str:
    parts = []
    if event.lower_changed:
        parts.append(f"L {event.previous_lower}->{event.new_lower} ({event.lower_change_pct:+}%)")
    if event.upper_changed:
        parts.append(f"U {event.previous_upper}->{event.new_upper} ({event.upper_change_pct:+}%)")
    return f"{event.instrument.tradingsymbol} [{event.severity.label}] " + " ".join(parts)


class LogBannerSink:
    name = "log"

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def deliver(self, underlying: str, events: Sequence[ChangeEvent]) -> None:
        if not events:
            return
        try:
            worst = max(e.severity for e in events)
            level = logging.WARNING if worst >= Severity.HIGH else logging.INFO
            lines = [f"circuit_limit_changes underlying={underlying} count={len(events)} worst={worst.label}"]
            lines.extend(f"  {format_change(e)}" for e in top_changes(events))
            if len(events) > TOP_N:
                lines.append(f"  ... and {len(events) - TOP_N} more")
            self._log.log(level, "\n".join(lines))
        except Exception:
            # sink failures never reach the collection loop
            logger.exception("log_sink_failed underlying=%s", underlying)


__all__ = ["LogBannerSink", "top_changes", "format_change", "TOP_N"]
