"""CSV export sink: appends delivered changes to `<dir>/<UNDERLYING>/<YYYY-MM-DD>.csv`."""
from __future__ import annotations

import csv
import datetime as dt
import logging
import os
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from circuitwatch.domain.models import CHANGE_EVENT_FIELDS, ChangeEvent
from circuitwatch.storage.csv_store import ist_day

logger = logging.getLogger(__name__)


class CsvExportSink:
    name = "csv_export"

    def __init__(self, export_dir: str | os.PathLike[str],
                 day_of: Callable[[dt.datetime], dt.date] = ist_day):
        self.export_dir = Path(export_dir)
        self._day_of = day_of
        self._lock = threading.Lock()

    def path_for(self, underlying: str, day: dt.date) -> Path:
        return self.export_dir / underlying.upper() / f"{day.isoformat()}.csv"

    def deliver(self, underlying: str, events: Sequence[ChangeEvent]) -> None:
        if not events:
            return
        by_day: dict[dt.date, list[ChangeEvent]] = {}
        for ev in events:
            by_day.setdefault(self._day_of(ev.detected_at), []).append(ev)
        for day, group in by_day.items():
            path = self.path_for(underlying, day)
            try:
                with self._lock:
                    path.parent.mkdir(parents=True, exist_ok=True)
                    file_exists = path.is_file()
                    with path.open("a" if file_exists else "w", newline="", encoding="utf-8") as fh:
                        writer = csv.DictWriter(fh, fieldnames=CHANGE_EVENT_FIELDS)
                        if not file_exists:
                            writer.writeheader()
                        writer.writerows(e.as_row() for e in group)
            except OSError as e:
                logger.error("csv_export_failed underlying=%s path=%s err=%s", underlying, path, e)
                continue
            logger.debug("csv_export_written underlying=%s path=%s rows=%d", underlying, path, len(group))


__all__ = ["CsvExportSink"]
