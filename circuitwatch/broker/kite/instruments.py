"""Instrument catalog fetch + per-segment TTL cache.

Responsibilities:
- Fetch the full instrument list of one exchange segment via `kite.instruments(segment)`
- Cache it per segment for `ttl` seconds
- Expire an empty result quickly (short retry window) and retry an empty
  first answer once before accepting it
- Surface failures as `CatalogError` (no synthetic fallback)
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from circuitwatch.errors import CatalogError, ShutdownRequested

logger = logging.getLogger(__name__)

EMPTY_RETRY_WINDOW = 5.0

FetchRaw = Callable[[str], Any]


class InstrumentCache:
    def __init__(self, fetch_raw: FetchRaw, ttl: float = 600.0, *,
                 empty_retry_window: float = EMPTY_RETRY_WINDOW,
                 clock: Callable[[], float] = time.monotonic):
        self._fetch_raw = fetch_raw
        self._ttl = max(0.0, ttl)
        self._empty_window = empty_retry_window
        self._clock = clock
        self._rows: dict[str, list[dict[str, Any]]] = {}
        self._fetched_at: dict[str, float] = {}
        self._lock = threading.Lock()

    def _fresh(self, segment: str, now: float) -> list[dict[str, Any]] | None:
        cached = self._rows.get(segment)
        if cached is None:
            return None
        age = now - self._fetched_at.get(segment, 0.0)
        if cached:
            return cached if age < self._ttl else None
        # empty catalogs only hold for the short retry window
        return cached if age < self._empty_window else None

    def get(self, segment: str, force_refresh: bool = False) -> list[dict[str, Any]]:
        seg = (segment or "NFO").upper()
        now = self._clock()
        with self._lock:
            if not force_refresh:
                cached = self._fresh(seg, now)
                if cached is not None:
                    return cached
            else:
                logger.debug("force_refresh_instruments segment=%s", seg)
        try:
            raw = self._fetch_raw(seg)
            if isinstance(raw, list) and not raw:
                logger.warning("instrument_fetch_returned_empty_list segment=%s", seg)
                raw = self._fetch_raw(seg)
        except (CatalogError, ShutdownRequested):
            raise
        except Exception as e:
            logger.warning("instrument_fetch_failed segment=%s err=%s", seg, e)
            raise CatalogError(f"instrument fetch failed for {seg}: {e}") from e
        if not isinstance(raw, list):
            raise CatalogError(f"unexpected instruments shape for {seg}: {type(raw).__name__}")
        with self._lock:
            self._rows[seg] = raw
            self._fetched_at[seg] = now
        if raw:
            logger.debug("instrument_fetch_success segment=%s count=%d", seg, len(raw))
        return raw

    def invalidate(self, segment: str | None = None) -> None:
        with self._lock:
            if segment is None:
                self._rows.clear()
                self._fetched_at.clear()
            else:
                self._rows.pop(segment.upper(), None)
                self._fetched_at.pop(segment.upper(), None)


__all__ = ["InstrumentCache", "EMPTY_RETRY_WINDOW"]
