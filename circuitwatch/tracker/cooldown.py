"""Per-underlying notification throttle.

An underlying may be notified at most once per cooldown window and at most
`daily_cap` times per calendar day. Counters reset when `reset_if_new_day`
sees a later date than the last reset.
"""
from __future__ import annotations

import datetime as dt
import logging
import threading
from collections.abc import Callable

from circuitwatch.domain.models import NotificationWindow

logger = logging.getLogger(__name__)


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class NotificationCooldownGate:
    def __init__(self, cooldown: dt.timedelta = dt.timedelta(minutes=2), daily_cap: int = 50,
                 clock: Callable[[], dt.datetime] = _utc_now,
                 day_of: Callable[[dt.datetime], dt.date] | None = None):
        self.cooldown = cooldown
        self.daily_cap = max(0, daily_cap)
        self._clock = clock
        self._day_of = day_of or (lambda ts: ts.date())
        self._windows: dict[str, NotificationWindow] = {}
        self._day: dt.date | None = None
        self._lock = threading.Lock()

    def reset_if_new_day(self, now: dt.datetime | None = None) -> bool:
        today = self._day_of(now or self._clock())
        with self._lock:
            if self._day is not None and today <= self._day:
                return False
            rolled = self._day is not None
            self._day = today
            for window in self._windows.values():
                window.count_today = 0
        if rolled:
            logger.info("notification_counters_reset day=%s", today.isoformat())
        return rolled

    def allow(self, underlying: str, now: dt.datetime | None = None) -> bool:
        """Approve (and record) a notification for `underlying`, or refuse it."""
        now = now or self._clock()
        with self._lock:
            window = self._windows.setdefault(underlying, NotificationWindow())
            if window.count_today >= self.daily_cap:
                logger.debug("notification_suppressed underlying=%s reason=daily_cap count=%d",
                             underlying, window.count_today)
                return False
            if window.last_notified is not None and now - window.last_notified < self.cooldown:
                logger.debug("notification_suppressed underlying=%s reason=cooldown last=%s",
                             underlying, window.last_notified.isoformat())
                return False
            window.last_notified = now
            window.count_today += 1
            return True

    def window(self, underlying: str) -> NotificationWindow:
        with self._lock:
            w = self._windows.get(underlying)
            return NotificationWindow(w.last_notified, w.count_today) if w else NotificationWindow()


__all__ = ["NotificationCooldownGate"]
