"""
Market calendar for NSE/BSE derivatives.
Handles trading-session detection and next-open scheduling.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, date, datetime, time, timedelta, timezone

logger = logging.getLogger(__name__)

IST = timezone(timedelta(hours=5, minutes=30), name="IST")

SESSION_OPEN = time(9, 15)
SESSION_CLOSE = time(15, 30)

MARKET_HOLIDAYS = [
    # 2025
    "2025-02-26",  # Mahashivratri
    "2025-03-14",  # Holi
    "2025-03-31",  # Id-Ul-Fitr
    "2025-04-10",  # Mahavir Jayanti
    "2025-04-14",  # Ambedkar Jayanti
    "2025-04-18",  # Good Friday
    "2025-05-01",  # Maharashtra Day
    "2025-08-15",  # Independence Day
    "2025-08-27",  # Ganesh Chaturthi
    "2025-10-02",  # Gandhi Jayanti / Dussehra
    "2025-10-21",  # Diwali Laxmi Pujan
    "2025-10-22",  # Diwali Balipratipada
    "2025-11-05",  # Guru Nanak Jayanti
    "2025-12-25",  # Christmas
    # 2026
    "2026-01-26",  # Republic Day
    "2026-03-03",  # Holi
    "2026-04-03",  # Good Friday
    "2026-04-14",  # Ambedkar Jayanti
    "2026-05-01",  # Maharashtra Day
    "2026-10-02",  # Gandhi Jayanti
    "2026-12-25",  # Christmas
]


def _parse_env_holidays() -> list[str]:
    """Additional holidays from CW_HOLIDAYS (comma separated YYYY-MM-DD)."""
    raw = os.environ.get('CW_HOLIDAYS', '').strip()
    if not raw:
        return []
    out = []
    for p in (x.strip() for x in raw.replace(';', ',').split(',')):
        if len(p) == 10 and p[4] == '-' and p[7] == '-':
            out.append(p)
    return out


def get_holiday_list(base: list[str] | None = None) -> list[str]:
    """Return merged holiday list (static + env overrides)."""
    base_list = list(base) if base is not None else list(MARKET_HOLIDAYS)
    return list(dict.fromkeys(base_list + _parse_env_holidays()))


def _as_ist(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(IST)


class MarketCalendar:
    """Weekday + holiday + session-window calendar.

    `force_open` bypasses every check (used for dry runs outside market hours).
    """

    def __init__(self, holidays: list[str] | None = None, *,
                 session_open: time = SESSION_OPEN,
                 session_close: time = SESSION_CLOSE,
                 force_open: bool = False):
        self._holidays = set(get_holiday_list(holidays))
        self.session_open = session_open
        self.session_close = session_close
        self.force_open = force_open

    def is_trading_day(self, day: date) -> bool:
        return day.weekday() < 5 and day.isoformat() not in self._holidays

    def is_market_open(self, now: datetime | None = None) -> bool:
        if self.force_open:
            return True
        ist_now = _as_ist(now or datetime.now(UTC))
        if not self.is_trading_day(ist_now.date()):
            return False
        return self.session_open <= ist_now.time() <= self.session_close

    def next_trading_day(self, day: date) -> date:
        nxt = day + timedelta(days=1)
        while not self.is_trading_day(nxt):
            nxt += timedelta(days=1)
        return nxt

    def next_open(self, now: datetime | None = None) -> datetime:
        """Next session open (UTC). Returns `now` itself while the market is open."""
        now = now or datetime.now(UTC)
        if self.is_market_open(now):
            return now.astimezone(UTC) if now.tzinfo else now.replace(tzinfo=UTC)
        ist_now = _as_ist(now)
        day = ist_now.date()
        if not (self.is_trading_day(day) and ist_now.time() < self.session_open):
            day = self.next_trading_day(day)
        return datetime.combine(day, self.session_open, tzinfo=IST).astimezone(UTC)

    def time_to_next_open(self, now: datetime | None = None) -> timedelta:
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        return max(timedelta(0), self.next_open(now) - now)


__all__ = ['IST', 'MARKET_HOLIDAYS', 'MarketCalendar', 'get_holiday_list']
