"""Instrument universe resolution.

Filters raw catalog rows down to the live index options we track and puts
them in a deterministic order so that, for the same catalog snapshot, batch
membership is identical from one cycle to the next.
"""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable
from typing import Any

from circuitwatch.domain.models import Instrument

logger = logging.getLogger(__name__)


def resolve_universe(catalog: Iterable[dict[str, Any]], supported: Iterable[str],
                     today: dt.date) -> list[Instrument]:
    """Keep CE/PE rows of a supported underlying whose expiry is today or later.

    Output is sorted by (underlying, expiry, strike, option_type, token) and
    contains each token once. Rows that cannot be parsed are dropped.
    """
    wanted = {s.strip().upper() for s in supported if s and s.strip()}
    seen: dict[int, Instrument] = {}
    rejected = 0
    for row in catalog:
        inst = Instrument.from_kite(row) if isinstance(row, dict) else None
        if inst is None:
            rejected += 1
            continue
        if inst.underlying not in wanted or inst.expiry < today:
            continue
        seen.setdefault(inst.token, inst)
    universe = sorted(seen.values(), key=lambda i: i.sort_key)
    logger.debug("universe_resolved instruments=%d rejected_rows=%d underlyings=%s",
                 len(universe), rejected, ",".join(sorted(wanted)))
    return universe


def count_by_underlying(instruments: Iterable[Instrument]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for inst in instruments:
        counts[inst.underlying] = counts.get(inst.underlying, 0) + 1
    return counts


__all__ = ["resolve_universe", "count_by_underlying"]
