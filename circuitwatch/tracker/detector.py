"""Circuit-limit change detection.

`ChangeDetector.observe` compares a fresh quote against the last known
limits of its instrument:

* no previous state -> the state is initialised and nothing is emitted;
* both bounds equal (exact Decimal comparison) -> only `last_update` moves;
* otherwise one `ChangeEvent` is emitted, classified by the larger absolute
  percentage move of the two bounds.

The state store is updated on every observation, so the same quote observed
twice yields at most one event.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from circuitwatch.domain.models import (
    NEAR_LOWER_FACTOR,
    NEAR_UPPER_FACTOR,
    ChangeEvent,
    CircuitState,
    Instrument,
    Quote,
    circuit_status,
)
from circuitwatch.tracker.severity import SeverityThresholds, classify_severity, pct_change
from circuitwatch.tracker.state import CircuitStateStore

logger = logging.getLogger(__name__)

SIGNIFICANT_RANGE_CHANGE_PCT = Decimal("15")


def is_breach_alert(last_price: Decimal, lower: Decimal, upper: Decimal) -> bool:
    """Price sits within 2% of either bound (or beyond it)."""
    return last_price <= lower * NEAR_LOWER_FACTOR or last_price >= upper * NEAR_UPPER_FACTOR


def change_reason(lower_changed: bool, upper_changed: bool, range_change_pct: Decimal) -> str:
    if abs(range_change_pct) > SIGNIFICANT_RANGE_CHANGE_PCT:
        return "Significant range change"
    if lower_changed and upper_changed:
        return "Both limits changed"
    if lower_changed:
        return "Lower limit adjustment"
    if upper_changed:
        return "Upper limit adjustment"
    return "Limit update"


class ChangeDetector:
    def __init__(self, store: CircuitStateStore, thresholds: SeverityThresholds | None = None):
        self.store = store
        self.thresholds = thresholds or SeverityThresholds()

    def observe(self, instrument: Instrument, quote: Quote,
                underlying_price: Decimal | None = None) -> ChangeEvent | None:
        token = instrument.token
        previous = self.store.get(token)
        if previous is None:
            self.store.upsert(token, CircuitState.from_quote(quote))
            return None

        new_lower = quote.lower_circuit_limit
        new_upper = quote.upper_circuit_limit
        if previous.lower_limit == new_lower and previous.upper_limit == new_upper:
            self.store.upsert(token, CircuitState(previous.lower_limit, previous.upper_limit,
                                                  previous.last_price, quote.observed_at))
            return None

        lower_pct = pct_change(previous.lower_limit, new_lower)
        upper_pct = pct_change(previous.upper_limit, new_upper)
        range_pct = pct_change(previous.upper_limit - previous.lower_limit, new_upper - new_lower)
        severity = classify_severity(max(abs(lower_pct), abs(upper_pct)), self.thresholds)
        lower_changed = previous.lower_limit != new_lower
        upper_changed = previous.upper_limit != new_upper
        event = ChangeEvent(
            instrument=instrument,
            previous_lower=previous.lower_limit,
            previous_upper=previous.upper_limit,
            new_lower=new_lower,
            new_upper=new_upper,
            lower_change_pct=lower_pct,
            upper_change_pct=upper_pct,
            range_change_pct=range_pct,
            severity=severity,
            detected_at=quote.observed_at,
            last_price=quote.last_price,
            underlying_price=underlying_price,
            volume=quote.volume,
            open_interest=quote.open_interest,
            circuit_status=circuit_status(quote.last_price, new_lower, new_upper),
            is_breach_alert=is_breach_alert(quote.last_price, new_lower, new_upper),
            change_reason=change_reason(lower_changed, upper_changed, range_pct),
        )
        self.store.upsert(token, CircuitState.from_quote(quote))
        logger.info(
            "circuit_change symbol=%s lower=%s->%s (%s%%) upper=%s->%s (%s%%) severity=%s",
            instrument.tradingsymbol, previous.lower_limit, new_lower, lower_pct,
            previous.upper_limit, new_upper, upper_pct, severity.label,
        )
        return event


__all__ = ["ChangeDetector", "is_breach_alert", "change_reason", "SIGNIFICANT_RANGE_CHANGE_PCT"]
