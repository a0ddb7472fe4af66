"""Severity classification for circuit-limit changes.

Thresholds are policy, not a derived formula: the defaults (20 / 10 / 5 %)
are empirically chosen breakpoints and are overridable through settings.
Classification compares the larger absolute percentage change of the two
bounds against the breakpoints, highest tier first.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from circuitwatch.domain.models import ZERO, Severity

PCT_QUANTUM = Decimal("0.01")
HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class SeverityThresholds:
    critical: Decimal = Decimal("20")
    high: Decimal = Decimal("10")
    medium: Decimal = Decimal("5")

    def __post_init__(self) -> None:
        if not (self.critical >= self.high >= self.medium >= ZERO):
            raise ValueError(
                f"severity thresholds must satisfy critical >= high >= medium >= 0 "
                f"(got {self.critical}/{self.high}/{self.medium})"
            )

    @classmethod
    def from_values(cls, critical: object, high: object, medium: object) -> SeverityThresholds:
        return cls(Decimal(str(critical)), Decimal(str(high)), Decimal(str(medium)))


def pct_change(previous: Decimal, new: Decimal) -> Decimal:
    """Percentage change rounded to 0.01.

    A zero previous value cannot be divided by; the change is then reported
    as a full +/-100 % following the sign of the new value (0 when both zero).
    """
    if previous == ZERO:
        if new == ZERO:
            return Decimal("0.00")
        return (HUNDRED if new > ZERO else -HUNDRED).quantize(PCT_QUANTUM)
    return ((new - previous) / previous * HUNDRED).quantize(PCT_QUANTUM, rounding=ROUND_HALF_UP)


def classify_severity(max_abs_pct: Decimal, thresholds: SeverityThresholds) -> Severity:
    magnitude = abs(max_abs_pct)
    if magnitude >= thresholds.critical:
        return Severity.CRITICAL
    if magnitude >= thresholds.high:
        return Severity.HIGH
    if magnitude >= thresholds.medium:
        return Severity.MEDIUM
    return Severity.LOW


__all__ = ["SeverityThresholds", "pct_change", "classify_severity", "PCT_QUANTUM"]
