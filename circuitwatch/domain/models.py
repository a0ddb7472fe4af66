"""Domain dataclasses for circuit-limit tracking.

Monetary fields are `Decimal`. Provider payloads arrive as floats; they are
converted through `str()` so the exchange's discrete limit values compare
exactly (no float tolerance anywhere in detection).
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum, IntEnum
from typing import Any

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Convert a provider number (int/float/str/Decimal) to Decimal exactly as printed."""
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"not a number: {value!r}") from e


def _to_date(value: Any) -> dt.date | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


class OptionType(str, Enum):
    CALL = "CE"
    PUT = "PE"

    @classmethod
    def parse(cls, raw: Any) -> OptionType | None:
        try:
            return cls(str(raw).upper())
        except ValueError:
            return None


class Severity(IntEnum):
    """Closed, ordered severity tiers (LOW < MEDIUM < HIGH < CRITICAL)."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, raw: str) -> Severity:
        return cls[str(raw).strip().upper()]


class CircuitStatus(str, Enum):
    LOWER_CIRCUIT = "Lower Circuit"
    UPPER_CIRCUIT = "Upper Circuit"
    NEAR_LOWER = "Near Lower Circuit"
    NEAR_UPPER = "Near Upper Circuit"
    NORMAL = "Normal"


NEAR_LOWER_FACTOR = Decimal("1.02")
NEAR_UPPER_FACTOR = Decimal("0.98")


def circuit_status(last_price: Decimal, lower: Decimal, upper: Decimal) -> CircuitStatus:
    if last_price <= lower:
        return CircuitStatus.LOWER_CIRCUIT
    if last_price >= upper:
        return CircuitStatus.UPPER_CIRCUIT
    if last_price <= lower * NEAR_LOWER_FACTOR:
        return CircuitStatus.NEAR_LOWER
    if last_price >= upper * NEAR_UPPER_FACTOR:
        return CircuitStatus.NEAR_UPPER
    return CircuitStatus.NORMAL


@dataclass(frozen=True, slots=True)
class Instrument:
    token: int
    tradingsymbol: str
    underlying: str
    strike: Decimal
    option_type: OptionType
    expiry: dt.date
    exchange: str = "NFO"
    lot_size: int = 0

    @classmethod
    def from_kite(cls, row: dict[str, Any]) -> Instrument | None:
        """Build from a kite `instruments()` row; None when the row is not an option."""
        opt = OptionType.parse(row.get("instrument_type"))
        expiry = _to_date(row.get("expiry"))
        if opt is None or expiry is None:
            return None
        try:
            token = int(row["instrument_token"])
            strike = to_decimal(row.get("strike", 0))
        except (KeyError, TypeError, ValueError):
            return None
        return cls(
            token=token,
            tradingsymbol=str(row.get("tradingsymbol") or ""),
            underlying=str(row.get("name") or "").upper(),
            strike=strike,
            option_type=opt,
            expiry=expiry,
            exchange=str(row.get("exchange") or "NFO"),
            lot_size=int(row.get("lot_size") or 0),
        )

    @property
    def sort_key(self) -> tuple[str, dt.date, Decimal, str, int]:
        return (self.underlying, self.expiry, self.strike, self.option_type.value, self.token)


@dataclass(frozen=True, slots=True)
class Quote:
    token: int
    last_price: Decimal
    lower_circuit_limit: Decimal
    upper_circuit_limit: Decimal
    observed_at: dt.datetime
    open: Decimal = ZERO
    high: Decimal = ZERO
    low: Decimal = ZERO
    close: Decimal = ZERO
    volume: int = 0
    open_interest: int = 0

    @classmethod
    def from_kite(cls, token: int, row: dict[str, Any], observed_at: dt.datetime) -> Quote:
        """Parse one kite `quote()` entry. Raises ValueError when required fields are absent."""
        if not isinstance(row, dict):
            raise ValueError(f"quote row for {token} is {type(row).__name__}, expected dict")
        for key in ("last_price", "lower_circuit_limit", "upper_circuit_limit"):
            if row.get(key) is None:
                raise ValueError(f"quote row for {token} missing {key}")
        ohlc = row.get("ohlc") or {}
        return cls(
            token=int(token),
            last_price=to_decimal(row["last_price"]),
            lower_circuit_limit=to_decimal(row["lower_circuit_limit"]),
            upper_circuit_limit=to_decimal(row["upper_circuit_limit"]),
            observed_at=observed_at,
            open=to_decimal(ohlc.get("open", 0) or 0),
            high=to_decimal(ohlc.get("high", 0) or 0),
            low=to_decimal(ohlc.get("low", 0) or 0),
            close=to_decimal(ohlc.get("close", 0) or 0),
            volume=int(row.get("volume") or row.get("volume_traded") or 0),
            open_interest=int(row.get("oi") or 0),
        )


@dataclass(slots=True)
class CircuitState:
    lower_limit: Decimal
    upper_limit: Decimal
    last_price: Decimal
    last_update: dt.datetime

    @classmethod
    def from_quote(cls, quote: Quote) -> CircuitState:
        return cls(
            lower_limit=quote.lower_circuit_limit,
            upper_limit=quote.upper_circuit_limit,
            last_price=quote.last_price,
            last_update=quote.observed_at,
        )

    def as_dict(self) -> dict[str, str]:
        return {
            "lower_limit": str(self.lower_limit),
            "upper_limit": str(self.upper_limit),
            "last_price": str(self.last_price),
            "last_update": self.last_update.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CircuitState:
        return cls(
            lower_limit=to_decimal(data["lower_limit"]),
            upper_limit=to_decimal(data["upper_limit"]),
            last_price=to_decimal(data.get("last_price", "0")),
            last_update=dt.datetime.fromisoformat(data["last_update"]),
        )


CHANGE_EVENT_FIELDS = [
    "detected_at", "instrument_token", "tradingsymbol", "underlying", "strike",
    "option_type", "expiry", "exchange",
    "previous_lower", "new_lower", "lower_change_pct",
    "previous_upper", "new_upper", "upper_change_pct",
    "range_change_pct", "severity", "last_price", "underlying_price",
    "volume", "open_interest", "circuit_status", "is_breach_alert", "change_reason",
]


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    instrument: Instrument
    previous_lower: Decimal
    previous_upper: Decimal
    new_lower: Decimal
    new_upper: Decimal
    lower_change_pct: Decimal
    upper_change_pct: Decimal
    range_change_pct: Decimal
    severity: Severity
    detected_at: dt.datetime
    last_price: Decimal
    underlying_price: Decimal | None = None
    volume: int = 0
    open_interest: int = 0
    circuit_status: CircuitStatus = CircuitStatus.NORMAL
    is_breach_alert: bool = False
    change_reason: str = ""

    @property
    def lower_changed(self) -> bool:
        return self.previous_lower != self.new_lower

    @property
    def upper_changed(self) -> bool:
        return self.previous_upper != self.new_upper

    @property
    def max_abs_change_pct(self) -> Decimal:
        return max(abs(self.lower_change_pct), abs(self.upper_change_pct))

    @property
    def underlying(self) -> str:
        return self.instrument.underlying

    def as_row(self) -> dict[str, Any]:
        inst = self.instrument
        return {
            "detected_at": self.detected_at.isoformat(),
            "instrument_token": inst.token,
            "tradingsymbol": inst.tradingsymbol,
            "underlying": inst.underlying,
            "strike": str(inst.strike),
            "option_type": inst.option_type.value,
            "expiry": inst.expiry.isoformat(),
            "exchange": inst.exchange,
            "previous_lower": str(self.previous_lower),
            "new_lower": str(self.new_lower),
            "lower_change_pct": str(self.lower_change_pct),
            "previous_upper": str(self.previous_upper),
            "new_upper": str(self.new_upper),
            "upper_change_pct": str(self.upper_change_pct),
            "range_change_pct": str(self.range_change_pct),
            "severity": self.severity.label,
            "last_price": str(self.last_price),
            "underlying_price": "" if self.underlying_price is None else str(self.underlying_price),
            "volume": self.volume,
            "open_interest": self.open_interest,
            "circuit_status": self.circuit_status.value,
            "is_breach_alert": int(self.is_breach_alert),
            "change_reason": self.change_reason,
        }

    @classmethod
    def from_row(cls, row: dict[str, str]) -> ChangeEvent:
        instrument = Instrument(
            token=int(row["instrument_token"]),
            tradingsymbol=row["tradingsymbol"],
            underlying=row["underlying"],
            strike=to_decimal(row["strike"]),
            option_type=OptionType(row["option_type"]),
            expiry=dt.date.fromisoformat(row["expiry"]),
            exchange=row.get("exchange") or "NFO",
        )
        underlying_price = row.get("underlying_price") or ""
        return cls(
            instrument=instrument,
            previous_lower=to_decimal(row["previous_lower"]),
            previous_upper=to_decimal(row["previous_upper"]),
            new_lower=to_decimal(row["new_lower"]),
            new_upper=to_decimal(row["new_upper"]),
            lower_change_pct=to_decimal(row["lower_change_pct"]),
            upper_change_pct=to_decimal(row["upper_change_pct"]),
            range_change_pct=to_decimal(row.get("range_change_pct") or "0"),
            severity=Severity.parse(row["severity"]),
            detected_at=dt.datetime.fromisoformat(row["detected_at"]),
            last_price=to_decimal(row.get("last_price") or "0"),
            underlying_price=to_decimal(underlying_price) if underlying_price else None,
            volume=int(row.get("volume") or 0),
            open_interest=int(row.get("open_interest") or 0),
            circuit_status=CircuitStatus(row.get("circuit_status") or CircuitStatus.NORMAL.value),
            is_breach_alert=str(row.get("is_breach_alert", "0")) in ("1", "True", "true"),
            change_reason=row.get("change_reason") or "",
        )


@dataclass(slots=True)
class NotificationWindow:
    last_notified: dt.datetime | None = None
    count_today: int = 0


__all__ = [
    "ZERO",
    "to_decimal",
    "OptionType",
    "Severity",
    "CircuitStatus",
    "circuit_status",
    "Instrument",
    "Quote",
    "CircuitState",
    "ChangeEvent",
    "CHANGE_EVENT_FIELDS",
    "NotificationWindow",
]
