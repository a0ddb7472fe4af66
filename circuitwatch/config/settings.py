"""Typed runtime settings for the circuit tracker.

`TrackerSettings` is built from three layers, lowest precedence first:
built-in defaults, a JSON config document (see `loader.py`), then `CW_*`
environment variables. Values are validated once here so downstream code
can trust them.

Environment variables:
  CW_BATCH_SIZE, CW_INTER_BATCH_DELAY, CW_CYCLE_INTERVAL,
  CW_MARKET_CHECK_INTERVAL, CW_ERROR_BACKOFF, CW_QUOTE_TIMEOUT,
  CW_CATALOG_TIMEOUT, CW_PERSIST_TIMEOUT, CW_INSTRUMENT_CACHE_TTL,
  CW_KITE_QPS, CW_UNDERLYINGS (csv), CW_SEGMENTS (csv),
  CW_SEVERITY_CRITICAL, CW_SEVERITY_HIGH, CW_SEVERITY_MEDIUM,
  CW_COOLDOWN_SECONDS, CW_DAILY_NOTIFICATION_CAP, CW_SNAPSHOT_POLICY,
  CW_DATA_DIR, CW_METRICS_PORT, CW_LOG_LEVEL, CW_LOG_FILE,
  CW_FORCE_MARKET_OPEN, CW_MAX_CYCLES
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

from circuitwatch.tracker.severity import SeverityThresholds
from circuitwatch.utils.env_flags import env_csv, env_float, env_int, is_truthy

logger = logging.getLogger(__name__)

DEFAULT_UNDERLYINGS: tuple[str, ...] = ("NIFTY", "BANKNIFTY", "FINNIFTY", "MIDCPNIFTY", "SENSEX", "BANKEX")
DEFAULT_SEGMENTS: tuple[str, ...] = ("NFO", "BFO")
SNAPSHOT_POLICIES = ("none", "changes", "all")


class SettingsError(ValueError):
    """Raised when a setting is out of range or of the wrong type."""


@dataclass(frozen=True, slots=True)
class TrackerSettings:
    batch_size: int = 100
    inter_batch_delay: float = 0.3
    cycle_interval: float = 30.0
    market_check_interval: float = 60.0
    error_backoff: float = 60.0
    quote_timeout: float = 10.0
    catalog_timeout: float = 30.0
    persist_timeout: float = 5.0
    instrument_cache_ttl: float = 600.0
    kite_qps: float = 3.0
    supported_underlyings: tuple[str, ...] = DEFAULT_UNDERLYINGS
    segments: tuple[str, ...] = DEFAULT_SEGMENTS
    severity_thresholds: SeverityThresholds = field(default_factory=SeverityThresholds)
    cooldown_seconds: float = 120.0
    daily_notification_cap: int = 50
    snapshot_policy: str = "changes"
    data_dir: str = "data/circuitwatch"
    metrics_port: int = 0
    log_level: str = "INFO"
    log_file: str | None = None
    force_market_open: bool = False
    max_cycles: int = 0

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise SettingsError(f"batch_size must be >= 1 (got {self.batch_size})")
        for name in ("inter_batch_delay", "cycle_interval", "market_check_interval", "error_backoff",
                     "cooldown_seconds", "instrument_cache_ttl"):
            if getattr(self, name) < 0:
                raise SettingsError(f"{name} must be >= 0 (got {getattr(self, name)})")
        for name in ("quote_timeout", "catalog_timeout", "persist_timeout", "kite_qps"):
            if getattr(self, name) <= 0:
                raise SettingsError(f"{name} must be > 0 (got {getattr(self, name)})")
        if self.daily_notification_cap < 0:
            raise SettingsError(f"daily_notification_cap must be >= 0 (got {self.daily_notification_cap})")
        if self.snapshot_policy not in SNAPSHOT_POLICIES:
            raise SettingsError(f"snapshot_policy must be one of {SNAPSHOT_POLICIES} (got {self.snapshot_policy!r})")
        if not self.supported_underlyings:
            raise SettingsError("supported_underlyings must not be empty")
        if not (0 <= self.metrics_port <= 65535):
            raise SettingsError(f"metrics_port out of range (got {self.metrics_port})")

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any] | None) -> TrackerSettings:
        """Build from a (schema-validated) JSON config document."""
        base = cls()
        if not cfg:
            return base
        collection = cfg.get("collection") or {}
        universe = cfg.get("universe") or {}
        severity = cfg.get("severity") or {}
        notifications = cfg.get("notifications") or {}
        storage = cfg.get("storage") or {}
        metrics = cfg.get("metrics") or {}
        log_cfg = cfg.get("logging") or {}
        market = cfg.get("market") or {}
        updates: dict[str, Any] = {}
        for key in ("batch_size", "inter_batch_delay", "cycle_interval", "market_check_interval",
                    "error_backoff", "quote_timeout", "catalog_timeout", "instrument_cache_ttl", "kite_qps"):
            if key in collection:
                updates[key] = collection[key]
        if "underlyings" in universe:
            updates["supported_underlyings"] = tuple(str(u).upper() for u in universe["underlyings"])
        if "segments" in universe:
            updates["segments"] = tuple(str(s).upper() for s in universe["segments"])
        if severity:
            current = base.severity_thresholds
            try:
                updates["severity_thresholds"] = SeverityThresholds.from_values(
                    severity.get("critical", current.critical),
                    severity.get("high", current.high),
                    severity.get("medium", current.medium),
                )
            except ValueError as e:
                raise SettingsError(str(e)) from e
        if "cooldown_seconds" in notifications:
            updates["cooldown_seconds"] = notifications["cooldown_seconds"]
        if "daily_cap" in notifications:
            updates["daily_notification_cap"] = notifications["daily_cap"]
        for src, dst in (("data_dir", "data_dir"), ("snapshot_policy", "snapshot_policy"),
                         ("persist_timeout", "persist_timeout")):
            if src in storage:
                updates[dst] = storage[src]
        if "port" in metrics:
            updates["metrics_port"] = metrics["port"]
        if "level" in log_cfg:
            updates["log_level"] = str(log_cfg["level"]).upper()
        if "file" in log_cfg:
            updates["log_file"] = log_cfg["file"] or None
        if "force_open" in market:
            updates["force_market_open"] = bool(market["force_open"])
        return replace(base, **updates)

    def with_env(self, env: Mapping[str, str] | None = None) -> TrackerSettings:
        """Return a copy with `CW_*` environment overrides applied."""
        env = os.environ if env is None else env
        updates: dict[str, Any] = {}
        int_keys = {
            "CW_BATCH_SIZE": "batch_size",
            "CW_DAILY_NOTIFICATION_CAP": "daily_notification_cap",
            "CW_METRICS_PORT": "metrics_port",
            "CW_MAX_CYCLES": "max_cycles",
        }
        float_keys = {
            "CW_INTER_BATCH_DELAY": "inter_batch_delay",
            "CW_CYCLE_INTERVAL": "cycle_interval",
            "CW_MARKET_CHECK_INTERVAL": "market_check_interval",
            "CW_ERROR_BACKOFF": "error_backoff",
            "CW_QUOTE_TIMEOUT": "quote_timeout",
            "CW_CATALOG_TIMEOUT": "catalog_timeout",
            "CW_PERSIST_TIMEOUT": "persist_timeout",
            "CW_INSTRUMENT_CACHE_TTL": "instrument_cache_ttl",
            "CW_KITE_QPS": "kite_qps",
            "CW_COOLDOWN_SECONDS": "cooldown_seconds",
        }
        for var, attr in int_keys.items():
            if env.get(var):
                updates[attr] = env_int(var, getattr(self, attr), env=env)
        for var, attr in float_keys.items():
            if env.get(var):
                updates[attr] = env_float(var, getattr(self, attr), env=env)
        underlyings = env_csv("CW_UNDERLYINGS", [], env=env)
        if underlyings:
            updates["supported_underlyings"] = tuple(underlyings)
        segments = env_csv("CW_SEGMENTS", [], env=env)
        if segments:
            updates["segments"] = tuple(segments)
        sev_raw = {k: env.get(f"CW_SEVERITY_{k.upper()}") for k in ("critical", "high", "medium")}
        if any(sev_raw.values()):
            current = self.severity_thresholds
            try:
                updates["severity_thresholds"] = SeverityThresholds(
                    critical=Decimal(sev_raw["critical"].strip()) if sev_raw["critical"] else current.critical,
                    high=Decimal(sev_raw["high"].strip()) if sev_raw["high"] else current.high,
                    medium=Decimal(sev_raw["medium"].strip()) if sev_raw["medium"] else current.medium,
                )
            except (ArithmeticError, ValueError) as e:
                raise SettingsError(f"invalid CW_SEVERITY_* override: {e}") from e
        if env.get("CW_SNAPSHOT_POLICY"):
            updates["snapshot_policy"] = env["CW_SNAPSHOT_POLICY"].strip().lower()
        if env.get("CW_DATA_DIR"):
            updates["data_dir"] = env["CW_DATA_DIR"].strip()
        if env.get("CW_LOG_LEVEL"):
            updates["log_level"] = env["CW_LOG_LEVEL"].strip().upper()
        if env.get("CW_LOG_FILE"):
            updates["log_file"] = env["CW_LOG_FILE"].strip()
        if "CW_FORCE_MARKET_OPEN" in env:
            updates["force_market_open"] = is_truthy(env.get("CW_FORCE_MARKET_OPEN"))
        if not updates:
            return self
        logger.debug("settings_env_overrides keys=%s", ",".join(sorted(updates)))
        return replace(self, **updates)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> TrackerSettings:
        return cls().with_env(env)

    def summary(self) -> dict[str, Any]:
        t = self.severity_thresholds
        return {
            "batch_size": self.batch_size,
            "inter_batch_delay": self.inter_batch_delay,
            "cycle_interval": self.cycle_interval,
            "market_check_interval": self.market_check_interval,
            "error_backoff": self.error_backoff,
            "underlyings": ",".join(self.supported_underlyings),
            "segments": ",".join(self.segments),
            "severity": f"{t.critical}/{t.high}/{t.medium}",
            "cooldown_seconds": self.cooldown_seconds,
            "daily_notification_cap": self.daily_notification_cap,
            "snapshot_policy": self.snapshot_policy,
            "data_dir": self.data_dir,
            "metrics_port": self.metrics_port,
        }


__all__ = ["TrackerSettings", "SettingsError", "DEFAULT_UNDERLYINGS", "DEFAULT_SEGMENTS", "SNAPSHOT_POLICIES"]
