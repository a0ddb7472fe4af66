"""Environment flag helpers.

Interprets environment variables as boolean / numeric knobs using the
canonical truthy set {"1","true","yes","on"} (case-insensitive).

Usage:
    from circuitwatch.utils.env_flags import is_truthy_env
    if is_truthy_env('CW_FORCE_MARKET_OPEN'):
        ...
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping

logger = logging.getLogger(__name__)

TRUTHY_SET: set[str] = {"1", "true", "yes", "on"}


def is_truthy(value: str | None) -> bool:
    if not value:
        return False
    return value.strip().lower() in TRUTHY_SET


def is_truthy_env(name: str, default: str | None = None) -> bool:
    return is_truthy(os.getenv(name, default or ''))


def _strip(raw: str) -> str:
    # tolerate inline comments such as "60   # seconds"
    return raw.split('#', 1)[0].strip()


def env_float(name: str, default: float, *, env: Mapping[str, str] | None = None,
              minimum: float | None = None) -> float:
    e = env if env is not None else os.environ
    raw = e.get(name)
    if raw is None or not _strip(raw):
        return default
    try:
        f = float(_strip(raw))
    except ValueError:
        logger.warning("env_float_parse_failed name=%s raw=%r default=%s", name, raw, default)
        return default
    if minimum is not None and f < minimum:
        f = minimum
    return f


def env_int(name: str, default: int, *, env: Mapping[str, str] | None = None,
            minimum: int | None = None) -> int:
    e = env if env is not None else os.environ
    raw = e.get(name)
    if raw is None or not _strip(raw):
        return default
    try:
        n = int(_strip(raw))
    except ValueError:
        logger.warning("env_int_parse_failed name=%s raw=%r default=%s", name, raw, default)
        return default
    if minimum is not None and n < minimum:
        n = minimum
    return n


def env_csv(name: str, default: list[str], *, env: Mapping[str, str] | None = None) -> list[str]:
    e = env if env is not None else os.environ
    raw = e.get(name)
    if raw is None or not _strip(raw):
        return list(default)
    return [p.strip().upper() for p in _strip(raw).split(',') if p.strip()]


__all__ = [
    'TRUTHY_SET',
    'is_truthy',
    'is_truthy_env',
    'env_float',
    'env_int',
    'env_csv',
]
