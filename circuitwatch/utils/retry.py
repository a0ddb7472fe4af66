"""Retry helpers built on tenacity.

Environment knobs:
  CW_RETRY_MAX_ATTEMPTS: default 2
  CW_RETRY_MAX_SECONDS:  overall cap in seconds (default 8)
  CW_RETRY_BACKOFF:      base backoff seconds (default 0.2)

Only transient transport errors are retried (TimeoutError, ConnectionError
and kiteconnect's NetworkException). Everything else surfaces on the first
attempt so the caller can classify it. The final exception is re-raised
unchanged.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from circuitwatch.utils.env_flags import env_float, env_int

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

_TRANSIENT_NAMES = {"NetworkException"}


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    return type(exc).__name__ in _TRANSIENT_NAMES


def build_stop_strategy() -> Any:
    attempts = env_int('CW_RETRY_MAX_ATTEMPTS', 2, minimum=1)
    max_seconds = env_float('CW_RETRY_MAX_SECONDS', 8.0, minimum=0.0)
    return stop_after_attempt(attempts) | stop_after_delay(max_seconds)


def build_wait_strategy() -> Any:
    base = env_float('CW_RETRY_BACKOFF', 0.2, minimum=0.0)
    return wait_exponential(multiplier=base, min=base, max=2.5)


def call_with_retry(fn: Callable[P, R], *args: P.args, **kwargs: P.kwargs) -> R:
    """Call `fn` retrying transient failures; re-raise the last exception as-is."""
    for attempt in Retrying(
        retry=retry_if_exception(is_transient),
        wait=build_wait_strategy(),
        stop=build_stop_strategy(),
        reraise=True,
        before_sleep=lambda rs: logger.debug(
            "retrying %s attempt=%s due to %r",
            getattr(fn, '__name__', 'call'), rs.attempt_number,
            rs.outcome.exception() if rs.outcome else None),
    ):
        with attempt:
            return fn(*args, **kwargs)
    raise RuntimeError("retry loop exited without result")  # pragma: no cover


__all__ = ["call_with_retry", "is_transient", "build_stop_strategy", "build_wait_strategy"]
