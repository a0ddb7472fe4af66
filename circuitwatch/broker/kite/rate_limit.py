"""Token-bucket rate limiter & cooldown for Kite API calls.

Environment variables (all optional):
  CW_KITE_QPS                        : Sustained allowed requests per second (default 3)
  CW_KITE_RATE_MAX_BURST             : Bucket capacity (default = 2 * QPS)
  CW_KITE_RATE_CONSECUTIVE_THRESHOLD : Consecutive rate-limit errors to open cooldown (default 5)
  CW_KITE_RATE_COOLDOWN_SECONDS      : Cooldown length in seconds (default 20)

The caller is expected to:
  * invoke acquire() before issuing a network call
  * call record_rate_limit_error() when a 429 / "Too many requests" is observed
  * call record_success() on any successful call (resets consecutive counter)

While in cooldown, acquire() sleeps out the remaining cooldown or, with
fast_fail=True, raises RateLimitedError immediately.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from circuitwatch.utils.env_flags import env_float, env_int

logger = logging.getLogger(__name__)


class RateLimitedError(RuntimeError):
    """Raised to signal the caller that the request should be delayed / skipped."""


_RATE_LIMIT_HINTS = ("too many requests", "429", "rate limit")


def is_rate_limit_error(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return any(h in msg for h in _RATE_LIMIT_HINTS)


@dataclass
class _State:
    capacity: float
    tokens: float
    refill_rate: float  # tokens per second
    last_refill: float
    consecutive_rl: int = 0
    cooldown_until: float = 0.0


class RateLimiter:
    def __init__(self,
                 qps: float = 3.0,
                 burst: int | None = None,
                 consecutive_threshold: int = 5,
                 cooldown_seconds: float = 20.0,
                 *,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        qps = max(0.1, float(qps))
        cap = float(burst) if (burst and burst > 0) else max(1.0, qps * 2)
        self._clock = clock
        self._sleep = sleep
        self._st = _State(capacity=cap, tokens=cap, refill_rate=qps, last_refill=clock())
        self._lock = threading.Lock()
        self._consecutive_threshold = max(1, consecutive_threshold)
        self._cooldown_seconds = max(1.0, cooldown_seconds)

    def _refill(self, now: float) -> None:
        st = self._st
        if now <= st.last_refill:
            return
        st.tokens = min(st.capacity, st.tokens + (now - st.last_refill) * st.refill_rate)
        st.last_refill = now

    def acquire(self, tokens: float = 1.0, *, fast_fail: bool = False) -> None:
        """Take `tokens` from the bucket, blocking minimally until available."""
        while True:
            now = self._clock()
            with self._lock:
                st = self._st
                if st.cooldown_until and now < st.cooldown_until:
                    if fast_fail:
                        raise RateLimitedError("rate_limited_cooldown")
                    sleep_for = st.cooldown_until - now
                else:
                    self._refill(now)
                    if st.tokens >= tokens:
                        st.tokens -= tokens
                        return
                    sleep_for = (tokens - st.tokens) / st.refill_rate
            # cap sleeps at 1s to stay responsive
            self._sleep(min(sleep_for, 1.0))

    __call__ = acquire

    def record_rate_limit_error(self) -> None:
        with self._lock:
            self._st.consecutive_rl += 1
            if self._st.consecutive_rl >= self._consecutive_threshold:
                self._st.cooldown_until = self._clock() + self._cooldown_seconds
                logger.warning("kite_rate_limit_cooldown seconds=%s consecutive=%d",
                               self._cooldown_seconds, self._st.consecutive_rl)

    def record_success(self) -> None:
        with self._lock:
            self._st.consecutive_rl = 0
            if self._st.cooldown_until and self._clock() >= self._st.cooldown_until:
                self._st.cooldown_until = 0.0

    def cooldown_active(self) -> bool:
        with self._lock:
            return bool(self._st.cooldown_until and self._clock() < self._st.cooldown_until)


def build_default_rate_limiter(qps: float | None = None) -> RateLimiter:
    if qps is None:
        qps = env_float('CW_KITE_QPS', 3.0, minimum=0.1)
    burst = env_int('CW_KITE_RATE_MAX_BURST', 0) or None
    thr = env_int('CW_KITE_RATE_CONSECUTIVE_THRESHOLD', 5, minimum=1)
    cd = env_float('CW_KITE_RATE_COOLDOWN_SECONDS', 20.0, minimum=1.0)
    return RateLimiter(qps=qps, burst=burst, consecutive_threshold=thr, cooldown_seconds=cd)


__all__ = ["RateLimiter", "RateLimitedError", "build_default_rate_limiter", "is_rate_limit_error"]
