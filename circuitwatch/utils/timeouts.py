"""Bounded-time execution of blocking provider / storage calls.

`timed_call` runs `fn` on a short-lived worker thread and waits for it in
small slices so that a shutdown request can abandon the in-flight call. A
worker that overruns is left to finish on its own (daemon-style); the caller
never blocks past `timeout`.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import TypeVar

from circuitwatch.errors import ShutdownRequested

R = TypeVar("R")

_POLL_SLICE = 0.1


def timed_call(fn: Callable[[], R], timeout: float, shutdown: threading.Event | None = None) -> R:
    if shutdown is not None and shutdown.is_set():
        raise ShutdownRequested("shutdown requested before call")
    exe = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cw-call")
    try:
        fut = exe.submit(fn)
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                fut.cancel()
                raise TimeoutError(f"operation timed out after {timeout}s")
            try:
                return fut.result(timeout=min(_POLL_SLICE, remaining))
            except FuturesTimeout:
                if fut.done():
                    # fn itself raised TimeoutError (same class on 3.11+)
                    raise
                if shutdown is not None and shutdown.is_set():
                    fut.cancel()
                    raise ShutdownRequested("shutdown requested during call") from None
    finally:
        exe.shutdown(wait=False, cancel_futures=True)


def interruptible_sleep(seconds: float, shutdown: threading.Event | None) -> bool:
    """Sleep up to `seconds`; return True when woken early by shutdown."""
    if seconds <= 0:
        return bool(shutdown is not None and shutdown.is_set())
    if shutdown is None:
        time.sleep(seconds)
        return False
    return shutdown.wait(seconds)


__all__ = ["timed_call", "interruptible_sleep"]
