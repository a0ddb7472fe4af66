"""Execution loop for the collection cycle.

Repeats `CollectionCycle.run_once` until the shutdown event is set or the
optional cycle cap is reached. Sleeps are interruptible by shutdown:
  * `interval` after a normal cycle,
  * `market_check_interval` while the market is closed,
  * `backoff` after a cycle that raised.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from circuitwatch.errors import ShutdownRequested, classify_exception
from circuitwatch.orchestrator.cycle import CollectionCycle
from circuitwatch.utils.timeouts import interruptible_sleep

logger = logging.getLogger(__name__)


def run_loop(cycle: CollectionCycle, *, interval: float, backoff: float,
             shutdown: threading.Event, max_cycles: int | None = None,
             market_check_interval: float | None = None,
             sleep: Callable[[float], bool] | None = None) -> int:
    """Run cycles until shutdown; return the number of cycles executed."""
    wait = sleep or (lambda s: interruptible_sleep(s, shutdown))
    closed_wait = interval if market_check_interval is None else market_check_interval
    executed = 0
    logger.info("loop_started interval=%s backoff=%s max_cycles=%s", interval, backoff, max_cycles)
    try:
        while not shutdown.is_set():
            try:
                result = cycle.run_once()
                delay = closed_wait if result.status == "market_closed" else interval
            except ShutdownRequested:
                logger.info("loop_shutdown_during_cycle")
                break
            except KeyboardInterrupt:
                logger.info("loop_keyboard_interrupt; initiating shutdown")
                shutdown.set()
                break
            except Exception as e:
                logger.exception("cycle_failed kind=%s; backing off %ss", classify_exception(e), backoff)
                delay = backoff
            executed += 1
            if max_cycles and executed >= max_cycles:
                logger.info("loop_max_cycles_reached cycles=%d", executed)
                break
            if wait(delay) or shutdown.is_set():
                break
    except KeyboardInterrupt:
        logger.info("loop_keyboard_interrupt (outer) -> graceful shutdown")
        shutdown.set()
    finally:
        logger.info("loop_terminated cycles=%d", executed)
    return executed


__all__ = ["run_loop"]
