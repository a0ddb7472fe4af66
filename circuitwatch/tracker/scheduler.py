"""Sequential batch driver for quote collection.

Batches run one at a time on the caller's thread so the provider's rate
budget is spent by a single consumer. A fixed delay separates consecutive
batches whatever their individual latency. Any error raised while fetching a
batch, or a quote map that does not cover every requested token, fails that
batch only: it is logged and skipped before `on_batch` sees any of it, and
later batches still run. Batch numbers are 1-based.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field

from circuitwatch.domain.models import Instrument, Quote
from circuitwatch.errors import BatchFailure, PartialQuoteResponseError, ShutdownRequested
from circuitwatch.utils.timeouts import interruptible_sleep

logger = logging.getLogger(__name__)

FetchQuotes = Callable[[Sequence[int]], dict[int, Quote]]
OnBatch = Callable[[Sequence[Instrument], dict[int, Quote]], None]


@dataclass(slots=True)
class BatchRunSummary:
    attempted: int = 0
    obtained: int = 0
    batches_total: int = 0
    batches_failed: int = 0
    failed_batches: list[int] = field(default_factory=list)
    cancelled: bool = False

    @property
    def batches_ok(self) -> int:
        return self.batches_total - self.batches_failed


class BatchScheduler:
    def __init__(self, fetch_quotes: FetchQuotes, batch_size: int = 100, inter_batch_delay: float = 0.3,
                 *, sleep: Callable[[float], None] | None = None,
                 shutdown: threading.Event | None = None,
                 on_failure: Callable[[int, BaseException], None] | None = None):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1 (got {batch_size})")
        self._fetch = fetch_quotes
        self.batch_size = batch_size
        self.inter_batch_delay = max(0.0, inter_batch_delay)
        self._shutdown = shutdown
        self._sleep = sleep or (lambda s: interruptible_sleep(s, shutdown))
        self._on_failure = on_failure

    def partition(self, instruments: Sequence[Instrument]) -> Iterator[Sequence[Instrument]]:
        for start in range(0, len(instruments), self.batch_size):
            yield instruments[start:start + self.batch_size]

    def _stopping(self) -> bool:
        return self._shutdown is not None and self._shutdown.is_set()

    def run(self, instruments: Sequence[Instrument], on_batch: OnBatch) -> BatchRunSummary:
        batches = list(self.partition(instruments))
        summary = BatchRunSummary(batches_total=len(batches))
        batches_run = 0
        for batch_no, batch in enumerate(batches, start=1):
            if batch_no > 1 and self.inter_batch_delay > 0:
                self._sleep(self.inter_batch_delay)
            if self._stopping():
                summary.cancelled = True
                break
            tokens = [inst.token for inst in batch]
            batches_run += 1
            summary.attempted += len(tokens)
            try:
                quotes = self._fetch(tokens)
                missing = [t for t in tokens if t not in quotes]
                if missing:
                    raise PartialQuoteResponseError(missing)
            except ShutdownRequested:
                summary.cancelled = True
                break
            except Exception as e:
                if not isinstance(e, BatchFailure):
                    logger.error("batch_unexpected_error batch=%d/%d", batch_no, len(batches), exc_info=True)
                summary.batches_failed += 1
                summary.failed_batches.append(batch_no)
                logger.warning("batch_failed batch=%d/%d size=%d kind=%s err=%s",
                               batch_no, len(batches), len(tokens), type(e).__name__, e)
                if self._on_failure is not None:
                    self._on_failure(batch_no, e)
                continue
            summary.obtained += len(quotes)
            logger.debug("batch_ok batch=%d/%d size=%d quotes=%d", batch_no, len(batches), len(tokens), len(quotes))
            on_batch(batch, quotes)
        if summary.cancelled:
            logger.info("batch_run_cancelled attempted=%d obtained=%d batches_run=%d/%d",
                        summary.attempted, summary.obtained, batches_run, summary.batches_total)
        return summary


__all__ = ["BatchScheduler", "BatchRunSummary", "FetchQuotes", "OnBatch"]
