"""One collection cycle.

Phases: IDLE -> MARKET_CHECK -> COLLECTING -> PERSISTING -> NOTIFYING -> IDLE.

Failures are contained at the smallest scope that owns them: a failed batch
is skipped by the scheduler, a failed record write is counted here, a sink
error is logged. Only unexpected exceptions escape `run_once`; changes
detected before such an exception are still persisted and delivered, then
the loop catches it and backs off.
"""
from __future__ import annotations

import datetime as dt
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from circuitwatch.domain.models import ChangeEvent, Instrument, Quote
from circuitwatch.errors import BatchFailure, CatalogError, FatalError, PersistenceFailure, classify_exception
from circuitwatch.orchestrator.context import RuntimeContext
from circuitwatch.storage.csv_store import ist_day
from circuitwatch.tracker.scheduler import BatchRunSummary, BatchScheduler
from circuitwatch.tracker.universe import count_by_underlying, resolve_universe
from circuitwatch.utils.logging_utils import set_cycle
from circuitwatch.utils.timeouts import timed_call

logger = logging.getLogger(__name__)


class CyclePhase(str, Enum):
    IDLE = "idle"
    MARKET_CHECK = "market_check"
    COLLECTING = "collecting"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"


@dataclass(slots=True)
class CycleResult:
    cycle: int
    status: str
    started_at: dt.datetime
    duration: float = 0.0
    instruments: int = 0
    attempted: int = 0
    obtained: int = 0
    batches_total: int = 0
    batches_failed: int = 0
    failed_batches: list[int] = field(default_factory=list)
    cancelled: bool = False
    events: list[ChangeEvent] = field(default_factory=list)
    snapshots_persisted: int = 0
    events_persisted: int = 0
    persist_failures: int = 0
    notified: dict[str, int] = field(default_factory=dict)
    suppressed: list[str] = field(default_factory=list)
    index_prices: dict[str, Decimal] = field(default_factory=dict)

    def absorb(self, summary: BatchRunSummary) -> None:
        self.attempted = summary.attempted
        self.obtained = summary.obtained
        self.batches_total = summary.batches_total
        self.batches_failed = summary.batches_failed
        self.failed_batches = list(summary.failed_batches)
        self.cancelled = summary.cancelled


def group_by_underlying(events: Sequence[ChangeEvent]) -> dict[str, list[ChangeEvent]]:
    groups: dict[str, list[ChangeEvent]] = {}
    for ev in events:
        groups.setdefault(ev.underlying, []).append(ev)
    return groups


class CollectionCycle:
    def __init__(self, ctx: RuntimeContext):
        self.ctx = ctx
        self.phase = CyclePhase.IDLE
        self._stalled = False

    def _enter(self, phase: CyclePhase) -> None:
        self.phase = phase
        logger.debug("cycle_phase phase=%s", phase.value)

    def run_once(self) -> CycleResult:
        ctx = self.ctx
        ctx.cycle_count += 1
        set_cycle(ctx.cycle_count)
        now = ctx.clock()
        t0 = time.monotonic()
        result = CycleResult(cycle=ctx.cycle_count, status="ok", started_at=now)
        try:
            self._run(now, result)
        except Exception as e:
            ctx.metrics.cycle_errors.labels(kind=classify_exception(e)).inc()
            ctx.metrics.observe_cycle("error", time.monotonic() - t0)
            raise
        finally:
            self.phase = CyclePhase.IDLE
        result.duration = time.monotonic() - t0
        ctx.metrics.observe_cycle(result.status, result.duration)
        ctx.metrics.known_states.set(len(ctx.state))
        if result.status == "ok":
            logger.info(
                "cycle_complete instruments=%d attempted=%d obtained=%d batches_failed=%d/%d changes=%d "
                "persist_failures=%d notified=%d suppressed=%d cancelled=%s duration=%.2fs",
                result.instruments, result.attempted, result.obtained, result.batches_failed,
                result.batches_total, len(result.events), result.persist_failures,
                sum(result.notified.values()), len(result.suppressed), result.cancelled, result.duration,
            )
        return result

    def _run(self, now: dt.datetime, result: CycleResult) -> None:
        ctx = self.ctx
        settings = ctx.settings

        self._enter(CyclePhase.MARKET_CHECK)
        ctx.gate.reset_if_new_day(now)
        if not ctx.calendar.is_market_open(now):
            result.status = "market_closed"
            wait = getattr(ctx.calendar, "time_to_next_open", None)
            if callable(wait):
                logger.info("market_closed next_open_in=%s", wait(now))
            else:
                logger.info("market_closed")
            return
        if not ctx.session.has_credential():
            result.status = "no_credential"
            logger.warning("no_credential: set KITE_API_KEY and KITE_ACCESS_TOKEN; skipping cycle")
            return

        self._enter(CyclePhase.COLLECTING)
        rows = []
        try:
            for segment in settings.segments:
                rows.extend(ctx.catalog.fetch_instruments(segment))
        except CatalogError as e:
            result.status = "catalog_error"
            logger.error("catalog_unavailable err=%s; skipping cycle", e)
            return
        universe = resolve_universe(rows, settings.supported_underlyings, ist_day(now))
        result.instruments = len(universe)
        ctx.metrics.tracked_instruments.set(len(universe))
        if not universe:
            logger.info("universe_empty catalog_rows=%d; nothing to collect", len(rows))
            return
        logger.debug("universe counts=%s", count_by_underlying(universe))

        prices = self._index_prices(sorted({i.underlying for i in universe}))
        result.index_prices = prices

        snapshots: list[tuple[Instrument, Quote, Decimal | None]] = []
        policy = settings.snapshot_policy

        def on_batch(batch: Sequence[Instrument], quotes: dict[int, Quote]) -> None:
            for inst in batch:
                quote = quotes.get(inst.token)
                if quote is None:
                    raise FatalError(f"batch delivered without a quote for token {inst.token}")
                price = prices.get(inst.underlying)
                event = ctx.detector.observe(inst, quote, price)
                if event is not None:
                    result.events.append(event)
                    ctx.metrics.observe_change(event.severity)
                if policy == "all" or (policy == "changes" and event is not None):
                    snapshots.append((inst, quote, price))

        scheduler = BatchScheduler(
            ctx.quotes.fetch_quotes,
            batch_size=settings.batch_size,
            inter_batch_delay=settings.inter_batch_delay,
            sleep=ctx.sleep,
            shutdown=ctx.shutdown,
        )
        try:
            summary = scheduler.run(universe, on_batch)
        except Exception:
            logger.error("collection_aborted changes=%d snapshots=%d; persisting what was detected",
                         len(result.events), len(snapshots))
            self._flush(result, snapshots, now)
            raise
        result.absorb(summary)
        ctx.metrics.observe_batches(summary.batches_ok, summary.batches_failed, summary.obtained)
        self._flush(result, snapshots, now)

    def _flush(self, result: CycleResult, snapshots: list[tuple[Instrument, Quote, Decimal | None]],
               now: dt.datetime) -> None:
        ctx = self.ctx
        self._stalled = False
        self._enter(CyclePhase.PERSISTING)
        for event in result.events:
            if self._persist("change_event", lambda ev=event: ctx.store.persist_change_event(ev)):
                result.events_persisted += 1
            else:
                result.persist_failures += 1
        for inst, quote, price in snapshots:
            if self._persist("snapshot", lambda i=inst, q=quote, p=price: ctx.store.persist_snapshot(i, q, p)):
                result.snapshots_persisted += 1
            else:
                result.persist_failures += 1
        state = ctx.state.snapshot()
        if not self._persist("state", lambda: ctx.store.save_state(state)):
            result.persist_failures += 1

        self._enter(CyclePhase.NOTIFYING)
        self._notify(result, now)

    def _index_prices(self, underlyings: list[str]) -> dict[str, Decimal]:
        try:
            return self.ctx.quotes.fetch_index_prices(underlyings)
        except BatchFailure as e:
            logger.warning("index_prices_unavailable kind=%s err=%s", type(e).__name__, e)
            return {}

    def _persist(self, kind: str, write: Callable[[], None]) -> bool:
        # no shutdown hook: writes for already-detected changes should land
        if self._stalled:
            self.ctx.metrics.persist_failures.labels(kind=kind).inc()
            return False
        try:
            timed_call(write, self.ctx.settings.persist_timeout)
        except TimeoutError as e:
            # the abandoned write keeps the store busy; later writes would only queue behind it
            self._stalled = True
            self.ctx.metrics.persist_failures.labels(kind=kind).inc()
            logger.error("persist_timeout kind=%s err=%s; write left running, skipping remaining writes this cycle",
                         kind, e)
            return False
        except (PersistenceFailure, OSError) as e:
            self.ctx.metrics.persist_failures.labels(kind=kind).inc()
            logger.error("persist_failed kind=%s err=%s", kind, e)
            return False
        return True

    def _notify(self, result: CycleResult, now: dt.datetime) -> None:
        ctx = self.ctx
        for underlying, events in group_by_underlying(result.events).items():
            if not ctx.gate.allow(underlying, now):
                result.suppressed.append(underlying)
                ctx.metrics.notifications.labels(outcome="suppressed").inc()
                continue
            result.notified[underlying] = len(events)
            ctx.metrics.notifications.labels(outcome="sent").inc()
            for sink in ctx.sinks:
                try:
                    sink.deliver(underlying, events)
                except Exception:
                    ctx.metrics.sink_errors.labels(sink=getattr(sink, "name", type(sink).__name__)).inc()
                    logger.exception("sink_delivery_failed sink=%s underlying=%s",
                                     getattr(sink, "name", type(sink).__name__), underlying)


__all__ = ["CollectionCycle", "CycleResult", "CyclePhase", "group_by_underlying"]
