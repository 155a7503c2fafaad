"""
processor.py — concurrent batch enrichment with retry, pause and cancel

Public API:
    processor = BatchEnrichmentProcessor(enrich_fn, controller)
    results   = processor.start(records)

Items are split into fixed-size batches and dispatched in waves of at most
``concurrency`` batches on a thread pool. A wave is awaited in full before the
next one starts. Each batch is attempted up to ``max_retries`` times with
exponential backoff; a batch that still fails turns into ``failed`` records
plus one error event, and the run goes on.

Between waves the loop looks at the controller status: ``paused`` blocks
until the status changes, ``idle`` (cancel) ends the run with whatever has
been accumulated so far. A wave already in flight always finishes.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional

from songsheet.contracts import utc_now_iso
from songsheet.controller import Controller
from songsheet.enrichment import EnrichFn, EnrichmentError, failed_record
from songsheet.models import (
    ApprovalStatus,
    EnrichedRecord,
    ProcessingError,
    ProcessingStatus,
    SongRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
CONCURRENCY = 3
MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 2.0
PAUSE_CHECK_INTERVAL = 0.1
PROGRESS_WINDOW = 1.0

FAILED_BATCH_NOTE = "Batch processing error"
STOPPED_STATUSES = (ProcessingStatus.IDLE, ProcessingStatus.CANCELLED)


def remaining_items(items: Iterable[SongRecord], results: Iterable[EnrichedRecord]) -> list[SongRecord]:
    """Items whose id has no result yet, in their original order."""
    done = {record.id for record in results}
    return [item for item in items if item.id not in done]


def _batches(items: list[SongRecord], size: int) -> list[list[SongRecord]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _at_least(minimum: int, name: str, value: Optional[int], default: int) -> int:
    if value is None:
        return default
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {value}")
    return value


@dataclass
class _BatchOutcome:
    records: list[EnrichedRecord]
    error: Optional[ProcessingError] = None


class _ProgressWindow:
    """Rolling speed/ETA estimate, refreshed at most once per window."""

    def __init__(self, clock: Callable[[], float], window: float, done: int):
        self.clock = clock
        self.window = window
        self.last_time = clock()
        self.last_done = done

    def update(self, done: int, total: int) -> dict:
        changes: dict = {"current": done, "total": total}
        now = self.clock()
        elapsed = now - self.last_time
        if elapsed >= self.window:
            speed = (done - self.last_done) / elapsed if elapsed > 0 else 0.0
            changes["speed"] = speed
            changes["eta"] = (total - done) / speed if speed > 0 else None
            self.last_time = now
            self.last_done = done
        return changes


class BatchEnrichmentProcessor:
    def __init__(
        self,
        enrich_fn: EnrichFn,
        controller: Controller,
        *,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
        initial_retry_delay: Optional[float] = None,
        pause_check_interval: Optional[float] = None,
        progress_window: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.enrich_fn = enrich_fn
        self.controller = controller
        self.batch_size = _at_least(1, "batch_size", batch_size, DEFAULT_BATCH_SIZE)
        self.concurrency = _at_least(1, "concurrency", concurrency, CONCURRENCY)
        self.max_retries = _at_least(1, "max_retries", max_retries, MAX_RETRIES)
        self.initial_retry_delay = INITIAL_RETRY_DELAY if initial_retry_delay is None else initial_retry_delay
        self.pause_check_interval = PAUSE_CHECK_INTERVAL if pause_check_interval is None else pause_check_interval
        if self.pause_check_interval <= 0:
            raise ValueError(f"pause_check_interval must be positive, got {self.pause_check_interval}")
        self.progress_window = PROGRESS_WINDOW if progress_window is None else progress_window
        self.sleep = sleep
        self.clock = clock

        self._lock = threading.Lock()
        self._running = False
        self._results: list[EnrichedRecord] = []
        self.failed_batches = 0

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    # ══════════════════════════════════════════════════════════════════════════
    # ONE BATCH
    # ══════════════════════════════════════════════════════════════════════════

    def _attempt(self, batch: list[SongRecord]) -> list[EnrichedRecord]:
        enriched = list(self.enrich_fn(batch))
        if len(enriched) != len(batch):
            raise EnrichmentError(f"Expected {len(batch)} enriched records, got {len(enriched)}")
        return [replace(record, approval_status=ApprovalStatus.PENDING.value) for record in enriched]

    def _process_batch(self, batch: list[SongRecord], number: int) -> _BatchOutcome:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return _BatchOutcome(self._attempt(batch))
            except Exception as exc:
                last_error = exc
                if attempt < self.max_retries:
                    delay = self.initial_retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "Batch %d failed (attempt %d/%d): %s; retrying in %.1fs",
                        number, attempt, self.max_retries, exc, delay,
                    )
                    self.sleep(delay)

        logger.error("Batch %d failed after %d attempts: %s", number, self.max_retries, last_error)
        error = ProcessingError(
            timestamp=utc_now_iso(),
            message=f"Batch {number} failed after {self.max_retries} attempts",
            details=str(last_error),
            failed_items=[item.title for item in batch],
        )
        return _BatchOutcome([failed_record(item, FAILED_BATCH_NOTE) for item in batch], error)

    # ══════════════════════════════════════════════════════════════════════════
    # DRIVING LOOP
    # ══════════════════════════════════════════════════════════════════════════

    def _wait_until_runnable(self) -> bool:
        status = self.controller.status
        while status == ProcessingStatus.PAUSED:
            status = self.controller.wait_for_status_change(ProcessingStatus.PAUSED, self.pause_check_interval)
        return status not in STOPPED_STATUSES

    def _run(self, items: list[SongRecord], batch_size: int, results: list[EnrichedRecord]) -> list[EnrichedRecord]:
        batches = _batches(items, batch_size)
        total = len(results) + len(items)
        window = _ProgressWindow(self.clock, self.progress_window, len(results))

        self.controller.set_status(ProcessingStatus.ENRICHING)
        self.controller.set_progress(current=len(results), total=total, speed=0.0, eta=None)
        logger.info("Enriching %d items in %d batches of %d", len(items), len(batches), batch_size)

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="songsheet-batch") as pool:
            for wave_start in range(0, len(batches), self.concurrency):
                if not self._wait_until_runnable():
                    logger.info("Run stopped before batch %d; %d results kept", wave_start + 1, len(results))
                    return results

                wave = batches[wave_start:wave_start + self.concurrency]
                logger.debug("Dispatching wave of %d batches starting at batch %d", len(wave), wave_start + 1)
                futures = [
                    pool.submit(self._process_batch, batch, wave_start + offset + 1)
                    for offset, batch in enumerate(wave)
                ]
                for future in as_completed(futures):
                    outcome = future.result()
                    results.extend(outcome.records)
                    if outcome.error is not None:
                        self.failed_batches += 1
                        self.controller.add_error(outcome.error)

                self._results = list(results)
                self.controller.set_results(results)
                self.controller.set_progress(**window.update(len(results), total))

        if self.controller.status not in STOPPED_STATUSES:
            self.controller.set_status(ProcessingStatus.COMPLETED)
            logger.info("Enrichment complete: %d results, %d failed batches", len(results), self.failed_batches)
        return results

    def start(
        self,
        items: list[SongRecord],
        batch_size: Optional[int] = None,
        initial_results: Optional[list[EnrichedRecord]] = None,
    ) -> list[EnrichedRecord]:
        """
        Enrich ``items`` and return every result accumulated by the run.

        ``initial_results`` seeds the output with records from an earlier,
        interrupted run (see ``remaining_items``). Calling ``start`` while a
        run is active returns the current results untouched.

        Raises:
            ValueError if ``batch_size`` is below 1.
        """
        size = _at_least(1, "batch_size", batch_size, self.batch_size)
        with self._lock:
            if self._running:
                logger.warning("Processing already running; ignoring second start")
                return list(self._results)
            self._running = True
            self._results = list(initial_results or [])
            self.failed_batches = 0

        results = list(self._results)
        try:
            return self._run(list(items), size, results)
        except Exception as exc:
            logger.exception("Critical error while enriching")
            self.controller.add_error(
                ProcessingError(
                    timestamp=utc_now_iso(),
                    message="Critical processing error",
                    details=str(exc),
                )
            )
            self.controller.set_status(ProcessingStatus.IDLE)
            return results
        finally:
            with self._lock:
                self._running = False
