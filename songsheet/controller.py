"""
controller.py — status, progress, error and result sinks for a run

``Controller`` is the narrow interface the batch processor depends on.
``ProcessingController`` is the in-process host implementation: it keeps
the state a review UI would show, exposes the user-facing actions (pause,
resume, cancel, approve, edit) and optionally mirrors every result/status
change into a ``ResultStore`` so a run can be restored later.

Status changes wake up anyone blocked in ``wait_for_status_change``, so the
processor sleeps on a condition variable while paused instead of polling.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import fields, replace
from typing import Any, Iterable, Optional, Protocol

from songsheet.models import (
    ApprovalStatus,
    EnrichedRecord,
    ProcessingError,
    ProcessingProgress,
    ProcessingStatus,
)
from songsheet.storage import ResultStore

logger = logging.getLogger(__name__)

PROGRESS_FIELDS = {f.name for f in fields(ProcessingProgress)}
EDITABLE_FIELDS = {f.name for f in fields(EnrichedRecord)} - {"id"}


class Controller(Protocol):
    @property
    def status(self) -> ProcessingStatus: ...

    def set_status(self, status: ProcessingStatus) -> None: ...

    def set_progress(self, **partial: Any) -> None: ...

    def add_error(self, error: ProcessingError) -> None: ...

    def set_results(self, records: list[EnrichedRecord]) -> None: ...

    def wait_for_status_change(self, current: ProcessingStatus, timeout: float) -> ProcessingStatus: ...


class ProcessingController:
    def __init__(self, store: Optional[ResultStore] = None):
        self.store = store
        self._cond = threading.Condition()
        self._status = ProcessingStatus.IDLE
        self._progress = ProcessingProgress()
        self._errors: list[ProcessingError] = []
        self._results: list[EnrichedRecord] = []

    # ══════════════════════════════════════════════════════════════════════════
    # SINKS USED BY THE PROCESSOR
    # ══════════════════════════════════════════════════════════════════════════

    @property
    def status(self) -> ProcessingStatus:
        with self._cond:
            return self._status

    @property
    def progress(self) -> ProcessingProgress:
        with self._cond:
            return replace(self._progress)

    @property
    def errors(self) -> list[ProcessingError]:
        with self._cond:
            return list(self._errors)

    @property
    def results(self) -> list[EnrichedRecord]:
        with self._cond:
            return list(self._results)

    def set_status(self, status: ProcessingStatus) -> None:
        status = ProcessingStatus(status)
        with self._cond:
            if status == self._status:
                return
            logger.debug("Status %s -> %s", self._status.value, status.value)
            self._status = status
            self._cond.notify_all()
            self._save_metadata()

    def set_progress(self, **partial: Any) -> None:
        unknown = set(partial) - PROGRESS_FIELDS
        if unknown:
            raise ValueError(f"Unknown progress fields: {sorted(unknown)}")
        with self._cond:
            self._progress = replace(self._progress, **partial)

    def add_error(self, error: ProcessingError) -> None:
        with self._cond:
            self._errors.append(error)
        logger.error("%s: %s", error.message, error.details)

    def set_results(self, records: list[EnrichedRecord]) -> None:
        with self._cond:
            self._results = list(records)
            self._save_results()

    def wait_for_status_change(self, current: ProcessingStatus, timeout: float) -> ProcessingStatus:
        """Block until the status differs from ``current`` or ``timeout`` elapses."""
        with self._cond:
            self._cond.wait_for(lambda: self._status != current, timeout=timeout)
            return self._status

    # ══════════════════════════════════════════════════════════════════════════
    # USER ACTIONS
    # ══════════════════════════════════════════════════════════════════════════

    def can_pause(self) -> bool:
        return self.status in (ProcessingStatus.EXTRACTING, ProcessingStatus.ENRICHING)

    def can_cancel(self) -> bool:
        return self.status not in (
            ProcessingStatus.IDLE,
            ProcessingStatus.COMPLETED,
            ProcessingStatus.CANCELLED,
        )

    def pause(self) -> bool:
        with self._cond:
            if not self.can_pause():
                return False
            self.set_status(ProcessingStatus.PAUSED)
        logger.info("Processing paused")
        return True

    def resume(self) -> bool:
        with self._cond:
            if self._status != ProcessingStatus.PAUSED:
                return False
            self.set_status(ProcessingStatus.ENRICHING)
        logger.info("Processing resumed")
        return True

    def cancel(self) -> bool:
        """Stop the run; a cancelled run is represented by the idle status."""
        with self._cond:
            if not self.can_cancel():
                return False
            self.set_status(ProcessingStatus.IDLE)
        logger.info("Processing cancelled")
        return True

    def reset(self) -> None:
        with self._cond:
            self._progress = ProcessingProgress()
            self._errors = []
            self._results = []
            self.set_status(ProcessingStatus.IDLE)
        self.clear_saved_state()

    def clear_errors(self) -> None:
        with self._cond:
            self._errors = []

    # ── review ────────────────────────────────────────────────────────────────

    def update_result_item(self, item_id: str, **changes: Any) -> Optional[EnrichedRecord]:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {sorted(unknown)}")
        with self._cond:
            for idx, record in enumerate(self._results):
                if record.id == item_id:
                    updated = replace(record, **changes)
                    self._results[idx] = updated
                    self._save_results()
                    return updated
        return None

    def approve_item(self, item_id: str) -> bool:
        return self.update_result_item(item_id, approval_status=ApprovalStatus.APPROVED.value) is not None

    def approve_multiple(self, item_ids: Iterable[str]) -> int:
        wanted = set(item_ids)
        approved = 0
        with self._cond:
            for idx, record in enumerate(self._results):
                if record.id in wanted:
                    self._results[idx] = replace(record, approval_status=ApprovalStatus.APPROVED.value)
                    approved += 1
            if approved:
                self._save_results()
        return approved

    def pending_items(self) -> list[EnrichedRecord]:
        return [r for r in self.results if r.approval_status == ApprovalStatus.PENDING.value]

    def approved_items(self) -> list[EnrichedRecord]:
        return [r for r in self.results if r.approval_status == ApprovalStatus.APPROVED.value]

    # ══════════════════════════════════════════════════════════════════════════
    # PERSISTENCE
    # ══════════════════════════════════════════════════════════════════════════

    def _save_results(self) -> None:
        if self.store is not None:
            self.store.save_results(self._results)

    def _save_metadata(self) -> None:
        if self.store is not None:
            self.store.save_metadata(self._status.value, self._progress)

    def restore(self) -> bool:
        """
        Reload results and status from the store.

        A run that was still enriching when it stopped comes back paused, so
        the user decides whether to continue. Returns False when nothing was
        saved.
        """
        if self.store is None:
            return False
        results = self.store.load_results()
        metadata = self.store.load_metadata() or {}
        if not results and not metadata:
            return False

        raw_status = metadata.get("status", ProcessingStatus.IDLE.value)
        try:
            status = ProcessingStatus(raw_status)
        except ValueError:
            logger.warning("Unknown saved status %r; restoring as paused", raw_status)
            status = ProcessingStatus.PAUSED
        if status in (ProcessingStatus.ENRICHING, ProcessingStatus.EXTRACTING):
            status = ProcessingStatus.PAUSED

        saved_progress = metadata.get("progress") or {}
        with self._cond:
            self._results = results
            self._progress = ProcessingProgress(
                **{key: value for key, value in saved_progress.items() if key in PROGRESS_FIELDS}
            )
            self._status = status
            self._cond.notify_all()
        logger.info("Restored %d results (status %s)", len(results), status.value)
        return True

    def clear_saved_state(self) -> None:
        if self.store is not None:
            self.store.clear_all()
