"""
Per-dataset record cache with a single-writer refresh controller.

Readers get whatever snapshot is current; a refresh builds the next batch on
the side and swaps the snapshot reference only when the run is complete.
Failed runs keep the previous batch and never raise to readers.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from atlas_submittals.data.dto import Diagnostic, ExtractionResult, Severity
from atlas_submittals.domain.models import SubmittalRecord

logger = logging.getLogger(__name__)


class CacheState(str, Enum):
    UNINITIALIZED = "uninitialized"
    REFRESHING = "refreshing"
    READY = "ready"


@dataclass(frozen=True)
class Snapshot:
    records: Tuple[SubmittalRecord, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = ()
    refreshed_at: Optional[datetime] = None  # last applied batch
    attempted_at: Optional[datetime] = None  # last finished run, applied or not
    source_name: Optional[str] = None
    run: int = 0


@dataclass(frozen=True)
class RefreshSummary:
    dataset: str
    record_count: int
    diagnostic_count: int
    warning_count: int
    error_count: int
    applied: bool
    cached_count: int
    refreshed_at: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataset": self.dataset,
            "recordCount": self.record_count,
            "diagnosticCount": self.diagnostic_count,
            "warningCount": self.warning_count,
            "errorCount": self.error_count,
            "applied": self.applied,
            "cachedCount": self.cached_count,
            "refreshedAt": self.refreshed_at.isoformat() if self.refreshed_at else None,
        }


class DatasetCache:
    def __init__(
        self,
        key: str,
        loader: Callable[[], ExtractionResult],
        staleness_seconds: float = 30.0,
        clock: Callable[[], datetime] = datetime.now,
        parse_timeout: Optional[float] = None,
    ):
        self.key = key
        self.loader = loader
        self.staleness_seconds = staleness_seconds
        self.clock = clock
        self.parse_timeout = parse_timeout
        self._lock = threading.Lock()
        self._runs_started = 0
        self._state = CacheState.UNINITIALIZED
        self._snapshot = Snapshot()
        self._last_summary: Optional[RefreshSummary] = None
        self._pending: Optional[Future] = None  # timed-out run still executing

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def busy(self) -> bool:
        """True while a timed-out run is still parsing in the background."""
        return self._pending is not None and not self._pending.done()

    @property
    def last_summary(self) -> Optional[RefreshSummary]:
        return self._last_summary

    def is_stale(self) -> bool:
        attempted = self._snapshot.attempted_at
        if attempted is None:
            return True
        return (self.clock() - attempted).total_seconds() >= self.staleness_seconds

    def get(self) -> Tuple[SubmittalRecord, ...]:
        """
        Current batch. The first call waits for the initial load; later stale
        reads refresh inline unless another refresh is already running, in
        which case the previous batch is returned immediately.
        """
        if self._snapshot.attempted_at is None:
            self.force_refresh()
        elif self.is_stale():
            self.refresh_if_idle()
        return self._snapshot.records

    def diagnostics(self) -> Tuple[Diagnostic, ...]:
        return self._snapshot.diagnostics

    def force_refresh(self) -> RefreshSummary:
        """
        Re-run extraction. Callers that arrive while a run is in flight wait
        and share the result of the next run instead of stacking their own.
        """
        arrival = self._runs_started
        with self._lock:
            if self._runs_started > arrival and self._last_summary is not None:
                return self._last_summary
            return self._refresh_locked()

    def refresh_if_idle(self) -> Optional[RefreshSummary]:
        if not self._lock.acquire(blocking=False):
            return None
        try:
            return self._refresh_locked()
        finally:
            self._lock.release()

    def _refresh_locked(self) -> RefreshSummary:
        if self.busy:
            return self._busy_summary()
        self._pending = None
        self._runs_started += 1
        run = self._runs_started
        previous = self._snapshot
        self._state = CacheState.REFRESHING

        result = self._run_loader()
        applied = not result.failed
        finished = self.clock()
        records = tuple(result.records) if applied else previous.records
        self._snapshot = Snapshot(
            records=records,
            diagnostics=tuple(result.diagnostics),
            refreshed_at=finished if applied else previous.refreshed_at,
            attempted_at=finished,
            source_name=result.source_name or previous.source_name,
            run=run,
        )
        self._state = CacheState.READY

        warnings = sum(1 for d in result.diagnostics if d.severity == Severity.WARNING)
        summary = RefreshSummary(
            dataset=self.key,
            record_count=len(result.records),
            diagnostic_count=len(result.diagnostics),
            warning_count=warnings,
            error_count=len(result.diagnostics) - warnings,
            applied=applied,
            cached_count=len(records),
            refreshed_at=self._snapshot.refreshed_at,
        )
        self._last_summary = summary
        if applied:
            logger.info("dataset refreshed", extra={"dataset": self.key, "records": len(records), "run": run})
        else:
            logger.warning(
                "refresh failed; keeping previous batch",
                extra={
                    "dataset": self.key,
                    "kept": len(records),
                    "errors": [d.message for d in result.errors if d.is_sheet_level],
                },
            )
        return summary

    def _run_loader(self) -> ExtractionResult:
        try:
            if self.parse_timeout is None:
                return self.loader()
            return self._run_with_timeout()
        except FutureTimeout:
            return self._failure("refresh_timeout", f"Extraction exceeded {self.parse_timeout:g}s")
        except Exception as exc:
            logger.exception("refresh crashed", extra={"dataset": self.key})
            return self._failure("refresh_failed", f"Extraction failed: {exc}")

    def _run_with_timeout(self) -> ExtractionResult:
        # A timed-out run cannot be cancelled; it is kept so no new run starts
        # until it finishes, and its result is discarded.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"refresh-{self.key}")
        future = executor.submit(self.loader)
        executor.shutdown(wait=False)
        try:
            return future.result(timeout=self.parse_timeout)
        except FutureTimeout:
            self._pending = future
            raise

    def _busy_summary(self) -> RefreshSummary:
        logger.warning("refresh skipped; timed-out run still in flight", extra={"dataset": self.key})
        return RefreshSummary(
            dataset=self.key,
            record_count=0,
            diagnostic_count=1,
            warning_count=0,
            error_count=1,
            applied=False,
            cached_count=len(self._snapshot.records),
            refreshed_at=self._snapshot.refreshed_at,
        )

    def _failure(self, code: str, message: str) -> ExtractionResult:
        return ExtractionResult(
            dataset=self.key,
            diagnostics=[Diagnostic.error(code, message)],
            finished_at=self.clock(),
        )
