# collector/scheduler.py
#
# Periodic batch collection. One cycle:
#   1) snapshot the enabled ranges
#   2) read them all through the transport (one combined request list)
#   3) decode per range
#   4) validate the assembled batch
#   5) append it to the CSV sink unless validation failed hard
#   6) update running statistics and the in-memory history
#
# Only one cycle is ever in flight. A tick that arrives while a cycle is
# still running is skipped and counted, never queued.

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from utils import now_iso

from .config import HISTORY_SIZE, MIN_INTERVAL_MS, READ_TIMEOUT, SINK_TIMEOUT
from .decoder import decode_range, failed_values
from .errors import ConfigurationError, PersistenceError, TransportError, ValidationError
from .formatter import assess_quality
from .models import (
    AddressRange,
    BatchReadResult,
    CollectionConfig,
    CollectionStats,
    ReadRequest,
    SessionState,
    ValidationReport,
)
from .ranges import AddressRangeRegistry, detect_overlaps
from .sink import header_columns
from .validator import ensure_valid, validate_read_result

log = logging.getLogger(__name__)


@dataclass
class CollectionSession:
    """Resources owned by one start()..stop() run."""
    config: CollectionConfig
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None
    read_pool: Optional[ThreadPoolExecutor] = None
    sink_pool: Optional[ThreadPoolExecutor] = None
    started_at: str = field(default_factory=now_iso)


class BatchCollectionScheduler:
    def __init__(
        self,
        transport,
        sink,
        registry: AddressRangeRegistry,
        read_timeout: float = READ_TIMEOUT,
        sink_timeout: float = SINK_TIMEOUT,
        min_interval_ms: int = MIN_INTERVAL_MS,
        history_size: int = HISTORY_SIZE,
        on_cycle: Optional[Callable[[BatchReadResult, ValidationReport], None]] = None,
        on_error: Optional[Callable[[Exception, str], None]] = None,
        on_session_end: Optional[Callable[[str], None]] = None,
    ):
        self.transport = transport
        self.sink = sink
        self.registry = registry
        self.read_timeout = read_timeout
        self.sink_timeout = sink_timeout
        self.min_interval_ms = min_interval_ms
        self.on_cycle = on_cycle
        self.on_error = on_error
        self.on_session_end = on_session_end

        self._lifecycle = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._cycle_owner: Optional[int] = None

        self._state = SessionState.IDLE
        self._session: Optional[CollectionSession] = None
        self._stats = CollectionStats()
        self._history: deque = deque(maxlen=history_size)
        self._last_result: Optional[BatchReadResult] = None
        self._last_report: Optional[ValidationReport] = None
        self.last_error: Optional[str] = None
        self.stop_reason: Optional[str] = None

    # ------------- state -------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SessionState.RUNNING

    @property
    def is_stopping(self) -> bool:
        """A stop was requested and is waiting for the in-flight cycle."""
        session = self._session
        return self.is_running and session is not None and session.stop_event.is_set()

    @property
    def config(self) -> Optional[CollectionConfig]:
        session = self._session
        return session.config if session else None

    @property
    def stats(self) -> CollectionStats:
        with self._stats_lock:
            return CollectionStats(**vars(self._stats))

    @property
    def history(self) -> List[BatchReadResult]:
        """Most recent batches, newest first."""
        with self._stats_lock:
            return list(self._history)

    @property
    def last_result(self) -> Optional[BatchReadResult]:
        return self._last_result

    @property
    def last_report(self) -> Optional[ValidationReport]:
        return self._last_report

    def clear_stats(self) -> None:
        with self._stats_lock:
            self._stats = CollectionStats()
            self._history.clear()
            self._last_result = None
            self._last_report = None

    def status(self) -> dict:
        stats = self.stats
        config = self.config
        quality, score, description = assess_quality(
            stats.successful_reads,
            stats.successful_reads + stats.failed_reads,
            stats.average_duration_ms,
        )
        return {
            "state": self._state.value,
            "interval_ms": config.interval_ms if config else None,
            "output_path": config.output_path if config else None,
            "stats": stats.to_dict(),
            "quality": {"level": quality, "score": score, "description": description},
            "last_summary": self._last_report.summary if self._last_report else None,
            "last_error": self.last_error,
            "stop_reason": self.stop_reason,
        }

    # ------------- lifecycle -------------

    def check_config(self, config: CollectionConfig, ranges: List[AddressRange]) -> Optional[str]:
        """Return the first reason the session cannot start, or None."""
        if not config.output_path:
            return "No output file selected"
        if not ranges:
            return "No enabled address ranges; enable at least one range"
        if config.interval_ms is None or config.interval_ms < self.min_interval_ms:
            return f"Collection interval must be at least {self.min_interval_ms}ms"
        return None

    def start(self, config: CollectionConfig, transport=None) -> Optional[BatchReadResult]:
        """
        Start a session: write the CSV header, run the first cycle right
        away, then keep collecting every ``interval_ms``.

        A ``transport`` passed here replaces the current one (which is
        closed) once the session is accepted; a rejected start leaves it
        to the caller.

        Raises ConfigurationError (nothing touched) or PersistenceError
        (session ended). Returns the first batch.
        """
        with self._lifecycle:
            if self._state is SessionState.RUNNING:
                raise ConfigurationError("A collection session is already running")

            ranges = self.registry.enabled_snapshot()
            problem = self.check_config(config, ranges)
            if problem:
                log.warning("Collection not started: %s", problem)
                raise ConfigurationError(problem)

            for conflict in detect_overlaps(ranges):
                log.warning("Overlapping ranges: %s", conflict.describe())

            # PersistenceError propagates; state is still IDLE here
            self.sink.initialize(config.output_path, header_columns(ranges))

            if transport is not None and transport is not self.transport:
                if self.transport is not None:
                    self.transport.close()
                self.transport = transport

            self._session = CollectionSession(
                config=config,
                read_pool=ThreadPoolExecutor(max_workers=1, thread_name_prefix="collector-read"),
                sink_pool=ThreadPoolExecutor(max_workers=1, thread_name_prefix="collector-sink"),
            )
            self._state = SessionState.RUNNING
            self.last_error = None
            self.stop_reason = None
            log.info(
                "Collection started: every %sms, %d range(s), output=%s",
                config.interval_ms, len(ranges), config.output_path,
            )

        try:
            first = self.run_cycle()
        except PersistenceError as e:
            self._fail(f"Persistence failure: {e}", e)
            raise
        except Exception as e:
            log.exception("Unexpected error in first collection cycle")
            self._fail(f"Unexpected error: {e}", e)
            raise

        with self._lifecycle:
            session = self._session
            if (
                self._state is SessionState.RUNNING
                and session is not None
                and not session.stop_event.is_set()
            ):
                session.thread = threading.Thread(
                    target=self._loop,
                    args=(session,),
                    name="collector-timer",
                    daemon=True,
                )
                session.thread.start()
        return first

    def stop(self, reason: str = "Stopped by user") -> bool:
        """
        Cancel the timer and end the session. An in-flight cycle may finish,
        bounded by the read and sink timeouts. Returns False when idle.
        """
        with self._lifecycle:
            session = self._session
            if self._state is not SessionState.RUNNING or session is None:
                return False
            session.stop_event.set()
            thread = session.thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.read_timeout + self.sink_timeout + 1.0)
            if thread.is_alive():
                log.warning("Collection cycle still busy after stop timeout; abandoning it")

        # let a cycle running outside the timer thread (the first one, or a
        # manual run_cycle) finish against the still-open sink
        waited = False
        if self._cycle_owner != threading.get_ident():
            waited = self._cycle_lock.acquire(timeout=self.read_timeout + self.sink_timeout)
            if not waited:
                log.warning("Collection cycle still busy after stop timeout; abandoning it")
        try:
            self._end_session(reason)
        finally:
            if waited:
                self._cycle_lock.release()
        return True

    def _end_session(self, reason: str) -> None:
        with self._lifecycle:
            session = self._session
            if self._state is SessionState.IDLE or session is None:
                return
            session.stop_event.set()
            self._state = SessionState.IDLE
            self.stop_reason = reason
            try:
                self.sink.close()
            except OSError as e:
                log.error("Closing output file failed: %s", e)
            for pool in (session.read_pool, session.sink_pool):
                if pool is not None:
                    pool.shutdown(wait=False)
        log.info("Collection stopped: %s", reason)
        if self.on_session_end is not None:
            self.on_session_end(reason)

    def _fail(self, reason: str, exc: Exception) -> None:
        self.last_error = str(exc)
        log.error("Collection session ended: %s", reason)
        self._end_session(reason)
        if self.on_error is not None:
            self.on_error(exc, reason)

    # ------------- timer -------------

    def _loop(self, session: CollectionSession) -> None:
        interval = session.config.interval_ms / 1000.0
        next_tick = time.monotonic() + interval

        while not session.stop_event.wait(max(0.0, next_tick - time.monotonic())):
            try:
                self.run_cycle()
            except PersistenceError as e:
                self._fail(f"Persistence failure: {e}", e)
                return
            except Exception as e:
                log.exception("Unexpected error in collection cycle")
                self._fail(f"Unexpected error: {e}", e)
                return

            next_tick += interval
            now = time.monotonic()
            if now > next_tick:
                missed = int((now - next_tick) // interval) + 1
                next_tick += missed * interval
                with self._stats_lock:
                    self._stats.skipped_ticks += missed
                log.warning("Cycle overran the interval; %d tick(s) skipped", missed)

    # ------------- cycles -------------

    def run_cycle(self) -> Optional[BatchReadResult]:
        """
        Run one full cycle of the active session. Returns None when another
        cycle is already in flight (the tick is skipped).
        """
        if self._state is not SessionState.RUNNING:
            raise ConfigurationError("No collection session is running")

        if not self._cycle_lock.acquire(blocking=False):
            with self._stats_lock:
                self._stats.skipped_ticks += 1
            log.warning("Previous cycle still in flight; tick skipped")
            return None
        self._cycle_owner = threading.get_ident()
        try:
            return self._cycle()
        finally:
            self._cycle_owner = None
            self._cycle_lock.release()

    def read_once(self, transport=None) -> Tuple[BatchReadResult, ValidationReport]:
        """
        Read and validate the enabled ranges without writing or counting
        anything. Waits for an in-flight cycle to finish first.

        ``transport`` overrides the scheduler's own for this read only.
        """
        if not self._cycle_lock.acquire(timeout=self.read_timeout + self.sink_timeout):
            raise TransportError("Device is busy with a collection cycle")
        self._cycle_owner = threading.get_ident()
        try:
            ranges = self.registry.enabled_snapshot()
            batch, _ = self._acquire(ranges, None, transport if transport is not None else self.transport)
            return batch, validate_read_result(batch)
        finally:
            self._cycle_owner = None
            self._cycle_lock.release()

    def _cycle(self) -> BatchReadResult:
        session = self._session
        ranges = self.registry.enabled_snapshot()
        batch, whole_error = self._acquire(
            ranges, session.read_pool if session else None, self.transport
        )

        report = validate_read_result(batch)
        mismatch = self.sink.mismatch(batch)
        if mismatch:
            report.warnings.append(mismatch)
            log.warning(mismatch)

        try:
            ensure_valid(report)
        except ValidationError as e:
            log.warning("Batch not written: %s", "; ".join(e.errors))
        else:
            if self._is_active(session):
                self._persist(batch, session)
            else:
                log.warning("Session ended during the cycle; batch not written")
        for warning in report.warnings:
            log.debug("Validation warning: %s", warning)

        with self._stats_lock:
            self._stats.record(batch)
            self._history.appendleft(batch)
            self._last_result = batch
            self._last_report = report

        log.debug(
            "Cycle done: ok=%d failed=%d in %dms",
            batch.success_count, batch.failed_count, batch.duration_ms,
        )

        if self.on_cycle is not None:
            self.on_cycle(batch, report)

        if whole_error:
            self.last_error = whole_error
            log.error("Cycle read failed: %s", whole_error)
            if session is not None and session.config.stop_on_error:
                self._end_session(f"Stopped on read error: {whole_error}")

        return batch

    def _is_active(self, session: Optional[CollectionSession]) -> bool:
        with self._lifecycle:
            return (
                session is not None
                and session is self._session
                and self._state is SessionState.RUNNING
            )

    def _acquire(
        self, ranges: List[AddressRange], pool, transport
    ) -> Tuple[BatchReadResult, Optional[str]]:
        requests = [ReadRequest(r.start_address, r.length, r.data_type) for r in ranges]
        timestamp = now_iso()
        started = time.perf_counter()
        whole_error: Optional[str] = None
        values = []

        try:
            if pool is None:
                reads = transport.read_ranges(requests)
            else:
                reads = pool.submit(transport.read_ranges, requests).result(timeout=self.read_timeout)
        except FutureTimeout:
            whole_error = f"Read timed out after {self.read_timeout}s"
        except TransportError as e:
            whole_error = str(e)

        if whole_error is None:
            for idx, req in enumerate(requests):
                if idx < len(reads):
                    values.extend(decode_range(reads[idx]))
                else:
                    values.extend(failed_values(req, "No response for this range"))
        else:
            for req in requests:
                values.extend(failed_values(req, whole_error))

        duration_ms = int(round((time.perf_counter() - started) * 1000))
        return BatchReadResult.from_values(values, timestamp, duration_ms), whole_error

    def _persist(self, batch: BatchReadResult, session: Optional[CollectionSession]) -> None:
        pool = session.sink_pool if session else None
        if pool is None:
            self.sink.append(batch)
            return
        try:
            pool.submit(self.sink.append, batch).result(timeout=self.sink_timeout)
        except FutureTimeout as e:
            raise PersistenceError(f"CSV append timed out after {self.sink_timeout}s") from e
