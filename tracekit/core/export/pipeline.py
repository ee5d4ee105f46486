"""Asynchronous, bounded export pipeline.

Ended spans are pushed into a bounded in-memory queue by the executions that
end them. A single daemon worker drains the queue in batches, triggered by
batch size or linger time, and ships each batch through a ``SpanExporter``
with capped exponential backoff. Tracing never applies backpressure: when
the queue is full the oldest queued span is evicted and counted as dropped.

Per span: OPEN -> ENDED -> QUEUED -> BATCHED -> {TRANSMITTED | DROPPED}.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Deque, Iterable, List, Optional, Tuple

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tracekit.core.errors import ShutdownTimeout, TransmissionError
from tracekit.core.export import metrics
from tracekit.core.export.exporter import SpanExporter
from tracekit.core.tracing.span import Span, SpanState

logger = logging.getLogger(__name__)

DROP_QUEUE_FULL = "queue_full"
DROP_RETRIES_EXHAUSTED = "retries_exhausted"
DROP_SHUTDOWN_TIMEOUT = "shutdown_timeout"
DROP_CLOSED = "closed"


class ExportPipeline:
    """Bounded queue plus one background worker feeding a span exporter."""

    def __init__(
        self,
        exporter: SpanExporter,
        max_queue_size: int = 2048,
        batch_size: int = 512,
        linger_ms: int = 5000,
        max_retries: int = 3,
        initial_backoff_ms: int = 100,
        max_backoff_ms: int = 5000,
        backoff_multiplier: float = 2.0,
    ):
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")

        self.exporter = exporter
        self.max_queue_size = max_queue_size
        self.batch_size = min(batch_size, max_queue_size)
        self.linger_seconds = linger_ms / 1000.0
        self.max_retries = max_retries
        self.initial_backoff_ms = initial_backoff_ms
        self.max_backoff_ms = max_backoff_ms
        self.backoff_multiplier = backoff_multiplier

        # (monotonic enqueue time, span)
        self._queue: Deque[Tuple[float, Span]] = deque()
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._stats_lock = threading.Lock()
        self._interrupt = threading.Event()

        self._in_flight = 0
        self._flush_requests = 0
        self._closed = False
        self._deadline: Optional[float] = None

        self._dropped = 0
        self._exported = 0

        self._retrying = Retrying(
            retry=retry_if_exception_type(Exception),
            stop=stop_after_attempt(max_retries + 1) | self._stop_at_deadline,
            wait=wait_exponential(
                multiplier=initial_backoff_ms / 1000.0,
                exp_base=backoff_multiplier,
                max=max_backoff_ms / 1000.0,
            ),
            sleep=self._backoff_sleep,
            before_sleep=self._before_retry,
            retry_error_callback=self._give_up,
        )

        self._worker = threading.Thread(
            target=self._run,
            name="tracekit-export-worker",
            daemon=True,
        )
        self._worker.start()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, span: Span) -> bool:
        """Queue an ended span for export. Never blocks on I/O.

        Returns False if the span was rejected because the pipeline is shut
        down. A full queue evicts its oldest span instead of rejecting.
        """
        evicted: Optional[Span] = None
        with self._cond:
            if self._closed:
                rejected = True
            else:
                rejected = False
                if len(self._queue) >= self.max_queue_size:
                    _, evicted = self._queue.popleft()
                span.transition(SpanState.QUEUED)
                self._queue.append((time.monotonic(), span))
                size = len(self._queue)
                if size == 1 or size >= self.batch_size:
                    self._cond.notify_all()
                metrics.export_queue_size.set(size)

        if rejected:
            self._record_drop([span], DROP_CLOSED)
            return False
        if evicted is not None:
            self._record_drop([evicted], DROP_QUEUE_FULL)
        return True

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    @property
    def dropped_count(self) -> int:
        with self._stats_lock:
            return self._dropped

    @property
    def exported_count(self) -> int:
        with self._stats_lock:
            return self._exported

    @property
    def queue_size(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def is_shutdown(self) -> bool:
        with self._lock:
            return self._closed

    def _record_drop(self, spans: Iterable[Span], reason: str) -> None:
        count = 0
        for span in spans:
            span.transition(SpanState.DROPPED)
            count += 1
        if not count:
            return
        with self._stats_lock:
            self._dropped += count
        metrics.spans_dropped_total.labels(reason=reason).inc(count)
        logger.debug(f"Dropped {count} span(s): {reason}")

    def _record_success(self, batch: List[Span]) -> None:
        for span in batch:
            span.transition(SpanState.TRANSMITTED)
        with self._stats_lock:
            self._exported += len(batch)
        metrics.spans_exported_total.inc(len(batch))
        metrics.export_batches_total.labels(result="success").inc()

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _past_deadline(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def _next_batch(self) -> Optional[List[Span]]:
        """Block until a batch is due. Returns None when the worker should exit."""
        with self._cond:
            while True:
                if self._closed and (not self._queue or self._past_deadline()):
                    return None

                if self._queue:
                    oldest_at = self._queue[0][0]
                    linger_left = oldest_at + self.linger_seconds - time.monotonic()
                    due = (
                        len(self._queue) >= self.batch_size
                        or linger_left <= 0
                        or self._flush_requests > 0
                        or self._closed
                    )
                    if due:
                        batch = []
                        while self._queue and len(batch) < self.batch_size:
                            _, span = self._queue.popleft()
                            span.transition(SpanState.BATCHED)
                            batch.append(span)
                        self._in_flight += len(batch)
                        metrics.export_queue_size.set(len(self._queue))
                        return batch
                    self._cond.wait(linger_left)
                else:
                    self._cond.wait()

    def _run(self) -> None:
        while True:
            batch = self._next_batch()
            if batch is None:
                return
            try:
                self._export_batch(batch)
            finally:
                with self._cond:
                    self._in_flight -= len(batch)
                    self._cond.notify_all()

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (zero based)."""
        state = RetryCallState(retry_object=self._retrying, fn=None, args=(), kwargs={})
        state.attempt_number = attempt + 1
        return self._retrying.wait(state)

    def _backoff_sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, cut short by the shutdown deadline."""
        end = time.monotonic() + delay
        while True:
            now = time.monotonic()
            deadline = self._deadline
            if deadline is not None and now >= deadline:
                return
            remaining = end - now
            if remaining <= 0:
                return
            if deadline is not None:
                remaining = min(remaining, deadline - now)
            if self._interrupt.is_set():
                time.sleep(remaining)
            else:
                self._interrupt.wait(remaining)

    def _stop_at_deadline(self, retry_state: RetryCallState) -> bool:
        return self._past_deadline()

    def _send(self, batch: List[Span]) -> bool:
        # A backoff cut short by shutdown must not start another attempt
        if self._past_deadline():
            raise ShutdownTimeout("Shutdown deadline passed before export attempt")
        self.exporter.export(batch)
        return True

    def _before_retry(self, retry_state: RetryCallState) -> None:
        metrics.export_batches_total.labels(result="retry").inc()
        logger.debug(
            f"Export attempt {retry_state.attempt_number} failed "
            f"({retry_state.outcome.exception()}); "
            f"retrying in {retry_state.next_action.sleep:.3f}s"
        )

    def _give_up(self, retry_state: RetryCallState) -> bool:
        batch = retry_state.args[0]
        exc = retry_state.outcome.exception()
        error = exc if isinstance(exc, TransmissionError) else TransmissionError(str(exc))
        metrics.export_batches_total.labels(result="dropped").inc()
        if self._past_deadline():
            self._record_drop(batch, DROP_SHUTDOWN_TIMEOUT)
        else:
            logger.warning(
                f"Dropping batch of {len(batch)} span(s) after "
                f"{retry_state.attempt_number} attempt(s): {error}"
            )
            self._record_drop(batch, DROP_RETRIES_EXHAUSTED)
        return False

    def _export_batch(self, batch: List[Span]) -> None:
        # Any exporter exception counts as a failed transmission
        if self._retrying(self._send, batch):
            self._record_success(batch)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def force_flush(self, timeout: float = 30.0) -> bool:
        """Export everything queued right now. Returns False on timeout."""
        with self._cond:
            self._flush_requests += 1
            self._cond.notify_all()
            try:
                return self._cond.wait_for(
                    lambda: not self._queue and self._in_flight == 0,
                    timeout,
                )
            finally:
                self._flush_requests -= 1

    def shutdown(self, timeout: float = 5.0) -> bool:
        """Stop accepting spans and drain within ``timeout`` seconds.

        Anything still queued when the deadline passes is dropped and
        counted. Returns True if the drain completed in time.
        """
        with self._cond:
            if self._closed:
                return True
            self._closed = True
            self._deadline = time.monotonic() + timeout
            self._cond.notify_all()
        self._interrupt.set()

        self._worker.join(max(0.0, self._deadline - time.monotonic()))

        with self._cond:
            leftover = [span for _, span in self._queue]
            self._queue.clear()
            metrics.export_queue_size.set(0)
            in_flight = self._in_flight

        timed_out = self._worker.is_alive() or bool(leftover)
        self._record_drop(leftover, DROP_SHUTDOWN_TIMEOUT)

        if timed_out:
            error = ShutdownTimeout(
                f"Export flush exceeded {timeout:.1f}s; dropped {len(leftover)} queued "
                f"span(s), {in_flight} still in flight",
                dropped=len(leftover),
            )
            logger.warning(str(error))

        try:
            self.exporter.shutdown()
        except Exception as e:
            logger.error(f"Exporter shutdown failed: {e}")
        return not timed_out
