"""
Debounced batch scheduler.

Submissions are held in a queue and started together once ``delay`` seconds
pass without a new submission. Batching coalesces *when* operations start;
it never merges or deduplicates them.

Because every submission re-arms the timer, a steady stream of submissions
arriving faster than ``delay`` postpones the flush for as long as the stream
lasts. Set ``max_wait`` to bound how long the oldest queued submission can
wait; with it, the timer fires at
``min(last_submit + delay, first_queued_submit + max_wait)``.
"""

import asyncio
import contextvars
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Set

from shared.errors import SchedulerClosedError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

Operation = Callable[[], Awaitable[Any]]


@dataclass
class PendingSubmission:
    operation: Operation
    result_sink: asyncio.Future
    submitted_at: float
    # Submitter's context; the operation runs in it, not in the timer's
    context: contextvars.Context = field(default_factory=contextvars.copy_context)


class BatchScheduler:
    """Coalesces bursts of async operations into debounced flush cycles."""

    def __init__(
        self,
        delay: float,
        *,
        max_wait: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
        name: str = "default",
    ):
        if delay < 0:
            raise ValueError("delay must not be negative")
        if max_wait is not None and max_wait <= 0:
            raise ValueError("max_wait must be greater than zero")

        self.delay = delay
        self.max_wait = max_wait
        self.metrics = metrics
        self.name = name
        self.logger = get_logger("gateway.batch_scheduler")

        self._pending: List[PendingSubmission] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._first_pending_at: Optional[float] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._closed = False
        self.flush_count = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, operation: Operation) -> asyncio.Future:
        """Queue ``operation`` and return a future for its own result.

        Must be called from a running event loop. Cancelling the returned
        future drops the operation if it has not started yet, or cancels it
        if it is running.
        """
        if self._closed:
            raise SchedulerClosedError(details={"scheduler": self.name})

        loop = asyncio.get_running_loop()
        now = loop.time()
        sink = loop.create_future()
        self._pending.append(PendingSubmission(operation=operation, result_sink=sink, submitted_at=now))
        if self._first_pending_at is None:
            self._first_pending_at = now

        self._arm(loop, now)
        return sink

    def flush(self) -> int:
        """Start every queued operation now. Returns how many were started."""
        self._cancel_timer()
        return self._dispatch()

    async def shutdown(self) -> None:
        """Cancel the timer, queued submissions and in-flight operations."""
        self._closed = True
        self._cancel_timer()

        pending, self._pending = self._pending, []
        self._first_pending_at = None
        for submission in pending:
            submission.result_sink.cancel()

        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.logger.info(
            "Batch scheduler shut down",
            scheduler=self.name,
            dropped=len(pending),
            cancelled=len(tasks),
        )

    def _arm(self, loop: asyncio.AbstractEventLoop, now: float) -> None:
        # Debounce: the single timer always restarts from the latest submission
        self._cancel_timer()
        delay = self.delay
        if self.max_wait is not None and self._first_pending_at is not None:
            deadline = self._first_pending_at + self.max_wait
            delay = min(delay, max(0.0, deadline - now))
        self._timer = loop.call_later(delay, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        self._dispatch()

    def _dispatch(self) -> int:
        batch, self._pending = self._pending, []
        self._first_pending_at = None
        live = [submission for submission in batch if not submission.result_sink.done()]
        if not live:
            return 0

        loop = asyncio.get_running_loop()
        self.flush_count += 1
        self.logger.debug(
            "Flushing batch",
            scheduler=self.name,
            size=len(live),
            skipped=len(batch) - len(live),
            flush=self.flush_count,
        )
        if self.metrics:
            self.metrics.observe_histogram("batch_flush_size", len(live))

        for submission in live:
            task = loop.create_task(self._run(submission), context=submission.context)
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            submission.result_sink.add_done_callback(
                lambda sink, task=task: task.cancel() if sink.cancelled() else None
            )
        return len(live)

    async def _run(self, submission: PendingSubmission) -> None:
        sink = submission.result_sink
        try:
            result = await submission.operation()
        except asyncio.CancelledError:
            if not sink.done():
                sink.cancel()
            raise
        except Exception as exc:
            if not sink.done():
                sink.set_exception(exc)
        else:
            if not sink.done():
                sink.set_result(result)
