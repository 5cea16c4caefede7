"""Flush scheduling: timer and size triggers, single-flight, requeue on failure."""

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Set

from .buffer import BatchBuffer, OverflowPolicy
from .models import FlushResult
from .sink_writer import SinkWriter


logger = logging.getLogger(__name__)


class FlushScheduler:
    """
    Decides when the buffer is written and what happens to a failed batch.

    Triggers:
    - a repeating timer every ``flush_interval`` seconds
    - ``request_flush()`` from the consumer when the buffer reaches its batch size

    At most one flush runs at a time. A failed batch goes back to the front of
    the buffer and the overflow policy trims the oldest rows if needed.
    """

    def __init__(
        self,
        buffer: BatchBuffer,
        writer: SinkWriter,
        overflow_policy: OverflowPolicy,
        flush_interval: float = 2.0
    ):
        self.buffer = buffer
        self.writer = writer
        self.overflow_policy = overflow_policy
        self.flush_interval = flush_interval

        self._flushing = False
        self._running = False
        self._closed = False
        self._timer_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

        self.stats = {
            "flushes_succeeded": 0,
            "flushes_failed": 0,
            "flushes_skipped": 0,
            "rows_flushed": 0,
            "rows_requeued": 0,
            "rows_dropped": 0,
            "consecutive_failures": 0,
            "last_flush_result": None,
            "last_flush_time": None,
            "last_flush_duration_ms": None
        }

        logger.info(f"FlushScheduler initialized with flush_interval={flush_interval}s")

    @property
    def in_flight(self) -> bool:
        return self._flushing

    async def start(self):
        """Start the periodic flush timer."""
        if self._running:
            return

        self._running = True
        self._closed = False
        self._timer_task = asyncio.create_task(self._flush_loop())
        logger.info("FlushScheduler started")

    async def stop(self):
        """
        Stop the timer and wait for any flush already in flight.

        After this, triggers are ignored; only an explicit ``try_flush()``
        still writes.
        """
        self._running = False
        self._closed = True

        if self._timer_task:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

        logger.info("FlushScheduler stopped")

    def request_flush(self) -> None:
        """Schedule a flush in the background unless one is already queued or running."""
        if self._closed or self._flushing or self._pending or not self.buffer:
            return

        task = asyncio.create_task(self.try_flush())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _flush_loop(self):
        """Background task to flush the buffer periodically."""
        while self._running:
            await asyncio.sleep(self.flush_interval)
            self.request_flush()

    async def try_flush(self) -> FlushResult:
        """
        Write everything currently buffered, once.

        Never raises for write errors; a failed batch is requeued and trimmed.
        """
        if self._flushing or not self.buffer:
            if self._flushing:
                self.stats["flushes_skipped"] += 1
            return FlushResult.SKIPPED

        self._flushing = True
        batch = self.buffer.drain_all()
        succeeded = False
        start_time = time.monotonic()

        try:
            succeeded = bool(await self.writer.write(batch))
        except Exception as e:
            logger.error(f"Writer raised while flushing {len(batch)} rows: {e}", exc_info=True)
        finally:
            duration_ms = (time.monotonic() - start_time) * 1000
            if succeeded:
                self._on_success(batch, duration_ms)
            else:
                self._on_failure(batch, duration_ms)
            self._flushing = False

        return FlushResult.SUCCEEDED if succeeded else FlushResult.FAILED

    def _on_success(self, batch, duration_ms: float):
        self.stats["flushes_succeeded"] += 1
        self.stats["rows_flushed"] += len(batch)
        self.stats["consecutive_failures"] = 0
        self.stats["last_flush_result"] = FlushResult.SUCCEEDED.value
        self.stats["last_flush_time"] = time.time()
        self.stats["last_flush_duration_ms"] = duration_ms

        logger.info(
            f"Flushed {len(batch)} rows -> ClickHouse in {duration_ms:.1f}ms",
            extra={"rows": len(batch), "duration_ms": duration_ms}
        )

    def _on_failure(self, batch, duration_ms: float):
        self.buffer.requeue_front(batch)
        dropped = self.overflow_policy.enforce(self.buffer)

        self.stats["flushes_failed"] += 1
        self.stats["rows_requeued"] += len(batch)
        self.stats["rows_dropped"] += dropped
        self.stats["consecutive_failures"] += 1
        self.stats["last_flush_result"] = FlushResult.FAILED.value
        self.stats["last_flush_time"] = time.time()
        self.stats["last_flush_duration_ms"] = duration_ms

        logger.error(
            f"Flush of {len(batch)} rows failed "
            f"({self.stats['consecutive_failures']} in a row), requeued; "
            f"buffer now holds {len(self.buffer)} rows",
            extra={"rows": len(batch), "buffered": len(self.buffer)}
        )

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.copy()
        stats.update({
            "buffered_rows": len(self.buffer),
            "in_flight": self._flushing,
            "timer_running": self._running
        })
        return stats
