"""Composition root: wires the ingestor components and owns startup and shutdown."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .buffer import BatchBuffer, OverflowPolicy
from .clients.binance_ws import BinanceTickerFeed
from .clients.clickhouse_http import ClickHouseHTTPClient
from .config.settings import IngestorSettings
from .flush_scheduler import FlushScheduler
from .health import HealthCheckServer
from .models import ConnectionState, FlushResult
from .reconnect import ReconnectManager
from .schema import ensure_table
from .sink_writer import SinkWriter
from .stream_consumer import StreamConsumer
from .utils.backoff import ReconnectBackoff
from .utils.logging import log_data_loss


logger = logging.getLogger(__name__)

STALE_FEED_SECONDS = 60
BUFFER_PRESSURE_RATIO = 0.9


class IngestPipeline:
    """
    Binance ticker feed -> buffer -> ClickHouse.

    Startup order: ensure table, start flush timer, start feed loop, start
    health server. Shutdown order: stop timer and wait for an in-flight
    flush, stop feed and reconnects, one final flush, close clients.
    """

    def __init__(
        self,
        settings: IngestorSettings,
        client: Optional[ClickHouseHTTPClient] = None,
        feed: Optional[BinanceTickerFeed] = None
    ):
        self.settings = settings

        self.client = client or ClickHouseHTTPClient(settings.clickhouse)
        self.feed = feed or BinanceTickerFeed(settings.binance)

        self.buffer = BatchBuffer()
        self.overflow_policy = OverflowPolicy(settings.buffer.max_overflow)
        self.writer = SinkWriter(self.client)
        self.scheduler = FlushScheduler(
            buffer=self.buffer,
            writer=self.writer,
            overflow_policy=self.overflow_policy,
            flush_interval=settings.buffer.flush_interval_seconds
        )
        self.consumer = StreamConsumer(
            feed=self.feed,
            buffer=self.buffer,
            scheduler=self.scheduler,
            batch_max=settings.buffer.batch_max
        )
        self.reconnect_manager = ReconnectManager(
            self.consumer, ReconnectBackoff(settings.reconnect)
        )

        self.health_server: Optional[HealthCheckServer] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self.final_flush_result: Optional[FlushResult] = None
        self.start_time: Optional[float] = None

        logger.info("IngestPipeline initialized")

    async def run(self):
        """
        Run until ``request_shutdown()`` is called.

        Raises:
            FatalStartupError: the table could not be ensured; nothing was ingested
        """
        await self.client.start()
        try:
            await ensure_table(self.client)
        except Exception:
            await self.client.close()
            raise

        self.start_time = time.time()
        await self.scheduler.start()
        self._reconnect_task = asyncio.create_task(self.reconnect_manager.run())

        if self.settings.health.enabled:
            await self._start_health_server()

        logger.info("Ingestion started")

        try:
            await self._shutdown_event.wait()
        finally:
            await self._shutdown()

    def request_shutdown(self):
        """Ask ``run()`` to shut down; safe to call more than once."""
        if not self._shutdown_event.is_set():
            logger.info("Shutdown requested, flushing and exiting...")
            self._shutdown_event.set()

    async def _start_health_server(self):
        server = HealthCheckServer(self, self.settings.health.host, self.settings.health.port)
        try:
            await server.start()
            self.health_server = server
        except OSError as e:
            logger.error(f"Health check server unavailable, continuing without it: {e}")
            await server.stop()

    async def _shutdown(self):
        # Only the final flush below may write after this point
        await self.scheduler.stop()
        await self.reconnect_manager.stop()

        if self._reconnect_task:
            done, _ = await asyncio.wait(
                {self._reconnect_task},
                timeout=self.settings.binance.close_timeout_seconds
            )
            if not done:
                logger.warning("Feed loop did not stop in time, cancelling it")
                self._reconnect_task.cancel()
            await asyncio.gather(self._reconnect_task, return_exceptions=True)

        pending = len(self.buffer)
        self.final_flush_result = await self.scheduler.try_flush()
        if self.final_flush_result is FlushResult.FAILED:
            log_data_loss("Final flush failed, buffered rows are lost", lost=len(self.buffer))
        else:
            logger.info(f"Final flush {self.final_flush_result.value} ({pending} rows pending)")

        if self.health_server:
            await self.health_server.stop()
            self.health_server = None

        await self.client.close()
        logger.info("IngestPipeline stopped")

    def health_check(self) -> Dict[str, Any]:
        """Aggregate component state into healthy / degraded / unhealthy."""
        consumer_stats = self.consumer.get_stats()
        scheduler_stats = self.scheduler.get_stats()

        health_status = {
            "service": self.settings.service_name,
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "issues": [],
            "components": {
                "feed": consumer_stats,
                "reconnect": self.reconnect_manager.get_stats(),
                "flush": scheduler_stats,
                "writer": self.writer.get_stats()
            }
        }
        issues = health_status["issues"]

        if self.consumer.state is not ConnectionState.CONNECTED:
            issues.append(f"Feed {self.consumer.state.value}")

        age = consumer_stats["last_message_age_seconds"]
        if age is not None and age > STALE_FEED_SECONDS:
            issues.append(f"No messages for {age:.0f} seconds")

        if scheduler_stats["consecutive_failures"] > 0:
            issues.append(f"{scheduler_stats['consecutive_failures']} consecutive flush failures")

        if issues:
            health_status["status"] = "degraded"

        buffered = len(self.buffer)
        if buffered >= BUFFER_PRESSURE_RATIO * self.overflow_policy.max_records:
            issues.append(f"Buffer near overflow: {buffered}/{self.overflow_policy.max_records}")
            health_status["status"] = "unhealthy"

        return health_status

    def get_stats(self) -> Dict[str, Any]:
        uptime = time.time() - self.start_time if self.start_time else 0.0
        return {
            "uptime_seconds": uptime,
            "buffered_rows": len(self.buffer),
            "dropped_rows": self.overflow_policy.total_dropped,
            "feed": self.consumer.get_stats(),
            "flush": self.scheduler.get_stats()
        }
