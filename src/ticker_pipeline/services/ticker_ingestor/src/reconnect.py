"""Feed reconnect loop."""

import asyncio
import logging
from typing import Any, Dict

from .models import ConnectionState
from .stream_consumer import StreamConsumer
from .utils.backoff import ReconnectBackoff


logger = logging.getLogger(__name__)


class ReconnectManager:
    """
    Keeps the feed connected until shutdown.

    DISCONNECTED -> (delay) -> CONNECTING -> CONNECTED -> (close/error) -> DISCONNECTED
    """

    def __init__(self, consumer: StreamConsumer, backoff: ReconnectBackoff):
        self.consumer = consumer
        self.backoff = backoff
        self._stopping = asyncio.Event()

        self.stats = {
            "connect_attempts": 0,
            "reconnects": 0,
            "consumer_crashes": 0,
            "last_delay_seconds": None
        }

    @property
    def state(self) -> ConnectionState:
        return self.consumer.state

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def run(self):
        """Connect, consume, wait, repeat; returns only after ``stop()``."""
        logger.info("Reconnect manager started")

        while not self._stopping.is_set():
            self.stats["connect_attempts"] += 1

            try:
                opened = await self.consumer.run_once()
            except Exception as e:
                # A consumer bug must not end ingestion; treat it as a lost connection
                self.stats["consumer_crashes"] += 1
                logger.error(f"Stream consumer failed: {e}", exc_info=True)
                opened = False

            if self._stopping.is_set():
                break

            if opened:
                self.backoff.reset()

            delay = self.backoff.next_delay()
            self.stats["last_delay_seconds"] = delay
            self.stats["reconnects"] += 1
            logger.warning(f"Feed disconnected, reconnecting in {delay:.1f}s")

            if await self._wait_for_stop(delay):
                break

        logger.info("Reconnect manager stopped")

    async def stop(self):
        """Stop reconnecting and close the current connection."""
        self._stopping.set()
        await self.consumer.stop()

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, "state": self.state.value}
