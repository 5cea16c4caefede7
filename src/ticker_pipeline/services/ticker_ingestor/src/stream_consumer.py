"""Consumes the ticker feed into the batch buffer."""

import logging
import time
from typing import Any, Dict, Optional, Union

from .buffer import BatchBuffer
from .clients.binance_ws import (
    BinanceTickerFeed,
    FeedClosed,
    FeedError,
    FeedEvent,
    FeedMessage,
    FeedOpened,
)
from .errors import ParseError
from .flush_scheduler import FlushScheduler
from .models import ConnectionState
from .normalizer import parse_feed_message


logger = logging.getLogger(__name__)


class StreamConsumer:
    """
    Owns the feed connection and turns its messages into buffered records.

    ``run_once()`` covers a single connection lifetime and returns when the
    connection is lost; reconnecting is the ReconnectManager's job.
    """

    def __init__(
        self,
        feed: BinanceTickerFeed,
        buffer: BatchBuffer,
        scheduler: FlushScheduler,
        batch_max: int = 1000
    ):
        self.feed = feed
        self.buffer = buffer
        self.scheduler = scheduler
        self.batch_max = batch_max

        self.state = ConnectionState.DISCONNECTED
        self._accepting = True

        self.stats = {
            "messages_received": 0,
            "records_appended": 0,
            "parse_errors": 0,
            "conversion_anomalies": 0,
            "connection_count": 0,
            "disconnect_count": 0,
            "last_message_time": None,
            "last_disconnect_reason": None
        }

    @property
    def accepting(self) -> bool:
        return self._accepting

    async def run_once(self) -> bool:
        """
        Consume one connection until it closes or fails.

        Returns:
            True if the connection was established before it ended
        """
        opened = False
        self._set_state(ConnectionState.CONNECTING)

        events = self.feed.events()
        try:
            async for event in events:
                if isinstance(event, FeedOpened):
                    opened = True
                self.dispatch(event)
                if isinstance(event, (FeedClosed, FeedError)):
                    break
        finally:
            await events.aclose()
            self._set_state(ConnectionState.DISCONNECTED)

        return opened

    def dispatch(self, event: FeedEvent) -> None:
        """Handle one feed event."""
        if isinstance(event, FeedMessage):
            self.handle_message(event.data)

        elif isinstance(event, FeedOpened):
            self.stats["connection_count"] += 1
            self._set_state(ConnectionState.CONNECTED)
            logger.info(f"Binance WS open: {event.url}")

        elif isinstance(event, FeedClosed):
            self.stats["disconnect_count"] += 1
            self.stats["last_disconnect_reason"] = f"closed code={event.code} reason={event.reason!r}"
            logger.warning(f"Binance WS closed (code={event.code}, reason={event.reason!r})")

        elif isinstance(event, FeedError):
            self.stats["disconnect_count"] += 1
            self.stats["last_disconnect_reason"] = f"error {event.error!r}"
            logger.error(f"Binance WS error: {event.error!r}")

    def handle_message(self, raw: Union[str, bytes]) -> int:
        """Parse one message and buffer its records; return the number appended."""
        if not self._accepting:
            return 0

        self.stats["messages_received"] += 1
        self.stats["last_message_time"] = time.time()

        try:
            records = parse_feed_message(raw)
        except ParseError as e:
            self.stats["parse_errors"] += 1
            logger.error(f"Error parsing WS message: {e}", extra={"raw_preview": e.raw})
            return 0
        except Exception as e:
            # A single message must never take the connection down
            self.stats["parse_errors"] += 1
            logger.error(f"Unexpected error normalizing WS message: {e!r}", exc_info=True)
            return 0

        if not records:
            return 0

        anomalies = sum(1 for record in records if record.has_conversion_anomaly)
        if anomalies:
            self.stats["conversion_anomalies"] += anomalies
            logger.debug(f"{anomalies} ticks carried non-numeric price/volume fields")

        self.buffer.extend(records)
        self.stats["records_appended"] += len(records)

        if len(self.buffer) >= self.batch_max:
            self.scheduler.request_flush()

        return len(records)

    async def stop(self):
        """Stop accepting messages and close the feed connection."""
        self._accepting = False
        await self.feed.close()
        logger.info("Stream consumer stopped")

    def _set_state(self, state: ConnectionState):
        if state is not self.state:
            logger.debug(f"Feed state {self.state.value} -> {state.value}")
            self.state = state

    def last_message_age(self) -> Optional[float]:
        if self.stats["last_message_time"] is None:
            return None
        return time.time() - self.stats["last_message_time"]

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "state": self.state.value,
            "last_message_age_seconds": self.last_message_age()
        }
