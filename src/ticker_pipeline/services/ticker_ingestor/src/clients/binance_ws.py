"""Binance websocket client for the all-market ticker streams."""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config.settings import BinanceConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedOpened:
    """Connection handshake completed."""
    url: str


@dataclass(frozen=True)
class FeedMessage:
    """One inbound data frame."""
    data: Union[str, bytes]


@dataclass(frozen=True)
class FeedClosed:
    """Connection closed, cleanly or not."""
    code: Optional[int] = None
    reason: str = ""


@dataclass(frozen=True)
class FeedError:
    """Connection could not be opened or failed mid-stream."""
    error: BaseException


FeedEvent = Union[FeedOpened, FeedMessage, FeedClosed, FeedError]


class BinanceTickerFeed:
    """
    One-connection-at-a-time Binance websocket feed.

    ``events()`` opens a connection and yields its lifetime as events, always
    ending with exactly one ``FeedClosed`` or ``FeedError``. Reconnecting is
    left to the caller.
    """

    def __init__(self, config: BinanceConfig):
        self.config = config
        self.websocket = None

    async def events(self) -> AsyncIterator[FeedEvent]:
        """Open a connection and yield its events until it ends."""
        logger.info(f"Connecting to Binance WS: {self.config.ws_url}")

        try:
            self.websocket = await websockets.connect(
                self.config.ws_url,
                open_timeout=self.config.open_timeout_seconds,
                ping_interval=self.config.ping_interval_seconds,
                ping_timeout=self.config.ping_timeout_seconds,
                close_timeout=self.config.close_timeout_seconds,
                max_size=self.config.max_message_bytes
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"Failed to connect to Binance WS: {e!r}")
            yield FeedError(e)
            return

        websocket = self.websocket
        try:
            yield FeedOpened(self.config.ws_url)

            try:
                async for raw_message in websocket:
                    yield FeedMessage(raw_message)
            except ConnectionClosed:
                pass
            except Exception as e:
                logger.error(f"Unexpected error in Binance WS stream: {e!r}")
                yield FeedError(e)
                return

            yield FeedClosed(websocket.close_code, websocket.close_reason or "")
        finally:
            await self._close_socket(websocket)

    async def close(self):
        """Close the current connection, which ends a running ``events()``."""
        if self.websocket is not None:
            await self._close_socket(self.websocket)

    async def _close_socket(self, websocket):
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing websocket: {e!r}")
        if self.websocket is websocket:
            self.websocket = None
