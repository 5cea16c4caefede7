"""Pytest configuration and shared fixtures."""

import asyncio
import json
import time
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from ticker_pipeline.services.ticker_ingestor.src.clients.binance_ws import FeedClosed, FeedOpened
from ticker_pipeline.services.ticker_ingestor.src.clients.clickhouse_http import ClickHouseHTTPClient
from ticker_pipeline.services.ticker_ingestor.src.config.settings import (
    BufferConfig,
    ClickHouseConfig,
    HealthConfig,
    IngestorSettings,
    ReconnectConfig,
)
from ticker_pipeline.services.ticker_ingestor.src.models import NormalizedRecord


# Marker inside a FakeFeed script: stay connected until close() is called
HOLD_OPEN = object()


class FakeFeed:
    """
    Scripted stand-in for BinanceTickerFeed.

    Each call to ``events()`` plays the next script (a list of feed events);
    with no scripts left it reports an immediate abnormal close.
    ``close_delay`` simulates a slow close handshake.
    """

    def __init__(self, scripts: Optional[List[List[Any]]] = None, close_delay: float = 0.0):
        self.scripts = list(scripts or [])
        self.close_delay = close_delay
        self.calls = 0
        self.call_times: List[float] = []
        self.states_at_connect: List[Any] = []
        self.close_calls = 0
        self.consumer = None
        self._closed = asyncio.Event()

    async def events(self):
        self.calls += 1
        self.call_times.append(time.monotonic())
        if self.consumer is not None:
            self.states_at_connect.append(self.consumer.state)

        script = self.scripts.pop(0) if self.scripts else [FeedClosed(1006, "")]
        for event in script:
            if event is HOLD_OPEN:
                await self._closed.wait()
                yield FeedClosed(1000, "client closing")
                return
            yield event
            await asyncio.sleep(0)

    async def close(self):
        self.close_calls += 1
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self._closed.set()


class FakeWriter:
    """SinkWriter stand-in with scripted results and an optional gate."""

    def __init__(self, results: Optional[List[Any]] = None, gate: Optional[asyncio.Event] = None):
        self.results = list(results or [])
        self.gate = gate
        self.batches: List[List[NormalizedRecord]] = []
        self.active = 0
        self.max_active = 0

    async def write(self, batch):
        self.batches.append(list(batch))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            result = self.results.pop(0) if self.results else True
            if isinstance(result, BaseException):
                raise result
            return result
        finally:
            self.active -= 1

    def get_stats(self) -> Dict[str, Any]:
        return {"batches": len(self.batches)}


@pytest.fixture
def fake_feed_factory():
    """Build FakeFeed instances from scripts."""
    return FakeFeed


@pytest.fixture
def fake_writer_factory():
    """Build FakeWriter instances."""
    return FakeWriter


@pytest.fixture
def hold_open():
    return HOLD_OPEN


@pytest.fixture
def test_settings() -> IngestorSettings:
    """Settings with short timers and no health server."""
    return IngestorSettings(
        service_name="test-ingestor",
        environment="local",
        clickhouse=ClickHouseConfig(
            host="http://clickhouse.test:8123",
            user="tester",
            password="secret",
            database="test_db",
        ),
        buffer=BufferConfig(batch_max=1000, flush_interval_seconds=0.05, max_overflow=100_000),
        reconnect=ReconnectConfig(strategy="fixed", delay_seconds=0.05),
        health=HealthConfig(enabled=False),
    )


@pytest.fixture
def mock_clickhouse_client(test_settings):
    """ClickHouse client whose requests all succeed."""
    client = AsyncMock(spec=ClickHouseHTTPClient)
    client.config = test_settings.clickhouse
    client.qualified_table = "test_db.market_ticks"
    client.execute.return_value = ""
    client.insert_json_each_row.return_value = ""
    return client


@pytest.fixture
def sample_tick() -> Dict[str, Any]:
    """Sample Binance mini-ticker event."""
    return {
        "e": "24hrMiniTicker",
        "E": 1672515782136,
        "s": "BTCUSDT",
        "c": "16541.32",
        "o": "16500.00",
        "h": "16600.10",
        "l": "16480.55",
        "v": "1520.5",
        "q": "25154000.12"
    }


@pytest.fixture
def sample_array_message(sample_tick) -> str:
    """Array message with BTCUSDT and ETHUSDT ticks."""
    eth_tick = dict(sample_tick, s="ETHUSDT", c="1201.5", o="1190.0", h="1210.0", l="1185.2")
    return json.dumps([sample_tick, eth_tick])


@pytest.fixture
def make_record():
    """Factory for distinct NormalizedRecords."""
    def _make(index: int = 0, symbol: str = "BTCUSDT") -> NormalizedRecord:
        return NormalizedRecord(
            symbol=symbol,
            event_time=1672515782 + index,
            close_price=100.0 + index,
            open_price=99.0,
            high_price=101.0 + index,
            low_price=98.0,
            base_volume=10.0,
            quote_volume=1000.0,
            trade_count=0,
            payload=json.dumps({"s": symbol, "i": index})
        )
    return _make


@pytest.fixture
def opened_event():
    return FeedOpened("wss://stream.test/ws/!miniTicker@arr")
