"""Integration tests for the ingest pipeline and service lifecycle."""

import asyncio
import json
import signal

import pytest

from ticker_pipeline.services.ticker_ingestor.src import main as main_module
from ticker_pipeline.services.ticker_ingestor.src.clients.binance_ws import FeedMessage
from ticker_pipeline.services.ticker_ingestor.src.config.settings import BufferConfig
from ticker_pipeline.services.ticker_ingestor.src.errors import ClickHouseError, FatalStartupError
from ticker_pipeline.services.ticker_ingestor.src.main import EXIT_FATAL, EXIT_OK, TickerIngestorService
from ticker_pipeline.services.ticker_ingestor.src.models import ConnectionState, FlushResult
from ticker_pipeline.services.ticker_ingestor.src.pipeline import IngestPipeline


def ticks_message(sample_tick, count: int) -> str:
    return json.dumps([dict(sample_tick, s=f"SYM{i}USDT") for i in range(count)])


def inserted_rows(client):
    rows = []
    for call in client.insert_json_each_row.call_args_list:
        rows.extend(json.loads(line) for line in call[0][0].split("\n"))
    return rows


@pytest.mark.integration
class TestIngestPipeline:
    """Feed to ClickHouse with faked endpoints."""

    @pytest.mark.asyncio
    async def test_timer_flush_writes_buffered_ticks(
        self, test_settings, mock_clickhouse_client, fake_feed_factory, opened_event, hold_open, sample_tick
    ):
        feed = fake_feed_factory([[opened_event, FeedMessage(ticks_message(sample_tick, 2)), hold_open]])
        pipeline = IngestPipeline(test_settings, client=mock_clickhouse_client, feed=feed)

        task = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.2)

        assert pipeline.consumer.state is ConnectionState.CONNECTED
        assert mock_clickhouse_client.insert_json_each_row.await_count == 1
        assert [row["symbol"] for row in inserted_rows(mock_clickhouse_client)] == ["SYM0USDT", "SYM1USDT"]
        assert len(pipeline.buffer) == 0

        pipeline.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

        mock_clickhouse_client.insert_json_each_row.assert_awaited_once()
        assert pipeline.final_flush_result is FlushResult.SKIPPED

    @pytest.mark.asyncio
    async def test_failed_write_is_retried(
        self, test_settings, mock_clickhouse_client, fake_feed_factory, opened_event, hold_open, sample_tick
    ):
        mock_clickhouse_client.insert_json_each_row.side_effect = [ClickHouseError(503, "busy"), ""]
        feed = fake_feed_factory([[opened_event, FeedMessage(ticks_message(sample_tick, 2)), hold_open]])
        pipeline = IngestPipeline(test_settings, client=mock_clickhouse_client, feed=feed)

        task = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.3)
        pipeline.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

        calls = mock_clickhouse_client.insert_json_each_row.call_args_list
        assert len(calls) == 2
        assert calls[0] == calls[1]
        assert len(pipeline.buffer) == 0
        assert pipeline.scheduler.stats["flushes_failed"] == 1

    @pytest.mark.asyncio
    async def test_shutdown_flushes_once(
        self, test_settings, mock_clickhouse_client, fake_feed_factory, opened_event, hold_open, sample_tick
    ):
        """Shutdown with five buffered records performs exactly one final flush."""
        test_settings.buffer = BufferConfig(flush_interval_seconds=60)
        feed = fake_feed_factory([[opened_event, FeedMessage(ticks_message(sample_tick, 5)), hold_open]])
        pipeline = IngestPipeline(test_settings, client=mock_clickhouse_client, feed=feed)

        task = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.05)
        assert len(pipeline.buffer) == 5
        mock_clickhouse_client.insert_json_each_row.assert_not_called()

        pipeline.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

        mock_clickhouse_client.insert_json_each_row.assert_awaited_once()
        assert len(inserted_rows(mock_clickhouse_client)) == 5
        assert pipeline.final_flush_result is FlushResult.SUCCEEDED
        assert len(pipeline.buffer) == 0
        assert feed.close_calls >= 1
        assert feed.calls == 1
        mock_clickhouse_client.close.assert_awaited()

    @pytest.mark.asyncio
    async def test_slow_feed_close_allows_only_final_flush(
        self, test_settings, mock_clickhouse_client, fake_feed_factory, opened_event, hold_open, sample_tick
    ):
        """While the feed takes its time to close, the timer must not write again."""
        test_settings.buffer = BufferConfig(flush_interval_seconds=0.1)
        mock_clickhouse_client.insert_json_each_row.side_effect = ClickHouseError(503, "unavailable")
        feed = fake_feed_factory(
            [[opened_event, FeedMessage(ticks_message(sample_tick, 5)), hold_open]],
            close_delay=0.5
        )
        pipeline = IngestPipeline(test_settings, client=mock_clickhouse_client, feed=feed)

        task = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.05)
        assert len(pipeline.buffer) == 5
        writes_before_shutdown = mock_clickhouse_client.insert_json_each_row.await_count

        pipeline.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

        writes_during_shutdown = (
            mock_clickhouse_client.insert_json_each_row.await_count - writes_before_shutdown
        )
        assert writes_during_shutdown == 1
        assert pipeline.final_flush_result is FlushResult.FAILED
        assert pipeline.scheduler.stats["flushes_failed"] == writes_before_shutdown + 1

    @pytest.mark.asyncio
    async def test_failed_final_flush_reported(
        self, test_settings, mock_clickhouse_client, fake_feed_factory, opened_event, hold_open, sample_tick
    ):
        test_settings.buffer = BufferConfig(flush_interval_seconds=60)
        mock_clickhouse_client.insert_json_each_row.side_effect = ClickHouseError(500, "down")
        feed = fake_feed_factory([[opened_event, FeedMessage(ticks_message(sample_tick, 3)), hold_open]])
        pipeline = IngestPipeline(test_settings, client=mock_clickhouse_client, feed=feed)

        task = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.05)
        pipeline.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

        assert pipeline.final_flush_result is FlushResult.FAILED
        assert mock_clickhouse_client.insert_json_each_row.await_count == 1

    @pytest.mark.asyncio
    async def test_size_trigger_flushes_before_timer(
        self, test_settings, mock_clickhouse_client, fake_feed_factory, opened_event, hold_open, sample_tick
    ):
        test_settings.buffer = BufferConfig(batch_max=4, flush_interval_seconds=60)
        feed = fake_feed_factory([[opened_event, FeedMessage(ticks_message(sample_tick, 4)), hold_open]])
        pipeline = IngestPipeline(test_settings, client=mock_clickhouse_client, feed=feed)

        task = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.05)

        assert len(inserted_rows(mock_clickhouse_client)) == 4

        pipeline.request_shutdown()
        await asyncio.wait_for(task, timeout=5)

    @pytest.mark.asyncio
    async def test_table_failure_is_fatal(self, test_settings, mock_clickhouse_client, fake_feed_factory):
        mock_clickhouse_client.execute.side_effect = ClickHouseError(516, "Authentication failed")
        feed = fake_feed_factory()
        pipeline = IngestPipeline(test_settings, client=mock_clickhouse_client, feed=feed)

        with pytest.raises(FatalStartupError):
            await pipeline.run()

        assert feed.calls == 0
        mock_clickhouse_client.insert_json_each_row.assert_not_called()
        mock_clickhouse_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_stats(self, test_settings, mock_clickhouse_client, fake_feed_factory):
        pipeline = IngestPipeline(test_settings, client=mock_clickhouse_client, feed=fake_feed_factory())

        stats = pipeline.get_stats()

        assert stats["buffered_rows"] == 0
        assert stats["dropped_rows"] == 0
        assert stats["uptime_seconds"] == 0.0


@pytest.mark.integration
class TestTickerIngestorService:
    """Process-level exit codes."""

    @pytest.mark.asyncio
    async def test_signal_shutdown_exits_zero(
        self, test_settings, mock_clickhouse_client, fake_feed_factory, opened_event, hold_open
    ):
        feed = fake_feed_factory([[opened_event, hold_open]])
        pipeline = IngestPipeline(test_settings, client=mock_clickhouse_client, feed=feed)
        service = TickerIngestorService(test_settings, pipeline=pipeline)

        asyncio.get_running_loop().call_later(0.05, service._handle_signal, signal.SIGTERM)
        exit_code = await asyncio.wait_for(service.start(), timeout=5)

        assert exit_code == EXIT_OK

    @pytest.mark.asyncio
    async def test_fatal_startup_exits_one(self, test_settings, mock_clickhouse_client, fake_feed_factory):
        mock_clickhouse_client.execute.side_effect = ClickHouseError(500, "no such database")
        pipeline = IngestPipeline(test_settings, client=mock_clickhouse_client, feed=fake_feed_factory())
        service = TickerIngestorService(test_settings, pipeline=pipeline)

        assert await service.start() == EXIT_FATAL

    @pytest.mark.asyncio
    async def test_bad_config_exits_one(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CONFIG_FILE", str(tmp_path / "missing.yaml"))

        assert await main_module.main() == EXIT_FATAL
