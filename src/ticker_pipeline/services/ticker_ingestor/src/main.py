"""Ticker Ingestor Service - Binance ticker stream to ClickHouse."""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from .config.settings import IngestorSettings, load_settings
from .errors import FatalStartupError
from .pipeline import IngestPipeline
from .utils.logging import setup_logging


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


class TickerIngestorService:
    """Runs the ingest pipeline until SIGINT/SIGTERM."""

    def __init__(self, settings: IngestorSettings, pipeline: Optional[IngestPipeline] = None):
        self.settings = settings
        self.pipeline = pipeline or IngestPipeline(settings)

    async def start(self) -> int:
        """Run the service; return the process exit code."""
        logger.info(f"Starting {self.settings.service_name} in {self.settings.environment} environment")
        logger.info(f"Feed: {self.settings.binance.ws_url}")
        logger.info(
            f"Sink: {self.settings.clickhouse.host} "
            f"{self.settings.clickhouse.database}.{self.settings.clickhouse.table}"
        )

        self._setup_signal_handlers()

        try:
            await self.pipeline.run()
        except FatalStartupError as e:
            logger.error(f"Fatal error: {e}")
            return EXIT_FATAL

        logger.info(f"{self.settings.service_name} stopped")
        return EXIT_OK

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._handle_signal, signum)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform/thread; KeyboardInterrupt still applies
                logger.debug(f"Signal handler for {signum} not installed")

    def _handle_signal(self, signum):
        logger.info(f"Received signal {signum}, initiating shutdown")
        self.pipeline.request_shutdown()


async def main() -> int:
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE")

    try:
        settings = load_settings(config_file)
    except Exception as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Failed to load configuration from {config_file}: {e}")
        return EXIT_FATAL

    setup_logging(settings.logging, settings.service_name)
    if config_file:
        logger.info(f"Loaded configuration from: {config_file}")

    service = TickerIngestorService(settings)
    return await service.start()


def run():
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
