"""Single batched write attempt against ClickHouse."""

import asyncio
import logging
import time
from typing import Any, Dict, Sequence

import aiohttp

from .clients.clickhouse_http import ClickHouseHTTPClient
from .errors import ClickHouseError
from .models import NormalizedRecord
from .serializer import serialize_json_each_row


logger = logging.getLogger(__name__)


class SinkWriter:
    """
    Writes one batch per call as a JSONEachRow insert.

    Never retries; the caller decides what to do with a failed batch.
    """

    def __init__(self, client: ClickHouseHTTPClient):
        self.client = client

        self.stats = {
            "batches_written": 0,
            "rows_written": 0,
            "write_errors": 0,
            "last_write_latency_ms": None,
            "last_error": None
        }

    async def write(self, batch: Sequence[NormalizedRecord]) -> bool:
        """Return True if ClickHouse accepted the whole batch."""
        if not batch:
            return True

        body = serialize_json_each_row(batch)
        start_time = time.monotonic()

        try:
            await self.client.insert_json_each_row(body)

        except ClickHouseError as e:
            logger.error(f"ClickHouse rejected batch of {len(batch)} rows: {e}")
            self._record_error(e)
            return False

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Transport error writing {len(batch)} rows to ClickHouse: {e!r}")
            self._record_error(e)
            return False

        except Exception as e:
            logger.error(f"Unexpected error writing {len(batch)} rows: {e}", exc_info=True)
            self._record_error(e)
            return False

        self.stats["batches_written"] += 1
        self.stats["rows_written"] += len(batch)
        self.stats["last_write_latency_ms"] = (time.monotonic() - start_time) * 1000
        return True

    def _record_error(self, error: Exception):
        self.stats["write_errors"] += 1
        self.stats["last_error"] = f"{type(error).__name__}: {error}"

    def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()
