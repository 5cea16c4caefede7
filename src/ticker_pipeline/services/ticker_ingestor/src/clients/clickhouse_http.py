"""ClickHouse HTTP interface client."""

import logging
from typing import Optional

import aiohttp

from ..config.settings import ClickHouseConfig
from ..errors import ClickHouseError

logger = logging.getLogger(__name__)


class ClickHouseHTTPClient:
    """Thin async client for the ClickHouse HTTP interface (port 8123)."""

    def __init__(self, config: ClickHouseConfig):
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None
        self.auth = aiohttp.BasicAuth(config.user, config.password)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Open the HTTP session."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            )

    async def close(self):
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    @property
    def qualified_table(self) -> str:
        return f"{self.config.database}.{self.config.table}"

    async def execute(self, sql: str) -> str:
        """Run a statement that carries no body (DDL, SELECT 1)."""
        return await self._post(sql, data=None)

    async def insert_json_each_row(self, body: str) -> str:
        """Insert newline-delimited JSON rows into the configured table."""
        sql = f"INSERT INTO {self.qualified_table} FORMAT JSONEachRow"
        return await self._post(
            sql,
            data=body.encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"}
        )

    async def _post(self, sql: str, data: Optional[bytes], headers: Optional[dict] = None) -> str:
        if not self.session:
            raise RuntimeError("Client not initialized. Call start() or use async context manager.")

        async with self.session.post(
            f"{self.config.host}/",
            params={"query": sql},
            data=data,
            headers=headers,
            auth=self.auth
        ) as response:
            text = await response.text()
            if response.status >= 300:
                raise ClickHouseError(response.status, text)
            return text
