"""ClickHouse table definition and the one-time ensure-table step."""

import logging

from .clients.clickhouse_http import ClickHouseHTTPClient
from .errors import FatalStartupError


logger = logging.getLogger(__name__)


CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {database}.{table} (
  symbol String,
  event_time DateTime,
  close_price Float64,
  open_price Float64,
  high_price Float64,
  low_price Float64,
  base_volume Float64,
  quote_volume Float64,
  trade_count UInt32,
  payload String
)
ENGINE = MergeTree()
ORDER BY (symbol, event_time)
TTL event_time + INTERVAL {ttl_days} DAY
"""


def render_create_table(database: str, table: str, ttl_days: int) -> str:
    return CREATE_TABLE_SQL.format(database=database, table=table, ttl_days=ttl_days)


async def ensure_table(client: ClickHouseHTTPClient) -> None:
    """
    Create the ticks table if it does not exist.

    Raises:
        FatalStartupError: the statement could not be executed
    """
    config = client.config
    sql = render_create_table(config.database, config.table, config.ttl_days)

    logger.info(f"Creating table {client.qualified_table} (if not exists)")
    try:
        await client.execute(sql)
    except Exception as e:
        logger.error(f"Failed to ensure table {client.qualified_table}: {e}", exc_info=True)
        raise FatalStartupError(f"Could not ensure table {client.qualified_table}: {e}") from e

    logger.info(f"Table {client.qualified_table} ready")
