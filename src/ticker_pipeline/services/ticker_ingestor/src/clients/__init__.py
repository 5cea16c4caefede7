"""External clients: Binance websocket feed and ClickHouse HTTP."""
