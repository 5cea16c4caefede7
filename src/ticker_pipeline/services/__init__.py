"""
Services package for Ticker Pipeline.

Contains:
- ticker_ingestor: Binance websocket ticker stream to ClickHouse
"""
