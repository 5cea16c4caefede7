"""Ticker Ingestor Service - Binance ticker stream to ClickHouse."""
