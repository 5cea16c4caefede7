"""
Ticker Pipeline - Real-time market ticker ingestion into ClickHouse.

This package streams Binance mini-ticker events, normalizes them into a fixed
row schema and writes them to ClickHouse in batches.
"""

__version__ = "1.0.0"
__author__ = "Ticker Pipeline Team"
