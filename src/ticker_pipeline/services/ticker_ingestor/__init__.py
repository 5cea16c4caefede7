"""Ticker ingestor service."""
