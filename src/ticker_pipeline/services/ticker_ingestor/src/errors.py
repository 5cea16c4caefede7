"""Exception hierarchy for the ticker ingestor."""

from typing import Optional


class IngestorError(Exception):
    """Base class for ingestor errors."""


class ParseError(IngestorError):
    """A feed message could not be parsed or has an unrecognized shape."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class ClickHouseError(IngestorError):
    """ClickHouse answered an HTTP request with a non-success status."""

    def __init__(self, status: int, body: str):
        super().__init__(f"ClickHouse returned HTTP {status}: {body[:500]}")
        self.status = status
        self.body = body


class FatalStartupError(IngestorError):
    """Startup could not complete; no data must be ingested."""
