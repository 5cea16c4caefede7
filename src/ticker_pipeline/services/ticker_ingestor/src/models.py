"""Data models shared across the ingestor components."""

import math
from dataclasses import dataclass
from enum import Enum


class ConnectionState(Enum):
    """Lifecycle state of the feed connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class FlushResult(Enum):
    """Outcome of a single flush attempt."""
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class NormalizedRecord:
    """One ticker row, built from a single feed tick."""
    symbol: str
    event_time: int
    close_price: float
    open_price: float
    high_price: float
    low_price: float
    base_volume: float
    quote_volume: float
    trade_count: int
    payload: str

    @property
    def has_conversion_anomaly(self) -> bool:
        """True when a price or volume field failed numeric conversion."""
        return any(
            math.isnan(value) for value in (
                self.close_price, self.open_price, self.high_price,
                self.low_price, self.base_volume, self.quote_volume
            )
        )
