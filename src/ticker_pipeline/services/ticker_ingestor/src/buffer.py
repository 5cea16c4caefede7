"""In-memory batch buffer and the overflow policy that bounds it."""

from typing import List, Sequence

from .models import NormalizedRecord
from .utils.logging import log_data_loss


class BatchBuffer:
    """
    Ordered holding area for records awaiting a write.

    All mutations happen on the event loop thread, so no locking is needed.
    ``drain_all`` swaps the underlying list, so appends that follow a drain
    always land in the fresh list.
    """

    def __init__(self):
        self._records: List[NormalizedRecord] = []

    def append(self, record: NormalizedRecord) -> None:
        self._records.append(record)

    def extend(self, records: Sequence[NormalizedRecord]) -> None:
        self._records.extend(records)

    def drain_all(self) -> List[NormalizedRecord]:
        """Remove and return every buffered record as one ordered batch."""
        batch = self._records
        self._records = []
        return batch

    def requeue_front(self, records: Sequence[NormalizedRecord]) -> None:
        """Put a previously drained batch back ahead of newer arrivals."""
        if records:
            self._records = list(records) + self._records

    def trim_oldest(self, keep: int) -> int:
        """Keep only the newest ``keep`` records; return how many were dropped."""
        excess = len(self._records) - keep
        if excess <= 0:
            return 0
        del self._records[:excess]
        return excess

    def snapshot(self) -> List[NormalizedRecord]:
        """Copy of the buffered records, oldest first."""
        return list(self._records)

    def length(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __bool__(self) -> bool:
        return bool(self._records)


class OverflowPolicy:
    """Drops the oldest records once the buffer exceeds its hard cap."""

    def __init__(self, max_records: int = 100_000):
        if max_records <= 0:
            raise ValueError("max_records must be positive")
        self.max_records = max_records
        self.total_dropped = 0

    def enforce(self, buffer: BatchBuffer) -> int:
        """Trim ``buffer`` to ``max_records``; return the number of dropped records."""
        dropped = buffer.trim_oldest(self.max_records)
        if dropped:
            self.total_dropped += dropped
            log_data_loss(
                f"Buffer exceeded {self.max_records} records, dropped {dropped} oldest",
                dropped=dropped,
                total_dropped=self.total_dropped
            )
        return dropped
