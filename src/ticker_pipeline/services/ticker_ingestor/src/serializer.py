"""JSONEachRow serialization for ClickHouse inserts."""

import json
import math
from dataclasses import asdict
from typing import Any, Dict, Iterable

from .models import NormalizedRecord


def record_to_row(record: NormalizedRecord) -> Dict[str, Any]:
    """
    Map a record to a ClickHouse row.

    Non-finite floats become null (JSON has no NaN literal), so ClickHouse
    stores the column default for them.
    """
    row = asdict(record)
    for key, value in row.items():
        if isinstance(value, float) and not math.isfinite(value):
            row[key] = None
    return row


def serialize_json_each_row(records: Iterable[NormalizedRecord]) -> str:
    """One JSON object per record, newline-delimited, in iteration order."""
    return "\n".join(
        json.dumps(record_to_row(record), separators=(",", ":"), ensure_ascii=False)
        for record in records
    )
