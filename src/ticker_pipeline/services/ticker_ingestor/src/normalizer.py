"""Parse Binance ticker messages and normalize ticks into rows."""

import json
import logging
import math
from typing import Any, List, Union

from .errors import ParseError
from .models import NormalizedRecord


logger = logging.getLogger(__name__)

NAN = float("nan")


def parse_feed_message(raw: Union[str, bytes]) -> List[NormalizedRecord]:
    """
    Parse one raw feed message into zero or more records.

    Accepted framings:
    - ``[tick, tick, ...]`` (``!miniTicker@arr``)
    - ``{"data": [tick, ...]}`` or ``{"stream": ..., "data": tick}`` (combined streams)
    - ``tick`` (single-symbol streams)

    Objects that are neither a tick nor carry ``data`` (subscription acks and
    similar control frames) yield no records.

    The message is all-or-nothing: if any tick fails to normalize, no record
    from the message is returned.

    Raises:
        ParseError: malformed or too deeply nested JSON, unrecognized framing,
            or an invalid tick
    """
    try:
        payload = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise ParseError(f"Malformed JSON: {e}", raw=_preview(raw)) from e
    except RecursionError as e:
        raise ParseError("Message nested too deeply", raw=_preview(raw)) from e

    ticks = _extract_ticks(payload, raw)
    return [normalize_tick(tick) for tick in ticks]


def _extract_ticks(payload: Any, raw: Union[str, bytes]) -> List[Any]:
    if isinstance(payload, list):
        return payload

    if isinstance(payload, dict):
        if "data" in payload:
            data = payload["data"]
            if isinstance(data, list):
                return data
            if isinstance(data, dict):
                return [data]
            raise ParseError(
                f"Unsupported 'data' type: {type(data).__name__}", raw=_preview(raw)
            )

        if "s" in payload and "E" in payload:
            return [payload]

        logger.debug(f"Ignoring control message: {_preview(raw)}")
        return []

    raise ParseError(
        f"Unrecognized message type: {type(payload).__name__}", raw=_preview(raw)
    )


def normalize_tick(tick: Any) -> NormalizedRecord:
    """
    Convert one tick object into a NormalizedRecord.

    Symbol and event time are required; prices and volumes are converted
    permissively (NaN on failure, volumes default to 0 when absent).
    """
    if not isinstance(tick, dict):
        raise ParseError(f"Tick is not an object: {type(tick).__name__}")

    symbol = tick.get("s")
    if not isinstance(symbol, str) or not symbol:
        raise ParseError(f"Tick has no valid symbol: {symbol!r}")

    return NormalizedRecord(
        symbol=symbol,
        event_time=_to_epoch_seconds(tick.get("E")),
        close_price=_to_float(tick.get("c")),
        open_price=_to_float(tick.get("o")),
        high_price=_to_float(tick.get("h")),
        low_price=_to_float(tick.get("l")),
        base_volume=_to_float(_or_zero(tick.get("v"))),
        quote_volume=_to_float(_or_zero(tick.get("q"))),
        trade_count=_to_trade_count(tick.get("n")),
        payload=json.dumps(tick, separators=(",", ":"), ensure_ascii=False),
    )


def _to_epoch_seconds(value: Any) -> int:
    """Epoch milliseconds to whole epoch seconds (floor)."""
    if isinstance(value, bool) or value is None:
        raise ParseError(f"Invalid event time: {value!r}")

    if isinstance(value, int):
        return value // 1000

    if isinstance(value, str):
        try:
            return int(value.strip()) // 1000
        except ValueError:
            pass

    try:
        millis = float(value)
    except (TypeError, ValueError):
        raise ParseError(f"Invalid event time: {value!r}")

    if not math.isfinite(millis):
        raise ParseError(f"Invalid event time: {value!r}")

    return math.floor(millis / 1000)


def _to_float(value: Any) -> float:
    """Numeric string or number to float; NaN when absent or not numeric."""
    if value is None or isinstance(value, bool):
        return NAN

    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError:
            return NAN

    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return NAN

    return NAN


def _or_zero(value: Any) -> Any:
    # Optional volumes: absent or empty means zero
    if value is None or value == "":
        return 0
    return value


def _to_trade_count(value: Any) -> int:
    """Trade count from the full ticker stream; mini-ticker has none."""
    if value is None or isinstance(value, bool):
        return 0

    try:
        count = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0

    return count if count >= 0 else 0


def _preview(raw: Union[str, bytes], limit: int = 200) -> str:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return raw[:limit]
