"""
Logging for the ticker ingestor.

Records carry structured fields through ``extra`` (``rows``, ``dropped``,
``buffered``, ...). Both formatters render them: JSON as top-level keys,
text as trailing ``key=value`` pairs.

Rows the service gives up on (overflow trims, a failed final flush) are
reported through ``log_data_loss`` on a dedicated logger, so operators can
route or escalate them without raising the level of everything else.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from ..config.settings import LoggingConfig


DATA_LOSS_LOGGER = "ticker_ingestor.data_loss"

# Level used by log_data_loss; setup_logging overrides it from config
_data_loss_level = logging.WARNING

# LogRecord attributes that are not user-supplied ``extra`` fields
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Added by ServiceContextFilter; the text layout omits it
_TEXT_SKIPPED_EXTRAS = {"service"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS}


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JSONFormatter(logging.Formatter):
    """One JSON object per line with the record's extra fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": _record_time(record).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno
        }
        log_data.update(_extra_fields(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Console layout: ``time [LEVEL] logger: message key=value ...``."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m"
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = _record_time(record).strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname
        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level}{self.RESET}"

        formatted = f"{timestamp} [{level}] {record.name}: {record.getMessage()}"

        fields = [
            f"{key}={value}" for key, value in _extra_fields(record).items()
            if key not in _TEXT_SKIPPED_EXTRAS
        ]
        if fields:
            formatted += " " + " ".join(fields)

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


class ServiceContextFilter(logging.Filter):
    """Stamps every record with the service name."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record):
        record.service = self.service_name
        return True


def set_data_loss_level(level: str) -> None:
    global _data_loss_level
    _data_loss_level = logging.getLevelName(level.upper())


def log_data_loss(message: str, **fields: Any) -> None:
    """Report rows that will never reach ClickHouse."""
    logging.getLogger(DATA_LOSS_LOGGER).log(_data_loss_level, message, extra={"data_loss": True, **fields})


def _build_handler(output: str) -> logging.Handler:
    if output.lower() == "stdout":
        return logging.StreamHandler(sys.stdout)
    if output.lower() == "stderr":
        return logging.StreamHandler(sys.stderr)
    return logging.FileHandler(output)


def setup_logging(config: LoggingConfig, service_name: str = "ticker-ingestor") -> None:
    """
    Install the service's single root handler.

    Args:
        config: Logging configuration
        service_name: Stamped on every record as ``service``
    """
    formatter = JSONFormatter() if config.format == "json" else TextFormatter()

    handler = _build_handler(config.output)
    handler.setFormatter(formatter)
    handler.addFilter(ServiceContextFilter(service_name))

    root_logger = logging.getLogger()
    root_logger.setLevel(config.level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for logger_name, level in config.component_levels.items():
        logging.getLogger(logger_name).setLevel(level)

    set_data_loss_level(config.data_loss_level)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={
            "log_level": config.level,
            "log_format": config.format,
            "log_output": config.output,
            "data_loss_level": config.data_loss_level
        }
    )
