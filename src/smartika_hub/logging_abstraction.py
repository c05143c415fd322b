"""Logging abstraction layer for the Smartika hub client.

Provides dual-format logging (JSON + human-readable) with correlation tracking
and structured context. Library modules log through plain
``logging.getLogger(__name__)`` with ``extra={...}``; this module decides where
those records go.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import override

from smartika_hub.correlation import get_correlation_id, short_correlation_id

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "configure_logging",
    "get_logger",
]

PACKAGE_LOGGER = "smartika_hub"

# Attributes every LogRecord carries; anything else came in through ``extra``
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "correlation_id"}


def _record_context(record: logging.LogRecord) -> dict[str, object]:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS and not k.startswith("_")}


class JSONFormatter(logging.Formatter):
    """Formatter that outputs structured JSON logs."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }

        context = _record_context(record)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log_data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formatter that outputs human-readable logs with correlation IDs."""

    def __init__(self) -> None:
        # Format: timestamp level [module:line] correlation_id > message
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        short_id = short_correlation_id()
        record.correlation_id = f"[{short_id}]" if short_id else "[--------]"

        formatted = super().format(record)

        context = _record_context(record)
        if context:
            context_str = " | ".join(f"{k}={v}" for k, v in context.items())
            formatted = f"{formatted} | {context_str}"

        return formatted


def _human_handler(human_output: str | None) -> logging.Handler:
    normalized_output = human_output or "stderr"
    if normalized_output == "stdout":
        return logging.StreamHandler(sys.stdout)
    if normalized_output == "stderr":
        return logging.StreamHandler(sys.stderr)
    try:
        human_path = Path(normalized_output)
        human_path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(human_path, mode="a")
    except OSError as e:
        print(f"Warning: Failed to create human log file {human_output}: {e}", file=sys.stderr)
        return logging.StreamHandler(sys.stderr)


def configure_logging(
    level: int | None = None,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> logging.Logger:
    """Attach handlers to the package logger.

    Args:
        level: Log level (default: DEBUG when SMARTIKA_DEBUG is set, else INFO)
        log_format: "json", "human", or "both" (default: SMARTIKA_LOG_FORMAT)
        json_file: Path for JSON output file (default: SMARTIKA_LOG_JSON_FILE)
        human_output: "stdout", "stderr", or a file path (default: SMARTIKA_LOG_HUMAN_OUTPUT)

    Returns:
        The configured package logger. Calling again replaces its handlers.
    """
    # Import here to avoid reading the environment at module load time
    from smartika_hub.const import (
        SMARTIKA_DEBUG,
        SMARTIKA_LOG_FORMAT,
        SMARTIKA_LOG_HUMAN_OUTPUT,
        SMARTIKA_LOG_JSON_FILE,
    )

    if level is None:
        level = logging.DEBUG if SMARTIKA_DEBUG else logging.INFO
    log_format = log_format or SMARTIKA_LOG_FORMAT
    json_file = json_file or SMARTIKA_LOG_JSON_FILE
    human_output = human_output or SMARTIKA_LOG_HUMAN_OUTPUT

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = False

    if log_format in ("json", "both"):
        if json_file:
            try:
                json_path = Path(json_file)
                json_path.parent.mkdir(parents=True, exist_ok=True)
                json_handler: logging.Handler = logging.FileHandler(json_path, mode="a")
            except OSError as e:
                print(f"Warning: Failed to create JSON log file {json_file}: {e}", file=sys.stderr)
                json_handler = logging.StreamHandler(sys.stderr)
        else:
            json_handler = logging.StreamHandler(sys.stderr)
        json_handler.setFormatter(JSONFormatter())
        json_handler.setLevel(level)
        logger.addHandler(json_handler)

    if log_format in ("human", "both") or not logger.handlers:
        human_handler = _human_handler(human_output)
        human_handler.setFormatter(HumanReadableFormatter())
        human_handler.setLevel(level)
        logger.addHandler(human_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the package logger."""
    if name == PACKAGE_LOGGER or name.startswith(f"{PACKAGE_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
