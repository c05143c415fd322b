import logging
import os

from smartika_hub import __version__
from smartika_hub.protocol.packet_types import HUB_PORT

__all__ = [
    "LOG_FORMATTER",
    "SMARTIKA_DEBUG",
    "SMARTIKA_HOST",
    "SMARTIKA_LOG_FORMAT",
    "SMARTIKA_LOG_HUMAN_OUTPUT",
    "SMARTIKA_LOG_JSON_FILE",
    "SMARTIKA_LOG_NAME",
    "SMARTIKA_METRICS_PORT",
    "SMARTIKA_POLLING_INTERVAL",
    "SMARTIKA_PORT",
    "SMARTIKA_VERSION",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
SMARTIKA_LOG_NAME: str = "smartika_hub"
SMARTIKA_VERSION: str = __version__

LOG_FORMATTER = logging.Formatter(
    "%(asctime)s.%(msecs)d %(levelname)s [%(module)s:%(lineno)d] > %(message)s",
    "%m/%d/%y %H:%M:%S",
)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


SMARTIKA_HOST: str | None = os.environ.get("SMARTIKA_HOST") or None
SMARTIKA_PORT: int = _env_int("SMARTIKA_PORT", HUB_PORT)
SMARTIKA_POLLING_INTERVAL: float = _env_float("SMARTIKA_POLLING_INTERVAL", 5.0)
SMARTIKA_DEBUG: bool = os.environ.get("SMARTIKA_DEBUG", "0").casefold() in YES_ANSWER

# Logging output
SMARTIKA_LOG_FORMAT: str = os.environ.get("SMARTIKA_LOG_FORMAT", "human").casefold()
SMARTIKA_LOG_JSON_FILE: str | None = os.environ.get("SMARTIKA_LOG_JSON_FILE") or None
SMARTIKA_LOG_HUMAN_OUTPUT: str = os.environ.get("SMARTIKA_LOG_HUMAN_OUTPUT", "stderr")

# 0 disables the Prometheus endpoint
SMARTIKA_METRICS_PORT: int = _env_int("SMARTIKA_METRICS_PORT", 0)
