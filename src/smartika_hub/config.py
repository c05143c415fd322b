"""Client configuration: environment defaults overlaid by an optional YAML file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from smartika_hub import const
from smartika_hub.protocol.packet_types import HUB_PORT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HubConfig:
    """Connection settings for one hub.

    Attributes:
        host: Hub address (None until configured or discovered)
        port: Hub TCP port
        polling_interval: Seconds between status polls
        debug: Enable debug logging
        metrics_port: Prometheus endpoint port (0 disables it)
    """

    host: str | None = None
    port: int = HUB_PORT
    polling_interval: float = 5.0
    debug: bool = False
    metrics_port: int = 0

    def __post_init__(self) -> None:
        if not 0 < self.port <= 0xFFFF:
            msg = f"port must be in 1-65535, got {self.port}"
            raise ValueError(msg)
        if self.polling_interval <= 0:
            msg = f"polling_interval must be positive, got {self.polling_interval}"
            raise ValueError(msg)
        if not 0 <= self.metrics_port <= 0xFFFF:
            msg = f"metrics_port must be in 0-65535, got {self.metrics_port}"
            raise ValueError(msg)

    @classmethod
    def from_env(cls) -> HubConfig:
        """Build a config from the SMARTIKA_* environment variables."""
        return cls(
            host=const.SMARTIKA_HOST,
            port=const.SMARTIKA_PORT,
            polling_interval=const.SMARTIKA_POLLING_INTERVAL,
            debug=const.SMARTIKA_DEBUG,
            metrics_port=const.SMARTIKA_METRICS_PORT,
        )


def _coerce(name: str, value: Any) -> Any:
    try:
        if name in ("port", "metrics_port"):
            return int(value)
        if name == "polling_interval":
            return float(value)
        if name == "debug":
            return value if isinstance(value, bool) else str(value).casefold() in const.YES_ANSWER
        return None if value is None else str(value)
    except (TypeError, ValueError) as e:
        msg = f"Invalid value for {name}: {value!r}"
        raise ValueError(msg) from e


def load_config(path: str | Path | None = None) -> HubConfig:
    """Load settings from a YAML mapping layered over the environment defaults.

    Unknown keys are logged and ignored.

    Raises:
        ValueError: The file is not a mapping or holds an invalid value
        OSError: The file cannot be read
    """
    config = HubConfig.from_env()
    if path is None:
        return config

    config_path = Path(path).expanduser()
    logger.debug("Parsing config file: %s", config_path)
    try:
        with config_path.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in {config_path}: {e}"
        raise ValueError(msg) from e

    if data is None:
        return config
    if not isinstance(data, dict):
        msg = f"Config file {config_path} must contain a mapping"
        raise ValueError(msg)

    known = {f.name for f in fields(HubConfig)}
    overrides: dict[str, Any] = {}
    for key, value in data.items():
        name = str(key).replace("-", "_")
        if name not in known:
            logger.warning("Ignoring unknown config key: %s", key, extra={"path": str(config_path)})
            continue
        overrides[name] = _coerce(name, value)

    return replace(config, **overrides)
