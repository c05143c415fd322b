"""Unit tests for configuration loading."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from smartika_hub.config import HubConfig, load_config


@pytest.mark.unit
def test_defaults() -> None:
    config = HubConfig()

    assert config.host is None
    assert config.port == 1234
    assert config.polling_interval == 5.0
    assert config.debug is False
    assert config.metrics_port == 0


@pytest.mark.unit
@pytest.mark.parametrize(
    "kwargs",
    [{"port": 0}, {"port": 70000}, {"polling_interval": 0}, {"metrics_port": -1}],
)
def test_invalid_values(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError, match="must be"):
        HubConfig(**kwargs)  # type: ignore[arg-type]


@pytest.mark.unit
def test_from_env() -> None:
    with (
        patch("smartika_hub.const.SMARTIKA_HOST", "192.0.2.10"),
        patch("smartika_hub.const.SMARTIKA_POLLING_INTERVAL", 2.5),
        patch("smartika_hub.const.SMARTIKA_DEBUG", True),
    ):
        config = HubConfig.from_env()

    assert config.host == "192.0.2.10"
    assert config.polling_interval == 2.5
    assert config.debug is True


@pytest.mark.unit
def test_load_config_without_file() -> None:
    with patch("smartika_hub.const.SMARTIKA_HOST", None):
        assert load_config() == HubConfig.from_env()


@pytest.mark.unit
def test_load_config_overrides_environment(tmp_path: Path) -> None:
    path = tmp_path / "smartika.yaml"
    path.write_text("host: 192.0.2.20\npolling-interval: 10\ndebug: yes\nmetrics_port: '9400'\n")

    with patch("smartika_hub.const.SMARTIKA_HOST", "192.0.2.10"):
        config = load_config(path)

    assert config.host == "192.0.2.20"
    assert config.polling_interval == 10.0
    assert config.debug is True
    assert config.metrics_port == 9400


@pytest.mark.unit
def test_load_config_ignores_unknown_keys(tmp_path: Path) -> None:
    path = tmp_path / "smartika.yaml"
    path.write_text("port: 4321\nmqtt_broker: localhost\n")

    assert load_config(path).port == 4321


@pytest.mark.unit
def test_load_config_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "smartika.yaml"
    path.write_text("")

    assert load_config(path) == HubConfig.from_env()


@pytest.mark.unit
@pytest.mark.parametrize(
    "content,match",
    [
        ("- host\n- port\n", "mapping"),
        ("port: [1, 2]\n", "Invalid value for port"),
        ("port: 99999\n", "must be"),
        ("host: [unclosed\n", "Invalid YAML"),
    ],
)
def test_load_config_rejects_bad_files(tmp_path: Path, content: str, match: str) -> None:
    path = tmp_path / "smartika.yaml"
    path.write_text(content)

    with pytest.raises(ValueError, match=match):
        load_config(path)


@pytest.mark.unit
def test_load_config_missing_file(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        load_config(tmp_path / "missing.yaml")
