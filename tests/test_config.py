from __future__ import annotations

import json
from pathlib import Path

import pytest

from kurento_testkit.platform.config import HarnessConfig, load_config_file


def test_defaults_match_the_documented_values() -> None:
    config = HarnessConfig()

    assert config.default_timeout == 60.0
    assert config.time_compare_threshold == pytest.approx(0.10)
    assert config.stability_duration_ms == 300000
    assert config.session_timeout == 0.0


def test_load_config_file_json(tmp_path: Path) -> None:
    config_path = tmp_path / "harness.json"
    payload = {"ws_uri": "ws://kms:8888/kurento", "default_timeout": 5}
    config_path.write_text(json.dumps(payload), encoding="utf-8")

    assert load_config_file(config_path) == payload
    config = HarnessConfig.from_file(config_path)
    assert config.ws_uri == "ws://kms:8888/kurento"
    assert config.default_timeout == 5


def test_load_config_file_yaml(tmp_path: Path) -> None:
    pytest.importorskip("yaml")
    config_path = tmp_path / "harness.yaml"
    config_path.write_text("browser: firefox\nheadless: false\n", encoding="utf-8")

    config = HarnessConfig.from_file(config_path)

    assert config.browser == "firefox"
    assert config.headless is False


def test_load_config_file_invalid_extension(tmp_path: Path) -> None:
    config_path = tmp_path / "harness.txt"
    config_path.write_text("{}", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config_file(config_path)


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ValueError, match="colour_threshold"):
        HarnessConfig.from_mapping({"colour_threshold": 3})


def test_environment_overrides_are_coerced(monkeypatch) -> None:
    monkeypatch.setenv("KURENTO_TEST_DEFAULT_TIMEOUT", "12.5")
    monkeypatch.setenv("KURENTO_TEST_CONTENT_PORT", "9090")
    monkeypatch.setenv("KURENTO_TEST_HEADLESS", "no")

    config = HarnessConfig.from_env()

    assert config.default_timeout == 12.5
    assert config.content_port == 9090
    assert config.headless is False


def test_load_reads_the_file_named_in_the_environment(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "harness.json"
    config_path.write_text(json.dumps({"ws_uri": "ws://from-file/kurento", "log_level": "DEBUG"}), encoding="utf-8")
    monkeypatch.setenv("KURENTO_TEST_CONFIG", str(config_path))
    monkeypatch.setenv("KURENTO_TEST_LOG_LEVEL", "WARNING")

    config = HarnessConfig.load()

    assert config.ws_uri == "ws://from-file/kurento"
    assert config.log_level == "WARNING"


def test_with_overrides_returns_a_new_config() -> None:
    base = HarnessConfig()
    changed = base.with_overrides(default_timeout=1.0)

    assert base.default_timeout == 60.0
    assert changed.default_timeout == 1.0
