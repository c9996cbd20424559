from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from kurento_testkit._optional import require_extra

ENV_PREFIX = "KURENTO_TEST_"


def read_setting(name: str) -> str | None:
    """Return the ``KURENTO_TEST_<NAME>`` environment variable, if set."""
    return os.getenv(f"{ENV_PREFIX}{name.upper()}")


def _load_yaml(text: str) -> Dict[str, Any]:
    try:
        import yaml
    except ImportError:  # pragma: no cover - optional dependency guard
        require_extra("YAML configuration parsing", extras="config", missing="yaml")

    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML configuration must be a mapping at the top level.")
    return dict(data)


def load_config_file(path: str | Path) -> Dict[str, Any]:
    """
    Load a JSON or YAML configuration file into a dictionary.
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    text = file_path.read_text(encoding="utf-8")
    suffix = file_path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        return _load_yaml(text)

    if suffix == ".json" or not suffix:
        if not text.strip():
            return {}
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("JSON configuration must be a mapping at the top level.")
        return data

    raise ValueError(
        f"Unsupported configuration format '{file_path.suffix}'. Use JSON (.json) or YAML (.yaml/.yml)."
    )


def _coerce(value: str, default: Any) -> Any:
    if isinstance(default, bool):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


@dataclass(frozen=True)
class HarnessConfig:
    """
    Settings shared by the fixture, the browser peers and the media client.

    Attributes:
        ws_uri: JSON-RPC WebSocket URI of the media server.
        content_host: Interface the content HTTP server binds to and peers connect to.
        content_port: Port of the content HTTP server (0 picks a free port).
        default_timeout: Seconds any blocking wait uses when the caller passes none.
        color_distance_threshold: Maximum Euclidean RGB distance considered "similar".
        time_compare_threshold: Relative tolerance used when comparing playback times.
        stability_duration_ms: Default run time of stability scenarios.
        session_timeout: Seconds of inactivity after which a content session is
            terminated by the server. ``0`` disables the timeout.
        request_timeout: Seconds to wait for a media-server response.
        browser: Default browser kind for peers created by the fixture.
        headless: Whether browsers are launched headless.
        log_level: Level for loggers created through ``create_logger``.
    """

    ws_uri: str = "ws://127.0.0.1:8888/kurento"
    content_host: str = "127.0.0.1"
    content_port: int = 0
    default_timeout: float = 60.0
    color_distance_threshold: float = 60.0
    time_compare_threshold: float = 0.10
    stability_duration_ms: int = 300000
    session_timeout: float = 0.0
    request_timeout: float = 10.0
    browser: str = "chrome-for-test"
    headless: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "HarnessConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown harness settings: {', '.join(unknown)}")
        return cls(**dict(values))

    @classmethod
    def from_file(cls, path: str | Path) -> "HarnessConfig":
        return cls.from_mapping(load_config_file(path))

    @classmethod
    def from_env(cls, base: Optional["HarnessConfig"] = None) -> "HarnessConfig":
        """Overlay ``KURENTO_TEST_*`` environment variables on ``base``."""
        config = base or cls()
        overrides: Dict[str, Any] = {}
        for field in fields(cls):
            raw = read_setting(field.name)
            if raw is None:
                continue
            overrides[field.name] = _coerce(raw, getattr(config, field.name))
        return replace(config, **overrides) if overrides else config

    @classmethod
    def load(cls) -> "HarnessConfig":
        """File named by ``KURENTO_TEST_CONFIG`` (if any), then environment overrides."""
        config_path = read_setting("config")
        base = cls.from_file(config_path) if config_path else cls()
        return cls.from_env(base)

    def with_overrides(self, **overrides: Any) -> "HarnessConfig":
        return replace(self, **overrides)


__all__ = [
    "ENV_PREFIX",
    "HarnessConfig",
    "load_config_file",
    "read_setting",
]
