"""
Platform-layer utilities shared across kurento_testkit.
"""

from .logging import create_logger, ColorFormatter
from .config import HarnessConfig, load_config_file, read_setting
from .runtime import StabilityClock, get_time_ms

__all__ = [
    "create_logger",
    "ColorFormatter",
    "HarnessConfig",
    "load_config_file",
    "read_setting",
    "StabilityClock",
    "get_time_ms",
]
