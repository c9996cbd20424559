"""
Utility fakes for service-layer tests.
"""

from .browser import CAMERA_GREEN, FakeBrowserDriver, FakeClock
from .media import BLACK, FakeMediaServer

__all__ = [
    "BLACK",
    "CAMERA_GREEN",
    "FakeBrowserDriver",
    "FakeClock",
    "FakeMediaServer",
]
