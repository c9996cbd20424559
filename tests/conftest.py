from __future__ import annotations

import pytest

from kurento_testkit.platform.config import HarnessConfig
from kurento_testkit.testing.fixture import HarnessFixture
from tests.fakes import FakeBrowserDriver, FakeClock, FakeMediaServer

SEEK_MEDIA_URL = "http://files.example/video/seek-colors.webm"
RED = (255, 0, 0)
BLUE = (0, 0, 255)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def media_server():
    return FakeMediaServer(media_colors={SEEK_MEDIA_URL: {0: (0, 0, 0), 1000: RED, 3000: BLUE}})


@pytest.fixture
def harness_config():
    return HarnessConfig(default_timeout=3.0, content_host="127.0.0.1", content_port=0, log_level="DEBUG")


@pytest.fixture
def drivers(media_server, clock):
    """Every fake driver handed out by the harness, in creation order."""
    created = []

    def factory(_browser):
        driver = FakeBrowserDriver(media_server, clock)
        created.append(driver)
        return driver

    factory.created = created
    return factory


@pytest.fixture
def harness(harness_config, media_server, drivers):
    with HarnessFixture(harness_config, media_server=media_server, browser_driver_factory=drivers) as fixture:
        yield fixture
