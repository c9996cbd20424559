"""
Scenarios against a real media server and browser.

Run with ``KURENTO_TEST_WS_URI=ws://host:8888/kurento pytest -m integration``.
"""

from __future__ import annotations

import pytest

from kurento_testkit.platform.config import HarnessConfig, read_setting
from kurento_testkit.testing.fixture import HarnessFixture
from kurento_testkit.testing.scenarios import run_webrtc_back_to_back, run_webrtc_loopback

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not read_setting("WS_URI"), reason="KURENTO_TEST_WS_URI is not set"),
]


@pytest.fixture
def live_harness():
    with HarnessFixture(HarnessConfig.load()) as fixture:
        yield fixture


def test_webrtc_loopback(live_harness):
    run_webrtc_loopback(live_harness)


def test_webrtc_back_to_back(live_harness):
    handler = run_webrtc_back_to_back(live_harness)

    assert handler.first_endpoint is None
