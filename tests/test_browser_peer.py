from __future__ import annotations

import pytest

from kurento_testkit.adapters.content.http_server import ContentHttpServer
from kurento_testkit.errors import InvalidStateError
from kurento_testkit.platform.config import HarnessConfig
from kurento_testkit.services.browser import Browser, BrowserPeer, Client, WebRtcChannel, color_distance
from kurento_testkit.services.content import HandlerRegistry
from kurento_testkit.services.media import MediaPipeline
from tests.fakes import CAMERA_GREEN, FakeBrowserDriver, FakeClock, FakeMediaServer

CONFIG = HarnessConfig(default_timeout=1.0)


@pytest.fixture
def world():
    return FakeMediaServer()


@pytest.fixture
def content_port(world):
    server = ContentHttpServer(HandlerRegistry(world), "127.0.0.1", 0)
    server.start()
    yield server.port
    server.stop()


def make_peer(port, driver, **kwargs):
    return BrowserPeer(port, Browser.CHROME_FOR_TEST, Client.WEBRTC, driver=driver, config=CONFIG, **kwargs)


def test_color_distance_is_euclidean():
    assert color_distance((0, 0, 0), (3, 4, 0)) == pytest.approx(5.0)
    assert color_distance((10, 20, 30), (10, 20, 30)) == 0.0


def test_peer_urls_point_at_the_harness_page():
    peer = make_peer(8080, FakeBrowserDriver(FakeMediaServer()), host="localhost")

    assert peer.base_url == "http://localhost:8080"
    assert peer.page_url == "http://localhost:8080/harness.html"
    assert peer.get_timeout() == 1.0


def test_wait_before_start_is_an_invalid_state(world):
    peer = make_peer(1, FakeBrowserDriver(world))
    peer.subscribe_events("playing")

    with pytest.raises(InvalidStateError):
        peer.wait_for_event("playing")


def test_loopback_peer_observes_playing_time_and_colour(world, content_port):
    clock = FakeClock()
    driver = FakeBrowserDriver(world, clock)
    endpoint = MediaPipeline.build(world).new_webrtc_endpoint()
    endpoint.connect(endpoint)

    with make_peer(content_port, driver) as peer:
        peer.subscribe_events("playing")
        peer.connect_to_webrtc_endpoint(endpoint, WebRtcChannel.AUDIO_AND_VIDEO)

        assert peer.wait_for_event("playing", 1.0)
        clock.sleep(4.0)
        assert peer.get_current_time() == pytest.approx(4.0)
        assert peer.last_current_time == pytest.approx(4.0)
        assert peer.color_similar_to(CAMERA_GREEN)
        assert peer.last_color == CAMERA_GREEN
        assert not peer.color_similar_to((255, 0, 0))

    assert driver.closed


def test_wait_times_out_when_no_media_arrives(world, content_port):
    endpoint = MediaPipeline.build(world).new_webrtc_endpoint()

    with make_peer(content_port, FakeBrowserDriver(world)) as peer:
        peer.subscribe_events("playing")
        peer.connect_to_webrtc_endpoint(endpoint, WebRtcChannel.VIDEO_ONLY)

        assert peer.wait_for_event("playing", 0.2) is False


def test_driver_failure_turns_into_false(world, content_port):
    driver = FakeBrowserDriver(world, fail_drain=True)

    with make_peer(content_port, driver) as peer:
        peer.subscribe_events("playing")
        peer.start()

        assert peer.wait_for_event("playing", 0.2) is False


def test_stop_is_idempotent_and_start_after_stop_is_rejected(world, content_port):
    driver = FakeBrowserDriver(world)
    peer = make_peer(content_port, driver)
    peer.start()

    peer.stop()
    peer.stop()

    assert driver.stop_calls == 1
    assert peer.stopped
    with pytest.raises(InvalidStateError):
        peer.start()


def test_player_client_plays_absolute_url(world, content_port):
    driver = FakeBrowserDriver(world)
    peer = BrowserPeer(content_port, Browser.CHROME, Client.PLAYER, url="/media/clip.webm", driver=driver, config=CONFIG)

    with peer:
        peer.subscribe_events("playing")
        peer.start()
        assert peer.wait_for_event("playing", 1.0)

    assert driver.played_url == f"http://127.0.0.1:{content_port}/media/clip.webm"


def test_peer_accepts_string_enums():
    peer = BrowserPeer(1, "firefox", "player", channel="video-only", mode="receive-only", driver=FakeBrowserDriver(FakeMediaServer()))

    assert peer.browser is Browser.FIREFOX
    assert peer.client is Client.PLAYER
    assert peer.channel is WebRtcChannel.VIDEO_ONLY
    assert peer.channel.has_video and not peer.channel.has_audio
