from __future__ import annotations

import itertools
from typing import Iterable, Optional, Sequence

import numpy as np

from kurento_testkit._optional import load_adapter
from kurento_testkit.errors import InvalidStateError
from kurento_testkit.platform.config import HarnessConfig
from kurento_testkit.platform.logging import create_logger
from kurento_testkit.services.browser.contracts import (
    RGB,
    Browser,
    BrowserDriverPort,
    Client,
    WebRtcChannel,
    WebRtcMode,
)
from kurento_testkit.services.browser.event_bus import BrowserEventBus
from kurento_testkit.services.media.pipeline import WebRtcEndpoint

HARNESS_PAGE = "/harness.html"

_peer_counter = itertools.count(1)


def color_distance(first: Sequence[float], second: Sequence[float]) -> float:
    """Euclidean distance between two RGB vectors."""
    return float(np.linalg.norm(np.asarray(first, dtype=float)[:3] - np.asarray(second, dtype=float)[:3]))


def create_browser_driver(browser: Browser, config: HarnessConfig) -> BrowserDriverPort:
    """Instantiate the adapter that automates ``browser``."""
    if browser is Browser.AIORTC:
        AiortcPeerDriver = load_adapter(  # noqa: N806 - class alias
            "kurento_testkit.adapters.browser.aiortc_driver",
            "AiortcPeerDriver",
            feature="aiortc peer driver",
            extras="aiortc",
        )
        return AiortcPeerDriver(request_timeout=config.request_timeout)

    PlaywrightBrowserDriver = load_adapter(  # noqa: N806 - class alias
        "kurento_testkit.adapters.browser.playwright_driver",
        "PlaywrightBrowserDriver",
        feature="Playwright browser driver",
        extras="browser",
    )
    return PlaywrightBrowserDriver(browser=browser, headless=config.headless)


class BrowserPeer:
    """
    One automated browser acting as a WebRTC peer.

    ``start`` blocks until the harness page has loaded; media readiness is
    observed through events. Use the peer as a context manager so ``stop``
    runs on every exit path.
    """

    def __init__(
        self,
        server_port: int,
        browser: Browser | str = Browser.CHROME_FOR_TEST,
        client: Client | str = Client.WEBRTC,
        *,
        channel: Optional[WebRtcChannel | str] = None,
        mode: Optional[WebRtcMode | str] = None,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        host: Optional[str] = None,
        driver: Optional[BrowserDriverPort] = None,
        config: Optional[HarnessConfig] = None,
        name: Optional[str] = None,
    ) -> None:
        self.config = config or HarnessConfig()
        self.server_port = int(server_port)
        self.browser = Browser(browser)
        self.client = Client(client)
        self.channel = WebRtcChannel(channel) if channel is not None else None
        self.mode = WebRtcMode(mode) if mode is not None else None
        self.url = url
        self.timeout = float(timeout if timeout is not None else self.config.default_timeout)
        self.host = host or self.config.content_host
        self.name = name or f"{self.browser.value}-{next(_peer_counter)}"
        self._logger = create_logger(__name__ + ".BrowserPeer", level=self.config.log_level)
        self._driver = driver if driver is not None else create_browser_driver(self.browser, self.config)
        self._events = BrowserEventBus(self.name)
        self._started = False
        self._stopped = False
        self._driver_failed = False
        self._session_id: Optional[str] = None
        self.last_current_time: Optional[float] = None
        self.last_color: Optional[RGB] = None

    def __repr__(self) -> str:
        return f"BrowserPeer(name={self.name!r}, browser={self.browser.value}, client={self.client.value})"

    def __enter__(self) -> "BrowserPeer":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    # Properties -----------------------------------------------------
    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.server_port}"

    @property
    def page_url(self) -> str:
        return self.base_url + HARNESS_PAGE

    @property
    def events(self) -> BrowserEventBus:
        return self._events

    @property
    def started(self) -> bool:
        return self._started

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def session_id(self) -> Optional[str]:
        """Content session assigned by the server, once the page has negotiated one."""
        if self._session_id is None and self._started and not self._stopped:
            self._session_id = self._driver.session_id()
        return self._session_id

    def get_timeout(self) -> float:
        return self.timeout

    # Configuration --------------------------------------------------
    def set_url(self, url: str) -> None:
        self.url = url

    def subscribe_events(self, *names: str) -> None:
        self._events.subscribe(*names)
        if self._started:
            self._driver.subscribe(names)

    # Lifecycle ------------------------------------------------------
    def start(self) -> None:
        if self._stopped:
            raise InvalidStateError(f"{self.name} was already stopped")
        if self._started:
            return
        self._logger.info("Starting %s at %s", self.name, self.page_url)
        self._driver.launch(self.page_url, self.timeout)
        self._started = True
        subscriptions = self._events.subscriptions
        if subscriptions:
            self._driver.subscribe(subscriptions)
        if self.url is None:
            return
        if self.client is Client.PLAYER:
            self._driver.play_url(self._absolute(self.url))
        else:
            self._driver.start_content(
                self.url,
                self.channel or WebRtcChannel.AUDIO_AND_VIDEO,
                self.mode or WebRtcMode.SEND_RCV,
            )

    def stop(self) -> None:
        """Tear down the peer's media and close the browser. Safe to call twice."""
        if self._stopped:
            return
        if self._started:
            # Cache before teardown so scenarios can look up the terminated session.
            if self._session_id is None:
                try:
                    self._session_id = self._driver.session_id()
                except Exception as exc:  # pragma: no cover - depends on driver health
                    self._logger.debug("Could not read session id from %s: %s", self.name, exc)
            try:
                self._driver.stop_media()
            except Exception as exc:
                self._logger.warning("Error while stopping media on %s: %s", self.name, exc)
        self._stopped = True
        try:
            self._driver.close()
        except Exception as exc:
            self._logger.warning("Error while closing %s: %s", self.name, exc)
        self._logger.info("Stopped %s", self.name)

    # WebRTC negotiation ---------------------------------------------
    def init_webrtc(self, endpoint: WebRtcEndpoint, channel: WebRtcChannel | str, mode: WebRtcMode | str) -> None:
        """Negotiate the page directly with ``endpoint`` (media API flow)."""
        self.channel = WebRtcChannel(channel)
        self.mode = WebRtcMode(mode)
        if not self._started:
            self.start()
        offer = self._driver.create_offer(self.channel, self.mode)
        answer = endpoint.process_offer(offer)
        self._driver.process_answer(answer)
        self._logger.info("%s negotiated with %s (%s, %s)", self.name, endpoint.id, self.channel.value, self.mode.value)

    def connect_to_webrtc_endpoint(self, endpoint: WebRtcEndpoint, channel: WebRtcChannel | str) -> None:
        self.init_webrtc(endpoint, channel, WebRtcMode.SEND_RCV)

    def play_url(self, url: str) -> None:
        if not self._started:
            self.start()
        self._driver.play_url(self._absolute(url))

    # Observation ----------------------------------------------------
    def wait_for_event(self, name: str, timeout: Optional[float] = None) -> bool:
        """``True`` once ``name`` is observed; ``False`` on timeout or browser failure."""
        if not self._started:
            raise InvalidStateError(f"{self.name} must be started before waiting for events")
        reached = self._events.wait_for_event(
            name,
            self.timeout if timeout is None else timeout,
            pump=self._pump,
        )
        if not reached:
            self._logger.warning("Timeout waiting for %r on %s", name, self.name)
        return reached

    def get_current_time(self) -> float:
        self.last_current_time = float(self._driver.current_time())
        return self.last_current_time

    def color_similar_to(self, expected: Iterable[int], threshold: Optional[float] = None) -> bool:
        expected_rgb = tuple(int(channel) for channel in expected)
        limit = self.config.color_distance_threshold if threshold is None else threshold
        pixel = tuple(int(channel) for channel in self._driver.center_pixel())[:3]
        self.last_color = pixel  # type: ignore[assignment]
        distance = color_distance(pixel, expected_rgb)
        self._logger.debug("%s centre pixel %s vs %s (distance %.1f)", self.name, pixel, expected_rgb, distance)
        return distance <= limit

    # Internal helpers -----------------------------------------------
    def _pump(self) -> None:
        if self._driver_failed or self._stopped:
            return
        try:
            names = self._driver.drain_events()
        except Exception as exc:
            self._driver_failed = True
            self._logger.error("Browser %s stopped reporting events: %s", self.name, exc)
            return
        for name in names:
            self._events.publish(name)

    def _absolute(self, url: str) -> str:
        if "://" in url:
            return url
        return self.base_url + (url if url.startswith("/") else "/" + url)


__all__ = ["BrowserPeer", "HARNESS_PAGE", "color_distance", "create_browser_driver"]
