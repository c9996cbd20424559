from __future__ import annotations

import io
import threading
from typing import Any, Iterable, List, Optional

from PIL import Image
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from kurento_testkit.errors import ExternalFailureError, InvalidStateError
from kurento_testkit.platform.logging import create_logger
from kurento_testkit.services.browser.contracts import RGB, Browser, WebRtcChannel, WebRtcMode

logger = create_logger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--autoplay-policy=no-user-gesture-required",
    "--use-fake-ui-for-media-stream",
    "--use-fake-device-for-media-stream",
]
FIREFOX_PREFS = {
    "media.navigator.permission.disabled": True,
    "media.navigator.streams.fake": True,
    "media.autoplay.default": 0,
}
VIDEO_SELECTOR = "#video"

_local = threading.local()


def _acquire_playwright():
    """Start (or reuse) the Playwright instance bound to the calling thread."""
    host = getattr(_local, "host", None)
    if host is None:
        manager = sync_playwright()
        host = {"manager": manager, "playwright": manager.start(), "refs": 0}
        _local.host = host
    host["refs"] += 1
    return host["playwright"]


def _release_playwright() -> None:
    host = getattr(_local, "host", None)
    if host is None:
        return
    host["refs"] -= 1
    if host["refs"] <= 0:
        _local.host = None
        host["playwright"].stop()


class PlaywrightBrowserDriver:
    """
    Drives a real browser through Playwright's synchronous API.

    Playwright objects are bound to the thread that created them, so every
    method must be called from the scenario thread. Browser-side events are
    collected by the page and pulled with :meth:`drain_events`.
    """

    def __init__(self, browser: Browser = Browser.CHROME_FOR_TEST, *, headless: bool = True) -> None:
        self.browser_kind = Browser(browser)
        self.headless = headless
        self._playwright: Any = None
        self._browser: Any = None
        self._page: Any = None
        self._owner: Optional[int] = None

    def launch(self, url: str, timeout: float) -> None:
        if self._page is not None:
            return
        self._owner = threading.get_ident()
        self._playwright = _acquire_playwright()
        try:
            self._browser = self._launch_browser()
            context = self._browser.new_context(ignore_https_errors=True, viewport={"width": 800, "height": 600})
            if self.browser_kind is not Browser.FIREFOX:
                context.grant_permissions(["camera", "microphone"])
            self._page = context.new_page()
            self._page.on("console", self._on_console)
            self._page.goto(url, timeout=timeout * 1000.0, wait_until="load")
            self._page.wait_for_function("() => window.kurentoTest && window.kurentoTest.ready", timeout=timeout * 1000.0)
        except PlaywrightError as exc:
            self.close()
            raise ExternalFailureError(f"Could not open {url} in {self.browser_kind.value}: {exc}") from exc
        logger.info("Launched %s on %s", self.browser_kind.value, url)

    def _launch_browser(self):
        if self.browser_kind is Browser.FIREFOX:
            return self._playwright.firefox.launch(headless=self.headless, firefox_user_prefs=FIREFOX_PREFS)
        options = {"headless": self.headless, "args": CHROMIUM_ARGS}
        if self.browser_kind is Browser.CHROME:
            options["channel"] = "chrome"
        return self._playwright.chromium.launch(**options)

    def _on_console(self, message) -> None:
        logger.debug("[%s console] %s", self.browser_kind.value, message.text)

    def _require_page(self):
        if self._page is None:
            raise InvalidStateError("Browser has not been launched")
        if self._owner != threading.get_ident():
            raise InvalidStateError("Playwright pages must be driven from the thread that launched them")
        return self._page

    def _evaluate(self, expression: str, arg: Any = None) -> Any:
        page = self._require_page()
        try:
            return page.evaluate(expression, arg)
        except PlaywrightError as exc:
            raise ExternalFailureError(f"Browser script failed: {exc}") from exc

    # BrowserDriverPort ----------------------------------------------
    def subscribe(self, names: Iterable[str]) -> None:
        self._evaluate("(names) => window.kurentoTest.subscribe(names)", list(names))

    def drain_events(self) -> List[str]:
        return list(self._evaluate("() => window.kurentoTest.drainEvents()") or [])

    def current_time(self) -> float:
        return float(self._evaluate("() => window.kurentoTest.currentTime()"))

    def center_pixel(self) -> RGB:
        page = self._require_page()
        try:
            png = page.locator(VIDEO_SELECTOR).screenshot()
        except PlaywrightError as exc:
            raise ExternalFailureError(f"Could not capture video element: {exc}") from exc
        with Image.open(io.BytesIO(png)) as image:
            rgb = image.convert("RGB")
            width, height = rgb.size
            red, green, blue = rgb.getpixel((width // 2, height // 2))
        return int(red), int(green), int(blue)

    def create_offer(self, channel: WebRtcChannel, mode: WebRtcMode) -> str:
        return self._evaluate(
            "([channel, mode]) => window.kurentoTest.createOffer(channel, mode)",
            [WebRtcChannel(channel).value, WebRtcMode(mode).value],
        )

    def process_answer(self, sdp: str) -> None:
        self._evaluate("(sdp) => window.kurentoTest.processAnswer(sdp)", sdp)

    def start_content(self, handler_path: str, channel: WebRtcChannel, mode: WebRtcMode) -> None:
        self._evaluate(
            "([path, channel, mode]) => { window.kurentoTest.startContent(path, channel, mode); }",
            [handler_path, WebRtcChannel(channel).value, WebRtcMode(mode).value],
        )

    def play_url(self, url: str) -> None:
        self._evaluate("(url) => window.kurentoTest.playUrl(url)", url)

    def session_id(self) -> Optional[str]:
        if self._page is None:
            return None
        return self._evaluate("() => window.kurentoTest.sessionId()")

    def stop_media(self) -> None:
        if self._page is None:
            return
        self._evaluate("() => window.kurentoTest.stop()")

    def close(self) -> None:
        if self._playwright is None:
            return
        try:
            if self._browser is not None:
                self._browser.close()
        except PlaywrightError as exc:
            logger.warning("Error while closing %s: %s", self.browser_kind.value, exc)
        finally:
            self._browser = None
            self._page = None
            self._playwright = None
            _release_playwright()


__all__ = ["PlaywrightBrowserDriver"]
