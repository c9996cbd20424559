from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional

from kurento_testkit._optional import load_adapter
from kurento_testkit.adapters.content.http_server import ContentHttpServer
from kurento_testkit.errors import InvalidStateError
from kurento_testkit.platform.config import HarnessConfig
from kurento_testkit.platform.logging import create_logger
from kurento_testkit.platform.runtime import StabilityClock
from kurento_testkit.services.browser.contracts import Browser, BrowserDriverPort, Client
from kurento_testkit.services.browser.peer import BrowserPeer
from kurento_testkit.services.content.registry import ContentHandler, HandlerRegistry
from kurento_testkit.services.media.contracts import MediaServerPort
from kurento_testkit.services.media.pipeline import MediaPipeline

DriverFactory = Callable[[Browser], BrowserDriverPort]


def compare(expected: float, observed: float, threshold: float = 0.10) -> bool:
    """True when ``observed`` is within ``threshold`` of the larger magnitude."""
    return abs(expected - observed) <= threshold * max(abs(expected), abs(observed))


def _connect_media_server(config: HarnessConfig) -> Any:
    KurentoClient = load_adapter(  # noqa: N806 - class alias
        "kurento_testkit.adapters.media.kurento_client",
        "KurentoClient",
        feature="Kurento media server client",
        extras="kurento",
    )
    return KurentoClient(config.ws_uri, request_timeout=config.request_timeout).connect()


class HarnessFixture:
    """
    Per-scenario environment: media server connection, content server,
    handler registry, and every pipeline and peer the scenario creates.

    ``teardown`` stops peers, releases pipelines and empties the registry on
    every exit path, so scenarios never leak server-side objects.
    """

    def __init__(
        self,
        config: Optional[HarnessConfig] = None,
        *,
        media_server: Optional[MediaServerPort] = None,
        browser_driver_factory: Optional[DriverFactory] = None,
    ) -> None:
        self.config = config or HarnessConfig.load()
        self._media_server = media_server
        self._owns_media_server = media_server is None
        self._driver_factory = browser_driver_factory
        self.registry: Optional[HandlerRegistry] = None
        self.content_server: Optional[ContentHttpServer] = None
        self._pipelines: List[MediaPipeline] = []
        self._peers: List[BrowserPeer] = []
        self._clock = StabilityClock()
        self._logger = create_logger(__name__ + ".HarnessFixture", level=self.config.log_level)

    def __enter__(self) -> "HarnessFixture":
        self.setup()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.teardown()
        return False

    # Lifecycle ------------------------------------------------------
    def setup(self) -> None:
        if self.registry is not None:
            return
        if self._media_server is None:
            self._media_server = _connect_media_server(self.config)
        self.registry = HandlerRegistry(self._media_server, session_timeout=self.config.session_timeout)
        self.content_server = ContentHttpServer(self.registry, self.config.content_host, self.config.content_port)
        self.content_server.start()
        self._logger.info("Harness ready (media server %s, content port %s)", self.config.ws_uri, self.server_port)

    def teardown(self) -> None:
        errors: List[Exception] = []
        try:
            for peer in reversed(self._peers):
                try:
                    peer.stop()
                except Exception as exc:
                    self._logger.warning("Failed to stop %s: %s", peer, exc)
                    errors.append(exc)
            self._peers.clear()

            if self.registry is not None:
                self.registry.clear()

            for pipeline in reversed(self._pipelines):
                try:
                    pipeline.release()
                except Exception as exc:
                    self._logger.warning("Failed to release pipeline %s: %s", pipeline.id, exc)
                    errors.append(exc)
            self._pipelines.clear()
        finally:
            try:
                if self.content_server is not None:
                    self.content_server.stop()
                    self.content_server = None

                if self.registry is not None and not self.registry.is_empty:
                    errors.append(InvalidStateError("Handler registry is not empty after teardown"))
                self.registry = None
            finally:
                if self._owns_media_server and self._media_server is not None:
                    try:
                        self._media_server.close()  # type: ignore[attr-defined]
                    finally:
                        self._media_server = None
        self._logger.info("Harness torn down")
        if errors:
            raise errors[0]

    # Accessors ------------------------------------------------------
    @property
    def media_server(self) -> MediaServerPort:
        if self._media_server is None:
            raise InvalidStateError("Harness has not been set up")
        return self._media_server

    @property
    def server_port(self) -> int:
        if self.content_server is None:
            raise InvalidStateError("Harness has not been set up")
        return self.content_server.port

    def _require_registry(self) -> HandlerRegistry:
        if self.registry is None:
            raise InvalidStateError("Harness has not been set up")
        return self.registry

    # Factories ------------------------------------------------------
    def create_pipeline(self, name: Optional[str] = None) -> MediaPipeline:
        pipeline = MediaPipeline.build(self.media_server, name=name)
        self._pipelines.append(pipeline)
        return pipeline

    def register_handler(self, handler: ContentHandler, path: Optional[str] = None) -> str:
        return self._require_registry().register(path, handler)

    def new_browser(
        self,
        browser: Optional[Browser | str] = None,
        client: Client | str = Client.WEBRTC,
        **kwargs: Any,
    ) -> BrowserPeer:
        kind = Browser(browser or self.config.browser)
        driver = kwargs.pop("driver", None)
        if driver is None and self._driver_factory is not None:
            driver = self._driver_factory(kind)
        peer = BrowserPeer(
            self.server_port,
            kind,
            client,
            host=self.config.content_host,
            driver=driver,
            config=self.config,
            **kwargs,
        )
        self._peers.append(peer)
        return peer

    # Assertion helpers ----------------------------------------------
    def compare(self, expected: float, observed: float) -> bool:
        return compare(expected, observed, self.config.time_compare_threshold)

    def similar_color(self, peer: BrowserPeer, rgb: Iterable[int]) -> bool:
        return peer.color_similar_to(rgb)

    def start_stability_clock(self, duration_ms: Optional[int] = None) -> int:
        return self._clock.start(self.config.stability_duration_ms if duration_ms is None else duration_ms)

    def time_to_finish(self, end_ms: Optional[int] = None) -> bool:
        return self._clock.time_to_finish(end_ms)


__all__ = ["HarnessFixture", "compare"]
