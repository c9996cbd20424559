from importlib import import_module
from typing import TYPE_CHECKING

_LAZY_EXPORTS = {
    "ContentHttpServer": ".adapters.content.http_server",
    "KurentoClient": ".adapters.media.kurento_client",
    "AiortcPeerDriver": ".adapters.browser.aiortc_driver",
    "PlaywrightBrowserDriver": ".adapters.browser.playwright_driver",
    "ExternalFailureError": ".errors",
    "InvalidStateError": ".errors",
    "KurentoError": ".errors",
    "ScenarioAssertion": ".errors",
    "ScenarioTimeout": ".errors",
    "HarnessConfig": ".platform.config",
    "create_logger": ".platform.logging",
    "Browser": ".services.browser.contracts",
    "Client": ".services.browser.contracts",
    "WebRtcChannel": ".services.browser.contracts",
    "WebRtcMode": ".services.browser.contracts",
    "BrowserPeer": ".services.browser.peer",
    "ContentHandler": ".services.content.registry",
    "HandlerRegistry": ".services.content.registry",
    "WebRtcContentHandler": ".services.content.registry",
    "content_handler": ".services.content.registry",
    "ContentSession": ".services.content.session",
    "MediaPipeline": ".services.media.pipeline",
    "PlayerEndpoint": ".services.media.pipeline",
    "WebRtcEndpoint": ".services.media.pipeline",
    "CountDownLatch": ".services.sync.latch",
    "HarnessFixture": ".testing.fixture",
}

__all__ = tuple(_LAZY_EXPORTS)

if TYPE_CHECKING:
    from .adapters.browser.aiortc_driver import AiortcPeerDriver
    from .adapters.browser.playwright_driver import PlaywrightBrowserDriver
    from .adapters.content.http_server import ContentHttpServer
    from .adapters.media.kurento_client import KurentoClient
    from .errors import (
        ExternalFailureError,
        InvalidStateError,
        KurentoError,
        ScenarioAssertion,
        ScenarioTimeout,
    )
    from .platform.config import HarnessConfig
    from .platform.logging import create_logger
    from .services.browser.contracts import Browser, Client, WebRtcChannel, WebRtcMode
    from .services.browser.peer import BrowserPeer
    from .services.content.registry import (
        ContentHandler,
        HandlerRegistry,
        WebRtcContentHandler,
        content_handler,
    )
    from .services.content.session import ContentSession
    from .services.media.pipeline import MediaPipeline, PlayerEndpoint, WebRtcEndpoint
    from .services.sync.latch import CountDownLatch
    from .testing.fixture import HarnessFixture


def __getattr__(name: str):
    try:
        module = import_module(_LAZY_EXPORTS[name], __name__)
    except KeyError as exc:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}") from exc
    value = getattr(module, name)
    globals()[name] = value
    return value


def __dir__():
    return sorted(set(__all__) | set(globals().keys()))
