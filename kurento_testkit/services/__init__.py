"""
Service layer for kurento_testkit.

Orchestration logic implemented on top of abstract ports: the media server
and the browsers are reached only through their contracts.
"""

from kurento_testkit.services.browser.peer import BrowserPeer
from kurento_testkit.services.content.registry import HandlerRegistry
from kurento_testkit.services.media.pipeline import MediaPipeline
from kurento_testkit.services.sync.latch import CountDownLatch

__all__ = ["BrowserPeer", "CountDownLatch", "HandlerRegistry", "MediaPipeline"]
