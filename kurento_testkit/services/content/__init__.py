from .registry import (
    TERMINATE_ERROR,
    TERMINATE_NORMAL,
    TERMINATE_TIMEOUT,
    ContentHandler,
    HandlerRegistry,
    WebRtcContentHandler,
    content_handler,
)
from .session import ContentSession

__all__ = [
    "TERMINATE_ERROR",
    "TERMINATE_NORMAL",
    "TERMINATE_TIMEOUT",
    "ContentHandler",
    "ContentSession",
    "HandlerRegistry",
    "WebRtcContentHandler",
    "content_handler",
]
