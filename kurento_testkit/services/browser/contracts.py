from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional, Protocol, Tuple

RGB = Tuple[int, int, int]


class Browser(str, Enum):
    CHROME_FOR_TEST = "chrome-for-test"
    CHROME = "chrome"
    FIREFOX = "firefox"
    AIORTC = "aiortc"


class Client(str, Enum):
    WEBRTC = "webrtc"
    PLAYER = "player"


class WebRtcChannel(str, Enum):
    AUDIO_ONLY = "audio-only"
    VIDEO_ONLY = "video-only"
    AUDIO_AND_VIDEO = "audio-and-video"

    @property
    def has_audio(self) -> bool:
        return self is not WebRtcChannel.VIDEO_ONLY

    @property
    def has_video(self) -> bool:
        return self is not WebRtcChannel.AUDIO_ONLY


class WebRtcMode(str, Enum):
    SEND_ONLY = "send-only"
    RCV_ONLY = "receive-only"
    SEND_RCV = "send-receive"


class BrowserDriverPort(Protocol):
    """
    Operations the peer consumes from one automated browser.

    Drivers are not required to be thread-safe: every call happens on the
    thread that owns the :class:`~kurento_testkit.services.browser.peer.BrowserPeer`.
    """

    def launch(self, url: str, timeout: float) -> None:
        ...

    def subscribe(self, names: Iterable[str]) -> None:
        ...

    def drain_events(self) -> List[str]:
        ...

    def current_time(self) -> float:
        ...

    def center_pixel(self) -> RGB:
        ...

    def create_offer(self, channel: WebRtcChannel, mode: WebRtcMode) -> str:
        ...

    def process_answer(self, sdp: str) -> None:
        ...

    def start_content(self, handler_path: str, channel: WebRtcChannel, mode: WebRtcMode) -> None:
        ...

    def play_url(self, url: str) -> None:
        ...

    def session_id(self) -> Optional[str]:
        ...

    def stop_media(self) -> None:
        ...

    def close(self) -> None:
        ...


__all__ = [
    "RGB",
    "Browser",
    "BrowserDriverPort",
    "Client",
    "WebRtcChannel",
    "WebRtcMode",
]
