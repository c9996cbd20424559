from .contracts import Browser, BrowserDriverPort, Client, WebRtcChannel, WebRtcMode
from .event_bus import BrowserEvent, BrowserEventBus
from .peer import BrowserPeer, color_distance

__all__ = [
    "Browser",
    "BrowserDriverPort",
    "BrowserEvent",
    "BrowserEventBus",
    "BrowserPeer",
    "Client",
    "WebRtcChannel",
    "WebRtcMode",
    "color_distance",
]
