from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

END_OF_STREAM = "EndOfStream"
MEDIA_FLOW_IN_STATE_CHANGE = "MediaFlowInStateChange"
ICE_GATHERING_DONE = "IceGatheringDone"
ERROR = "Error"


class MediaFlowState(str, Enum):
    FLOWING = "FLOWING"
    NOT_FLOWING = "NOT_FLOWING"


@dataclass(frozen=True)
class MediaEvent:
    """Event pushed by the media server for one element."""

    type: str
    source: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def flow_state(self) -> Optional[MediaFlowState]:
        state = self.data.get("state")
        if state is None:
            return None
        try:
            return MediaFlowState(state)
        except ValueError:
            return None


MediaEventCallback = Callable[[MediaEvent], None]


class MediaServerPort(Protocol):
    """Control-plane operations the harness consumes from the media server."""

    def create(self, type_name: str, params: Optional[Dict[str, Any]] = None) -> str:
        ...

    def invoke(self, object_id: str, operation: str, params: Optional[Dict[str, Any]] = None) -> Any:
        ...

    def release(self, object_id: str) -> None:
        ...

    def subscribe(self, object_id: str, event_type: str, callback: MediaEventCallback) -> str:
        ...

    def unsubscribe(self, object_id: str, subscription_id: str) -> None:
        ...


__all__ = [
    "END_OF_STREAM",
    "MEDIA_FLOW_IN_STATE_CHANGE",
    "ICE_GATHERING_DONE",
    "ERROR",
    "MediaEvent",
    "MediaEventCallback",
    "MediaFlowState",
    "MediaServerPort",
]
