from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from kurento_testkit.errors import ExternalFailureError, InvalidStateError, as_external_failure
from kurento_testkit.platform.logging import create_logger
from kurento_testkit.services.media.contracts import (
    END_OF_STREAM,
    ICE_GATHERING_DONE,
    MEDIA_FLOW_IN_STATE_CHANGE,
    MediaEventCallback,
    MediaServerPort,
)
from kurento_testkit.services.sync.latch import CountDownLatch

logger = create_logger(__name__)


class PipelineState(str, Enum):
    BUILDING = "BUILDING"
    LIVE = "LIVE"
    RELEASING = "RELEASING"
    RELEASED = "RELEASED"


class MediaElement:
    """Server-side element attached to exactly one :class:`MediaPipeline`."""

    kind = "MediaElement"

    def __init__(self, pipeline: "MediaPipeline", object_id: str) -> None:
        self._pipeline = pipeline
        self._server = pipeline.server
        self.id = object_id
        self._released = False
        self._subscriptions: Dict[str, str] = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, released={self._released})"

    @property
    def released(self) -> bool:
        return self._released

    @property
    def is_live(self) -> bool:
        return not self._released and self._pipeline.state is PipelineState.LIVE

    def get_media_pipeline(self) -> "MediaPipeline":
        return self._pipeline

    def connect(self, sink: "MediaElement") -> None:
        """Send this element's media to ``sink``. Connecting to itself is a loopback."""
        if sink.get_media_pipeline() is not self._pipeline:
            raise InvalidStateError(
                f"Cannot connect {self.id} to {sink.id}: elements belong to different pipelines"
            )
        if not (self.is_live and sink.is_live):
            logger.debug("Skipping connect %s -> %s: one side is not live", self.id, sink.id)
            return
        self._server.invoke(self.id, "connect", {"sink": sink.id})
        logger.debug("Connected %s -> %s", self.id, sink.id)

    def add_event_listener(self, event_type: str, callback: MediaEventCallback) -> str:
        if not self.is_live:
            raise InvalidStateError(f"Cannot subscribe to {event_type} on released element {self.id}")
        subscription_id = self._server.subscribe(self.id, event_type, callback)
        self._subscriptions[subscription_id] = event_type
        return subscription_id

    def remove_event_listener(self, subscription_id: str) -> None:
        if self._subscriptions.pop(subscription_id, None) is None:
            return
        if self.is_live:
            self._server.unsubscribe(self.id, subscription_id)

    def release(self) -> None:
        """Release the element on the server. Releasing twice is a no-op."""
        if self._released:
            return
        self._released = True
        self._subscriptions.clear()
        self._server.release(self.id)
        logger.debug("Released %s %s", self.kind, self.id)


class WebRtcEndpoint(MediaElement):
    kind = "WebRtcEndpoint"

    ice_gathering_timeout = 10.0

    def process_offer(self, offer: str, *, gather_candidates: bool = True, timeout: Optional[float] = None) -> str:
        """
        Negotiate an SDP offer and return the answer.

        Candidates are gathered before the local descriptor is read so the
        answer carries them and the peer needs no trickle ICE.
        """
        answer = self._server.invoke(self.id, "processOffer", {"offer": offer})
        if not gather_candidates:
            return answer

        gathered = CountDownLatch(1)
        subscription = self.add_event_listener(ICE_GATHERING_DONE, lambda _event: gathered.count_down())
        try:
            self._server.invoke(self.id, "gatherCandidates")
            if not gathered.wait(timeout if timeout is not None else self.ice_gathering_timeout):
                logger.warning("ICE gathering on %s did not complete in time; answering anyway", self.id)
        finally:
            self.remove_event_listener(subscription)
        return self._server.invoke(self.id, "getLocalSessionDescriptor")

    def add_media_flow_in_listener(self, callback: MediaEventCallback) -> str:
        return self.add_event_listener(MEDIA_FLOW_IN_STATE_CHANGE, callback)


class PlayerEndpoint(MediaElement):
    kind = "PlayerEndpoint"

    def play(self) -> None:
        self._server.invoke(self.id, "play")

    def pause(self) -> None:
        self._server.invoke(self.id, "pause")

    def stop(self) -> None:
        self._server.invoke(self.id, "stop")

    def set_position(self, position_ms: int) -> None:
        self._server.invoke(self.id, "setPosition", {"position": int(position_ms)})

    def get_position(self) -> int:
        return int(self._server.invoke(self.id, "getPosition") or 0)

    def add_end_of_stream_listener(self, callback: MediaEventCallback) -> str:
        return self.add_event_listener(END_OF_STREAM, callback)


ELEMENT_TYPES: Dict[str, type[MediaElement]] = {
    WebRtcEndpoint.kind: WebRtcEndpoint,
    PlayerEndpoint.kind: PlayerEndpoint,
}


class MediaPipeline:
    """
    Scoped handle on a server-side pipeline.

    States go ``BUILDING -> LIVE -> RELEASING -> RELEASED``. Elements are
    released in reverse creation order before the pipeline itself, and every
    release path is safe to run twice.
    """

    def __init__(self, server: MediaServerPort, name: Optional[str] = None) -> None:
        self.server = server
        self.name = name
        self.id: Optional[str] = None
        self._state = PipelineState.BUILDING
        self._elements: List[MediaElement] = []
        self._lock = threading.RLock()

    @classmethod
    def build(cls, server: MediaServerPort, name: Optional[str] = None) -> "MediaPipeline":
        return cls(server, name=name).create()

    def __repr__(self) -> str:
        return f"MediaPipeline(id={self.id!r}, state={self._state.value})"

    def __enter__(self) -> "MediaPipeline":
        if self._state is PipelineState.BUILDING:
            self.create()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def elements(self) -> Tuple[MediaElement, ...]:
        with self._lock:
            return tuple(self._elements)

    def create(self) -> "MediaPipeline":
        with self._lock:
            if self._state is not PipelineState.BUILDING:
                raise InvalidStateError(f"Pipeline {self.id} was already created ({self._state.value})")
            params: Dict[str, Any] = {"name": self.name} if self.name else {}
            self.id = self.server.create("MediaPipeline", params)
            self._state = PipelineState.LIVE
        logger.info("Created media pipeline %s", self.id)
        return self

    def new_endpoint(self, kind: str, **params: Any) -> MediaElement:
        with self._lock:
            if self._state is not PipelineState.LIVE:
                raise InvalidStateError(
                    f"Cannot create {kind} on pipeline {self.id} in state {self._state.value}"
                )
            constructor_params = {"mediaPipeline": self.id, **params}
            object_id = self.server.create(kind, constructor_params)
            element = ELEMENT_TYPES.get(kind, MediaElement)(self, object_id)
            element.kind = kind
            self._elements.append(element)
        logger.debug("Created %s %s on pipeline %s", kind, object_id, self.id)
        return element

    def new_webrtc_endpoint(self) -> WebRtcEndpoint:
        return self.new_endpoint(WebRtcEndpoint.kind)  # type: ignore[return-value]

    def new_player_endpoint(self, uri: str, **params: Any) -> PlayerEndpoint:
        return self.new_endpoint(PlayerEndpoint.kind, uri=uri, **params)  # type: ignore[return-value]

    def release(self) -> None:
        with self._lock:
            if self._state in (PipelineState.RELEASING, PipelineState.RELEASED):
                return
            if self._state is PipelineState.BUILDING:
                self._state = PipelineState.RELEASED
                return
            self._state = PipelineState.RELEASING
            elements = list(reversed(self._elements))

        errors: List[ExternalFailureError] = []
        for element in elements:
            try:
                element.release()
            except Exception as exc:
                logger.warning("Failed to release %s: %s", element, exc)
                errors.append(as_external_failure(exc, f"release of {element.id}"))
        try:
            self.server.release(self.id)
        except Exception as exc:
            logger.warning("Failed to release pipeline %s: %s", self.id, exc)
            errors.append(as_external_failure(exc, f"release of pipeline {self.id}"))
        finally:
            self._state = PipelineState.RELEASED
        logger.info("Released media pipeline %s", self.id)
        if errors:
            raise errors[0]


class MediaPipelineFactory:
    """Creates live pipelines on one media server."""

    def __init__(self, server: MediaServerPort) -> None:
        self._server = server

    def create(self, name: Optional[str] = None) -> MediaPipeline:
        return MediaPipeline.build(self._server, name=name)


__all__ = [
    "MediaElement",
    "MediaPipeline",
    "MediaPipelineFactory",
    "PipelineState",
    "PlayerEndpoint",
    "WebRtcEndpoint",
]
