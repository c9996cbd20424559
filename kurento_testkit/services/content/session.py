from __future__ import annotations

import threading
import time
from typing import Any, List, Optional, Protocol

from kurento_testkit.errors import ExternalFailureError, InvalidStateError, as_external_failure
from kurento_testkit.platform.logging import create_logger
from kurento_testkit.services.media.contracts import MediaServerPort
from kurento_testkit.services.media.pipeline import MediaPipelineFactory, WebRtcEndpoint

logger = create_logger(__name__)


class Releasable(Protocol):
    def release(self) -> None:
        ...


class ContentSession:
    """
    Server-side state of one content request.

    Resources registered with :meth:`release_on_terminate` are released in
    reverse registration order when the session terminates.
    """

    def __init__(
        self,
        session_id: str,
        handler_path: str,
        offer: str,
        media_server: MediaServerPort,
    ) -> None:
        self.session_id = session_id
        self.handler_path = handler_path
        self.offer = offer
        self._server = media_server
        self._release_bag: List[Releasable] = []
        self._lock = threading.Lock()
        self._terminated = False
        self.answer: Optional[str] = None
        self.endpoint: Optional[WebRtcEndpoint] = None
        self.created_at = time.monotonic()
        self.termination: Optional[tuple[int, str]] = None

    def __repr__(self) -> str:
        return f"ContentSession(id={self.session_id!r}, path={self.handler_path!r}, terminated={self._terminated})"

    def get_session_id(self) -> str:
        return self.session_id

    @property
    def media_pipeline_factory(self) -> MediaPipelineFactory:
        return MediaPipelineFactory(self._server)

    def get_media_pipeline_factory(self) -> MediaPipelineFactory:
        return self.media_pipeline_factory

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def release_bag(self) -> tuple[Any, ...]:
        with self._lock:
            return tuple(self._release_bag)

    def release_on_terminate(self, resource: Releasable) -> None:
        with self._lock:
            if not self._terminated:
                self._release_bag.append(resource)
                return
        logger.warning("Session %s already terminated; releasing %s immediately", self.session_id, resource)
        resource.release()

    def start(self, endpoint: WebRtcEndpoint) -> str:
        """Negotiate the peer's offer on ``endpoint`` and keep the answer for the reply."""
        if self._terminated:
            raise InvalidStateError(f"Session {self.session_id} is terminated")
        self.answer = endpoint.process_offer(self.offer)
        self.endpoint = endpoint
        logger.info("Session %s started on %s", self.session_id, endpoint.id)
        return self.answer

    def terminate(self, code: int = 0, reason: str = "") -> bool:
        """Release the bag. Returns ``False`` if the session was already terminated."""
        with self._lock:
            if self._terminated:
                return False
            self._terminated = True
            self.termination = (code, reason)
            bag = list(reversed(self._release_bag))
            self._release_bag.clear()

        errors: List[ExternalFailureError] = []
        for resource in bag:
            try:
                resource.release()
            except Exception as exc:
                logger.warning("Failed to release %s for session %s: %s", resource, self.session_id, exc)
                errors.append(as_external_failure(exc, f"release for session {self.session_id}"))
        logger.info("Session %s terminated (code=%s reason=%r)", self.session_id, code, reason)
        if errors:
            raise errors[0]
        return True


__all__ = ["ContentSession", "Releasable"]
