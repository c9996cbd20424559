from __future__ import annotations

import threading
import uuid
from typing import Callable, ClassVar, Dict, Optional, Tuple, TypeVar

from kurento_testkit.errors import InvalidStateError
from kurento_testkit.platform.logging import create_logger
from kurento_testkit.services.content.session import ContentSession
from kurento_testkit.services.media.contracts import MediaServerPort
from kurento_testkit.services.media.pipeline import MediaPipeline

TERMINATE_NORMAL = 0
TERMINATE_TIMEOUT = 1
TERMINATE_ERROR = 2

H = TypeVar("H", bound=type)


def normalize_path(path: str) -> str:
    cleaned = "/" + path.strip().strip("/")
    if cleaned == "/":
        raise ValueError("Handler path must not be empty")
    return cleaned


def content_handler(path: str) -> Callable[[H], H]:
    """Class decorator recording the path a handler is served under."""

    def decorator(cls: H) -> H:
        cls.handler_path = normalize_path(path)
        return cls

    return decorator


class ContentHandler:
    """
    User-defined callbacks for content requests arriving on one path.

    The registry holds the instance's lock while calling either callback, so
    no two callbacks of the same instance run concurrently.
    """

    handler_path: ClassVar[Optional[str]] = None

    def __init__(self) -> None:
        self._callback_lock = threading.RLock()
        self.logger = create_logger(f"{__name__}.{type(self).__name__}")

    @property
    def callback_lock(self) -> threading.RLock:
        return self._callback_lock

    def on_content_request(self, session: ContentSession) -> None:
        raise NotImplementedError

    def on_session_terminated(self, session: ContentSession, code: int, reason: str) -> None:
        self.logger.info("Session %s terminated (code=%s reason=%r)", session.session_id, code, reason)


class WebRtcContentHandler(ContentHandler):
    """Content handler whose sessions are negotiated WebRTC connections."""

    def create_pipeline(self, session: ContentSession) -> MediaPipeline:
        """Create a pipeline owned by ``session``."""
        pipeline = session.get_media_pipeline_factory().create()
        session.release_on_terminate(pipeline)
        return pipeline


class HandlerRegistry:
    """
    Maps handler paths to handlers and tracks the sessions they own.

    Between scenarios the registry must be empty; :meth:`clear` terminates
    whatever is left and unregisters every handler.
    """

    def __init__(
        self,
        media_server: Optional[MediaServerPort] = None,
        *,
        session_timeout: float = 0.0,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.media_server = media_server
        self._session_timeout = max(0.0, session_timeout)
        self._id_factory = id_factory
        self._handlers: Dict[str, ContentHandler] = {}
        self._sessions: Dict[str, Tuple[ContentSession, ContentHandler]] = {}
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.RLock()
        self._logger = create_logger(__name__ + ".HandlerRegistry")

    # Handlers -------------------------------------------------------
    def register(self, path: Optional[str], handler: ContentHandler) -> str:
        raw_path = path or handler.handler_path
        if raw_path is None:
            raise ValueError(f"No path given for {type(handler).__name__}")
        key = normalize_path(raw_path)
        with self._lock:
            if key in self._handlers:
                raise ValueError(f"A handler is already registered for {key}")
            self._handlers[key] = handler
        self._logger.info("Registered %s on %s", type(handler).__name__, key)
        return key

    def unregister(self, path: str) -> Optional[ContentHandler]:
        key = normalize_path(path)
        with self._lock:
            handler = self._handlers.pop(key, None)
            orphaned = [sid for sid, (session, _) in self._sessions.items() if session.handler_path == key]
        for session_id in orphaned:
            self.on_session_terminated(session_id, TERMINATE_NORMAL, "handler unregistered")
        if handler is not None:
            self._logger.info("Unregistered %s from %s", type(handler).__name__, key)
        return handler

    def get(self, path: str) -> ContentHandler:
        key = normalize_path(path)
        with self._lock:
            try:
                return self._handlers[key]
            except KeyError as exc:
                raise KeyError(f"No handler registered for {key}") from exc

    @property
    def paths(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._handlers)

    # Sessions -------------------------------------------------------
    @property
    def sessions(self) -> Tuple[ContentSession, ...]:
        with self._lock:
            return tuple(session for session, _ in self._sessions.values())

    def session(self, session_id: str) -> Optional[ContentSession]:
        with self._lock:
            entry = self._sessions.get(session_id)
        return entry[0] if entry else None

    @property
    def is_empty(self) -> bool:
        with self._lock:
            return not self._handlers and not self._sessions

    def on_content_request(self, path: str, offer: str) -> ContentSession:
        """
        Create a session for ``offer`` and hand it to the handler on ``path``.

        The handler must start the session on an endpoint; the negotiated
        answer is available as ``session.answer`` afterwards.
        """
        handler = self.get(path)
        if self.media_server is None:
            raise InvalidStateError("Handler registry has no media server attached")
        session = ContentSession(self._id_factory(), normalize_path(path), offer, self.media_server)
        with self._lock:
            self._sessions[session.session_id] = (session, handler)

        try:
            with handler.callback_lock:
                handler.on_content_request(session)
            if session.answer is None:
                raise InvalidStateError(f"{type(handler).__name__} did not start session {session.session_id}")
        except Exception as exc:
            self._logger.error("Content request on %s failed: %s", session.handler_path, exc)
            self.on_session_terminated(session.session_id, TERMINATE_ERROR, str(exc))
            raise

        self._arm_timeout(session.session_id)
        self._logger.info("Session %s created on %s", session.session_id, session.handler_path)
        return session

    def on_session_terminated(self, session_id: str, code: int = TERMINATE_NORMAL, reason: str = "") -> bool:
        """Notify the owning handler, then release the session's resources."""
        with self._lock:
            entry = self._sessions.pop(session_id, None)
            timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()
        if entry is None:
            return False
        session, handler = entry
        try:
            with handler.callback_lock:
                handler.on_session_terminated(session, code, reason)
        finally:
            session.terminate(code, reason)
        return True

    def clear(self) -> None:
        with self._lock:
            session_ids = list(self._sessions)
        for session_id in session_ids:
            try:
                self.on_session_terminated(session_id, TERMINATE_NORMAL, "scenario teardown")
            except Exception as exc:
                self._logger.warning("Failed to terminate session %s during teardown: %s", session_id, exc)
        with self._lock:
            self._handlers.clear()

    def _arm_timeout(self, session_id: str) -> None:
        if self._session_timeout <= 0:
            return
        timer = threading.Timer(
            self._session_timeout,
            self.on_session_terminated,
            args=(session_id, TERMINATE_TIMEOUT, "session timeout"),
        )
        timer.daemon = True
        with self._lock:
            if session_id not in self._sessions:
                return
            self._timers[session_id] = timer
        timer.start()


__all__ = [
    "ContentHandler",
    "HandlerRegistry",
    "TERMINATE_ERROR",
    "TERMINATE_NORMAL",
    "TERMINATE_TIMEOUT",
    "WebRtcContentHandler",
    "content_handler",
    "normalize_path",
]
