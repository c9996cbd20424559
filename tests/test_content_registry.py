from __future__ import annotations

import threading
import time

import pytest

from kurento_testkit.errors import ExternalFailureError, InvalidStateError, KurentoError
from kurento_testkit.services.content import (
    TERMINATE_ERROR,
    TERMINATE_TIMEOUT,
    ContentHandler,
    ContentSession,
    HandlerRegistry,
    WebRtcContentHandler,
    content_handler,
)
from tests.fakes import FakeMediaServer

OFFER = "fake-offer:send-receive:0,135,0"


@content_handler("loopback")
class LoopbackHandler(WebRtcContentHandler):
    def __init__(self) -> None:
        super().__init__()
        self.terminated = []

    def on_content_request(self, session: ContentSession) -> None:
        pipeline = self.create_pipeline(session)
        endpoint = pipeline.new_webrtc_endpoint()
        endpoint.connect(endpoint)
        session.start(endpoint)

    def on_session_terminated(self, session: ContentSession, code: int, reason: str) -> None:
        self.terminated.append((session.session_id, code, reason, session.terminated))
        super().on_session_terminated(session, code, reason)


class SilentHandler(ContentHandler):
    def on_content_request(self, session: ContentSession) -> None:
        pass


class FailingHandler(WebRtcContentHandler):
    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    def on_content_request(self, session: ContentSession) -> None:
        self.create_pipeline(session)
        raise self.error


def test_content_handler_decorator_records_normalized_path():
    assert LoopbackHandler.handler_path == "/loopback"


def test_register_uses_decorated_path_and_rejects_duplicates():
    registry = HandlerRegistry(FakeMediaServer())
    key = registry.register(None, LoopbackHandler())

    assert key == "/loopback"
    assert registry.paths == ("/loopback",)
    with pytest.raises(ValueError):
        registry.register("/loopback/", LoopbackHandler())


def test_unknown_path_raises_key_error():
    registry = HandlerRegistry(FakeMediaServer())

    with pytest.raises(KeyError):
        registry.on_content_request("/nowhere", OFFER)


def test_content_request_starts_a_session_and_termination_releases_it():
    server = FakeMediaServer()
    registry = HandlerRegistry(server, id_factory=lambda: "session-1")
    handler = LoopbackHandler()
    registry.register(None, handler)

    session = registry.on_content_request("/loopback", OFFER)

    assert session.get_session_id() == "session-1"
    assert session.answer == f"fake-answer:{session.endpoint.id}"
    assert registry.session("session-1") is session
    assert server.live_objects()

    assert registry.on_session_terminated("session-1", 0, "bye") is True
    assert handler.terminated == [("session-1", 0, "bye", False)]
    assert session.terminated
    assert server.live_objects() == []
    assert registry.on_session_terminated("session-1") is False


def test_release_bag_runs_in_reverse_registration_order():
    order = []

    class Resource:
        def __init__(self, name):
            self.name = name

        def release(self):
            order.append(self.name)

    session = ContentSession("s", "/p", OFFER, FakeMediaServer())
    for name in ("pipeline", "first", "second"):
        session.release_on_terminate(Resource(name))

    assert session.terminate() is True
    assert session.terminate() is False
    assert order == ["second", "first", "pipeline"]


def test_release_bag_continues_past_a_failing_resource():
    released = []

    class Resource:
        def __init__(self, name, error=None):
            self.name = name
            self.error = error

        def release(self):
            if self.error is not None:
                raise self.error
            released.append(self.name)

    session = ContentSession("s", "/p", OFFER, FakeMediaServer())
    session.release_on_terminate(Resource("pipeline"))
    session.release_on_terminate(Resource("endpoint", InvalidStateError("client closed")))
    session.release_on_terminate(Resource("recorder"))

    with pytest.raises(ExternalFailureError):
        session.terminate()

    assert released == ["recorder", "pipeline"]
    assert session.terminated


def test_registering_on_a_terminated_session_releases_immediately():
    released = []

    class Resource:
        def release(self):
            released.append(True)

    session = ContentSession("s", "/p", OFFER, FakeMediaServer())
    session.terminate()
    session.release_on_terminate(Resource())

    assert released == [True]


def test_handler_that_never_starts_the_session_is_an_invalid_state():
    registry = HandlerRegistry(FakeMediaServer())
    registry.register("/silent", SilentHandler())

    with pytest.raises(InvalidStateError):
        registry.on_content_request("/silent", OFFER)
    assert registry.sessions == ()


def test_handler_failure_terminates_the_session_and_reraises():
    server = FakeMediaServer()
    registry = HandlerRegistry(server)
    handler = FailingHandler(KurentoError("media server refused", code=40101))
    registry.register("/broken", handler)

    with pytest.raises(KurentoError):
        registry.on_content_request("/broken", OFFER)

    assert registry.sessions == ()
    assert server.live_objects() == []


def test_callbacks_for_one_handler_never_overlap():
    active = []
    overlaps = []

    class SlowHandler(WebRtcContentHandler):
        def on_content_request(self, session):
            active.append(1)
            if len(active) > 1:
                overlaps.append(True)
            time.sleep(0.05)
            endpoint = self.create_pipeline(session).new_webrtc_endpoint()
            session.start(endpoint)
            active.pop()

    registry = HandlerRegistry(FakeMediaServer())
    registry.register("/slow", SlowHandler())
    threads = [threading.Thread(target=registry.on_content_request, args=("/slow", OFFER)) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == []
    assert len(registry.sessions) == 4


def test_session_timeout_terminates_idle_sessions():
    registry = HandlerRegistry(FakeMediaServer(), session_timeout=0.05)
    handler = LoopbackHandler()
    registry.register(None, handler)
    session = registry.on_content_request("/loopback", OFFER)

    deadline = time.monotonic() + 2.0
    while not session.terminated and time.monotonic() < deadline:
        time.sleep(0.01)

    assert session.termination == (TERMINATE_TIMEOUT, "session timeout")
    assert registry.sessions == ()


def test_unregister_terminates_orphaned_sessions():
    registry = HandlerRegistry(FakeMediaServer())
    handler = LoopbackHandler()
    registry.register(None, handler)
    session = registry.on_content_request("/loopback", OFFER)

    assert registry.unregister("/loopback") is handler
    assert session.terminated
    assert registry.is_empty


def test_clear_leaves_the_registry_empty():
    server = FakeMediaServer()
    registry = HandlerRegistry(server)
    registry.register(None, LoopbackHandler())
    registry.on_content_request("/loopback", OFFER)
    registry.on_content_request("/loopback", OFFER)

    registry.clear()

    assert registry.is_empty
    assert server.live_objects() == []


def test_error_code_is_reported_to_the_handler():
    registry = HandlerRegistry(FakeMediaServer(), id_factory=lambda: "s-err")
    handler = LoopbackHandler()
    registry.register(None, handler)
    registry.on_content_request("/loopback", OFFER)

    registry.on_session_terminated("s-err", TERMINATE_ERROR, "boom")

    assert handler.terminated[0][1:3] == (TERMINATE_ERROR, "boom")
