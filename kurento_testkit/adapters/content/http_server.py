from __future__ import annotations

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from kurento_testkit.errors import ExternalFailureError, InvalidStateError
from kurento_testkit.platform.logging import create_logger
from kurento_testkit.services.content.registry import TERMINATE_NORMAL, HandlerRegistry, normalize_path

logger = create_logger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"
STATIC_FILES = {
    "/harness.html": ("harness.html", "text/html; charset=utf-8"),
    "/harness.js": ("harness.js", "application/javascript; charset=utf-8"),
}
TERMINATE_SUFFIX = "/terminate"


class _ReusableThreadingHTTPServer(ThreadingHTTPServer):
    allow_reuse_address = True
    daemon_threads = True


class ContentHttpServer:
    """
    HTTP front door for content handlers.

    Serves the harness page the browsers load and turns ``POST {handler}``
    requests into registry dispatches. SDP travels as an opaque string.
    """

    def __init__(self, registry: HandlerRegistry, host: str = "127.0.0.1", port: int = 0) -> None:
        self.registry = registry
        self._host = host
        self._port = port
        self._handler_class = self._build_handler()
        self._server: Optional[_ReusableThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def _build_handler(self):
        server = self

        class Handler(BaseHTTPRequestHandler):
            def do_POST(self):  # noqa: N802
                server._handle_post(self)

            def do_GET(self):  # noqa: N802
                server._handle_get(self)

            def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
                logger.debug("HTTP: " + format, *args)

        return Handler

    def __enter__(self) -> "ContentHttpServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._server = _ReusableThreadingHTTPServer((self._host, self._port), self._handler_class)
        self._thread = threading.Thread(target=self._server.serve_forever, name="ContentHttpServer", daemon=True)
        self._thread.start()
        host, port = self.address()
        logger.info("Content server listening on http://%s:%s", host, port)

    def stop(self) -> None:
        if not self._server:
            return
        self._server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._server.server_close()
        self._thread = None
        self._server = None

    @property
    def running(self) -> bool:
        return self._server is not None

    def address(self) -> Tuple[str, int]:
        if self._server is None:
            raise InvalidStateError("Content server is not running")
        host, port = self._server.server_address[:2]
        if host == "0.0.0.0":
            host = self._host if self._host != "0.0.0.0" else "127.0.0.1"
        return host, port

    @property
    def port(self) -> int:
        return self.address()[1]

    # Request handling -----------------------------------------------
    def _handle_get(self, handler: BaseHTTPRequestHandler) -> None:
        path = urlparse(handler.path).path
        entry = STATIC_FILES.get(path)
        if entry is None:
            self._send_json(handler, 404, {"error": f"unknown resource {path}"})
            return
        filename, content_type = entry
        body = (STATIC_DIR / filename).read_bytes()
        self._send_body(handler, 200, body, content_type)

    def _handle_post(self, handler: BaseHTTPRequestHandler) -> None:
        length = int(handler.headers.get("Content-Length", "0"))
        raw_body = handler.rfile.read(length) if length else b""
        try:
            body = json.loads(raw_body.decode("utf-8")) if raw_body else {}
        except json.JSONDecodeError:
            self._send_json(handler, 400, {"error": "invalid json"})
            return
        if not isinstance(body, dict):
            self._send_json(handler, 400, {"error": "expected a JSON object"})
            return

        path = urlparse(handler.path).path
        if path.endswith(TERMINATE_SUFFIX):
            self._terminate(handler, path[: -len(TERMINATE_SUFFIX)], body)
        else:
            self._content_request(handler, path, body)

    def _content_request(self, handler: BaseHTTPRequestHandler, path: str, body: Dict[str, Any]) -> None:
        offer = body.get("sdp")
        if not isinstance(offer, str) or not offer:
            self._send_json(handler, 400, {"error": "missing sdp"})
            return
        try:
            self.registry.get(path)
        except (KeyError, ValueError):
            self._send_json(handler, 404, {"error": f"no handler for {path}"})
            return
        try:
            session = self.registry.on_content_request(path, offer)
        except ExternalFailureError as exc:
            self._send_json(handler, 502, {"error": str(exc), "code": exc.code})
            return
        except Exception as exc:
            logger.exception("Handler on %s failed", path)
            self._send_json(handler, 500, {"error": str(exc)})
            return
        self._send_json(handler, 200, {"sessionId": session.session_id, "sdp": session.answer})

    def _terminate(self, handler: BaseHTTPRequestHandler, path: str, body: Dict[str, Any]) -> None:
        session_id = body.get("sessionId")
        if not isinstance(session_id, str):
            self._send_json(handler, 400, {"error": "missing sessionId"})
            return
        session = self.registry.session(session_id)
        try:
            if session is not None and session.handler_path != normalize_path(path):
                self._send_json(handler, 404, {"error": f"session {session_id} is not served by {path}"})
                return
        except ValueError:
            self._send_json(handler, 404, {"error": "empty handler path"})
            return
        code = body.get("code", TERMINATE_NORMAL)
        if isinstance(code, bool) or not isinstance(code, int):
            self._send_json(handler, 400, {"error": "code must be an integer"})
            return
        reason = str(body.get("reason", ""))
        try:
            known = self.registry.on_session_terminated(session_id, code, reason)
        except Exception as exc:
            logger.error("Terminating session %s failed: %s", session_id, exc)
            self._send_json(handler, 502, {"error": str(exc)})
            return
        if not known:
            logger.debug("Terminate for unknown session %s", session_id)
        self._send_body(handler, 204, b"", "application/json")

    @staticmethod
    def _send_json(handler: BaseHTTPRequestHandler, status: int, payload: Dict[str, Any]) -> None:
        ContentHttpServer._send_body(handler, status, json.dumps(payload).encode("utf-8"), "application/json")

    @staticmethod
    def _send_body(handler: BaseHTTPRequestHandler, status: int, body: bytes, content_type: str) -> None:
        try:
            handler.send_response(status)
            handler.send_header("Content-Type", content_type)
            handler.send_header("Content-Length", str(len(body)))
            handler.send_header("Cache-Control", "no-store")
            handler.end_headers()
            if body:
                handler.wfile.write(body)
        except BrokenPipeError:
            logger.debug("Client closed connection before response could be sent")


__all__ = ["ContentHttpServer", "STATIC_DIR"]
