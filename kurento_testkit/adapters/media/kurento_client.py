from __future__ import annotations

import asyncio
import itertools
import json
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import websockets
from websockets.exceptions import ConnectionClosed

from kurento_testkit.errors import ExternalFailureError, InvalidStateError, KurentoError
from kurento_testkit.platform.logging import create_logger
from kurento_testkit.services.media.contracts import MediaEvent, MediaEventCallback

Connector = Callable[[str], Awaitable[Any]]


def _default_connector(uri: str) -> Awaitable[Any]:
    return websockets.connect(uri, max_size=None)


class KurentoClient:
    """
    JSON-RPC 2.0 client for the media server control plane.

    The WebSocket lives on a private asyncio loop hosted by a daemon thread;
    the public methods are synchronous and safe to call from any thread other
    than that loop. Server events are delivered in arrival order on a single
    worker thread so listeners may call back into the client.
    """

    def __init__(
        self,
        ws_uri: str,
        *,
        request_timeout: float = 10.0,
        connect_timeout: float = 10.0,
        connector: Optional[Connector] = None,
        logger=None,
    ) -> None:
        self.ws_uri = ws_uri
        self._request_timeout = request_timeout
        self._connect_timeout = connect_timeout
        self._connector = connector or _default_connector
        self._logger = logger if logger else create_logger(__name__ + ".KurentoClient")

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._events: Optional[ThreadPoolExecutor] = None
        self._ws: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._listeners: Dict[str, Tuple[str, str, MediaEventCallback]] = {}
        self._listeners_lock = threading.Lock()
        self.session_id: Optional[str] = None

    # Lifecycle ------------------------------------------------------
    def connect(self) -> "KurentoClient":
        if self._loop is not None:
            return self
        loop = asyncio.new_event_loop()
        self._loop = loop
        self._events = ThreadPoolExecutor(max_workers=1, thread_name_prefix="KurentoEvents")
        self._thread = threading.Thread(target=self._run_loop, name="KurentoClient", daemon=True)
        self._thread.start()
        future = asyncio.run_coroutine_threadsafe(self._open(), loop)
        try:
            future.result(timeout=self._connect_timeout)
        except Exception as exc:
            self.close()
            raise ExternalFailureError(f"Could not connect to media server at {self.ws_uri}: {exc}") from exc
        self._logger.info("Connected to media server at %s", self.ws_uri)
        return self

    def close(self) -> None:
        if self._loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop)
        try:
            future.result(timeout=5.0)
        except Exception as exc:  # pragma: no cover - shutdown logging
            self._logger.warning("Error while closing media server connection: %s", exc)
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            if self._thread and self._thread.is_alive():
                self._thread.join(timeout=1.0)
            if self._events is not None:
                self._events.shutdown(wait=True)
            self._loop = None
            self._thread = None
            self._events = None
            self._ws = None
            with self._listeners_lock:
                self._listeners.clear()
            self._logger.info("Closed media server connection %s", self.ws_uri)

    def __enter__(self) -> "KurentoClient":
        return self.connect()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def connected(self) -> bool:
        return self._loop is not None and self._ws is not None

    # MediaServerPort ------------------------------------------------
    def create(self, type_name: str, params: Optional[Dict[str, Any]] = None) -> str:
        result = self._request(
            "create",
            {"type": type_name, "constructorParams": params or {}, "properties": {}},
        )
        return result["value"]

    def invoke(self, object_id: str, operation: str, params: Optional[Dict[str, Any]] = None) -> Any:
        result = self._request(
            "invoke",
            {"object": object_id, "operation": operation, "operationParams": params or {}},
        )
        return result.get("value") if isinstance(result, dict) else result

    def release(self, object_id: str) -> None:
        with self._listeners_lock:
            for subscription_id in [sid for sid, entry in self._listeners.items() if entry[0] == object_id]:
                del self._listeners[subscription_id]
        self._request("release", {"object": object_id})

    def subscribe(self, object_id: str, event_type: str, callback: MediaEventCallback) -> str:
        result = self._request("subscribe", {"type": event_type, "object": object_id})
        subscription_id = str(result["value"])
        with self._listeners_lock:
            self._listeners[subscription_id] = (object_id, event_type, callback)
        return subscription_id

    def unsubscribe(self, object_id: str, subscription_id: str) -> None:
        with self._listeners_lock:
            self._listeners.pop(subscription_id, None)
        self._request("unsubscribe", {"subscription": subscription_id, "object": object_id})

    def ping(self, interval_ms: int = 240000) -> None:
        self._request("ping", {"interval": interval_ms})

    # Internal helpers -----------------------------------------------
    def _run_loop(self) -> None:
        assert self._loop is not None
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self._loop)
            for task in pending:
                task.cancel()
            if pending:
                self._loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            self._loop.close()

    async def _open(self) -> None:
        self._ws = await self._connector(self.ws_uri)
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    async def _shutdown(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None

    def _request(self, method: str, params: Dict[str, Any]) -> Any:
        loop = self._loop
        if loop is None:
            raise InvalidStateError("Media server client is not connected")
        future = asyncio.run_coroutine_threadsafe(self._send_request(method, params), loop)
        try:
            return future.result(timeout=self._request_timeout + 1.0)
        except FutureTimeoutError as exc:
            future.cancel()
            raise ExternalFailureError(f"Media server request {method} timed out") from exc

    async def _send_request(self, method: str, params: Dict[str, Any]) -> Any:
        if self._ws is None:
            raise ExternalFailureError("Media server connection is closed")
        request_id = next(self._ids)
        if self.session_id is not None:
            params = {**params, "sessionId": self.session_id}
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            self._logger.debug("-> %s", payload)
            await self._ws.send(json.dumps(payload))
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError as exc:
            raise ExternalFailureError(
                f"Media server did not answer {method} within {self._request_timeout:.1f}s"
            ) from exc
        except (ConnectionClosed, OSError) as exc:
            raise ExternalFailureError(f"Media server connection lost during {method}: {exc}") from exc
        finally:
            self._pending.pop(request_id, None)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    self._handle_message(raw)
                except Exception:
                    self._logger.exception("Failed to handle media server message: %r", raw[:200])
        except ConnectionClosed as exc:
            self._logger.warning("Media server connection closed: %s", exc)
        finally:
            for future in list(self._pending.values()):
                if not future.done():
                    future.set_exception(ExternalFailureError("Media server connection closed"))
            self._ws = None

    def _handle_message(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            self._logger.error("Discarding malformed media server message: %r", raw[:200])
            return
        if not isinstance(message, dict):
            self._logger.error("Discarding non-object media server message: %r", message)
            return
        self._logger.debug("<- %s", message)

        if "id" in message and ("result" in message or "error" in message):
            future = self._pending.get(message["id"])
            if future is None or future.done():
                self._logger.debug("Response for unknown request id %s", message["id"])
                return
            if "error" in message:
                future.set_exception(KurentoError.from_payload(message["error"] or {}))
                return
            result = message.get("result")
            if isinstance(result, dict) and result.get("sessionId"):
                self.session_id = result["sessionId"]
            future.set_result(result if result is not None else {})
            return

        if message.get("method") == "onEvent":
            self._dispatch_event(message.get("params", {}).get("value", {}))
            return

        self._logger.debug("Ignoring unsolicited media server message: %s", message)

    def _dispatch_event(self, value: Dict[str, Any]) -> None:
        data = value.get("data") or {}
        object_id = value.get("object") or data.get("source")
        event_type = value.get("type") or data.get("type")
        event = MediaEvent(type=event_type, source=data.get("source", object_id), data=data)
        with self._listeners_lock:
            callbacks = [
                callback
                for listener_object, listener_type, callback in self._listeners.values()
                if listener_object == object_id and listener_type == event_type
            ]
        if self._events is None:
            return
        for callback in callbacks:
            self._events.submit(self._run_listener, callback, event)

    def _run_listener(self, callback: MediaEventCallback, event: MediaEvent) -> None:
        try:
            callback(event)
        except Exception:
            self._logger.exception("Listener for %s on %s failed", event.type, event.source)


__all__ = ["KurentoClient"]
