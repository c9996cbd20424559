from __future__ import annotations

import asyncio
import threading
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Iterable, List, Optional, Set
from urllib.parse import urlparse

import numpy as np
import requests
from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCPeerConnection,
    RTCSessionDescription,
    VideoStreamTrack,
)
from aiortc.contrib.media import MediaPlayer
from aiortc.mediastreams import AudioStreamTrack, MediaStreamError
from av import VideoFrame

from kurento_testkit.errors import ExternalFailureError, InvalidStateError
from kurento_testkit.platform.logging import create_logger
from kurento_testkit.services.browser.contracts import RGB, WebRtcChannel, WebRtcMode

DEFAULT_CAMERA_COLOR: RGB = (0, 135, 0)


class SolidColorVideoTrack(VideoStreamTrack):
    """Synthetic camera producing a uniformly coloured picture."""

    def __init__(self, color: RGB = DEFAULT_CAMERA_COLOR, width: int = 320, height: int = 240) -> None:
        super().__init__()
        self._picture = np.empty((height, width, 3), dtype=np.uint8)
        self._picture[:, :] = color

    async def recv(self) -> VideoFrame:
        pts, time_base = await self.next_timestamp()
        frame = VideoFrame.from_ndarray(self._picture, format="rgb24")
        frame.pts = pts
        frame.time_base = time_base
        return frame


class AiortcPeerDriver:
    """
    Pure-Python WebRTC peer standing in for a browser.

    The peer connection lives on a private asyncio loop hosted by a daemon
    thread. Received video frames drive the ``playing`` event, the playback
    clock and centre-pixel sampling.
    """

    def __init__(
        self,
        *,
        request_timeout: float = 10.0,
        camera_color: RGB = DEFAULT_CAMERA_COLOR,
        logger=None,
    ) -> None:
        self._request_timeout = request_timeout
        self._camera_color = camera_color
        self._logger = logger if logger else create_logger(__name__ + ".AiortcPeerDriver")

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._pc: Optional[RTCPeerConnection] = None
        self._player: Optional[MediaPlayer] = None
        self._consumers: List[asyncio.Task] = []
        self._content: Optional[Future] = None
        self._base_url: Optional[str] = None

        self._lock = threading.Lock()
        self._subscribed: Set[str] = set()
        self._queue: List[str] = []
        self._playing = False
        self._first_time: Optional[float] = None
        self._last_time = 0.0
        self._last_picture: Optional[np.ndarray] = None
        self._session_id: Optional[str] = None
        self._handler_path: Optional[str] = None

    # Lifecycle ------------------------------------------------------
    def launch(self, url: str, timeout: float) -> None:
        if self._loop is not None:
            return
        parsed = urlparse(url)
        self._base_url = f"{parsed.scheme}://{parsed.netloc}"
        loop = asyncio.new_event_loop()
        self._loop = loop
        self._thread = threading.Thread(target=self._run_loop, name="AiortcPeer", daemon=True)
        self._thread.start()
        self._logger.info("aiortc peer ready for %s", self._base_url)

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

    def close(self) -> None:
        if self._loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop)
        try:
            future.result(timeout=5.0)
        except Exception as exc:  # pragma: no cover - shutdown logging
            self._logger.warning("Error while shutting down aiortc peer: %s", exc)
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._loop = None
        self._thread = None

    async def _shutdown(self) -> None:
        for task in self._consumers:
            task.cancel()
        self._consumers = []
        if self._player is not None:
            for track in (self._player.audio, self._player.video):
                if track is not None:
                    track.stop()
            self._player = None
        if self._pc is not None:
            await self._pc.close()
            self._pc = None

    def _call(self, coro, timeout: Optional[float] = None) -> Any:
        if self._loop is None:
            coro.close()
            raise InvalidStateError("aiortc peer has not been launched")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=timeout if timeout is not None else self._request_timeout * 3)

    # Events ---------------------------------------------------------
    def subscribe(self, names: Iterable[str]) -> None:
        with self._lock:
            self._subscribed.update(names)

    def drain_events(self) -> List[str]:
        with self._lock:
            events, self._queue = self._queue, []
        return events

    def _emit(self, name: str) -> None:
        with self._lock:
            if name in self._subscribed:
                self._queue.append(name)

    # Observation ----------------------------------------------------
    def current_time(self) -> float:
        with self._lock:
            return self._last_time

    def center_pixel(self) -> RGB:
        with self._lock:
            picture = self._last_picture
        if picture is None:
            return 0, 0, 0
        height, width = picture.shape[:2]
        red, green, blue = picture[height // 2, width // 2][:3]
        return int(red), int(green), int(blue)

    async def _consume(self, track: MediaStreamTrack) -> None:
        while True:
            try:
                frame = await track.recv()
            except MediaStreamError:
                self._emit("ended")
                return
            if track.kind != "video":
                continue
            picture = frame.to_ndarray(format="rgb24")
            seconds = float(frame.time) if frame.time is not None else 0.0
            with self._lock:
                if self._first_time is None:
                    self._first_time = seconds
                self._last_time = seconds - self._first_time
                self._last_picture = picture
                first = not self._playing
                self._playing = True
            if first:
                self._logger.info("First video frame received")
                self._emit("playing")

    def _reset_media_clock(self) -> None:
        with self._lock:
            self._playing = False
            self._first_time = None
            self._last_time = 0.0
            self._last_picture = None

    # Negotiation ----------------------------------------------------
    def create_offer(self, channel: WebRtcChannel, mode: WebRtcMode) -> str:
        return self._call(self._create_offer(WebRtcChannel(channel), WebRtcMode(mode)))

    async def _create_offer(self, channel: WebRtcChannel, mode: WebRtcMode) -> str:
        await self._shutdown()
        self._reset_media_clock()
        pc = RTCPeerConnection(RTCConfiguration(iceServers=[]))
        self._pc = pc
        receive = mode is not WebRtcMode.SEND_ONLY

        @pc.on("track")
        def _on_track(track: MediaStreamTrack) -> None:
            if receive:
                self._consumers.append(asyncio.ensure_future(self._consume(track)))

        @pc.on("connectionstatechange")
        def _on_state_change() -> None:
            self._logger.info("aiortc connection state: %s", pc.connectionState)

        tracks = []
        if channel.has_audio:
            tracks.append(("audio", AudioStreamTrack()))
        if channel.has_video:
            tracks.append(("video", SolidColorVideoTrack(self._camera_color)))
        direction = {
            WebRtcMode.SEND_ONLY: "sendonly",
            WebRtcMode.RCV_ONLY: "recvonly",
            WebRtcMode.SEND_RCV: "sendrecv",
        }[mode]
        for kind, track in tracks:
            if mode is WebRtcMode.RCV_ONLY:
                pc.addTransceiver(kind, direction=direction)
            else:
                pc.addTransceiver(track, direction=direction)

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        return pc.localDescription.sdp

    def process_answer(self, sdp: str) -> None:
        self._call(self._process_answer(sdp))

    async def _process_answer(self, sdp: str) -> None:
        if self._pc is None:
            raise InvalidStateError("No offer pending")
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="answer"))

    def start_content(self, handler_path: str, channel: WebRtcChannel, mode: WebRtcMode) -> None:
        if self._loop is None:
            raise InvalidStateError("aiortc peer has not been launched")
        self._handler_path = handler_path
        self._content = asyncio.run_coroutine_threadsafe(
            self._start_content(handler_path, WebRtcChannel(channel), WebRtcMode(mode)),
            self._loop,
        )

    async def _start_content(self, handler_path: str, channel: WebRtcChannel, mode: WebRtcMode) -> None:
        try:
            offer = await self._create_offer(channel, mode)
            loop = asyncio.get_running_loop()
            reply = await loop.run_in_executor(None, self._post_offer, handler_path, offer)
            with self._lock:
                self._session_id = reply["sessionId"]
            await self._process_answer(reply["sdp"])
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.error("Content negotiation on %s failed: %s", handler_path, exc)
            self._emit("error")

    def _post_offer(self, handler_path: str, offer: str) -> dict:
        response = requests.post(self._url(handler_path), json={"sdp": offer}, timeout=self._request_timeout)
        if response.status_code != 200:
            raise ExternalFailureError(
                f"Content request on {handler_path} failed with HTTP {response.status_code}: {response.text}"
            )
        return response.json()

    def _url(self, path: str) -> str:
        if "://" in path:
            return path
        return f"{self._base_url}{path if path.startswith('/') else '/' + path}"

    def play_url(self, url: str) -> None:
        self._call(self._play_url(url))

    async def _play_url(self, url: str) -> None:
        await self._shutdown()
        self._reset_media_clock()
        self._player = MediaPlayer(url)
        for track in (self._player.video, self._player.audio):
            if track is not None:
                self._consumers.append(asyncio.ensure_future(self._consume(track)))

    def session_id(self) -> Optional[str]:
        with self._lock:
            return self._session_id

    def stop_media(self) -> None:
        self._settle_negotiation()
        with self._lock:
            session_id, self._session_id = self._session_id, None
        if session_id and self._handler_path:
            try:
                requests.post(
                    self._url(self._handler_path.rstrip("/") + "/terminate"),
                    json={"sessionId": session_id, "code": 0, "reason": "peer stopped"},
                    timeout=self._request_timeout,
                )
            except requests.RequestException as exc:
                self._logger.warning("Could not terminate session %s: %s", session_id, exc)
        if self._loop is not None:
            self._call(self._shutdown())

    def _settle_negotiation(self) -> None:
        """Let a running negotiation finish so its session id is known before terminating."""
        content, self._content = self._content, None
        if content is None:
            return
        try:
            content.result(timeout=self._request_timeout)
        except FutureTimeoutError:
            self._logger.warning("Content negotiation still running at stop, cancelling it")
            content.cancel()
        except CancelledError:
            self._logger.debug("Content negotiation was cancelled")


__all__ = ["AiortcPeerDriver", "SolidColorVideoTrack"]
