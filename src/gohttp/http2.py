"""
HTTP/2 connection implementation for gohttp.

``HTTP2Connection`` drives an h2 state machine over a NetworkStream.
A background reader task feeds received frames to h2 and routes the
resulting events to per-stream queues; socket writes are serialized
with an ``asyncio.Lock``. Many requests share one connection, each on
its own stream.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import h2.config
import h2.connection
import h2.events
import h2.exceptions
from h2.errors import ErrorCodes
from h2.settings import SettingCodes

from .exceptions import ConnectionError, HTTPCoreError, ProtocolError, StreamError
from .http_primitives import CanonicalRequest, Headers
from .network.stream import NetworkStream
from .normalizer import EncodedBody
from .response import headers_to_dict
from .streams import RequestStream

logger = logging.getLogger(__name__)

CloseCallback = Callable[["HTTP2Connection"], None]


class _StreamState:
    """Receive-side state of one HTTP/2 stream."""

    __slots__ = ("stream_id", "response", "chunks", "ended", "reset_code")

    def __init__(self, stream_id: int, loop: asyncio.AbstractEventLoop) -> None:
        self.stream_id = stream_id
        self.response: "asyncio.Future[Tuple[int, Headers]]" = loop.create_future()
        # bytes, None at end of stream, or an exception
        self.chunks: "asyncio.Queue[Any]" = asyncio.Queue()
        self.ended = False
        self.reset_code: Optional[ErrorCodes] = None

    def fail(self, error: Exception) -> None:
        if not self.response.done():
            self.response.set_exception(error)
            # Nobody may ever await the head; avoid "exception never retrieved"
            self.response.exception()
        self.chunks.put_nowait(error)


class HTTP2Connection:
    """
    HTTP/2 client connection.

    Lifecycle: ``start`` sends the preface and settings and launches
    the reader; ``close`` (or a transport failure) terminates it, fails
    every pending stream with ``ConnectionError`` and fires the close
    callbacks exactly once.
    """

    READ_SIZE = 65536
    INITIAL_WINDOW_SIZE = 6 * 1024 * 1024
    CONNECTION_WINDOW_SIZE = 16 * 1024 * 1024

    def __init__(self, stream: NetworkStream, authority: str, scheme: str = "https"):
        """
        Initialize HTTP/2 connection.

        Args:
            stream: Connected NetworkStream (TLS with ALPN h2, or cleartext)
            authority: Value of the :authority pseudo-header
            scheme: Value of the :scheme pseudo-header
        """
        self._stream = stream
        self._authority = authority
        self._scheme = scheme

        config = h2.config.H2Configuration(client_side=True, header_encoding="utf-8")
        self._h2 = h2.connection.H2Connection(config=config)

        self._write_lock = asyncio.Lock()
        self._streams: Dict[int, _StreamState] = {}
        self._window_updated = asyncio.Event()
        self._stream_closed = asyncio.Event()
        self._read_task: Optional[asyncio.Task] = None

        self._closed = False
        self._goaway_received = False
        self._close_callbacks: List[CloseCallback] = []
        self._goaway_callbacks: List[CloseCallback] = []

        # Metrics
        self._streams_opened = 0
        self._bytes_sent = 0
        self._bytes_received = 0

    async def start(self) -> None:
        """
        Send the connection preface and start reading.

        Raises:
            ProtocolError: If TLS did not negotiate h2 via ALPN
            ConnectionError: If the preface cannot be written
        """
        if self._scheme == "https":
            alpn = self._stream.get_extra_info("selected_alpn_protocol")
            if alpn != "h2":
                await self._stream.aclose()
                self._closed = True
                raise ProtocolError(f"server did not negotiate h2 (ALPN: {alpn!r})")

        self._h2.initiate_connection()
        self._h2.update_settings({
            SettingCodes.ENABLE_PUSH: 0,
            SettingCodes.INITIAL_WINDOW_SIZE: self.INITIAL_WINDOW_SIZE,
        })
        self._h2.increment_flow_control_window(
            self.CONNECTION_WINDOW_SIZE - self._h2.inbound_flow_control_window
        )
        await self._flush()

        self._read_task = asyncio.get_running_loop().create_task(self._read_loop())
        logger.debug(f"HTTP/2 connection to {self._authority} started")

    async def open_stream(self, request: CanonicalRequest, body: EncodedBody) -> int:
        """
        Send the request headers on a new stream.

        Returns:
            The stream id

        Raises:
            ConnectionError: If the connection is closed or going away
        """
        while True:
            self._check_usable()
            limit = self._h2.remote_settings.max_concurrent_streams
            if self._h2.open_outbound_streams < limit:
                break
            self._stream_closed.clear()
            await self._stream_closed.wait()

        headers = [
            (":method", request.method.value),
            (":scheme", self._scheme),
            (":authority", self._authority),
            (":path", request.target),
        ]
        headers.extend(body.headers.items())

        stream_id = self._h2.get_next_available_stream_id()
        self._streams[stream_id] = _StreamState(stream_id, asyncio.get_running_loop())
        try:
            self._h2.send_headers(stream_id, headers, end_stream=body.stream is None)
        except h2.exceptions.ProtocolError as e:
            self._streams.pop(stream_id, None)
            raise ProtocolError(f"cannot open stream: {e}", cause=e) from e
        self._streams_opened += 1

        await self._flush()
        logger.debug(f"Stream {stream_id}: {request.method.value} {request.target}")
        return stream_id

    async def send_body(self, stream_id: int, body: RequestStream) -> None:
        """
        Send a request body, respecting flow control, then end the stream.

        Sending stops early, without error, when the server has already
        sent its complete response.

        Raises:
            StreamError: If the body stream fails or the peer resets the stream
            ConnectionError: If the connection drops while sending
        """
        async for chunk in body:
            view = memoryview(chunk)
            while view:
                window = await self._wait_for_window(stream_id)
                if window is None:
                    await self._abandon_body(stream_id)
                    return
                size = min(len(view), window, self._h2.max_outbound_frame_size)
                self._send_data(stream_id, view[:size].tobytes())
                view = view[size:]
                await self._flush()

        state = self._streams.get(stream_id)
        if state is not None and state.ended and state.reset_code is not None:
            # Early response followed by RST_STREAM; nothing left to end
            return
        self._check_usable(stream_id)
        try:
            self._h2.end_stream(stream_id)
        except h2.exceptions.ProtocolError as e:
            raise StreamError(f"cannot end stream {stream_id}: {e}", cause=e) from e
        await self._flush()

    def _send_data(self, stream_id: int, data: bytes) -> None:
        try:
            self._h2.send_data(stream_id, data)
        except h2.exceptions.ProtocolError as e:
            raise StreamError(f"cannot send data on stream {stream_id}: {e}", cause=e) from e

    async def _wait_for_window(self, stream_id: int) -> Optional[int]:
        """Wait for send window; None once the response has ended."""
        while True:
            state = self._streams.get(stream_id)
            if state is not None and state.ended:
                return None
            self._check_usable(stream_id)
            try:
                window = self._h2.local_flow_control_window(stream_id)
            except h2.exceptions.ProtocolError as e:
                raise StreamError(f"stream {stream_id} is closed: {e}", cause=e) from e
            if window > 0:
                return window
            self._window_updated.clear()
            await self._window_updated.wait()

    async def _abandon_body(self, stream_id: int) -> None:
        logger.debug(f"Stream {stream_id}: response ended before the request body was sent")
        if self._streams[stream_id].reset_code is not None:
            return
        try:
            self._h2.reset_stream(stream_id, error_code=ErrorCodes.CANCEL)
        except h2.exceptions.ProtocolError as e:
            logger.debug(f"Stream {stream_id} not reset: {e}")
            return
        await self._flush()

    async def receive_response(self, stream_id: int) -> Tuple[int, Headers]:
        """Wait for the response head of a stream."""
        return await self._streams[stream_id].response

    async def receive_body_chunk(self, stream_id: int) -> Optional[bytes]:
        """
        Receive the next body chunk of a stream.

        Returns:
            A chunk of data, or None at the end of the stream
        """
        item = await self._streams[stream_id].chunks.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def reset_stream(self, stream_id: int, error_code: ErrorCodes = ErrorCodes.CANCEL) -> None:
        """Abort a stream; other streams on the connection are unaffected."""
        self.release_stream(stream_id)
        if self._closed:
            return
        try:
            self._h2.reset_stream(stream_id, error_code=error_code)
        except h2.exceptions.ProtocolError as e:
            # Already closed on the h2 side
            logger.debug(f"Stream {stream_id} not reset: {e}")
            return
        await self._flush()
        logger.debug(f"Stream {stream_id} reset ({error_code.name})")

    def release_stream(self, stream_id: int) -> None:
        """Forget the receive-side state of a finished stream."""
        if self._streams.pop(stream_id, None) is not None:
            self._stream_closed.set()

    def _check_usable(self, stream_id: Optional[int] = None) -> None:
        if self._closed:
            raise ConnectionError("HTTP/2 connection is closed")
        if stream_id is None:
            if self._goaway_received:
                raise ConnectionError("HTTP/2 connection is going away")
            return

        state = self._streams.get(stream_id)
        if state is None:
            raise StreamError(f"stream {stream_id} is not open")
        if state.reset_code is not None:
            raise StreamError(f"stream {stream_id} reset by peer ({state.reset_code!s})")

    async def _flush(self) -> None:
        async with self._write_lock:
            data = self._h2.data_to_send()
            if data:
                await self._stream.write(data)
                self._bytes_sent += len(data)

    async def _read_loop(self) -> None:
        error: HTTPCoreError = ConnectionError("HTTP/2 connection closed")
        try:
            while True:
                data = await self._stream.read(self.READ_SIZE)
                if not data:
                    error = ConnectionError("HTTP/2 connection closed by server")
                    break
                self._bytes_received += len(data)

                for event in self._h2.receive_data(data):
                    self._handle_event(event)
                await self._flush()
        except h2.exceptions.ProtocolError as e:
            error = ProtocolError(str(e), cause=e)
            logger.warning(f"HTTP/2 protocol error on {self._authority}: {e}")
        except HTTPCoreError as e:
            error = e
            logger.warning(f"HTTP/2 connection to {self._authority} failed: {e}")
        finally:
            self._terminate(error)
            await self._stream.aclose()

    def _handle_event(self, event: Any) -> None:
        if isinstance(event, h2.events.ResponseReceived):
            state = self._streams.get(event.stream_id)
            if state is not None and not state.response.done():
                status = 0
                for name, value in event.headers:
                    if name == ":status":
                        status = int(value)
                        break
                state.response.set_result((status, headers_to_dict(event.headers)))

        elif isinstance(event, h2.events.DataReceived):
            self._h2.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
            state = self._streams.get(event.stream_id)
            if state is not None:
                state.chunks.put_nowait(event.data)

        elif isinstance(event, h2.events.StreamEnded):
            state = self._streams.get(event.stream_id)
            if state is not None:
                state.ended = True
                state.chunks.put_nowait(None)
            self._stream_closed.set()
            # Wakes a body sender so it can stop
            self._window_updated.set()

        elif isinstance(event, h2.events.StreamReset):
            state = self._streams.get(event.stream_id)
            if state is not None:
                state.reset_code = event.error_code
                if not state.ended:
                    state.fail(StreamError(
                        f"stream {event.stream_id} reset by peer ({event.error_code!s})"
                    ))
            self._stream_closed.set()
            self._window_updated.set()

        elif isinstance(event, h2.events.ConnectionTerminated):
            self._on_goaway(event)

        elif isinstance(event, h2.events.WindowUpdated):
            self._window_updated.set()

        elif isinstance(event, h2.events.RemoteSettingsChanged):
            # May change the initial window or the stream limit
            self._window_updated.set()
            self._stream_closed.set()

    def _on_goaway(self, event: Any) -> None:
        self._goaway_received = True
        logger.warning(
            f"GOAWAY from {self._authority}: error={event.error_code!s}, "
            f"last_stream_id={event.last_stream_id}"
        )
        # Streams above last_stream_id were never processed by the server
        last = event.last_stream_id or 0
        for stream_id, state in list(self._streams.items()):
            if stream_id > last:
                state.fail(ConnectionError(f"stream {stream_id} refused by GOAWAY"))

        for callback in self._goaway_callbacks:
            callback(self)

    def _terminate(self, error: HTTPCoreError) -> None:
        if self._closed:
            return
        self._closed = True

        for state in self._streams.values():
            state.fail(error)
        self._window_updated.set()
        self._stream_closed.set()

        logger.debug(f"HTTP/2 connection to {self._authority} terminated: {error}")
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            callback(self)

    async def close(self) -> None:
        """Send GOAWAY and close the connection."""
        if not self._closed:
            try:
                self._h2.close_connection()
                await self._flush()
            except (HTTPCoreError, h2.exceptions.ProtocolError) as e:
                logger.debug(f"GOAWAY not sent to {self._authority}: {e}")
            self._terminate(ConnectionError("HTTP/2 connection closed"))

        task = self._read_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._stream.aclose()

    def add_close_callback(self, callback: CloseCallback) -> None:
        """Register a callback fired once when the connection closes."""
        if self._closed:
            callback(self)
            return
        self._close_callbacks.append(callback)

    def add_goaway_callback(self, callback: CloseCallback) -> None:
        """Register a callback fired when the server sends GOAWAY."""
        self._goaway_callbacks.append(callback)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def goaway_received(self) -> bool:
        return self._goaway_received

    @property
    def authority(self) -> str:
        return self._authority

    @property
    def metrics(self) -> Dict[str, Any]:
        """Get connection metrics."""
        return {
            "streams_opened": self._streams_opened,
            "active_streams": len(self._streams),
            "bytes_sent": self._bytes_sent,
            "bytes_received": self._bytes_received,
            "goaway_received": self._goaway_received,
            "closed": self._closed,
        }
