"""
HTTP/1.1 connection implementation for gohttp.

This module implements the HTTP11Connection class that drives an
h11 state machine over a NetworkStream. One connection carries one
request at a time; the pool hands idle connections back out for
keep-alive reuse.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import h11

from .exceptions import ConnectionError, HTTPCoreError, ProtocolError
from .http_primitives import CanonicalRequest, Headers
from .network.stream import NetworkStream
from .normalizer import EncodedBody
from .response import headers_to_dict

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """States of an HTTP/1.1 connection."""
    NEW = "new"           # Connection created, not yet used
    ACTIVE = "active"     # Connection handling a request
    IDLE = "idle"         # Connection available for reuse
    CLOSED = "closed"     # Connection closed, cannot be reused


class HTTP11Connection:
    """
    HTTP/1.1 connection manager.

    Usage per exchange: ``handle_request`` sends the request and
    returns the response head; ``receive_body_chunk`` is then called
    until it returns None, at which point the connection becomes idle
    (keep-alive) or closed.
    """

    DEFAULT_KEEP_ALIVE_TIMEOUT = 60.0
    READ_SIZE = 65536

    def __init__(
        self,
        stream: NetworkStream,
        keep_alive_timeout: Optional[float] = None,
    ):
        """
        Initialize HTTP/1.1 connection.

        Args:
            stream: The NetworkStream to use for communication
            keep_alive_timeout: Idle time after which the connection expires
        """
        self._stream = stream
        self._h11_connection = h11.Connection(h11.CLIENT)
        self._state = ConnectionState.NEW
        self._idle_since: Optional[float] = None
        self._keep_alive_timeout = keep_alive_timeout or self.DEFAULT_KEEP_ALIVE_TIMEOUT

        # Metrics
        self._request_count = 0
        self._bytes_sent = 0
        self._bytes_received = 0
        self._errors_count = 0
        self._last_request_time: Optional[float] = None

        logger.debug("HTTP/1.1 connection initialized")

    async def handle_request(
        self,
        request: CanonicalRequest,
        body: EncodedBody,
    ) -> Tuple[int, Headers]:
        """
        Send a request and receive the response head.

        Args:
            request: The canonical request (method and target)
            body: Final headers and body stream

        Returns:
            Status code and lower-cased response headers

        Raises:
            ConnectionError: If the connection is busy, closed or fails
            ProtocolError: If h11 rejects the exchange
            StreamError: If the request body stream fails
        """
        self._acquire_connection()
        self._request_count += 1
        self._last_request_time = time.time()

        try:
            await self._send_request(request, body)
            status, headers = await self._receive_response()
        except Exception as e:
            await self._fail(e)
            wrapped = _wrap(e)
            if wrapped is e:
                raise
            raise wrapped from e

        logger.debug(
            f"Request {self._request_count}: {request.method.value} {request.target} -> {status}"
        )
        return status, headers

    async def _send_request(self, request: CanonicalRequest, body: EncodedBody) -> None:
        h11_request = h11.Request(
            method=request.method.value,
            target=request.target.encode("utf-8"),
            headers=[
                (name.encode("latin-1"), value.encode("utf-8"))
                for name, value in body.headers.items()
            ],
        )
        await self._send_event(h11_request)

        if body.stream is not None:
            async for chunk in body.stream:
                await self._send_event(h11.Data(data=chunk))

        await self._send_event(h11.EndOfMessage())

    async def _send_event(self, event: Any) -> None:
        """Serialize an h11 event and write it to the stream."""
        data = self._h11_connection.send(event)
        if data:
            await self._stream.write(data)
            self._bytes_sent += len(data)

    async def _next_event(self) -> Any:
        while True:
            event = self._h11_connection.next_event()
            if event is not h11.NEED_DATA:
                return event

            data = await self._stream.read(self.READ_SIZE)
            self._bytes_received += len(data)
            # b"" tells h11 the peer closed the connection
            self._h11_connection.receive_data(data)

    async def _receive_response(self) -> Tuple[int, Headers]:
        while True:
            event = await self._next_event()

            if isinstance(event, h11.InformationalResponse):
                continue
            if isinstance(event, h11.Response):
                return event.status_code, headers_to_dict(event.headers)
            if isinstance(event, h11.ConnectionClosed):
                raise ProtocolError("Connection closed by server")

    async def receive_body_chunk(self) -> Optional[bytes]:
        """
        Receive the next chunk of the response body.

        Returns:
            A chunk of data, or None at the end of the body
        """
        try:
            while True:
                event = await self._next_event()

                if isinstance(event, h11.Data):
                    return bytes(event.data)
                if isinstance(event, h11.EndOfMessage):
                    await self._release_connection()
                    return None
                if isinstance(event, h11.ConnectionClosed):
                    raise ProtocolError("Connection closed by server")
        except Exception as e:
            await self._fail(e)
            wrapped = _wrap(e)
            if wrapped is e:
                raise
            raise wrapped from e

    def _acquire_connection(self) -> None:
        if self._state == ConnectionState.CLOSED:
            raise ConnectionError("Connection is closed")
        if self._state == ConnectionState.ACTIVE:
            raise ConnectionError("Connection is busy")
        self._state = ConnectionState.ACTIVE

    async def _release_connection(self) -> None:
        """Return to IDLE when keep-alive is possible, otherwise close."""
        if self._state != ConnectionState.ACTIVE:
            return

        if self._can_reuse_connection():
            self._h11_connection.start_next_cycle()
            self._state = ConnectionState.IDLE
            self._idle_since = asyncio.get_running_loop().time()
        else:
            self._state = ConnectionState.CLOSED
            await self._stream.aclose()
            logger.debug("Connection not reusable, closed")

    def _can_reuse_connection(self) -> bool:
        return (
            self._h11_connection.our_state is h11.DONE
            and self._h11_connection.their_state is h11.DONE
        )

    async def _fail(self, error: Exception) -> None:
        self._errors_count += 1
        logger.error(f"Request {self._request_count} failed: {error}")
        self._state = ConnectionState.CLOSED
        await self._stream.aclose()

    async def close(self) -> None:
        """Close the connection and cleanup resources."""
        if self._state != ConnectionState.CLOSED:
            self._state = ConnectionState.CLOSED
            await self._stream.aclose()
            logger.debug(f"Connection closed after {self._request_count} requests")

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        """Check if connection is closed."""
        return self._state == ConnectionState.CLOSED

    @property
    def is_idle(self) -> bool:
        """Check if connection is idle and available for reuse."""
        return self._state == ConnectionState.IDLE and not self._stream.is_closed

    def has_expired(self, timeout: Optional[float] = None) -> bool:
        """
        Check if idle connection has expired.

        Args:
            timeout: Idle timeout in seconds (uses keep_alive_timeout if None)
        """
        if self._state != ConnectionState.IDLE or self._idle_since is None:
            return False

        check_timeout = timeout or self._keep_alive_timeout
        return (asyncio.get_running_loop().time() - self._idle_since) > check_timeout

    @property
    def metrics(self) -> Dict[str, Any]:
        """Get connection metrics."""
        return {
            "request_count": self._request_count,
            "bytes_sent": self._bytes_sent,
            "bytes_received": self._bytes_received,
            "errors_count": self._errors_count,
            "last_request_time": self._last_request_time,
            "state": self._state.value,
            "idle_since": self._idle_since,
        }


def _wrap(error: Exception) -> Exception:
    if isinstance(error, HTTPCoreError):
        return error
    if isinstance(error, h11.ProtocolError):
        return ProtocolError(str(error), cause=error)
    if isinstance(error, OSError):
        return ConnectionError(str(error), cause=error)
    return error
