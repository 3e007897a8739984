"""
Transports for gohttp.

A transport takes a canonical request plus its encoded body and
returns a ``ResponseRecord``. Timeouts and transport-level failures
(socket errors, protocol errors, broken upload streams) come back as
``status=0`` records so that one bad exchange never aborts a batch of
concurrent requests; ``ResponseTooLarge`` is raised.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional

from .config import ClientConfig
from .connection_pool import ConnectionPool
from .download import DownloadSink
from .exceptions import ConnectionError, ProtocolError, StreamError
from .http2 import HTTP2Connection
from .http_primitives import CanonicalRequest, DownloadOptions, Headers
from .network import AsyncioNetworkBackend, NetworkBackend, create_ssl_context
from .normalizer import EncodedBody
from .response import ResponseAssembler, ResponseRecord
from .session import HTTP2SessionManager

logger = logging.getLogger(__name__)

ChunkReceiver = Callable[[], Awaitable[Optional[bytes]]]

# Failures confined to one exchange, reported as status=0 records
REQUEST_FAILURES = (ConnectionError, ProtocolError, StreamError)


def is_event_stream(request: CanonicalRequest, headers: Headers) -> bool:
    """Whether a response body goes to the request's ``sse_callback``."""
    if request.sse_callback is None:
        return False
    content_type = headers.get("content-type", "")
    return "text/event-stream" in content_type or (request.sse and "text/plain" in content_type)


async def read_response(
    receive_chunk: ChunkReceiver,
    status: int,
    headers: Headers,
    request: CanonicalRequest,
    max_body: int,
) -> ResponseRecord:
    """
    Consume a response body into a record.

    Downloads stream to disk, unless the status is an error: then no
    file is written and the error body is kept in memory. Event
    streams are handed chunk by chunk to ``sse_callback``, followed by
    a final ``None``; their record carries an empty body.
    """
    download = request.download
    if download is not None and status < 400:
        return await _read_download(receive_chunk, status, headers, download)

    if is_event_stream(request, headers):
        while True:
            chunk = await receive_chunk()
            result = request.sse_callback(chunk, status, headers)
            if inspect.isawaitable(result):
                await result
            if chunk is None:
                break
        return ResponseRecord(status=status, headers=headers)

    assembler = ResponseAssembler(max_body)
    while True:
        chunk = await receive_chunk()
        if chunk is None:
            break
        assembler.feed(chunk)
    return assembler.finish(status, headers)


async def _read_download(
    receive_chunk: ChunkReceiver,
    status: int,
    headers: Headers,
    download: DownloadOptions,
) -> ResponseRecord:
    sink = DownloadSink(download, headers)
    try:
        while True:
            chunk = await receive_chunk()
            if chunk is None:
                break
            await sink.write(chunk)
    except BaseException:
        sink.abort()
        raise
    return sink.finish(status, headers)


async def _close_body(body: EncodedBody) -> None:
    # An upload cut short leaves the body generator suspended with its
    # file still open.
    if body.stream is not None:
        await body.stream.aclose()


class HTTP11Transport:
    """
    HTTP/1.1 transport over pooled keep-alive connections.

    Three pools are created up front (plain, TLS-verified,
    TLS-insecure) and live as long as the transport; a request picks
    one by scheme and its effective certificate-verification mode.
    """

    def __init__(self, config: ClientConfig, backend: Optional[NetworkBackend] = None):
        self._config = config
        backend = backend or AsyncioNetworkBackend()

        def pool(ssl_context=None) -> ConnectionPool:
            return ConnectionPool(
                backend,
                ssl_context=ssl_context,
                max_sockets=config.max_sockets,
                max_free_sockets=config.max_free_sockets,
                keep_alive_timeout=config.keep_alive_timeout,
                connect_timeout=config.connect_timeout,
            )

        self._plain_pool = pool()
        self._secure_pool = pool(create_ssl_context(True, config.cert, config.key))
        self._insecure_pool = pool(create_ssl_context(False, config.cert, config.key))

    def pool_for(self, request: CanonicalRequest) -> ConnectionPool:
        """Pool serving a request's scheme and verification mode."""
        if request.scheme != "https":
            return self._plain_pool
        return self._secure_pool if request.verify_cert else self._insecure_pool

    async def send(self, request: CanonicalRequest, body: EncodedBody) -> ResponseRecord:
        """
        Perform one exchange.

        The timeout covers connection acquisition and the whole
        exchange; on expiry the connection is discarded.

        Raises:
            ResponseTooLarge: If the body exceeds ``max_body``
        """
        try:
            return await asyncio.wait_for(self._exchange(request, body), request.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"{request.method.value} {request.url.origin}{request.target} "
                f"timed out after {request.timeout}s"
            )
            return ResponseRecord.timed_out(request.timeout)
        except REQUEST_FAILURES as e:
            logger.error(f"{request.method.value} {request.url.origin}{request.target} failed: {e}")
            return ResponseRecord.failed(e)
        finally:
            await _close_body(body)

    async def _exchange(self, request: CanonicalRequest, body: EncodedBody) -> ResponseRecord:
        async with self.pool_for(request).connection(request.url) as connection:
            status, headers = await connection.handle_request(request, body)
            return await read_response(
                connection.receive_body_chunk,
                status,
                headers,
                request,
                self._config.max_body,
            )

    async def close(self) -> None:
        """Close idle connections of every pool."""
        for pool in (self._plain_pool, self._secure_pool, self._insecure_pool):
            await pool.close()


class _HTTP2Exchange:
    """One request on one HTTP/2 stream."""

    def __init__(self, connection: HTTP2Connection, request: CanonicalRequest, body: EncodedBody):
        self.connection = connection
        self.request = request
        self.body = body
        self.stream_id: Optional[int] = None

    async def run(self, max_body: int) -> ResponseRecord:
        self.stream_id = stream_id = await self.connection.open_stream(self.request, self.body)
        if self.body.stream is not None:
            await self.connection.send_body(stream_id, self.body.stream)

        status, headers = await self.connection.receive_response(stream_id)
        record = await read_response(
            lambda: self.connection.receive_body_chunk(stream_id),
            status,
            headers,
            self.request,
            max_body,
        )
        self.connection.release_stream(stream_id)
        return record

    async def cancel(self) -> None:
        """Reset the stream with CANCEL; the connection stays up."""
        if self.stream_id is None:
            return
        try:
            await self.connection.reset_stream(self.stream_id)
        except REQUEST_FAILURES as e:
            logger.debug(f"Stream {self.stream_id} not reset: {e}")


class HTTP2Transport:
    """
    HTTP/2 transport over a session manager.

    Every request resolves the live connection through
    ``wait_for_ready``; a timeout resets only that request's stream.
    """

    def __init__(self, sessions: HTTP2SessionManager, max_body: int):
        self._sessions = sessions
        self._max_body = max_body

    async def send(self, request: CanonicalRequest, body: EncodedBody) -> ResponseRecord:
        """
        Perform one exchange on a new stream.

        Raises:
            ConnectionTimeout: If the session is not ready in time
            ConnectionError: If the session has been closed
            ResponseTooLarge: If the body exceeds ``max_body``
        """
        try:
            connection = await self._sessions.wait_for_ready()
        except BaseException:
            await _close_body(body)
            raise
        exchange = _HTTP2Exchange(connection, request, body)

        try:
            return await asyncio.wait_for(exchange.run(self._max_body), request.timeout)
        except asyncio.TimeoutError:
            await exchange.cancel()
            logger.warning(f"{request.method.value} {request.target} timed out after {request.timeout}s")
            return ResponseRecord.timed_out(request.timeout)
        except REQUEST_FAILURES as e:
            await exchange.cancel()
            logger.error(f"{request.method.value} {request.target} failed: {e}")
            return ResponseRecord.failed(e)
        except BaseException:
            await exchange.cancel()
            raise
        finally:
            await _close_body(body)

    @property
    def sessions(self) -> HTTP2SessionManager:
        return self._sessions
