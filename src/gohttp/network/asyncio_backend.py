"""
asyncio streams backend for gohttp.

Wraps ``asyncio.open_connection`` and ``asyncio.open_unix_connection``
in the ``NetworkBackend`` / ``NetworkStream`` interfaces.
"""

import asyncio
import logging
import ssl
from typing import Any, Awaitable, Optional

from ..exceptions import ConnectionError
from .backend import NetworkBackend
from .stream import NetworkStream

logger = logging.getLogger(__name__)


class AsyncioNetworkStream(NetworkStream):
    """NetworkStream over an asyncio StreamReader/StreamWriter pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    async def read(self, max_bytes: int = 65536) -> bytes:
        if self._closed:
            raise ConnectionError("Stream is closed")
        try:
            return await self._reader.read(max_bytes)
        except OSError as e:
            raise ConnectionError(f"read failed: {e}", cause=e) from e

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionError("Stream is closed")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            raise ConnectionError(f"write failed: {e}", cause=e) from e

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            # The peer may already have reset the connection
            logger.debug(f"Error while closing stream: {e}")

    def get_extra_info(self, name: str) -> Optional[Any]:
        if name == "selected_alpn_protocol":
            ssl_object = self._writer.get_extra_info("ssl_object")
            return ssl_object.selected_alpn_protocol() if ssl_object else None
        return self._writer.get_extra_info(name)

    @property
    def is_closed(self) -> bool:
        # at_eof() catches keep-alive sockets the peer closed while idle
        return self._closed or self._writer.is_closing() or self._reader.at_eof()


class AsyncioNetworkBackend(NetworkBackend):
    """Backend opening real sockets through asyncio."""

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
    ) -> AsyncioNetworkStream:
        return await self._open(asyncio.open_connection(host, port), f"{host}:{port}", timeout)

    async def connect_tls(
        self,
        host: str,
        port: int,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
        server_hostname: Optional[str] = None,
    ) -> AsyncioNetworkStream:
        opening = asyncio.open_connection(
            host, port, ssl=ssl_context, server_hostname=server_hostname or host
        )
        return await self._open(opening, f"{host}:{port} (tls)", timeout)

    async def connect_unix(
        self,
        path: str,
        timeout: Optional[float] = None,
    ) -> AsyncioNetworkStream:
        return await self._open(asyncio.open_unix_connection(path), path, timeout)

    async def _open(self, opening: Awaitable[Any], address: str, timeout: Optional[float]) -> AsyncioNetworkStream:
        try:
            reader, writer = await asyncio.wait_for(opening, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ConnectionError(f"connect to {address} timed out after {timeout}s", cause=e) from e
        except OSError as e:
            raise ConnectionError(f"failed to connect to {address}: {e}", cause=e) from e

        logger.debug(f"Connected to {address}")
        return AsyncioNetworkStream(reader, writer)
