"""
Mock network implementations for testing.

``MockNetworkStream`` replays scripted peer bytes and records what was
written; ``MockNetworkBackend`` hands out a fresh scripted stream per
connection so pool behaviour can be tested without sockets.
"""

import ssl
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from ..exceptions import ConnectionError
from .backend import NetworkBackend
from .stream import NetworkStream


class MockNetworkStream(NetworkStream):
    """
    Mock network stream for testing.

    Reads return the scripted data (then b"" for end of stream);
    writes are captured in ``written_data``.
    """

    def __init__(self, data: bytes = b"") -> None:
        """
        Initialize the mock stream.

        Args:
            data: Initial data to be available for reading.
        """
        self._data = data
        self._position = 0
        self._closed = False
        self._extra_info: Dict[str, Any] = {}
        self._write_buffer: List[bytes] = []

    async def read(self, max_bytes: int = 65536) -> bytes:
        if self._closed:
            raise ConnectionError("Stream is closed")

        end = min(self._position + max_bytes, len(self._data))
        result = self._data[self._position:end]
        self._position = end
        return result

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionError("Stream is closed")
        self._write_buffer.append(data)

    async def aclose(self) -> None:
        self._closed = True

    def get_extra_info(self, name: str) -> Optional[Any]:
        return self._extra_info.get(name)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def written_data(self) -> bytes:
        """Get all data that was written to the stream."""
        return b"".join(self._write_buffer)

    def set_extra_info(self, name: str, value: Any) -> None:
        self._extra_info[name] = value

    def add_data(self, data: bytes) -> None:
        """Add data to be available for reading."""
        self._data += data


class MockNetworkBackend(NetworkBackend):
    """
    Mock network backend for testing.

    Every connect creates a new ``MockNetworkStream`` primed with the
    next scripted payload (see ``script``), or with no data when the
    script is exhausted.
    """

    def __init__(self, fail: bool = False) -> None:
        """
        Args:
            fail: Make every connect attempt raise ConnectionError.
        """
        self.fail = fail
        self.streams: List[MockNetworkStream] = []
        self.connect_calls: List[Tuple[str, int, bool]] = []
        self._script: Deque[bytes] = deque()

    def script(self, *payloads: bytes) -> None:
        """Queue peer data for the next connections, one payload each."""
        self._script.extend(payloads)

    def _new_stream(self, host: str, port: int, tls: bool) -> MockNetworkStream:
        self.connect_calls.append((host, port, tls))
        if self.fail:
            raise ConnectionError(f"failed to connect to {host}:{port}")

        stream = MockNetworkStream(self._script.popleft() if self._script else b"")
        stream.set_extra_info("peername", (host, port))
        stream.set_extra_info("sockname", ("127.0.0.1", 12345 + len(self.streams)))
        if tls:
            stream.set_extra_info("ssl_object", True)
            stream.set_extra_info("selected_alpn_protocol", "h2")
        self.streams.append(stream)
        return stream

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
    ) -> MockNetworkStream:
        return self._new_stream(host, port, tls=False)

    async def connect_tls(
        self,
        host: str,
        port: int,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
        server_hostname: Optional[str] = None,
    ) -> MockNetworkStream:
        return self._new_stream(host, port, tls=True)

    async def connect_unix(
        self,
        path: str,
        timeout: Optional[float] = None,
    ) -> MockNetworkStream:
        return self._new_stream(path, 0, tls=False)

    @property
    def connection_count(self) -> int:
        return len(self.streams)
