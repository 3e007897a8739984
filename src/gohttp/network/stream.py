"""
Network stream interface for gohttp.

Both protocol engines (h11 for HTTP/1.1, h2 for HTTP/2) are sans-IO;
they exchange bytes with the peer only through a ``NetworkStream``.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class NetworkStream(ABC):
    """
    A connected, bidirectional byte stream.

    Implementations are used from a single event loop. ``read`` may be
    awaited by one reader task while other tasks ``write``.
    """

    @abstractmethod
    async def read(self, max_bytes: int = 65536) -> bytes:
        """
        Read up to ``max_bytes`` bytes.

        Returns:
            The data read, or b"" once the peer has closed the stream.

        Raises:
            ConnectionError: If a network error occurs.
        """

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write all of ``data``, waiting for the transport to drain.

        Raises:
            ConnectionError: If the stream is closed or the write fails.
        """

    @abstractmethod
    async def aclose(self) -> None:
        """Close the stream. Closing twice is a no-op."""

    @abstractmethod
    def get_extra_info(self, name: str) -> Optional[Any]:
        """
        Get transport information such as ``"peername"`` or
        ``"selected_alpn_protocol"``; None when unavailable.
        """

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Whether the stream has been closed."""
