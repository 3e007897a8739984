"""
Network backend interface for gohttp.

A backend opens ``NetworkStream`` connections. The HTTP/1.1 pool and
the HTTP/2 session manager both take a backend so tests can swap in
the in-memory mock.
"""

import ssl
from abc import ABC, abstractmethod
from typing import Optional

from .stream import NetworkStream


class NetworkBackend(ABC):
    """Factory of plain and TLS network streams."""

    @abstractmethod
    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
    ) -> NetworkStream:
        """
        Connect to a TCP endpoint.

        Args:
            host: The hostname or IP address to connect to.
            port: The port number to connect to.
            timeout: Optional timeout in seconds for the connection.

        Raises:
            ConnectionError: If the connection fails or times out.
        """

    @abstractmethod
    async def connect_tls(
        self,
        host: str,
        port: int,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
        server_hostname: Optional[str] = None,
    ) -> NetworkStream:
        """
        Connect to a TCP endpoint and perform the TLS handshake.

        Args:
            host: The hostname or IP address to connect to.
            port: The port number to connect to.
            ssl_context: Context carrying verification mode, client
                certificate and ALPN protocols.
            timeout: Optional bound on connect plus handshake.
            server_hostname: SNI / verification name (defaults to host).

        Raises:
            ConnectionError: If the connection or handshake fails.
        """

    @abstractmethod
    async def connect_unix(
        self,
        path: str,
        timeout: Optional[float] = None,
    ) -> NetworkStream:
        """
        Connect to a Unix domain socket.

        Args:
            path: Filesystem path of the socket.
            timeout: Optional timeout in seconds for the connection.

        Raises:
            ConnectionError: If the connection fails or times out.
        """
