"""
HTTP/1.1 connection pool implementation.

A pool ("agent") keeps keep-alive connections per (scheme, host, port)
or per Unix socket path, and lends them to concurrent requests. Requests beyond the socket
limit wait for a connection instead of failing.
"""

import asyncio
import logging
import ssl
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Deque, Dict, Optional, Tuple

from .exceptions import ConnectionError
from .http11 import HTTP11Connection
from .http_primitives import URLComponents
from .network import NetworkBackend

logger = logging.getLogger(__name__)

# (scheme, host, port, socket path)
PoolKey = Tuple[str, str, int, Optional[str]]


def _key(url: URLComponents) -> PoolKey:
    return (url.scheme, url.host, url.port, url.socket_path)


def _label(key: PoolKey) -> str:
    _, host, port, socket_path = key
    return socket_path or f"{host}:{port}"


class ConnectionPool:
    """
    HTTP/1.1 connection pool.

    All bookkeeping happens on the event loop without suspension
    points between reads and writes of the idle lists, so concurrent
    requests never observe a half-updated pool.
    """

    def __init__(
        self,
        backend: NetworkBackend,
        ssl_context: Optional[ssl.SSLContext] = None,
        max_sockets: int = 1024,
        max_free_sockets: int = 256,
        keep_alive_timeout: float = 60.0,
        connect_timeout: Optional[float] = 10.0,
    ):
        """
        Initialize connection pool.

        Args:
            backend: Network backend to use for connections
            ssl_context: TLS context for https origins (None: plain only)
            max_sockets: Maximum concurrent connections per origin
            max_free_sockets: Idle connections retained per origin
            keep_alive_timeout: Idle time after which a connection expires
            connect_timeout: Bound on connect plus TLS handshake
        """
        self._backend = backend
        self._ssl_context = ssl_context
        self._max_sockets = max_sockets
        self._max_free_sockets = max_free_sockets
        self._keep_alive_timeout = keep_alive_timeout
        self._connect_timeout = connect_timeout

        self._idle: Dict[PoolKey, Deque[HTTP11Connection]] = defaultdict(deque)
        self._limits: Dict[PoolKey, asyncio.Semaphore] = {}
        self._active: Dict[PoolKey, int] = defaultdict(int)
        self._closed = False

        # Metrics
        self._total_connections_created = 0
        self._total_connections_closed = 0
        self._total_connections_reused = 0
        self._total_requests_handled = 0

        logger.debug(
            f"Connection pool initialized: max_sockets={max_sockets}, "
            f"max_free_sockets={max_free_sockets}, tls={ssl_context is not None}"
        )

    @asynccontextmanager
    async def connection(self, url: URLComponents) -> AsyncIterator[HTTP11Connection]:
        """
        Borrow a connection for one exchange.

        The connection goes back to the idle list if the exchange
        completed and the connection is reusable; it is closed if the
        body raised (including cancellation by a timeout).
        """
        key = _key(url)
        limit = self._limits.get(key)
        if limit is None:
            limit = self._limits[key] = asyncio.Semaphore(self._max_sockets)

        async with limit:
            connection = await self._acquire(key)
            self._active[key] += 1
            try:
                yield connection
            except BaseException:
                self._active[key] -= 1
                await self._discard(connection)
                raise
            self._active[key] -= 1
            self._total_requests_handled += 1
            await self._release(key, connection)

    async def _acquire(self, key: PoolKey) -> HTTP11Connection:
        if self._closed:
            raise ConnectionError("Connection pool is closed")

        idle = self._idle[key]
        while idle:
            connection = idle.pop()
            if connection.is_idle and not connection.has_expired(self._keep_alive_timeout):
                self._total_connections_reused += 1
                logger.debug(f"Reusing connection to {_label(key)}")
                return connection
            await self._discard(connection)

        scheme, host, port, socket_path = key
        if socket_path is not None:
            stream = await self._backend.connect_unix(socket_path, timeout=self._connect_timeout)
        elif scheme == "https":
            if self._ssl_context is None:
                raise ConnectionError(f"pool has no TLS context for {host}:{port}")
            stream = await self._backend.connect_tls(
                host, port, self._ssl_context, timeout=self._connect_timeout
            )
        else:
            stream = await self._backend.connect_tcp(host, port, timeout=self._connect_timeout)

        self._total_connections_created += 1
        logger.debug(f"Created new connection to {_label(key)}")
        return HTTP11Connection(stream, keep_alive_timeout=self._keep_alive_timeout)

    async def _release(self, key: PoolKey, connection: HTTP11Connection) -> None:
        idle = self._idle[key]
        if self._closed or not connection.is_idle or len(idle) >= self._max_free_sockets:
            await self._discard(connection)
            return
        idle.append(connection)
        logger.debug(f"Returned connection to pool for {_label(key)}")

    async def _discard(self, connection: HTTP11Connection) -> None:
        await connection.close()
        self._total_connections_closed += 1

    async def close(self) -> None:
        """Close idle connections and refuse further acquisitions."""
        self._closed = True
        for idle in self._idle.values():
            while idle:
                await self._discard(idle.pop())
        self._idle.clear()
        logger.debug(f"Connection pool closed. Closed {self._total_connections_closed} connections")

    def idle_count(self, url: URLComponents) -> int:
        """Number of idle connections kept for an origin."""
        return len(self._idle.get(_key(url), ()))

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def metrics(self) -> Dict[str, Any]:
        """Get pool metrics."""
        return {
            "total_connections_created": self._total_connections_created,
            "total_connections_closed": self._total_connections_closed,
            "total_connections_reused": self._total_connections_reused,
            "total_requests_handled": self._total_requests_handled,
            "idle_per_host": {
                _label(key): len(idle)
                for key, idle in self._idle.items()
            },
            "active_per_host": {
                _label(key): count
                for key, count in self._active.items()
                if count
            },
            "max_sockets": self._max_sockets,
            "max_free_sockets": self._max_free_sockets,
            "keep_alive_timeout": self._keep_alive_timeout,
        }
