"""
HTTP/2 session management for gohttp.

``HTTP2SessionManager`` owns at most one live ``HTTP2Connection`` for
an origin. It connects lazily, reconnects after the connection closes
(when keepalive is enabled) and lets requests wait a bounded time for
the session to become ready.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from .config import ClientConfig
from .exceptions import ConnectionError, ConnectionTimeout, HTTPCoreError
from .http2 import HTTP2Connection
from .http_primitives import URLComponents
from .network import AsyncioNetworkBackend, NetworkBackend, create_ssl_context

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], Awaitable[HTTP2Connection]]


class SessionState(Enum):
    """States of an HTTP/2 session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


_TRANSITIONS = {
    SessionState.DISCONNECTED: {SessionState.CONNECTING, SessionState.CLOSED},
    SessionState.CONNECTING: {SessionState.READY, SessionState.DISCONNECTED, SessionState.CLOSED},
    SessionState.READY: {SessionState.DISCONNECTED, SessionState.CLOSING},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class HTTP2SessionManager:
    """
    Auto-reconnecting HTTP/2 session.

    The current connection is replaced, never mutated, on reconnect;
    requests fetch it through ``wait_for_ready`` every time. Streams
    in flight on a dropped connection fail with ``ConnectionError``
    and are not migrated to the new one.
    """

    def __init__(
        self,
        origin: URLComponents,
        config: ClientConfig,
        backend: Optional[NetworkBackend] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ):
        """
        Initialize the session manager.

        Args:
            origin: Origin the session is bound to
            config: Client configuration (timeouts, reconnect, TLS)
            backend: Network backend used by the default connection factory
            connection_factory: Coroutine function returning a started
                connection; replaces the default socket-based factory
        """
        self._origin = origin
        self._config = config
        self._backend = backend or AsyncioNetworkBackend()
        self._connection_factory = connection_factory or self._open_connection

        self._ssl_context = None
        if origin.scheme == "https":
            self._ssl_context = create_ssl_context(
                verify=config.verify_cert,
                cert_file=config.cert,
                key_file=config.key,
                alpn_protocols=["h2"],
            )

        self._state = SessionState.DISCONNECTED
        self._connection: Optional[HTTP2Connection] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

        # Metrics
        self._connects = 0
        self._connect_failures = 0
        self._reconnects = 0

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(
                f"invalid session transition {self._state.value} -> {new_state.value}"
            )
        logger.debug(f"Session {self._origin.origin}: {self._state.value} -> {new_state.value}")
        self._state = new_state

    def connect(self) -> None:
        """Start a connect attempt unless one is running or the session is up."""
        if self._closed or self._state is not SessionState.DISCONNECTED:
            return
        self._transition(SessionState.CONNECTING)
        self._connect_task = asyncio.get_running_loop().create_task(self._connect())

    async def _connect(self) -> None:
        try:
            connection = await self._connection_factory()
        except (HTTPCoreError, OSError) as e:
            self._connect_task = None
            self._connect_failures += 1
            logger.warning(f"HTTP/2 connect to {self._origin.origin} failed: {e}")
            if self._state is SessionState.CONNECTING:
                self._transition(SessionState.DISCONNECTED)
                if self._config.keepalive:
                    self._schedule_reconnect()
            return

        self._connect_task = None
        if self._closed:
            await connection.close()
            return

        self._connects += 1
        self._connection = connection
        self._transition(SessionState.READY)
        connection.add_goaway_callback(self._on_goaway)
        connection.add_close_callback(self._on_connection_closed)

    async def _open_connection(self) -> HTTP2Connection:
        host, port = self._origin.host, self._origin.port
        if self._ssl_context is not None:
            stream = await self._backend.connect_tls(
                host, port, self._ssl_context, timeout=self._config.connect_timeout
            )
        else:
            stream = await self._backend.connect_tcp(
                host, port, timeout=self._config.connect_timeout
            )

        connection = HTTP2Connection(stream, self._origin.authority, self._origin.scheme)
        await connection.start()
        return connection

    def _on_goaway(self, connection: HTTP2Connection) -> None:
        # The server closes the socket after GOAWAY; reconnect happens then
        logger.warning(f"Session {self._origin.origin} received GOAWAY")

    def _on_connection_closed(self, connection: HTTP2Connection) -> None:
        if connection is not self._connection:
            return
        self._connection = None
        if self._state is SessionState.READY:
            self._transition(SessionState.DISCONNECTED)
        if self._config.keepalive and not self._closed:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed or self._reconnect_timer is not None:
            return
        delay = self._config.reconn_delay
        logger.debug(f"Reconnecting to {self._origin.origin} in {delay}s")
        self._reconnect_timer = asyncio.get_running_loop().call_later(delay, self._on_reconnect_timer)

    def _on_reconnect_timer(self) -> None:
        self._reconnect_timer = None
        self._reconnects += 1
        self.connect()

    async def wait_for_ready(self) -> HTTP2Connection:
        """
        Return the live connection, connecting if necessary.

        Polls every ``connect_poll_interval`` seconds for at most
        ``connect_wait`` seconds.

        Raises:
            ConnectionError: If the session has been closed
            ConnectionTimeout: If no connection became ready in time
        """
        if self._closed:
            raise ConnectionError("HTTP/2 session is closed")
        if self._state is SessionState.READY and self._connection is not None:
            return self._connection

        self.connect()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.connect_wait
        while True:
            await asyncio.sleep(self._config.connect_poll_interval)
            if self._closed:
                raise ConnectionError("HTTP/2 session is closed")
            if self._state is SessionState.READY and self._connection is not None:
                return self._connection
            if loop.time() >= deadline:
                raise ConnectionTimeout(
                    f"HTTP/2 session to {self._origin.origin} not ready",
                    timeout=self._config.connect_wait,
                )

    async def close(self) -> None:
        """Close the session for good; pending reconnects are cancelled."""
        if self._closed:
            return
        self._closed = True

        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

        task = self._connect_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._connect_task = None

        connection = self._connection
        self._connection = None
        if self._state is SessionState.READY:
            self._transition(SessionState.CLOSING)
        if connection is not None:
            await connection.close()
        self._transition(SessionState.CLOSED)
        logger.debug(f"Session {self._origin.origin} closed")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def connection(self) -> Optional[HTTP2Connection]:
        return self._connection

    @property
    def origin(self) -> URLComponents:
        return self._origin

    @property
    def metrics(self) -> Dict[str, Any]:
        """Get session metrics."""
        return {
            "state": self._state.value,
            "connects": self._connects,
            "connect_failures": self._connect_failures,
            "reconnects": self._reconnects,
            "reconnect_pending": self._reconnect_timer is not None,
        }
