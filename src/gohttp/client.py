"""
Public clients for gohttp.

``GoHttp`` sends HTTP/1.1 requests over pooled keep-alive connections
to any origin; ``GoHttp.connect`` binds it to a base URL. ``GoHttp2``
sends HTTP/2 requests over one auto-reconnecting session per origin,
and ``H2SessionPool`` spreads requests over several such sessions.

Every request returns a ``ResponseRecord``. Timeouts and transport
failures are reported in the record (``status == 0``), never raised.
"""

import asyncio
import dataclasses
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Union

from .config import MB, ClientConfig
from .exceptions import ConnectionError
from .http_primitives import (
    DownloadOptions,
    Method,
    ProgressCallback,
    Protocol,
    RequestSpec,
    URLComponents,
)
from .multipart import BodyMaker
from .network import NetworkBackend
from .normalizer import RequestNormalizer, encode_body, merge_headers
from .response import ResponseRecord
from .session import ConnectionFactory, HTTP2SessionManager, SessionState
from .transport import HTTP11Transport, HTTP2Transport

logger = logging.getLogger(__name__)

ConfigLike = Union[ClientConfig, Mapping[str, Any], None]


def _resolve_config(config: ConfigLike, options: Mapping[str, Any], **defaults: Any) -> ClientConfig:
    if isinstance(config, ClientConfig):
        if not options:
            return config
        merged: Dict[str, Any] = dataclasses.asdict(config)
    else:
        merged = dict(defaults)
        merged.update(config or {})
    merged.update(options)
    return ClientConfig.from_options(merged)


class _RequestMethods(ABC):
    """Verb helpers built on ``request``."""

    @abstractmethod
    async def request(self, target: str, method: Union[str, Method] = "GET", **options: Any) -> ResponseRecord:
        """Send one request and return its record."""

    async def get(self, target: str, **options: Any) -> ResponseRecord:
        return await self.request(target, Method.GET, **options)

    async def post(self, target: str, **options: Any) -> ResponseRecord:
        return await self.request(target, Method.POST, **options)

    async def put(self, target: str, **options: Any) -> ResponseRecord:
        return await self.request(target, Method.PUT, **options)

    async def patch(self, target: str, **options: Any) -> ResponseRecord:
        return await self.request(target, Method.PATCH, **options)

    async def delete(self, target: str, **options: Any) -> ResponseRecord:
        return await self.request(target, Method.DELETE, **options)

    async def options(self, target: str, **options: Any) -> ResponseRecord:
        return await self.request(target, Method.OPTIONS, **options)

    async def head(self, target: str, **options: Any) -> ResponseRecord:
        return await self.request(target, Method.HEAD, **options)

    async def upload(
        self,
        target: str,
        files: Optional[Mapping[str, Any]] = None,
        form: Optional[Mapping[str, Any]] = None,
        **options: Any,
    ) -> ResponseRecord:
        """
        Upload files and form fields as multipart/form-data.

        Args:
            target: URL (or path for bound clients)
            files: Field name to one path or a list of paths
            form: Field name to value
        """
        method = options.pop("method", Method.POST)
        return await self.request(target, method, files=files, form=form, **options)

    async def up(self, target: str, file: str, name: str = "file", **options: Any) -> ResponseRecord:
        """Upload a single file under field ``name``."""
        if not file:
            raise ValueError("file required")
        return await self.upload(target, files={name: file}, **options)

    async def download(
        self,
        target: str,
        dir: str = ".",
        progress: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        **options: Any,
    ) -> ResponseRecord:
        """
        Download a response body into ``dir``.

        The record's ``path`` names the written file. Error statuses
        (>= 400) write no file; the record then carries the error body.

        Args:
            target: URL (or path for bound clients)
            dir: Destination directory, created if missing
            progress: Log download progress
            on_progress: Called with (received, total) after each chunk
        """
        method = options.pop("method", Method.GET)
        download = DownloadOptions(dir=dir, progress=progress, on_progress=on_progress)
        return await self.request(target, method, download=download, **options)


class _BaseClient(_RequestMethods):
    """Normalize, encode and send through a transport."""

    def __init__(self, normalizer: RequestNormalizer, transport: Any, body_maker: BodyMaker):
        self._normalizer = normalizer
        self._transport = transport
        self._body_maker = body_maker

    async def request(self, target: str, method: Union[str, Method] = "GET", **options: Any) -> ResponseRecord:
        """
        Send a request.

        Args:
            target: URL (or path for bound clients)
            method: HTTP method
            **options: ``RequestSpec`` fields (headers, query, body,
                raw_body, form, files, timeout, verify_cert,
                without_prefix, download, sse_callback, sse)

        Raises:
            InvalidTarget: If the target cannot be resolved
            MissingBody: If the method requires a body and none was given
            StreamError: If an upload file cannot be stat'ed
            ResponseTooLarge: If the response exceeds ``max_body``
            ConnectionError: If the client has been closed
        """
        return await self.send(RequestSpec(target=target, method=method, **options))

    async def send(self, spec: RequestSpec) -> ResponseRecord:
        """Send a prepared ``RequestSpec``."""
        if self.is_closed:
            raise ConnectionError("client is closed")
        request = self._normalizer.normalize(spec)
        body = encode_body(request, self._body_maker)
        return await self._transport.send(request, body)

    def set_header(self, name: Union[str, Mapping[str, str]], value: Optional[str] = None) -> "_BaseClient":
        """Set default headers for subsequent requests."""
        if isinstance(name, Mapping):
            for key, val in name.items():
                self._normalizer.set_header(key, val)
        else:
            self._normalizer.set_header(name, value)
        return self

    @property
    def prefix(self) -> str:
        return self._normalizer.prefix

    @prefix.setter
    def prefix(self, value: str) -> None:
        self._normalizer.prefix = value

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Whether ``close`` has been called."""

    @abstractmethod
    async def close(self) -> None:
        """Release the client's connections."""

    async def __aenter__(self) -> "_BaseClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class GoHttp(_BaseClient):
    """
    HTTP/1.1 client.

    Targets are absolute URLs. Connections are pooled per origin and
    per certificate-verification mode for the lifetime of the client.

    Example:
        async with GoHttp(timeout=10) as client:
            res = await client.get("https://example.com/", query={"q": 1})
            print(res.status, res.text())
    """

    def __init__(
        self,
        config: ConfigLike = None,
        backend: Optional[NetworkBackend] = None,
        **options: Any,
    ):
        self.config = _resolve_config(config, options)
        super().__init__(
            RequestNormalizer(
                Protocol.HTTP11,
                self.config.headers,
                default_timeout=self.config.timeout,
                verify_cert=self.config.verify_cert,
            ),
            HTTP11Transport(self.config, backend),
            BodyMaker(),
        )
        self._closed = False

    def connect(self, base_url: str, headers: Optional[Mapping[str, str]] = None) -> "BoundClient":
        """Bind to a base URL; its path becomes the request prefix."""
        return BoundClient(self, base_url, headers)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Close idle pooled connections; the client cannot be reused."""
        if self._closed:
            return
        self._closed = True
        await self._transport.close()
        logger.debug("HTTP/1.1 client closed")


class BoundClient(_BaseClient):
    """
    HTTP/1.1 client view bound to a base URL.

    Requests take paths relative to the base URL and go through the
    parent client's pools.
    """

    def __init__(self, client: GoHttp, base_url: str, headers: Optional[Mapping[str, str]] = None):
        url = URLComponents.from_url(base_url)
        super().__init__(
            RequestNormalizer(
                Protocol.HTTP11,
                merge_headers(client.config.headers, headers),
                origin=url.with_target("/"),
                prefix=url.path,
                default_timeout=client.config.timeout,
                verify_cert=client.config.verify_cert,
            ),
            client._transport,
            client._body_maker,
        )
        self._client = client
        self.url = url

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def close(self) -> None:
        """The parent client owns the connections; nothing to release."""


class GoHttp2(_BaseClient):
    """
    HTTP/2 client bound to one origin.

    The path of ``url`` becomes the request prefix. The session is
    opened on ``start`` or on the first request and reopened after it
    closes while keepalive is enabled.
    """

    DEFAULT_TIMEOUT = 15.0
    DEFAULT_MAX_BODY = 200 * MB

    def __init__(
        self,
        url: str,
        config: ConfigLike = None,
        backend: Optional[NetworkBackend] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        **options: Any,
    ):
        self.config = _resolve_config(
            config,
            options,
            timeout=self.DEFAULT_TIMEOUT,
            max_body=self.DEFAULT_MAX_BODY,
        )
        url_components = URLComponents.from_url(url)
        origin = url_components.with_target("/")

        self._sessions = HTTP2SessionManager(origin, self.config, backend, connection_factory)
        super().__init__(
            RequestNormalizer(
                Protocol.HTTP2,
                self.config.headers,
                origin=origin,
                prefix=url_components.path,
                default_timeout=self.config.timeout,
                verify_cert=self.config.verify_cert,
            ),
            HTTP2Transport(self._sessions, self.config.max_body),
            BodyMaker(),
        )
        self.url = url_components

    def start(self) -> None:
        """Begin connecting in the background (needs a running loop)."""
        self._sessions.connect()

    @property
    def state(self) -> SessionState:
        return self._sessions.state

    @property
    def sessions(self) -> HTTP2SessionManager:
        return self._sessions

    @property
    def is_closed(self) -> bool:
        return self._sessions.is_closed

    async def close(self) -> None:
        """Close the session; no reconnect is attempted afterwards."""
        await self._sessions.close()


def http2_connect(url: str, **options: Any) -> GoHttp2:
    """Create an HTTP/2 client and start connecting (needs a running loop)."""
    client = GoHttp2(url, **options)
    client.start()
    return client


class H2SessionPool(_RequestMethods):
    """Round-robin over ``size`` independent HTTP/2 clients."""

    def __init__(self, url: str, size: int = 1, config: ConfigLike = None, **options: Any):
        if size < 1:
            raise ValueError("size must be at least 1")
        self._clients: List[GoHttp2] = [GoHttp2(url, config, **options) for _ in range(size)]
        self._cursor = 0

    def _next_client(self) -> GoHttp2:
        client = self._clients[self._cursor]
        self._cursor = (self._cursor + 1) % len(self._clients)
        return client

    async def request(self, target: str, method: Union[str, Method] = "GET", **options: Any) -> ResponseRecord:
        return await self._next_client().request(target, method, **options)

    def start(self) -> None:
        for client in self._clients:
            client.start()

    @property
    def clients(self) -> List[GoHttp2]:
        return list(self._clients)

    async def close(self) -> None:
        await asyncio.gather(*(client.close() for client in self._clients))

    async def __aenter__(self) -> "H2SessionPool":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
