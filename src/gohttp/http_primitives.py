"""
HTTP primitives for gohttp.

This module defines the core data structures for requests: the
caller-facing ``RequestSpec``, the canonical request record produced
by the normalizer, and the multipart descriptor used for uploads.
Canonical records are immutable so that concurrent requests can never
observe each other's state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
    Union,
)
from urllib.parse import urlsplit

from .exceptions import InvalidTarget, ProtocolError


Headers = Dict[str, str]
ProgressCallback = Callable[[int, Optional[int]], None]
# (chunk, status, headers); chunk is None once the stream has ended
StreamCallback = Callable[[Optional[bytes], int, Headers], Any]

DEFAULT_PORTS = {"http": 80, "https": 443}


class Method(str, Enum):
    """HTTP methods supported by the clients."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    HEAD = "HEAD"

    @classmethod
    def parse(cls, method: Union[str, "Method"]) -> "Method":
        """Parse a method name case-insensitively."""
        if isinstance(method, Method):
            return method
        try:
            return cls(method.upper())
        except ValueError:
            raise ProtocolError(f"unsupported method {method!r}") from None

    @property
    def requires_body(self) -> bool:
        """Whether the method must always carry a body."""
        return self in (Method.POST, Method.PUT, Method.PATCH)

    @property
    def allows_body(self) -> bool:
        """Whether a declared body is sent with this method."""
        return self.requires_body or self is Method.DELETE


class Protocol(Enum):
    """Wire protocol a canonical request is prepared for."""
    HTTP11 = "http/1.1"
    HTTP2 = "h2"


class BodyKind(Enum):
    """Resolved body-encoding strategy."""
    NONE = "none"
    RAW = "raw"
    MULTIPART = "multipart"
    URLENCODED = "urlencoded"
    JSON = "json"
    TEXT = "text"


class URLComponents(NamedTuple):
    """
    Immutable representation of URL components.

    ``socket_path`` is set for ``unix:/path/to/app.sock/target`` URLs;
    such requests are plain HTTP over a Unix domain socket with the
    host "unix".
    """
    scheme: str
    host: str
    port: int
    target: str
    socket_path: Optional[str] = None

    @classmethod
    def from_url(cls, url: str) -> "URLComponents":
        """
        Create URLComponents from an absolute URL string.

        Raises:
            InvalidTarget: If the URL has no host, an unsupported
                scheme or an invalid port
        """
        if not isinstance(url, str) or not url:
            raise InvalidTarget(str(url), "empty URL")
        if url.startswith("unix:"):
            return cls._from_unix_url(url)

        try:
            parsed = urlsplit(url)
            port = parsed.port
        except ValueError as e:
            raise InvalidTarget(url, str(e)) from e

        scheme = parsed.scheme.lower()
        if scheme not in DEFAULT_PORTS:
            raise InvalidTarget(url, "scheme must be http or https")
        if not parsed.hostname:
            raise InvalidTarget(url, "no hostname")

        target = parsed.path or "/"
        if parsed.query:
            target = f"{target}?{parsed.query}"

        return cls(
            scheme=scheme,
            host=parsed.hostname,
            port=port or DEFAULT_PORTS[scheme],
            target=target,
        )

    @classmethod
    def _from_unix_url(cls, url: str) -> "URLComponents":
        # unix:/run/app.sock/status -> socket /run/app.sock, target /status
        socket_path, sep, target = url[len("unix:"):].partition(".sock")
        if not sep or not socket_path:
            raise InvalidTarget(url, "unix URL must name a .sock file")

        if not target or target.startswith("?"):
            target = f"/{target}"
        elif not target.startswith("/"):
            raise InvalidTarget(url, "unix URL target must start with '/'")

        return cls(
            scheme="http",
            host="unix",
            port=DEFAULT_PORTS["http"],
            target=target,
            socket_path=f"{socket_path}.sock",
        )

    @property
    def path(self) -> str:
        """Target without its query string."""
        return self.target.split("?", 1)[0]

    @property
    def authority(self) -> str:
        """Host with the port, omitted when it is the scheme default."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        if DEFAULT_PORTS.get(self.scheme) == self.port:
            return host
        return f"{host}:{self.port}"

    @property
    def origin(self) -> str:
        """Scheme and authority, e.g. ``https://example.com:8443``."""
        if self.socket_path is not None:
            return f"unix:{self.socket_path}"
        return f"{self.scheme}://{self.authority}"

    def with_target(self, target: str) -> "URLComponents":
        """Create components with a different target."""
        return self._replace(target=target)


@dataclass(frozen=True)
class MultipartDescriptor:
    """
    Immutable description of a multipart/form-data body.

    ``form`` holds (name, value) pairs and ``files`` holds
    (name, paths) pairs; one field may upload several files.
    """

    form: Tuple[Tuple[str, str], ...] = ()
    files: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()

    @classmethod
    def create(
        cls,
        form: Optional[Mapping[str, Any]] = None,
        files: Optional[Mapping[str, Union[str, Sequence[str]]]] = None,
    ) -> "MultipartDescriptor":
        """
        Create a descriptor from form and file mappings.

        Args:
            form: Field name to scalar value
            files: Field name to one path or a list of paths
        """
        form_items = tuple(
            (str(name), _scalar_to_str(value)) for name, value in (form or {}).items()
        )

        file_items = []
        for name, paths in (files or {}).items():
            if isinstance(paths, str):
                paths = (paths,)
            file_items.append((str(name), tuple(str(p) for p in paths)))

        return cls(form=form_items, files=tuple(file_items))

    def iter_files(self) -> Iterator[Tuple[str, str]]:
        """Iterate (field name, path) for every declared file."""
        for name, paths in self.files:
            for path in paths:
                yield name, path

    @property
    def is_empty(self) -> bool:
        return not self.form and not self.files


def _scalar_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class DownloadOptions:
    """Where and how a download response is written."""

    dir: str = "."
    progress: bool = False
    on_progress: Optional[ProgressCallback] = None


@dataclass
class RequestSpec:
    """
    Loosely-typed request description built by the caller.

    A spec is created fresh for every call and handed to the
    normalizer, which turns it into a ``CanonicalRequest``.

    Attributes:
        target: Absolute URL (HTTP/1.1) or path (HTTP/2)
        method: HTTP method name
        headers: Per-request headers (win over client defaults)
        query: Mapping or preformatted string appended to the target
        body: bytes (raw), str (text) or a structured object
        raw_body: Bytes sent verbatim, taking precedence over everything
        form: Multipart form fields
        files: Multipart file fields (one path or a list of paths)
        timeout: Per-request timeout override in seconds
        verify_cert: Per-request certificate verification override
        without_prefix: Skip the client's path prefix
        download: Download options, or None for an in-memory response
        sse_callback: Receives event-stream chunks as they arrive instead
            of buffering the body
        sse: Also stream text/plain responses to ``sse_callback``
    """

    target: str
    method: Union[str, Method] = "GET"
    headers: Headers = field(default_factory=dict)
    query: Optional[Union[Mapping[str, Any], str]] = None
    body: Any = None
    raw_body: Optional[Union[bytes, bytearray, str]] = None
    form: Optional[Mapping[str, Any]] = None
    files: Optional[Mapping[str, Union[str, Sequence[str]]]] = None
    timeout: Optional[float] = None
    verify_cert: Optional[bool] = None
    without_prefix: bool = False
    download: Optional[DownloadOptions] = None
    sse_callback: Optional[StreamCallback] = None
    sse: bool = False


@dataclass(frozen=True)
class CanonicalRequest:
    """
    Immutable, fully-resolved request.

    For HTTP/2 requests ``url`` carries the session origin, so
    transports never re-parse targets.
    """

    method: Method
    url: URLComponents
    headers: Headers
    protocol: Protocol
    timeout: float
    body_kind: BodyKind = BodyKind.NONE
    payload: Any = None
    verify_cert: bool = True
    download: Optional[DownloadOptions] = None
    sse_callback: Optional[StreamCallback] = None
    sse: bool = False

    @property
    def target(self) -> str:
        """Origin-form target (path and query)."""
        return self.url.target

    @property
    def scheme(self) -> str:
        return self.url.scheme

    @property
    def host(self) -> str:
        return self.url.host

    @property
    def port(self) -> int:
        return self.url.port

    def get_header(self, name: str) -> Optional[str]:
        """Get a header value by name (case-insensitive)."""
        return self.headers.get(name.lower())

    def with_headers(self, headers: Headers) -> "CanonicalRequest":
        """Create a new request with different headers."""
        return CanonicalRequest(
            method=self.method,
            url=self.url,
            headers=headers,
            protocol=self.protocol,
            timeout=self.timeout,
            body_kind=self.body_kind,
            payload=self.payload,
            verify_cert=self.verify_cert,
            download=self.download,
            sse_callback=self.sse_callback,
            sse=self.sse,
        )
