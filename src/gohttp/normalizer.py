"""
Request normalization and body encoding for gohttp.

``RequestNormalizer.normalize`` turns a ``RequestSpec`` into an
immutable ``CanonicalRequest`` without doing any I/O: it merges
headers, resolves the target for the wire protocol and picks the
body-encoding strategy. ``encode_body`` then produces the final
headers and the body stream; it is the only step that touches the
filesystem (one stat per multipart file).
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

from .exceptions import InvalidTarget, MissingBody, ProtocolError
from .http_primitives import (
    BodyKind,
    CanonicalRequest,
    Headers,
    Method,
    MultipartDescriptor,
    Protocol,
    RequestSpec,
    URLComponents,
)
from .multipart import BodyMaker
from .streams import RequestStream

logger = logging.getLogger(__name__)

# Headers that must not be sent over HTTP/2 (RFC 9113, section 8.2.2).
CONNECTION_SPECIFIC_HEADERS = frozenset({
    "connection",
    "host",
    "keep-alive",
    "proxy-connection",
    "transfer-encoding",
    "upgrade",
})

# Scheme-qualified URL or a Unix socket URL; anything else is a path
_ABSOLUTE_TARGET = re.compile(r"^(?:[A-Za-z][A-Za-z0-9+.-]*://|unix:)")

MULTIPART = "multipart/form-data"
URLENCODED = "application/x-www-form-urlencoded"


def format_prefix(prefix: Optional[str]) -> str:
    """
    Normalize a path prefix.

    The result starts with '/' and has no trailing '/'; a root or
    empty prefix becomes ''.
    """
    if not isinstance(prefix, str):
        return ""
    prefix = prefix.rstrip("/")
    if not prefix:
        return ""
    if not prefix.startswith("/"):
        prefix = f"/{prefix}"
    return prefix


def merge_headers(*layers: Optional[Mapping[str, Any]]) -> Headers:
    """
    Merge header mappings; later layers win.

    Names are lower-cased so that ``Content-Type`` and ``content-type``
    are the same header.
    """
    merged: Headers = {}
    for layer in layers:
        if not layer:
            continue
        for name, value in layer.items():
            merged[str(name).lower()] = str(value)
    return merged


def append_query(target: str, query: Optional[Union[Mapping[str, Any], str]]) -> str:
    """Append a query mapping or string using '?' or '&' as needed."""
    if query is None:
        return target

    if isinstance(query, str):
        qs = query.lstrip("?")
    else:
        qs = urlencode(
            [(k, _query_value(v)) for k, v in query.items()],
            doseq=True,
        )

    if not qs:
        return target
    separator = "&" if "?" in target else "?"
    return f"{target}{separator}{qs}"


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return [_query_value(v) for v in value]
    return "" if value is None else value


def _check_path(target: str, path: str) -> None:
    for char in path:
        if char.isspace() or ord(char) < 0x20 or ord(char) == 0x7F:
            raise InvalidTarget(target, "path contains whitespace or control characters")


class RequestNormalizer:
    """
    Turns request specs into canonical requests.

    One normalizer belongs to one client. HTTP/1.1 normalizers accept
    absolute URLs (or paths when bound to an ``origin``); HTTP/2
    normalizers are always bound to the session origin and reject
    absolute URLs pointing elsewhere.
    """

    def __init__(
        self,
        protocol: Protocol,
        default_headers: Optional[Mapping[str, str]] = None,
        origin: Optional[URLComponents] = None,
        prefix: str = "",
        default_timeout: float = 35.0,
        verify_cert: bool = True,
    ) -> None:
        """
        Initialize the normalizer.

        Args:
            protocol: Wire protocol requests are prepared for
            default_headers: Headers merged under every request's headers
            origin: Base origin for relative targets (required for HTTP/2)
            prefix: Path prefix applied to relative targets
            default_timeout: Timeout used when a spec has none
            verify_cert: Certificate verification used when a spec has none
        """
        if protocol is Protocol.HTTP2 and origin is None:
            raise ValueError("HTTP/2 normalizer requires an origin")

        self._protocol = protocol
        self._default_headers = merge_headers(default_headers)
        self._origin = origin
        self._prefix = format_prefix(prefix)
        self._default_timeout = default_timeout
        self._verify_cert = verify_cert

    @property
    def prefix(self) -> str:
        return self._prefix

    @prefix.setter
    def prefix(self, value: str) -> None:
        self._prefix = format_prefix(value)

    def set_header(self, name: str, value: str) -> None:
        """Set a default header for subsequent requests."""
        self._default_headers[name.lower()] = str(value)

    def normalize(self, spec: RequestSpec) -> CanonicalRequest:
        """
        Build the canonical request for a spec.

        Raises:
            InvalidTarget: If the target cannot be parsed
            MissingBody: If the method requires a body and none was given
            ProtocolError: If the method is not supported
        """
        method = Method.parse(spec.method)
        headers = merge_headers(self._default_headers, spec.headers)

        if (spec.files or spec.form) and spec.raw_body is None and not method.allows_body:
            # Upload shorthand on a bodiless method is sent as POST
            method = Method.POST

        url = self._resolve_url(spec)
        kind, payload = self._resolve_body(spec, method, headers)

        if self._protocol is Protocol.HTTP11:
            headers.setdefault("host", url.authority)
        else:
            headers = {
                name: value
                for name, value in headers.items()
                if name not in CONNECTION_SPECIFIC_HEADERS and not name.startswith(":")
            }

        return CanonicalRequest(
            method=method,
            url=url,
            headers=headers,
            protocol=self._protocol,
            timeout=spec.timeout if spec.timeout is not None else self._default_timeout,
            body_kind=kind,
            payload=payload,
            verify_cert=self._verify_cert if spec.verify_cert is None else spec.verify_cert,
            download=spec.download,
            sse_callback=spec.sse_callback,
            sse=spec.sse,
        )

    def _resolve_url(self, spec: RequestSpec) -> URLComponents:
        target = spec.target if spec.target is not None else ""
        if not isinstance(target, str):
            raise InvalidTarget(str(target), "target must be a string")

        if _ABSOLUTE_TARGET.match(target):
            url = URLComponents.from_url(target)
            if self._protocol is Protocol.HTTP2 and url.origin != self._origin.origin:
                raise InvalidTarget(
                    target, f"HTTP/2 session is bound to {self._origin.origin}"
                )
        elif self._origin is not None:
            path = target or "/"
            if not path.startswith("/"):
                path = f"/{path}"
            if self._prefix and not spec.without_prefix:
                if path != self._prefix and not path.startswith(f"{self._prefix}/"):
                    path = f"{self._prefix}/{path.lstrip('/')}"
            url = self._origin.with_target(path)
        else:
            raise InvalidTarget(target, "an absolute http(s) URL is required")

        _check_path(target, url.target)
        return url.with_target(append_query(url.target, spec.query))

    def _resolve_body(
        self,
        spec: RequestSpec,
        method: Method,
        headers: Headers,
    ) -> Tuple[BodyKind, Any]:
        has_source = (
            spec.raw_body is not None
            or spec.body is not None
            or bool(spec.files)
            or bool(spec.form)
        )

        if not has_source:
            if method.requires_body:
                raise MissingBody(method.value)
            return BodyKind.NONE, None

        if not method.allows_body:
            logger.debug(f"Ignoring body of {method.value} request")
            return BodyKind.NONE, None

        content_type = headers.get("content-type", "")
        body = spec.body

        if spec.raw_body is not None:
            return BodyKind.RAW, _to_bytes(spec.raw_body)
        if isinstance(body, (bytes, bytearray)):
            return BodyKind.RAW, bytes(body)

        if spec.files or spec.form:
            return BodyKind.MULTIPART, MultipartDescriptor.create(form=spec.form, files=spec.files)
        if isinstance(body, MultipartDescriptor):
            return BodyKind.MULTIPART, body
        if isinstance(body, Mapping) and "files" in body:
            return BodyKind.MULTIPART, MultipartDescriptor.create(
                form=body.get("form"), files=body.get("files")
            )
        if content_type.startswith(MULTIPART):
            if isinstance(body, Mapping):
                form = body["form"] if "form" in body else body
                return BodyKind.MULTIPART, MultipartDescriptor.create(form=form)
            raise ProtocolError("multipart body must be a mapping of fields")

        if content_type.startswith(URLENCODED) and isinstance(body, Mapping):
            return BodyKind.URLENCODED, dict(body)

        if isinstance(body, str):
            headers.setdefault("content-type", "text/plain")
            return BodyKind.TEXT, body

        headers.setdefault("content-type", "application/json")
        return BodyKind.JSON, body


def _to_bytes(data: Union[bytes, bytearray, str]) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


@dataclass(frozen=True)
class EncodedBody:
    """Final request headers plus the body stream (None for no body)."""

    headers: Headers
    stream: Optional[RequestStream] = None

    @property
    def content_length(self) -> Optional[int]:
        return None if self.stream is None else self.stream.content_length


def encode_body(
    request: CanonicalRequest,
    body_maker: Optional[BodyMaker] = None,
) -> EncodedBody:
    """
    Encode the body of a canonical request.

    The content-length header is always set before any byte is sent;
    for multipart bodies it is computed from file metadata while the
    body itself streams.

    Raises:
        StreamError: If a multipart file cannot be stat'ed
        ProtocolError: If a structured body is not JSON serializable
    """
    headers: Dict[str, str] = dict(request.headers)
    kind = request.body_kind
    payload = request.payload

    if kind is BodyKind.NONE:
        return EncodedBody(headers=headers)

    if kind is BodyKind.MULTIPART:
        encoded = (body_maker or BodyMaker()).encode(payload)
        headers["content-type"] = encoded.content_type
        headers["content-length"] = str(encoded.content_length)
        stream = RequestStream(encoded.stream, content_length=encoded.content_length)
        return EncodedBody(headers=headers, stream=stream)

    if kind is BodyKind.RAW:
        data = payload
    elif kind is BodyKind.URLENCODED:
        data = urlencode(
            [(k, _query_value(v)) for k, v in payload.items()], doseq=True
        ).encode("ascii")
    elif kind is BodyKind.TEXT:
        data = payload.encode("utf-8")
    else:
        try:
            data = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"body is not JSON serializable: {e}", cause=e) from e

    headers["content-length"] = str(len(data))
    return EncodedBody(headers=headers, stream=RequestStream(data))
