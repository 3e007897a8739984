"""
gohttp - Dual-protocol asynchronous HTTP client

HTTP/1.1 requests travel over pooled keep-alive connections; HTTP/2
requests travel over one auto-reconnecting multiplexed session per
client. Both return the same immutable ``ResponseRecord``.
"""

__version__ = "0.1.0"

# Import main components for easy access
from .client import BoundClient, GoHttp, GoHttp2, H2SessionPool, http2_connect
from .config import ClientConfig
from .bench import BenchmarkResult, run_benchmark
from .exceptions import (
    HTTPCoreError,
    ConnectionError,
    ConnectionTimeout,
    ProtocolError,
    StreamError,
    InvalidTarget,
    MissingBody,
    ResponseTooLarge,
    RequestTimeout,
    DecodeError,
)
from .http_primitives import (
    BodyKind,
    CanonicalRequest,
    DownloadOptions,
    Method,
    MultipartDescriptor,
    Protocol,
    RequestSpec,
    URLComponents,
)
from .multipart import BodyMaker
from .normalizer import RequestNormalizer, encode_body
from .response import ResponseAssembler, ResponseRecord
from .session import HTTP2SessionManager, SessionState
from .transport import HTTP11Transport, HTTP2Transport

__all__ = [
    "GoHttp",
    "BoundClient",
    "GoHttp2",
    "H2SessionPool",
    "http2_connect",
    "ClientConfig",
    "BenchmarkResult",
    "run_benchmark",
    "HTTPCoreError",
    "ConnectionError",
    "ConnectionTimeout",
    "ProtocolError",
    "StreamError",
    "InvalidTarget",
    "MissingBody",
    "ResponseTooLarge",
    "RequestTimeout",
    "DecodeError",
    "BodyKind",
    "CanonicalRequest",
    "DownloadOptions",
    "Method",
    "MultipartDescriptor",
    "Protocol",
    "RequestSpec",
    "URLComponents",
    "BodyMaker",
    "RequestNormalizer",
    "encode_body",
    "ResponseAssembler",
    "ResponseRecord",
    "HTTP2SessionManager",
    "SessionState",
    "HTTP11Transport",
    "HTTP2Transport",
]
