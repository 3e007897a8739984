"""
Client configuration for gohttp.

A single explicit configuration record shared by the HTTP/1.1 and
HTTP/2 clients. Per-request values (headers, timeout, certificate
verification) are layered on top of it by the request normalizer.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


MB = 1024 * 1024

# Option names accepted by ``ClientConfig.from_options`` besides the
# field names themselves.
_ALIASES = {
    "verifyCert": "verify_cert",
    "reconnDelay": "reconn_delay",
    "maxBody": "max_body",
    "connectTimeout": "connect_timeout",
    "connectWait": "connect_wait",
    "maxSockets": "max_sockets",
    "maxFreeSockets": "max_free_sockets",
    "keepAliveTimeout": "keep_alive_timeout",
}


@dataclass
class ClientConfig:
    """
    Configuration shared by every request a client issues.

    Attributes:
        verify_cert: Verify TLS certificates (False selects the insecure pool)
        cert: PEM certificate path for mutual TLS
        key: PEM private key path for mutual TLS
        timeout: Default per-request timeout in seconds
        connect_timeout: Bound on TCP connect plus TLS handshake
        keepalive: Reconnect the HTTP/2 session when it closes
        reconn_delay: Backoff before an HTTP/2 reconnect, in seconds
        connect_wait: How long a request waits for an HTTP/2 session
        connect_poll_interval: Poll step while waiting for a session
        max_body: Maximum accepted response body size in bytes
        max_sockets: Maximum concurrent HTTP/1.1 sockets per origin
        max_free_sockets: Idle HTTP/1.1 sockets retained per origin
        keep_alive_timeout: Idle time after which a socket is discarded
        headers: Default headers merged under every request's headers
    """

    verify_cert: bool = True
    cert: Optional[str] = None
    key: Optional[str] = None
    timeout: float = 35.0
    connect_timeout: Optional[float] = 10.0
    keepalive: bool = True
    reconn_delay: float = 1.0
    connect_wait: float = 5.0
    connect_poll_interval: float = 0.1
    max_body: int = 100 * MB
    max_sockets: int = 1024
    max_free_sockets: int = 256
    keep_alive_timeout: float = 60.0
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.reconn_delay < 0:
            raise ValueError("reconn_delay must be non-negative")
        if self.connect_poll_interval <= 0:
            raise ValueError("connect_poll_interval must be positive")
        if self.max_body <= 0:
            raise ValueError("max_body must be positive")
        if self.max_sockets < 1:
            raise ValueError("max_sockets must be at least 1")
        if self.max_free_sockets < 0:
            raise ValueError("max_free_sockets must be non-negative")

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "ClientConfig":
        """
        Build a config from a loose option mapping.

        Both field names and the camelCase spellings (``verifyCert``,
        ``reconnDelay``, ``maxBody``...) are accepted. ``ignoretls``
        is the inverse of ``verify_cert``.

        Raises:
            ValueError: If an option is not recognized
        """
        names = {f.name for f in dataclasses.fields(cls)}
        values: Dict[str, Any] = {}

        for key, value in options.items():
            if key == "ignoretls":
                values["verify_cert"] = not value
                continue
            name = _ALIASES.get(key, key)
            if name not in names:
                raise ValueError(f"Unknown client option: {key}")
            values[name] = value

        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "ClientConfig":
        """Create a copy with some fields replaced."""
        if "headers" not in overrides:
            overrides["headers"] = dict(self.headers)
        return dataclasses.replace(self, **overrides)
