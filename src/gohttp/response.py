"""
Response records and assembly for gohttp.

``ResponseAssembler`` accumulates body chunks under a size ceiling
and produces an immutable ``ResponseRecord`` once the terminal event
(end of body, error or timeout) has happened.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Tuple, Union

from .exceptions import DecodeError, RequestTimeout, ResponseTooLarge
from .http_primitives import Headers


@dataclass(frozen=True)
class ResponseRecord:
    """
    Immutable result of one request.

    ``status`` is 0 when no response was received (timeout or
    network failure); such records carry ``timeout`` or ``error``.
    """

    status: int = 0
    headers: Headers = field(default_factory=dict)
    data: bytes = b""
    timeout: bool = False
    error: Optional[Exception] = None
    path: Optional[str] = None

    @property
    def ok(self) -> bool:
        """Success flag: 200 <= status < 400 without timeout or error."""
        return 200 <= self.status < 400 and not self.timeout and self.error is None

    @property
    def length(self) -> int:
        return len(self.data)

    def get_header(self, name: str) -> Optional[str]:
        """Get a header value by name (case-insensitive)."""
        return self.headers.get(name.lower())

    def text(self, encoding: str = "utf-8") -> str:
        """Body decoded as text; undecodable bytes are replaced."""
        return self.data.decode(encoding, errors="replace")

    def json(self, encoding: str = "utf-8") -> Any:
        """
        Body parsed as JSON.

        Raises:
            DecodeError: If the body is not valid JSON
        """
        try:
            return json.loads(self.data.decode(encoding))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecodeError(f"response body is not valid JSON: {e}", cause=e) from e

    def blob(self) -> bytes:
        """Raw body bytes."""
        return self.data

    @classmethod
    def timed_out(cls, timeout: Optional[float] = None) -> "ResponseRecord":
        """Record for a request that hit its deadline."""
        return cls(status=0, timeout=True, error=RequestTimeout(timeout))

    @classmethod
    def failed(cls, error: Exception) -> "ResponseRecord":
        """Record for a request that failed at the network level."""
        return cls(status=0, error=error)


def headers_to_dict(
    headers: Iterable[Tuple[Union[bytes, str], Union[bytes, str]]],
) -> Headers:
    """
    Convert raw header pairs into a lower-cased mapping.

    Repeated headers are joined with ', '. HTTP/2 pseudo-headers are
    dropped; the status travels separately.
    """
    result: Headers = {}
    for name, value in headers:
        if isinstance(name, bytes):
            name = name.decode("latin-1")
        if isinstance(value, bytes):
            value = value.decode("latin-1")
        name = name.lower()
        if name.startswith(":"):
            continue
        if name in result:
            result[name] = f"{result[name]}, {value}"
        else:
            result[name] = value
    return result


class ResponseAssembler:
    """
    Accumulates response body chunks with a maximum-size guard.

    The guard is checked before a chunk is stored, so the assembler
    never holds more than ``max_size`` bytes and never concatenates
    an oversized body.
    """

    def __init__(self, max_size: int) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._chunks: List[bytes] = []
        self._total = 0
        self._finished = False

    def feed(self, chunk: bytes) -> None:
        """
        Add a body chunk.

        Raises:
            ResponseTooLarge: If the chunk would exceed the ceiling
        """
        if self._finished:
            raise RuntimeError("response already assembled")
        if self._total + len(chunk) > self._max_size:
            self._chunks.clear()
            raise ResponseTooLarge(self._max_size)
        self._chunks.append(chunk)
        self._total += len(chunk)

    def finish(
        self,
        status: int,
        headers: Headers,
        path: Optional[str] = None,
    ) -> ResponseRecord:
        """Concatenate the body and freeze the record."""
        self._finished = True
        data = b"".join(self._chunks)
        self._chunks = []
        return ResponseRecord(status=status, headers=headers, data=data, path=path)

    @property
    def total(self) -> int:
        """Bytes accumulated so far."""
        return self._total

    @property
    def max_size(self) -> int:
        return self._max_size
