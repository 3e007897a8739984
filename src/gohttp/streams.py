"""
Request body streams for gohttp.

A ``RequestStream`` wraps whatever the body encoder produced (bytes or
a lazy async iterable) together with the content length that must be
announced before the first byte is written.
"""

from typing import AsyncIterable, AsyncIterator, Optional, Union

from .exceptions import StreamError


class RequestStream:
    """
    Stream for HTTP request bodies.

    Single-pass: a stream built on an async iterable can be consumed
    once. Errors raised by the underlying iterable are wrapped in
    ``StreamError`` so transports can abort the exchange uniformly.
    """

    def __init__(
        self,
        data: Union[bytes, AsyncIterable[bytes]],
        content_length: Optional[int] = None,
    ) -> None:
        """
        Initialize RequestStream.

        Args:
            data: Body bytes or an async iterable of chunks
            content_length: Declared length; computed for bytes
        """
        if content_length is not None and content_length < 0:
            raise ValueError("content_length must be non-negative")

        if isinstance(data, (bytes, bytearray)):
            data = bytes(data)
            if content_length is None:
                content_length = len(data)
            elif content_length != len(data):
                raise ValueError(
                    f"Actual content length ({len(data)}) "
                    f"does not match provided content_length ({content_length})"
                )

        self._data = data
        self._content_length = content_length
        self._consumed = False
        self._closed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._closed:
            raise StreamError("Cannot iterate over closed stream")
        if self._consumed:
            raise StreamError("Request stream can only be consumed once")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        if isinstance(self._data, bytes):
            if self._data:
                yield self._data
            return

        try:
            async for chunk in self._data:
                if chunk:
                    yield chunk
        except StreamError:
            raise
        except Exception as e:
            raise StreamError(f"Error reading from stream: {e}", cause=e) from e

    async def aread(self) -> bytes:
        """Read entire stream and return as bytes."""
        return await read_stream_to_bytes(self)

    async def aclose(self) -> None:
        """Close the stream and the wrapped iterable, if it supports it."""
        self._closed = True
        aclose = getattr(self._data, "aclose", None)
        if aclose is not None:
            await aclose()

    @property
    def content_length(self) -> Optional[int]:
        """Get the content length of the stream."""
        return self._content_length

    @property
    def closed(self) -> bool:
        """Get whether the stream is closed."""
        return self._closed


async def read_stream_to_bytes(stream: AsyncIterable[bytes]) -> bytes:
    """
    Read entire stream and return as bytes.

    Args:
        stream: Async iterable of bytes

    Returns:
        All bytes from the stream concatenated
    """
    chunks = []
    async for chunk in stream:
        chunks.append(chunk)
    return b"".join(chunks)
