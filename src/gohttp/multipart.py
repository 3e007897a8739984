"""
Streaming multipart/form-data encoder for gohttp.

The encoder computes the exact body length from file metadata alone
(one ``os.stat`` per file) and then streams the body lazily, reading
files in chunks so uploads never buffer whole files in memory.

Known limitation: the length is taken from the stat, the bytes from a
later read. A file that changes size in between makes the declared
content-length disagree with the bytes sent; this is not detected.
Callers must not modify files while they are being uploaded.
"""

import asyncio
import logging
import os
import random
import time
from typing import AsyncIterator, Optional

from .exceptions import StreamError
from .http_primitives import MultipartDescriptor

logger = logging.getLogger(__name__)

CRLF = b"\r\n"
DEFAULT_CHUNK_SIZE = 65536
DEFAULT_MIME = "application/octet-stream"

MIME_TABLE = {
    "css": "text/css",
    "der": "application/x-x509-ca-cert",
    "gif": "image/gif",
    "gz": "application/x-gzip",
    "h": "text/plain",
    "htm": "text/html",
    "html": "text/html",
    "c": "text/plain",
    "txt": "text/plain",
    "js": "application/x-javascript",
    "json": "application/json",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "exe": "application/octet-stream",
    "wav": "audio/x-wav",
    "svg": "image/svg+xml",
    "tar": "application/x-tar",
    "ttf": "font/ttf",
    "woff": "font/woff",
    "woff2": "font/woff2",
    "ttc": "font/ttc",
    "xls": "application/vnd.ms-excel",
    "zip": "application/zip",
    "pdf": "application/pdf",
    "doc": "application/vnd.ms-word",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "odp": "application/vnd.oasis.opendocument.presentation",
    "odt": "application/vnd.oasis.opendocument.text",
    "ods": "application/vnd.oasis.opendocument.spreadsheet",
    "odg": "application/vnd.oasis.opendocument.graphics",
}


def ext_name(filename: str) -> str:
    """Return the extension of a filename, or '' when it has none."""
    parts = [p for p in os.path.basename(filename).split(".") if p]
    if len(parts) < 2:
        return ""
    return parts[-1]


def mime_type(filename: str) -> str:
    """Look up the MIME type of a filename by extension (case-insensitive)."""
    return MIME_TABLE.get(ext_name(filename).lower(), DEFAULT_MIME)


def escape_name(name: str) -> str:
    """Escape a field name for use inside a quoted header parameter."""
    return name.replace('"', "%22")


def escape_filename(path: str) -> str:
    """Reduce a path to its last segment and escape it."""
    segments = [s for s in path.replace("\\", "/").split("/") if s]
    name = segments[-1] if segments else path
    return escape_name(name)


def generate_boundary() -> str:
    """
    Generate a multipart boundary.

    Time-based with a random suffix: unique within the lifetime of an
    encoding operation with high probability, not cryptographically.
    """
    return f"----------------{int(time.time() * 1000)}{random.randint(10001, 20000)}"


class BodyMaker:
    """
    Multipart body encoder.

    ``compute_length`` and ``stream_body`` walk the descriptor in the
    same order and emit the same header blocks, so for files that do
    not change in between the streamed byte count equals the computed
    length exactly.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._chunk_size = chunk_size

    generate_boundary = staticmethod(generate_boundary)

    @staticmethod
    def content_type(boundary: str) -> str:
        return f"multipart/form-data; boundary={boundary}"

    @staticmethod
    def field_header(boundary: str, name: str) -> bytes:
        """Header block of a plain form field."""
        return (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{escape_name(name)}"\r\n'
            f"\r\n"
        ).encode("utf-8")

    @staticmethod
    def file_header(boundary: str, name: str, path: str) -> bytes:
        """Header block of a file field."""
        return (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{escape_name(name)}"; '
            f'filename="{escape_filename(path)}"\r\n'
            f"Content-Type: {mime_type(path)}\r\n"
            f"\r\n"
        ).encode("utf-8")

    @staticmethod
    def closing(boundary: str) -> bytes:
        """Closing delimiter of the body."""
        return f"--{boundary}--\r\n".encode("utf-8")

    def compute_length(self, descriptor: MultipartDescriptor, boundary: str) -> int:
        """
        Compute the exact encoded length without reading file contents.

        Args:
            descriptor: Fields and files to encode
            boundary: Boundary that ``stream_body`` will use

        Returns:
            Body length in bytes

        Raises:
            StreamError: If a file cannot be stat'ed
        """
        length = 0

        for name, value in descriptor.form:
            length += len(self.field_header(boundary, name))
            length += len(value.encode("utf-8")) + len(CRLF)

        for name, path in descriptor.iter_files():
            try:
                size = os.stat(path).st_size
            except OSError as e:
                raise StreamError(f"cannot stat upload file {path!r}: {e}", cause=e) from e
            length += len(self.file_header(boundary, name, path)) + size + len(CRLF)

        length += len(self.closing(boundary))
        return length

    async def stream_body(
        self,
        descriptor: MultipartDescriptor,
        boundary: str,
    ) -> AsyncIterator[bytes]:
        """
        Lazily produce the encoded body.

        Files are read in ``chunk_size`` pieces off the event loop.
        The iterator is single-pass and cannot be restarted.

        Raises:
            StreamError: If a file cannot be opened or read
        """
        for name, value in descriptor.form:
            yield self.field_header(boundary, name) + value.encode("utf-8") + CRLF

        loop = asyncio.get_running_loop()

        for name, path in descriptor.iter_files():
            yield self.file_header(boundary, name, path)

            try:
                fh = open(path, "rb")
            except OSError as e:
                raise StreamError(f"cannot open upload file {path!r}: {e}", cause=e) from e

            try:
                sent = 0
                while True:
                    try:
                        chunk = await loop.run_in_executor(None, fh.read, self._chunk_size)
                    except OSError as e:
                        raise StreamError(
                            f"error reading upload file {path!r}: {e}", cause=e
                        ) from e
                    if not chunk:
                        break
                    sent += len(chunk)
                    yield chunk
            finally:
                fh.close()

            logger.debug(f"Streamed {sent} bytes of {path}")
            yield CRLF

        yield self.closing(boundary)

    def encode(
        self,
        descriptor: MultipartDescriptor,
        boundary: Optional[str] = None,
    ) -> "EncodedMultipart":
        """Pair a length computation with its body stream."""
        boundary = boundary or self.generate_boundary()
        length = self.compute_length(descriptor, boundary)
        return EncodedMultipart(
            boundary=boundary,
            content_type=self.content_type(boundary),
            content_length=length,
            stream=self.stream_body(descriptor, boundary),
        )


class EncodedMultipart:
    """Result of ``BodyMaker.encode``."""

    __slots__ = ("boundary", "content_type", "content_length", "stream")

    def __init__(
        self,
        boundary: str,
        content_type: str,
        content_length: int,
        stream: AsyncIterator[bytes],
    ) -> None:
        self.boundary = boundary
        self.content_type = content_type
        self.content_length = content_length
        self.stream = stream
