"""
Download sink for gohttp.

Resolves the local filename of a download response and streams the
body to disk. A download never overwrites an existing file and never
leaves a partial file behind when it fails.
"""

import asyncio
import hashlib
import logging
import os
import re
import time
from typing import BinaryIO, Optional
from urllib.parse import unquote

from .exceptions import StreamError
from .http_primitives import DownloadOptions, Headers
from .response import ResponseRecord

logger = logging.getLogger(__name__)

_FILENAME_STAR = re.compile(r"filename\*\s*=\s*utf-8''([^;]+)", re.IGNORECASE)
_FILENAME = re.compile(r'filename\s*=\s*"?([^";]+)"?', re.IGNORECASE)

PROGRESS_LOG_INTERVAL = 0.5


def filename_from_disposition(disposition: Optional[str]) -> str:
    """
    Extract a filename from a Content-Disposition header.

    The RFC 5987 form ``filename*=utf-8''...`` wins over ``filename=``.
    Returns '' when the header names no usable file.
    """
    if not disposition:
        return ""

    match = _FILENAME_STAR.search(disposition)
    if match:
        name = unquote(match.group(1).strip(), encoding="utf-8")
    else:
        match = _FILENAME.search(disposition)
        name = match.group(1).strip() if match else ""

    # Never let the server choose a directory
    name = os.path.basename(name.replace("\\", "/"))
    if name in ("", ".", ".."):
        return ""
    return name


def fallback_filename() -> str:
    """Name used when the response does not provide one."""
    return hashlib.md5(str(time.time()).encode("ascii")).hexdigest()


def resolve_target_path(directory: str, headers: Headers) -> str:
    """
    Pick the path a download is written to.

    Creates ``directory`` if needed. An existing file is never
    replaced: the name gets an ``<epoch-millis>-`` prefix instead.
    """
    filename = filename_from_disposition(headers.get("content-disposition"))
    if not filename:
        filename = fallback_filename()

    os.makedirs(directory, exist_ok=True)

    path = os.path.join(directory, filename)
    if os.path.exists(path):
        path = os.path.join(directory, f"{int(time.time() * 1000)}-{filename}")
    return path


class DownloadSink:
    """
    Writes a response body to a file.

    Created once the response head is known; ``write`` is called per
    body chunk and ``finish`` or ``abort`` ends the download.
    """

    def __init__(self, options: DownloadOptions, headers: Headers) -> None:
        self._options = options
        self._path = resolve_target_path(options.dir, headers)

        length = headers.get("content-length")
        self._total: Optional[int] = int(length) if length and length.isdigit() else None
        self._received = 0
        self._last_log = 0.0

        try:
            # "x" refuses to replace a file created since the path was resolved
            self._file: Optional[BinaryIO] = open(self._path, "xb")
        except OSError as e:
            raise StreamError(f"cannot create download file {self._path!r}: {e}", cause=e) from e

        logger.debug(f"Downloading to {self._path} (expected {self._total} bytes)")

    async def write(self, chunk: bytes) -> None:
        """Append a chunk to the file and report progress."""
        if self._file is None:
            raise StreamError("download sink is closed")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._file.write, chunk)
        except OSError as e:
            raise StreamError(f"error writing {self._path!r}: {e}", cause=e) from e

        self._received += len(chunk)
        self._report()

    def _report(self) -> None:
        if self._options.on_progress is not None:
            self._options.on_progress(self._received, self._total)

        if not self._options.progress:
            return
        now = time.monotonic()
        if now - self._last_log < PROGRESS_LOG_INTERVAL:
            return
        self._last_log = now
        if self._total:
            logger.info(f"Downloading {self._path}: {self._received / self._total * 100:.1f}%")
        else:
            logger.info(f"Downloading {self._path}: {self._received} bytes")

    def finish(self, status: int, headers: Headers) -> ResponseRecord:
        """Close the file and build the response record."""
        self._close()
        if self._options.progress:
            logger.info(f"Download done: {self._path} ({self._received} bytes)")
        return ResponseRecord(status=status, headers=headers, path=self._path)

    def abort(self) -> None:
        """Close and remove the partial file."""
        self._close()
        try:
            os.remove(self._path)
        except FileNotFoundError:
            pass
        logger.debug(f"Removed partial download {self._path}")

    def _close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def received(self) -> int:
        return self._received

    @property
    def total(self) -> Optional[int]:
        return self._total
