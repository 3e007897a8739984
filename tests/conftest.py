"""
Pytest configuration for gohttp tests.

Provides in-process loopback servers: an HTTP/1.1 server written with
h11 and an HTTP/2 cleartext (prior knowledge) server written with h2.
Both share the same routes:

    /echo            JSON description of the request
    /slow?delay=S    responds after S seconds
    /big?size=N      N bytes of b"x"
    /status/CODE     empty-ish response with that status
    /close           response with "Connection: close" (HTTP/1.1)
    /download?name=F body b"file-content" with a Content-Disposition
    /download/utf8   Content-Disposition using filename*=utf-8''
    /download/plain  no Content-Disposition
    /events          text/event-stream body of two events

The HTTP/2 server also has two upload routes that cut a request short:

    /reset-upload    resets the stream on the first DATA frame
    /early           answers 413 right after the headers, then sends
                     RST_STREAM(NO_ERROR)

A leading "/api" is ignored so that prefixes can be tested.
"""

import asyncio
import json
import socket
from typing import Dict, List, Optional, Set, Tuple
from urllib.parse import parse_qs, urlsplit

import h11
import h2.config
import h2.connection
import h2.events
import h2.exceptions
from h2.errors import ErrorCodes
import pytest
import pytest_asyncio

Route = Tuple[int, List[Tuple[str, str]], bytes, float]


def route(method: str, target: str, headers: Dict[str, str], body: bytes) -> Route:
    """Compute (status, headers, body, delay) for a request."""
    parts = urlsplit(target)
    path = parts.path
    if path.startswith("/api/") or path == "/api":
        path = path[len("/api"):] or "/"
    query = {k: v[0] for k, v in parse_qs(parts.query, keep_blank_values=True).items()}

    if path == "/echo":
        payload = {
            "method": method,
            "target": target,
            "headers": headers,
            "body": body.decode("latin-1"),
            "length": len(body),
        }
        return 200, [("content-type", "application/json")], json.dumps(payload).encode("utf-8"), 0.0

    if path == "/slow":
        return 200, [("content-type", "text/plain")], b"slow", float(query.get("delay", "1.0"))

    if path == "/big":
        return 200, [("content-type", "application/octet-stream")], b"x" * int(query.get("size", "0")), 0.0

    if path.startswith("/status/"):
        code = int(path.rsplit("/", 1)[1])
        return code, [("content-type", "text/plain")], f"status {code}".encode("ascii"), 0.0

    if path == "/close":
        return 200, [("connection", "close")], b"bye", 0.0

    if path == "/download":
        name = query.get("name", "file.txt")
        return 200, [("content-disposition", f'attachment; filename="{name}"')], b"file-content", 0.0

    if path == "/download/utf8":
        disposition = "attachment; filename*=utf-8''%E6%96%87%E4%BB%B6.txt"
        return 200, [("content-disposition", disposition)], b"utf8-content", 0.0

    if path == "/download/plain":
        return 200, [], b"plain-content", 0.0

    if path == "/events":
        return 200, [("content-type", "text/event-stream")], b"data: one\n\ndata: two\n\n", 0.0

    return 404, [("content-type", "text/plain")], b"not found", 0.0


class _LoopbackServer:
    """Common start/stop handling for the test servers."""

    def __init__(self) -> None:
        self.connections = 0
        self.requests: List[Tuple[str, str, Dict[str, str], bytes]] = []
        self.port: Optional[int] = None
        self.socket_path: Optional[str] = None
        self._server: Optional[asyncio.base_events.Server] = None
        self._writers: Set[asyncio.StreamWriter] = set()

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._on_connect, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def start_unix(self, path: str) -> None:
        self._server = await asyncio.start_unix_server(self._on_connect, path)
        self.socket_path = path

    async def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        try:
            await self.handle(reader, writer)
        except (OSError, h11.ProtocolError, h2.exceptions.ProtocolError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        raise NotImplementedError

    @property
    def url(self) -> str:
        if self.socket_path is not None:
            return f"unix:{self.socket_path}"
        return f"http://127.0.0.1:{self.port}"

    def drop_connections(self) -> None:
        """Close every open client connection from the server side."""
        for writer in list(self._writers):
            writer.close()

    async def close(self) -> None:
        if self._server is None:
            return
        self._server.close()
        self.drop_connections()
        await self._server.wait_closed()
        self._server = None


class H11Server(_LoopbackServer):
    """HTTP/1.1 keep-alive server built on h11."""

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        conn = h11.Connection(h11.SERVER)
        while True:
            request, body = await self._read_request(conn, reader)
            if request is None:
                return

            method = request.method.decode("ascii")
            target = request.target.decode("utf-8")
            headers = {k.decode("latin-1").lower(): v.decode("latin-1") for k, v in request.headers}
            self.requests.append((method, target, headers, body))

            status, resp_headers, resp_body, delay = route(method, target, headers, body)
            if delay:
                await asyncio.sleep(delay)

            resp_headers = resp_headers + [("content-length", str(len(resp_body)))]
            writer.write(conn.send(h11.Response(status_code=status, headers=resp_headers)))
            if method != "HEAD" and resp_body:
                writer.write(conn.send(h11.Data(data=resp_body)))
            writer.write(conn.send(h11.EndOfMessage()))
            await writer.drain()

            if conn.our_state is h11.MUST_CLOSE or conn.their_state is h11.MUST_CLOSE:
                return
            conn.start_next_cycle()

    @staticmethod
    async def _read_request(conn: h11.Connection, reader: asyncio.StreamReader):
        request = None
        chunks = []
        while True:
            event = conn.next_event()
            if event is h11.NEED_DATA:
                conn.receive_data(await reader.read(65536))
            elif isinstance(event, h11.Request):
                request = event
            elif isinstance(event, h11.Data):
                chunks.append(bytes(event.data))
            elif isinstance(event, h11.EndOfMessage):
                return request, b"".join(chunks)
            elif isinstance(event, h11.ConnectionClosed):
                return None, b""


class H2Server(_LoopbackServer):
    """HTTP/2 cleartext server (prior knowledge) built on h2."""

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        config = h2.config.H2Configuration(client_side=False, header_encoding="utf-8")
        conn = h2.connection.H2Connection(config=config)
        conn.initiate_connection()
        writer.write(conn.data_to_send())

        streams: Dict[int, Tuple[Dict[str, str], List[bytes]]] = {}
        tasks = set()
        while True:
            data = await reader.read(65536)
            if not data:
                return
            for event in conn.receive_data(data):
                if isinstance(event, h2.events.RequestReceived):
                    headers = dict(event.headers)
                    if headers.get(":path") == "/early":
                        self._respond_early(conn, event.stream_id, headers)
                        continue
                    streams[event.stream_id] = (headers, [])
                elif isinstance(event, h2.events.DataReceived):
                    conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
                    stream = streams.get(event.stream_id)
                    if stream is None:
                        continue
                    if stream[0].get(":path") == "/reset-upload":
                        streams.pop(event.stream_id)
                        self.requests.append(("POST", "/reset-upload", stream[0], b""))
                        conn.reset_stream(event.stream_id, error_code=ErrorCodes.CANCEL)
                        continue
                    stream[1].append(event.data)
                elif isinstance(event, h2.events.StreamEnded):
                    stream = streams.pop(event.stream_id, None)
                    if stream is None:
                        continue
                    headers, chunks = stream
                    task = asyncio.ensure_future(
                        self._respond(conn, writer, event.stream_id, headers, b"".join(chunks))
                    )
                    tasks.add(task)
                    task.add_done_callback(tasks.discard)
                elif isinstance(event, h2.events.StreamReset):
                    streams.pop(event.stream_id, None)
            writer.write(conn.data_to_send())
            await writer.drain()

    def _respond_early(self, conn, stream_id: int, headers: Dict[str, str]) -> None:
        self.requests.append((headers.get(":method", "POST"), "/early", headers, b""))
        body = b"too large"
        conn.send_headers(
            stream_id,
            [(":status", "413"), ("content-type", "text/plain"), ("content-length", str(len(body)))],
        )
        conn.send_data(stream_id, body, end_stream=True)
        conn.reset_stream(stream_id, error_code=ErrorCodes.NO_ERROR)

    async def _respond(self, conn, writer, stream_id: int, headers: Dict[str, str], body: bytes) -> None:
        method = headers.get(":method", "GET")
        target = headers.get(":path", "/")
        self.requests.append((method, target, headers, body))

        status, resp_headers, resp_body, delay = route(method, target, headers, body)
        if delay:
            await asyncio.sleep(delay)

        try:
            conn.send_headers(
                stream_id,
                [(":status", str(status))] + resp_headers + [("content-length", str(len(resp_body)))],
                end_stream=not resp_body or method == "HEAD",
            )
            if resp_body and method != "HEAD":
                view = memoryview(resp_body)
                while view:
                    size = min(len(view), conn.max_outbound_frame_size)
                    conn.send_data(stream_id, view[:size].tobytes(), end_stream=size == len(view))
                    view = view[size:]
        except h2.exceptions.ProtocolError:
            # Stream was reset by the client
            return
        writer.write(conn.data_to_send())


@pytest_asyncio.fixture
async def http_server():
    """Running HTTP/1.1 loopback server."""
    server = H11Server()
    await server.start()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def unix_server(tmp_path):
    """Running HTTP/1.1 server listening on a Unix domain socket."""
    if not hasattr(socket, "AF_UNIX"):
        pytest.skip("Unix domain sockets are not available")
    server = H11Server()
    await server.start_unix(str(tmp_path / "gohttp.sock"))
    yield server
    await server.close()


@pytest_asyncio.fixture
async def h2_server():
    """Running HTTP/2 cleartext loopback server."""
    server = H2Server()
    await server.start()
    yield server
    await server.close()


@pytest.fixture
def make_file(tmp_path):
    """Create a file under tmp_path and return its path."""
    def _make(name: str, content: bytes) -> str:
        path = tmp_path / name
        path.write_bytes(content)
        return str(path)
    return _make


@pytest.fixture
def sample_stream_data():
    """Sample stream data for testing."""
    return [
        b"Hello",
        b", ",
        b"World",
        b"!",
    ]


@pytest.fixture
def async_data_generator():
    """Create an async data generator for testing."""
    async def generator(data: List[bytes]):
        for chunk in data:
            yield chunk

    return generator
