"""
Unit tests for request normalization and body encoding.
"""

import json

import pytest

from gohttp.exceptions import InvalidTarget, MissingBody, ProtocolError, StreamError
from gohttp.http_primitives import (
    BodyKind,
    DownloadOptions,
    Method,
    MultipartDescriptor,
    Protocol,
    RequestSpec,
    URLComponents,
)
from gohttp.normalizer import (
    RequestNormalizer,
    append_query,
    encode_body,
    format_prefix,
    merge_headers,
)
from gohttp.streams import read_stream_to_bytes


@pytest.fixture
def h1() -> RequestNormalizer:
    return RequestNormalizer(Protocol.HTTP11, default_headers={"User-Agent": "gohttp", "X-Token": "default"})


@pytest.fixture
def h2() -> RequestNormalizer:
    origin = URLComponents.from_url("https://example.com:8443/")
    return RequestNormalizer(Protocol.HTTP2, default_headers={"x-token": "default"}, origin=origin, prefix="/api/")


class TestHelpers:
    """Test prefix, header and query helpers."""

    @pytest.mark.parametrize(
        "prefix, expected",
        [
            ("/api", "/api"),
            ("api/", "/api"),
            ("/api/v1///", "/api/v1"),
            ("/", ""),
            ("", ""),
            (None, ""),
        ],
    )
    def test_format_prefix(self, prefix, expected) -> None:
        assert format_prefix(prefix) == expected

    def test_merge_headers_later_wins(self) -> None:
        merged = merge_headers({"Content-Type": "a", "X": "1"}, None, {"content-type": "b"})
        assert merged == {"content-type": "b", "x": "1"}

    def test_append_query(self) -> None:
        assert append_query("/a", {"x": 1, "y": "z w"}) == "/a?x=1&y=z+w"
        assert append_query("/a?b=1", {"c": 2}) == "/a?b=1&c=2"
        assert append_query("/a", "?raw=1") == "/a?raw=1"
        assert append_query("/a", {"tags": ["a", "b"], "flag": True}) == "/a?tags=a&tags=b&flag=true"
        assert append_query("/a", {}) == "/a"
        assert append_query("/a", None) == "/a"


class TestHTTP11Normalization:
    """Test targets and headers for HTTP/1.1."""

    def test_absolute_url(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(
            target="http://example.com:8080/path",
            headers={"x-token": "mine"},
            query={"q": "1"},
        ))
        assert request.method is Method.GET
        assert request.protocol is Protocol.HTTP11
        assert request.url.port == 8080
        assert request.target == "/path?q=1"
        assert request.headers["host"] == "example.com:8080"
        assert request.headers["x-token"] == "mine"
        assert request.headers["user-agent"] == "gohttp"
        assert request.body_kind is BodyKind.NONE
        assert request.timeout == 35.0

    def test_relative_target_without_origin(self, h1: RequestNormalizer) -> None:
        with pytest.raises(InvalidTarget):
            h1.normalize(RequestSpec(target="/path"))

    def test_bad_path(self, h1: RequestNormalizer) -> None:
        with pytest.raises(InvalidTarget):
            h1.normalize(RequestSpec(target="http://example.com/a b"))

    def test_unknown_method(self, h1: RequestNormalizer) -> None:
        with pytest.raises(ProtocolError):
            h1.normalize(RequestSpec(target="http://example.com/", method="BREW"))

    def test_bound_origin_and_prefix(self) -> None:
        normalizer = RequestNormalizer(
            Protocol.HTTP11,
            origin=URLComponents.from_url("http://example.com/"),
            prefix="/api",
        )
        assert normalizer.normalize(RequestSpec(target="users")).target == "/api/users"
        assert normalizer.normalize(RequestSpec(target="/api/users")).target == "/api/users"
        assert normalizer.normalize(RequestSpec(target="/apiusers")).target == "/api/apiusers"
        assert normalizer.normalize(RequestSpec(target="/users", without_prefix=True)).target == "/users"

    def test_query_containing_url(self) -> None:
        normalizer = RequestNormalizer(Protocol.HTTP11, origin=URLComponents.from_url("http://example.com/"))
        request = normalizer.normalize(RequestSpec(target="/login?next=https://api.example.com/home"))
        assert request.url.host == "example.com"
        assert request.target == "/login?next=https://api.example.com/home"

    def test_unix_socket_target(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(target="unix:/run/app.sock/status", query={"v": 1}))
        assert request.url.socket_path == "/run/app.sock"
        assert request.target == "/status?v=1"
        assert request.headers["host"] == "unix"

    def test_stream_callback_passed_through(self, h1: RequestNormalizer) -> None:
        def callback(chunk, status, headers):
            pass

        request = h1.normalize(RequestSpec(target="http://example.com/events", sse_callback=callback, sse=True))
        assert request.sse_callback is callback
        assert request.sse is True
        assert h1.normalize(RequestSpec(target="http://example.com/")).sse_callback is None

    def test_per_request_overrides(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(
            target="https://example.com/",
            timeout=3.0,
            verify_cert=False,
            download=DownloadOptions(dir="out"),
        ))
        assert request.timeout == 3.0
        assert request.verify_cert is False
        assert request.download.dir == "out"

    def test_set_header(self, h1: RequestNormalizer) -> None:
        h1.set_header("Authorization", "Bearer t")
        request = h1.normalize(RequestSpec(target="http://example.com/"))
        assert request.headers["authorization"] == "Bearer t"


class TestHTTP2Normalization:
    """Test session-relative targets for HTTP/2."""

    def test_requires_origin(self) -> None:
        with pytest.raises(ValueError):
            RequestNormalizer(Protocol.HTTP2)

    def test_path_with_prefix(self, h2: RequestNormalizer) -> None:
        request = h2.normalize(RequestSpec(target="/users", query={"page": 2}))
        assert request.target == "/api/users?page=2"
        assert request.url.origin == "https://example.com:8443"
        assert "host" not in request.headers

    def test_connection_headers_dropped(self, h2: RequestNormalizer) -> None:
        request = h2.normalize(RequestSpec(
            target="/",
            headers={"Connection": "keep-alive", "Host": "x", ":path": "/evil", "Transfer-Encoding": "chunked"},
        ))
        assert request.headers == {"x-token": "default"}

    def test_same_origin_absolute_url(self, h2: RequestNormalizer) -> None:
        request = h2.normalize(RequestSpec(target="https://example.com:8443/direct"))
        assert request.target == "/direct"

    def test_other_origin_rejected(self, h2: RequestNormalizer) -> None:
        with pytest.raises(InvalidTarget):
            h2.normalize(RequestSpec(target="https://other.com/"))

    @pytest.mark.parametrize(
        "target, expected",
        [
            ("/login?next=https://api.example.com/home", "/api/login?next=https://api.example.com/home"),
            ("echo?cb=http://other.example/x", "/api/echo?cb=http://other.example/x"),
        ],
    )
    def test_query_containing_url(self, h2: RequestNormalizer, target: str, expected: str) -> None:
        request = h2.normalize(RequestSpec(target=target))
        assert request.target == expected
        assert request.url.origin == "https://example.com:8443"

    def test_unix_socket_target_rejected(self, h2: RequestNormalizer) -> None:
        with pytest.raises(InvalidTarget):
            h2.normalize(RequestSpec(target="unix:/run/app.sock/status"))

    def test_prefix_setter(self, h2: RequestNormalizer) -> None:
        h2.prefix = "v2/"
        assert h2.prefix == "/v2"
        assert h2.normalize(RequestSpec(target="x")).target == "/v2/x"


class TestBodyResolution:
    """Test body strategy precedence."""

    URL = "http://example.com/"

    def test_missing_body(self, h1: RequestNormalizer) -> None:
        for method in ("POST", "PUT", "PATCH"):
            with pytest.raises(MissingBody):
                h1.normalize(RequestSpec(target=self.URL, method=method))

    def test_delete_without_body(self, h1: RequestNormalizer) -> None:
        assert h1.normalize(RequestSpec(target=self.URL, method="DELETE")).body_kind is BodyKind.NONE

    def test_get_body_ignored(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(target=self.URL, body={"a": 1}))
        assert request.body_kind is BodyKind.NONE

    def test_raw_body_wins(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(
            target=self.URL, method="POST", raw_body=b"raw", body={"a": 1}, form={"x": "y"},
        ))
        assert request.body_kind is BodyKind.RAW
        assert request.payload == b"raw"

    def test_bytes_body(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(target=self.URL, method="PUT", body=b"\x00\x01"))
        assert request.body_kind is BodyKind.RAW

    def test_form_and_files(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(
            target=self.URL, method="POST", form={"name": "rich"}, files={"f": "/tmp/a.txt"},
        ))
        assert request.body_kind is BodyKind.MULTIPART
        assert request.payload == MultipartDescriptor.create(form={"name": "rich"}, files={"f": "/tmp/a.txt"})

    def test_upload_shorthand_forces_post(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(target=self.URL, method="GET", files={"f": "/tmp/a"}))
        assert request.method is Method.POST
        assert request.body_kind is BodyKind.MULTIPART

    def test_body_with_files_key(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(
            target=self.URL, method="POST", body={"files": {"f": "/tmp/a"}, "form": {"k": "v"}},
        ))
        assert request.body_kind is BodyKind.MULTIPART
        assert request.payload.form == (("k", "v"),)

    def test_multipart_content_type(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(
            target=self.URL, method="POST", headers={"Content-Type": "multipart/form-data"}, body={"k": "v"},
        ))
        assert request.body_kind is BodyKind.MULTIPART
        assert request.payload.form == (("k", "v"),)

    def test_multipart_content_type_needs_mapping(self, h1: RequestNormalizer) -> None:
        with pytest.raises(ProtocolError):
            h1.normalize(RequestSpec(
                target=self.URL, method="POST", headers={"content-type": "multipart/form-data"}, body=[1, 2],
            ))

    def test_urlencoded(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(
            target=self.URL,
            method="POST",
            headers={"content-type": "application/x-www-form-urlencoded"},
            body={"a": "1 2"},
        ))
        assert request.body_kind is BodyKind.URLENCODED

    def test_text(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(target=self.URL, method="POST", body="hello"))
        assert request.body_kind is BodyKind.TEXT
        assert request.headers["content-type"] == "text/plain"

    def test_json_default(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(target=self.URL, method="PATCH", body=[1, {"a": None}]))
        assert request.body_kind is BodyKind.JSON
        assert request.headers["content-type"] == "application/json"

    def test_explicit_content_type_kept(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(
            target=self.URL, method="POST", headers={"Content-Type": "application/vnd.api+json"}, body={"a": 1},
        ))
        assert request.headers["content-type"] == "application/vnd.api+json"


class TestEncodeBody:
    """Test final headers and body streams."""

    URL = "http://example.com/"

    @pytest.mark.asyncio
    async def test_json_round_trip(self, h1: RequestNormalizer) -> None:
        payload = {"name": "rich", "tags": ["a", "ü"], "n": 1.5}
        encoded = encode_body(h1.normalize(RequestSpec(target=self.URL, method="POST", body=payload)))
        data = await read_stream_to_bytes(encoded.stream)
        assert json.loads(data) == payload
        assert encoded.headers["content-type"] == "application/json"
        assert encoded.headers["content-length"] == str(len(data))
        assert encoded.content_length == len(data)

    def test_json_not_serializable(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(target=self.URL, method="POST", body={"x": object()}))
        with pytest.raises(ProtocolError):
            encode_body(request)

    @pytest.mark.asyncio
    async def test_urlencoded(self, h1: RequestNormalizer) -> None:
        request = h1.normalize(RequestSpec(
            target=self.URL,
            method="POST",
            headers={"content-type": "application/x-www-form-urlencoded"},
            body={"a": "1 2", "b": True},
        ))
        encoded = encode_body(request)
        assert await read_stream_to_bytes(encoded.stream) == b"a=1+2&b=true"

    def test_no_body(self, h1: RequestNormalizer) -> None:
        encoded = encode_body(h1.normalize(RequestSpec(target=self.URL)))
        assert encoded.stream is None
        assert encoded.content_length is None
        assert "content-length" not in encoded.headers

    @pytest.mark.asyncio
    async def test_multipart_length_matches(self, h1: RequestNormalizer, make_file) -> None:
        path = make_file("a.txt", b"0123456789")
        request = h1.normalize(RequestSpec(target=self.URL, method="POST", form={"name": "rich"}, files={"file": path}))
        encoded = encode_body(request)
        assert encoded.headers["content-type"].startswith("multipart/form-data; boundary=----------------")
        body = await read_stream_to_bytes(encoded.stream)
        assert len(body) == int(encoded.headers["content-length"])

    def test_multipart_missing_file(self, h1: RequestNormalizer, tmp_path) -> None:
        request = h1.normalize(RequestSpec(
            target=self.URL, method="POST", files={"file": str(tmp_path / "nope")},
        ))
        with pytest.raises(StreamError):
            encode_body(request)
