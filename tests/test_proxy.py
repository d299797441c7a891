"""Tests for the image acquisition proxy endpoint."""

import gzip

import pytest
import requests
from urllib3.exceptions import ProtocolError
from fastapi.testclient import TestClient

from conftest import FakeHttp, make_response
from visual_match.proxy import CHUNK_SIZE, FETCH_FAILED, UNEXPECTED_FAILURE, _relay, create_app


def client_for(*outcomes):
    http = FakeHttp(*outcomes)
    return TestClient(create_app(http=http)), http


class TestValidation:
    """Requests rejected before any outbound fetch."""

    def test_missing_url(self):
        client, http = client_for()
        response = client.get("/image-proxy")
        assert response.status_code == 400
        assert response.json() == {"error": "Missing url query parameter"}
        assert http.calls == []

    def test_empty_url(self):
        client, http = client_for()
        response = client.get("/image-proxy", params={"url": ""})
        assert response.status_code == 400
        assert http.calls == []

    def test_disallowed_protocol(self):
        client, http = client_for()
        response = client.get("/image-proxy", params={"url": "ftp://x"})
        assert response.status_code == 400
        assert response.json() == {"error": "Only http and https protocols are allowed"}
        assert http.calls == []

    def test_file_protocol_rejected(self):
        client, http = client_for()
        response = client.get("/image-proxy", params={"url": "file:///etc/passwd"})
        assert response.status_code == 400
        assert http.calls == []

    def test_invalid_url(self):
        client, http = client_for()
        response = client.get("/image-proxy", params={"url": "not a url"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid URL supplied"}
        assert http.calls == []


class TestSuccessfulFetch:
    """Upstream answers with an image."""

    def test_streams_body_with_headers(self, red_png):
        upstream = make_response(200, red_png, {
            "Content-Type": "image/png",
            "Content-Length": str(len(red_png)),
            "Set-Cookie": "session=abc",
            "Server": "origin",
        })
        client, http = client_for(upstream)

        response = client.get("/image-proxy", params={"url": "https://shop.example/red.png"})

        assert response.status_code == 200
        assert response.content == red_png
        assert response.headers["content-type"] == "image/png"
        assert response.headers["content-length"] == str(len(red_png))
        assert response.headers["cache-control"] == "public, max-age=60"
        assert response.headers["access-control-allow-origin"] == "*"
        assert "set-cookie" not in response.headers
        assert "server" not in response.headers
        assert upstream.closed

    def test_outbound_request_shape(self, red_png):
        client, http = client_for(make_response(200, red_png, {"Content-Type": "image/png"}))
        client.get("/image-proxy", params={"url": "https://shop.example/red.png"})

        assert len(http.calls) == 1
        url, kwargs = http.calls[0]
        assert url == "https://shop.example/red.png"
        assert kwargs["stream"] is True
        assert kwargs["allow_redirects"] is True
        assert kwargs["timeout"] is None
        assert kwargs["headers"]["User-Agent"].startswith("Mozilla/5.0")
        assert kwargs["headers"]["Accept"].startswith("image/")
        assert kwargs["headers"]["Cache-Control"] == "no-cache"

    def test_target_is_normalized(self, red_png):
        client, http = client_for(make_response(200, red_png, {"Content-Type": "image/jpeg"}))
        client.get("/image-proxy", params={"url": "https://images.unsplash.com/photo-1"})
        url, _ = http.calls[0]
        assert "fm=jpg" in url
        assert "auto=format" in url

    def test_missing_content_length_not_invented(self, red_png):
        client, _ = client_for(make_response(200, red_png, {"Content-Type": "image/png"}))
        response = client.get("/image-proxy", params={"url": "https://shop.example/red.png"})
        assert response.status_code == 200
        assert response.content == red_png


class TestUpstreamFailures:
    """Upstream errors and transport failures."""

    @pytest.mark.parametrize("status", [403, 404, 500, 503])
    def test_upstream_status_passed_through(self, status):
        upstream = make_response(status, b"nope", {"Content-Type": "text/html"})
        client, http = client_for(upstream)
        response = client.get("/image-proxy", params={"url": "https://shop.example/missing.png"})
        assert response.status_code == status
        assert response.json() == {"error": FETCH_FAILED}
        assert upstream.closed
        assert len(http.calls) == 1

    def test_unreachable_host(self):
        client, http = client_for(requests.ConnectionError("Name or service not known"))
        response = client.get("/image-proxy", params={"url": "https://unreachable.invalid/a.png"})
        assert response.status_code == 502
        assert response.json() == {"error": UNEXPECTED_FAILURE}
        assert len(http.calls) == 1

    def test_unexpected_error(self):
        client, _ = client_for(RuntimeError("boom"))
        response = client.get("/image-proxy", params={"url": "https://shop.example/a.png"})
        assert response.status_code == 502
        assert response.json() == {"error": UNEXPECTED_FAILURE}


class TestEncodedBodies:
    """Compressed upstream bodies are relayed byte for byte."""

    def test_gzip_body_matches_forwarded_length(self):
        payload = b"\x89PNG" + bytes(range(256)) * 20
        compressed = gzip.compress(payload)
        upstream = make_response(200, compressed, {
            "Content-Type": "image/png",
            "Content-Encoding": "gzip",
            "Content-Length": str(len(compressed)),
        })

        assert b"".join(_relay(upstream)) == compressed

    def test_gzip_response_through_endpoint(self):
        payload = b"\x89PNG" + bytes(range(256)) * 20
        compressed = gzip.compress(payload)
        client, _ = client_for(make_response(200, compressed, {
            "Content-Type": "image/png",
            "Content-Encoding": "gzip",
            "Content-Length": str(len(compressed)),
        }))

        response = client.get("/image-proxy", params={"url": "https://shop.example/red.png"})

        assert response.status_code == 200
        assert response.headers["content-encoding"] == "gzip"
        assert response.headers["content-length"] == str(len(compressed))
        assert response.content == payload


class TestRelayCleanup:
    """The upstream response is closed on every exit path."""

    def test_closed_when_client_stops_reading(self):
        upstream = make_response(200, b"x" * (CHUNK_SIZE * 2 + 1), {"Content-Type": "image/png"})
        relay = _relay(upstream)

        first = next(relay)
        assert len(first) == CHUNK_SIZE
        assert not upstream.closed

        relay.close()
        assert upstream.closed

    def test_closed_when_upstream_breaks_mid_stream(self, monkeypatch):
        upstream = make_response(200, b"x" * 10, {"Content-Type": "image/png"})

        def broken_stream(amt, decode_content=None):
            yield b"partial"
            raise ProtocolError("Connection broken")

        monkeypatch.setattr(upstream.raw, "stream", broken_stream)

        with pytest.raises(ProtocolError):
            list(_relay(upstream))
        assert upstream.closed

    def test_closed_after_full_read(self, red_png):
        upstream = make_response(200, red_png, {"Content-Type": "image/png"})
        assert b"".join(_relay(upstream)) == red_png
        assert upstream.closed
