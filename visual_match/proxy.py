"""
Image acquisition proxy.

A small FastAPI service that fetches a remote image server-side and
streams it back with permissive cross-origin headers, for frontends that
cannot read image pixels from other origins directly.

    GET /image-proxy?url=<urlencoded target>

The target is checked with validate_image_url() before any network I/O.
Each request makes exactly one outbound attempt and applies no timeout
unless PROXY_TIMEOUT is set.
"""

import os
import logging
from typing import Iterator, Optional

import requests
from fastapi import FastAPI
from fastapi.responses import JSONResponse, StreamingResponse

from .errors import TransportError, ValidationError
from .urls import validate_image_url

logger = logging.getLogger(__name__)

FETCH_FAILED = "Failed to fetch remote image"
UNEXPECTED_FAILURE = "Unexpected proxy failure"

UPSTREAM_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/122 Safari/537.36"
    ),
    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    # Prefer uncompressed images; encoded bodies are relayed untouched.
    "Accept-Encoding": "identity",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

FORWARDED_HEADERS = ("Content-Type", "Content-Length", "Content-Encoding")
RESPONSE_HEADERS = {
    "Cache-Control": "public, max-age=60",
    "Access-Control-Allow-Origin": "*",
}

CHUNK_SIZE = 64 * 1024
PROXY_TIMEOUT = float(os.environ["PROXY_TIMEOUT"]) if os.environ.get("PROXY_TIMEOUT") else None


def open_upstream(url: str, http=requests, timeout: Optional[float] = None) -> requests.Response:
    """
    Issue the single outbound GET for a validated URL.

    The response is opened in streaming mode; the caller owns it and must
    close it.

    Raises:
        TransportError: If the upstream answers with a non-2xx status or
            without a body. The response is closed before raising.
        requests.RequestException: On connection-level failures.
    """
    response = http.get(
        url,
        headers=UPSTREAM_HEADERS,
        stream=True,
        allow_redirects=True,
        timeout=timeout,
    )

    succeeded = 200 <= (response.status_code or 0) < 300
    if not succeeded or response.raw is None:
        status = response.status_code if response.status_code and not succeeded else 502
        response.close()
        raise TransportError(FETCH_FAILED, status_code=status)

    return response


def _relay(upstream: requests.Response) -> Iterator[bytes]:
    # Bytes go out exactly as received, still content-encoded, so they
    # agree with the forwarded Content-Length and Content-Encoding.
    # Closed on completion, on error, and when the client disconnects and
    # the generator is discarded.
    try:
        for chunk in upstream.raw.stream(CHUNK_SIZE, decode_content=False):
            if chunk:
                yield chunk
    finally:
        upstream.close()


def create_app(http=None, timeout: Optional[float] = None) -> FastAPI:
    """
    Create the proxy application.

    Args:
        http: Object with a requests-compatible get(); defaults to the
            requests module.
        timeout: Outbound timeout in seconds; defaults to PROXY_TIMEOUT.
    """
    http = http or requests
    timeout = PROXY_TIMEOUT if timeout is None else timeout

    app = FastAPI(title="visual-match image proxy")

    @app.get("/image-proxy")
    def image_proxy(url: Optional[str] = None):
        """Fetch a remote image and stream it back to the caller."""
        try:
            target = validate_image_url(url)
        except ValidationError as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        try:
            upstream = open_upstream(target, http=http, timeout=timeout)
        except TransportError as e:
            logger.warning(f"Upstream returned {e.status_code} for {target}")
            return JSONResponse({"error": str(e)}, status_code=e.status_code or 502)
        except Exception as e:
            logger.error(f"Proxy request failed for {target}: {e}")
            return JSONResponse({"error": UNEXPECTED_FAILURE}, status_code=502)

        headers = dict(RESPONSE_HEADERS)
        for name in FORWARDED_HEADERS:
            value = upstream.headers.get(name)
            if value:
                headers[name] = value

        logger.info(f"Proxying {target} ({headers.get('Content-Type', 'unknown type')})")
        return StreamingResponse(_relay(upstream), status_code=200, headers=headers)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "visual_match.proxy:app",
        host=os.environ.get("PROXY_HOST", "127.0.0.1"),
        port=int(os.environ.get("PROXY_PORT", "8000")),
    )
