"""
Query image acquisition.

Loads the query image from a local file or a remote URL. Remote images
are fetched with a two-step policy:

    1. Through the image proxy (one attempt)
    2. Directly from the normalized URL (one attempt)

If both fail a single TransportError is raised. The two paths are kept
separate rather than folded into a retry count because the proxy and
the origin server are trusted differently.
"""

import os
import logging
from contextlib import closing
from typing import Optional

import numpy as np
import requests

from .errors import TransportError
from .preprocessing import decode_image, load_image_file
from .proxy import UPSTREAM_HEADERS
from .urls import validate_image_url

logger = logging.getLogger(__name__)

PROXY_ENDPOINT = os.environ.get("IMAGE_PROXY_URL", "http://127.0.0.1:8000/image-proxy")
MAX_IMAGE_BYTES = int(os.environ.get("MAX_IMAGE_BYTES", str(20 * 1024 * 1024)))

LOAD_FAILED = "Failed to load image from URL. Confirm the link is accessible."


def _read_body(url: str, http, timeout: Optional[float], **kwargs) -> bytes:
    with closing(http.get(url, stream=True, timeout=timeout, **kwargs)) as response:
        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"{url} answered with status {response.status_code}",
                status_code=response.status_code,
            )

        chunks = []
        received = 0
        for chunk in response.iter_content(chunk_size=64 * 1024):
            received += len(chunk)
            if received > MAX_IMAGE_BYTES:
                raise TransportError(f"{url} exceeds {MAX_IMAGE_BYTES} bytes")
            chunks.append(chunk)

    return b"".join(chunks)


def fetch_via_proxy(url: str,
                    proxy_endpoint: str = None,
                    http=requests,
                    timeout: Optional[float] = None) -> bytes:
    """
    Fetch image bytes through the image proxy.

    Raises:
        TransportError: If the proxy answers with a non-2xx status.
        requests.RequestException: If the proxy cannot be reached.
    """
    endpoint = proxy_endpoint or PROXY_ENDPOINT
    return _read_body(endpoint, http, timeout, params={"url": url})


def fetch_direct(url: str,
                 http=requests,
                 timeout: Optional[float] = None) -> bytes:
    """
    Fetch image bytes straight from the origin server.

    Raises:
        TransportError: If the origin answers with a non-2xx status.
        requests.RequestException: If the origin cannot be reached.
    """
    return _read_body(url, http, timeout, headers=UPSTREAM_HEADERS, allow_redirects=True)


def fetch_image_bytes(url: str,
                      proxy_endpoint: str = None,
                      http=requests,
                      timeout: Optional[float] = None) -> bytes:
    """
    Fetch a remote image, via the proxy first and directly second.

    Args:
        url: URL as supplied by the user; normalized before use.
        proxy_endpoint: Proxy route; defaults to PROXY_ENDPOINT.
        http: Object with a requests-compatible get().
        timeout: Per-attempt timeout in seconds; None leaves it to the
            transport.

    Returns:
        Raw encoded image bytes.

    Raises:
        ValidationError: If the URL is missing, malformed or not http(s).
            Raised before any request is made.
        TransportError: If both attempts fail.
    """
    target = validate_image_url(url)

    try:
        return fetch_via_proxy(target, proxy_endpoint, http=http, timeout=timeout)
    except (TransportError, requests.RequestException) as e:
        logger.warning(f"Proxy load failed, falling back to direct URL: {e}")

    try:
        return fetch_direct(target, http=http, timeout=timeout)
    except (TransportError, requests.RequestException) as e:
        logger.error(f"Failed to load remote image {target}: {e}")
        raise TransportError(LOAD_FAILED) from e


def load_remote_image(url: str,
                      proxy_endpoint: str = None,
                      http=requests,
                      timeout: Optional[float] = None) -> np.ndarray:
    """
    Fetch and decode a remote image into an RGB array.

    Raises:
        ValidationError, TransportError: See fetch_image_bytes().
        DecodeError: If the fetched bytes are not a decodable image.
    """
    data = fetch_image_bytes(url, proxy_endpoint, http=http, timeout=timeout)
    return decode_image(data)


def load_query_image(source: str, **kwargs) -> np.ndarray:
    """
    Load a query image from a URL or a local file path.

    Anything carrying a URL scheme goes through validate_image_url(), so
    non-http(s) URLs raise ValidationError rather than being read as paths.
    """
    if "://" in source:
        return load_remote_image(source, **kwargs)
    return load_image_file(source)
