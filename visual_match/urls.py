"""
Image URL normalization.

Rewrites URLs that users commonly paste into ones that resolve directly
to a decodable raster image:

    - Google Images "imgres" viewer links are unwrapped to the image URL
      carried in their imgurl parameter
    - Unsplash CDN links get explicit auto/fit/fm parameters so the CDN
      returns a JPEG instead of a source-format passthrough

Normalization is best-effort and never raises. validate_image_url()
normalizes and then rejects anything that is not an absolute http(s) URL;
it must pass before any fetch is issued.
"""

import os
import logging
from urllib.parse import parse_qs, parse_qsl, urlencode, urlsplit, urlunsplit

from .errors import ValidationError

logger = logging.getLogger(__name__)

# Nested viewer links are unwrapped at most this many times.
MAX_UNWRAP_DEPTH = int(os.environ.get("MAX_UNWRAP_DEPTH", "3"))

VIEWER_HOST_MARKER = "google."
VIEWER_PATH_MARKER = "/imgres"
VIEWER_IMAGE_PARAM = "imgurl"

RESIZING_CDN_HOSTS = ("images.unsplash.com",)
CDN_DEFAULT_PARAMS = (
    ("auto", "format"),
    ("fit", "crop"),
    ("fm", "jpg"),
)

ALLOWED_SCHEMES = frozenset({"http", "https"})

MISSING_URL = "Missing url query parameter"
INVALID_URL = "Invalid URL supplied"
DISALLOWED_PROTOCOL = "Only http and https protocols are allowed"


def _is_viewer_link(host: str, path: str) -> bool:
    return VIEWER_HOST_MARKER in host and VIEWER_PATH_MARKER in path


def _is_resizing_cdn(host: str) -> bool:
    return any(cdn in host for cdn in RESIZING_CDN_HOSTS)


def add_missing_params(url: str, defaults=CDN_DEFAULT_PARAMS) -> str:
    """
    Append each default query parameter the URL does not already carry.

    Existing parameters keep their values and their order.
    """
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    present = {key for key, _ in params}
    params.extend((key, value) for key, value in defaults if key not in present)
    return urlunsplit(parts._replace(query=urlencode(params)))


def normalize_image_url(raw_url: str, max_depth: int = None) -> str:
    """
    Rewrite an image URL into one more likely to be directly fetchable.

    Args:
        raw_url: URL as supplied by the user.
        max_depth: Maximum number of viewer links to unwrap; defaults to
            MAX_UNWRAP_DEPTH.

    Returns:
        The rewritten URL, or raw_url unchanged if no rule applies or it
        is not a valid absolute URL.
    """
    depth_left = MAX_UNWRAP_DEPTH if max_depth is None else max_depth

    try:
        parts = urlsplit(raw_url)
        host = (parts.hostname or "").lower()
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Unable to normalise image URL {raw_url!r}: {e}")
        return raw_url

    if not parts.scheme or not host:
        return raw_url

    if _is_viewer_link(host, parts.path):
        inner = parse_qs(parts.query).get(VIEWER_IMAGE_PARAM, [None])[0]
        if inner:
            if depth_left <= 0:
                logger.warning(f"Viewer link nested too deeply, not unwrapping: {raw_url}")
                return raw_url
            return normalize_image_url(inner, depth_left - 1)

    if _is_resizing_cdn(host):
        return add_missing_params(raw_url)

    return raw_url


def validate_image_url(raw_url: str) -> str:
    """
    Normalize a user-supplied URL and check that it is safe to fetch.

    Returns:
        The normalized absolute http(s) URL.

    Raises:
        ValidationError: With the client-facing message for a missing,
            malformed or non-http(s) URL.
    """
    if not raw_url or not isinstance(raw_url, str) or not raw_url.strip():
        raise ValidationError(MISSING_URL)

    target = normalize_image_url(raw_url.strip())
    try:
        parts = urlsplit(target)
        host = parts.hostname
    except ValueError as e:
        raise ValidationError(INVALID_URL) from e

    if not parts.scheme:
        raise ValidationError(INVALID_URL)

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise ValidationError(DISALLOWED_PROTOCOL)

    if not host:
        raise ValidationError(INVALID_URL)

    return target
