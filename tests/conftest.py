"""Shared test fixtures for visual match tests."""

import io

import numpy as np
import cv2
import pytest
import requests
from urllib3 import HTTPResponse

from visual_match.catalog import CatalogEntry
from visual_match.embedding import extract_raw_embedding


def solid_image(rgb, size=120):
    img = np.zeros((size, size, 3), dtype=np.uint8)
    img[:, :] = rgb
    return img


def make_entry(entry_id, embedding, name=None):
    return CatalogEntry(
        id=entry_id,
        name=name or f"Product {entry_id}",
        category="test",
        image=f"/images/{entry_id}.jpg",
        embedding=tuple(float(v) for v in embedding),
    )


def encode_png(image_rgb):
    ok, buf = cv2.imencode(".png", cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR))
    assert ok
    return buf.tobytes()


@pytest.fixture
def red_image():
    """Generate a 120x120 pure red image."""
    return solid_image([255, 0, 0])


@pytest.fixture
def blue_image():
    """Generate a 120x120 pure blue image."""
    return solid_image([0, 0, 255])


@pytest.fixture
def gray_image():
    """Generate a 120x120 uniform mid-gray image."""
    return solid_image([128, 128, 128])


@pytest.fixture
def black_image():
    """Generate a 120x120 black image."""
    return solid_image([0, 0, 0])


@pytest.fixture
def red_square_image():
    """Generate a 200x200 red square on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[40:160, 40:160] = [200, 30, 30]
    return img


@pytest.fixture
def noise_image():
    """Generate a 200x200 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def red_png(red_image):
    return encode_png(red_image)


@pytest.fixture
def colour_catalog(red_image, blue_image, gray_image):
    """Catalog of red, blue and gray products with raw (un-normalized) embeddings."""
    return (
        make_entry(1, extract_raw_embedding(red_image), "Red"),
        make_entry(2, extract_raw_embedding(blue_image), "Blue"),
        make_entry(3, extract_raw_embedding(gray_image), "Gray"),
    )


class TrackedResponse(requests.Response):
    """requests.Response that records whether it was closed."""

    closed = False

    def close(self):
        self.closed = True
        super().close()


def make_response(status_code=200, body=b"", headers=None):
    response = TrackedResponse()
    response.status_code = status_code
    response.headers.update(headers or {})
    response.raw = HTTPResponse(
        body=io.BytesIO(body),
        headers=headers or {},
        status=status_code,
        preload_content=False,
    )
    return response


class FakeHttp:
    """Stands in for the requests module; replays queued responses or errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
