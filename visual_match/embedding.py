"""
Colour/tonal embedding extraction.

Reduces an image to six pixel statistics computed over a fixed 48x48
canvas, in this order:

    0  mean red            sum(r) / (N^2 * 255)
    1  mean green          sum(g) / (N^2 * 255)
    2  mean blue           sum(b) / (N^2 * 255)
    3  mean brightness     mean of (r + g + b) / (3 * 255)
    4  contrast            standard deviation of brightness
    5  mean saturation     mean of (max - min) / max, 0 for black pixels

The vector captures low-level colour and tone only; it says nothing about
what objects are in the image. Catalog vectors must be produced with the
same canvas size as query vectors or the scores are meaningless.
"""

import os
import logging

import numpy as np

from .preprocessing import resize_to_canvas
from .scoring import normalize_vector

logger = logging.getLogger(__name__)

# Edge length of the analysis canvas. Changing it requires rebuilding
# the catalog embeddings.
CANVAS_SIZE = int(os.environ.get("EMBED_CANVAS_SIZE", "48"))

EMBEDDING_DIM = 6
FEATURE_NAMES = (
    "mean_r",
    "mean_g",
    "mean_b",
    "mean_brightness",
    "contrast",
    "mean_saturation",
)


def extract_raw_embedding(image_np: np.ndarray,
                          canvas_size: int = None) -> np.ndarray:
    """
    Compute the un-normalized 6-dimensional embedding of an image.

    Process:
        1. Resample the image onto a canvas_size x canvas_size RGB canvas
        2. Accumulate channel, brightness and saturation sums per pixel
        3. Derive means, brightness variance (floored at 0) and contrast

    Args:
        image_np: Decoded image (grayscale, RGB or RGBA array).
        canvas_size: Canvas edge length; defaults to CANVAS_SIZE.

    Returns:
        Float64 vector of EMBEDDING_DIM statistics in FEATURE_NAMES order.

    Raises:
        DecodeError: If the image cannot be rendered onto the canvas.
    """
    size = canvas_size or CANVAS_SIZE
    canvas = resize_to_canvas(image_np, size).astype(np.float64)
    pixel_count = size * size

    r = canvas[:, :, 0]
    g = canvas[:, :, 1]
    b = canvas[:, :, 2]

    brightness = (r + g + b) / (3 * 255)

    channel_max = canvas.max(axis=2)
    channel_min = canvas.min(axis=2)
    saturation = np.divide(
        channel_max - channel_min, channel_max,
        out=np.zeros_like(channel_max), where=channel_max != 0,
    )

    mean_brightness = brightness.sum() / pixel_count
    variance = (brightness * brightness).sum() / pixel_count - mean_brightness ** 2
    contrast = np.sqrt(max(variance, 0.0))

    return np.array([
        r.sum() / (pixel_count * 255),
        g.sum() / (pixel_count * 255),
        b.sum() / (pixel_count * 255),
        mean_brightness,
        contrast,
        saturation.sum() / pixel_count,
    ], dtype=np.float64)


def extract_embedding(image_np: np.ndarray,
                      canvas_size: int = None) -> np.ndarray:
    """
    Compute the unit-length embedding used for similarity comparison.

    Black or otherwise degenerate images yield the all-zero vector.

    Raises:
        DecodeError: If the image cannot be rendered onto the canvas.
    """
    raw = extract_raw_embedding(image_np, canvas_size)
    embedding = normalize_vector(raw)
    if not np.any(embedding):
        logger.warning("Image produced a zero-magnitude embedding")
    return embedding
