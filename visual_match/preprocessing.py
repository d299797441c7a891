"""
Image decoding and canvas preparation for embedding extraction.

Every query and catalog image is decoded into an RGB uint8 array and
resampled onto the same small square canvas before any pixel statistics
are computed. Working at a fixed resolution keeps extraction cost
constant and makes images of different sizes directly comparable.
"""

import os
import logging

import cv2
import numpy as np

from .errors import DecodeError

logger = logging.getLogger(__name__)


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """Ensure image is uint8 with values in [0, 255]."""
    if image_np.dtype == np.uint8:
        return image_np
    if image_np.dtype == np.uint16:
        return (image_np >> 8).astype(np.uint8)
    if image_np.size and np.issubdtype(image_np.dtype, np.floating) and image_np.max() <= 1.0:
        image_np = image_np * 255
    return np.clip(image_np, 0, 255).astype(np.uint8)


def to_rgb(image_np: np.ndarray) -> np.ndarray:
    """
    Convert a grayscale, RGB or RGBA array into a 3-channel RGB array.

    Fully transparent RGBA pixels are read back as black, matching what
    a browser canvas reports for them.

    Args:
        image_np: Array of shape (H, W), (H, W, 1), (H, W, 3) or (H, W, 4).

    Returns:
        uint8 array of shape (H, W, 3).

    Raises:
        DecodeError: If the array has an unsupported shape or no pixels.
    """
    if image_np is None or image_np.size == 0:
        raise DecodeError("Image has no pixels")

    image_np = normalize_image(image_np)

    if image_np.ndim == 3 and image_np.shape[2] == 1:
        image_np = image_np[:, :, 0]

    if image_np.ndim == 2:
        return cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)

    if image_np.ndim != 3 or image_np.shape[2] not in (3, 4):
        raise DecodeError(f"Unsupported image shape {image_np.shape}")

    if image_np.shape[2] == 4:
        rgb = image_np[:, :, :3].copy()
        rgb[image_np[:, :, 3] == 0] = 0
        return rgb

    return image_np


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (PNG, JPEG, WebP, ...) into an RGB array.

    Args:
        data: Raw encoded bytes.

    Returns:
        RGB uint8 image.

    Raises:
        DecodeError: If the bytes are empty or not a decodable image.
    """
    if not data:
        raise DecodeError("Image data is empty")

    buffer = np.frombuffer(data, dtype=np.uint8)
    try:
        decoded = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    except cv2.error as e:
        raise DecodeError(f"Image could not be decoded: {e}") from e

    if decoded is None:
        raise DecodeError("Image could not be decoded")

    # OpenCV decodes colour images in BGR(A) order
    if decoded.ndim == 3 and decoded.shape[2] == 3:
        decoded = cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB)
    elif decoded.ndim == 3 and decoded.shape[2] == 4:
        decoded = cv2.cvtColor(decoded, cv2.COLOR_BGRA2RGBA)

    return to_rgb(decoded)


def load_image_file(path: str) -> np.ndarray:
    """
    Read and decode a local image file into an RGB array.

    Raises:
        DecodeError: If the file is missing or not a decodable image.
    """
    if not os.path.isfile(path):
        raise DecodeError(f"Image file not found: {path}")

    with open(path, "rb") as f:
        data = f.read()

    logger.debug(f"Read {len(data)} bytes from {path}")
    return decode_image(data)


def resize_to_canvas(image_np: np.ndarray, size: int) -> np.ndarray:
    """
    Resample an image onto a size x size RGB canvas.

    The aspect ratio is not preserved: the whole image is stretched over
    the canvas, the same way it is drawn when building catalog vectors.

    Args:
        image_np: Image array in any layout accepted by to_rgb().
        size: Edge length of the square canvas.

    Returns:
        uint8 array of shape (size, size, 3).

    Raises:
        DecodeError: If the image has a zero dimension or cannot be resized.
    """
    if size <= 0:
        raise ValueError(f"Canvas size must be positive, got {size}")

    rgb = to_rgb(image_np)
    h, w = rgb.shape[:2]
    if h == 0 or w == 0:
        raise DecodeError(f"Image has a zero dimension ({w}x{h})")

    try:
        return cv2.resize(rgb, (size, size), interpolation=cv2.INTER_AREA)
    except cv2.error as e:
        raise DecodeError(f"Image could not be resampled: {e}") from e
