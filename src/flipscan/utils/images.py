"""
Image utilities for the page extraction pipeline.

Provides:
- Channel layout normalisation (RGB/RGBA)
- Grayscale / luminance conversion
- Sobel edge magnitude
- Laplacian sharpness (frame quality) scoring
- Debug visualisation of detected pages

All frames are numpy arrays of dtype uint8 in RGBA order.
"""

import logging
from typing import Sequence, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


# ============================================================================
# Channel Handling
# ============================================================================

def to_rgba(image: np.ndarray) -> np.ndarray:
    """
    Normalise an image to an (H, W, 4) uint8 RGBA array.

    Args:
        image: Grayscale, RGB or RGBA image

    Returns:
        RGBA image (the input itself when it already is one)
    """
    if image.ndim == 2:
        return cv2.cvtColor(image.astype(np.uint8), cv2.COLOR_GRAY2RGBA)
    if image.ndim == 3:
        if image.shape[2] == 4:
            return image if image.dtype == np.uint8 else image.astype(np.uint8)
        if image.shape[2] == 3:
            return cv2.cvtColor(image.astype(np.uint8), cv2.COLOR_RGB2RGBA)
        if image.shape[2] == 1:
            return cv2.cvtColor(image[:, :, 0].astype(np.uint8), cv2.COLOR_GRAY2RGBA)

    raise ValueError(f"Unexpected image shape: {image.shape}")


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert an RGB(A) frame to an 8-bit luminance image.

    Args:
        image: Input image (RGBA, RGB or already grayscale)

    Returns:
        Grayscale uint8 image
    """
    if image.ndim == 2:
        return image
    elif image.ndim == 3:
        if image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
        elif image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        elif image.shape[2] == 1:
            return image.squeeze(axis=2)

    raise ValueError(f"Unexpected image shape: {image.shape}")


def luminance(image: np.ndarray) -> np.ndarray:
    """Unrounded float luminance 0.299R + 0.587G + 0.114B."""
    if image.ndim == 2:
        return image.astype(np.float64)
    return image[:, :, :3].astype(np.float64) @ LUMA_WEIGHTS


# ============================================================================
# Edges and Sharpness
# ============================================================================

def detect_edges(image: np.ndarray) -> np.ndarray:
    """
    Sobel gradient magnitude of the frame's luminance.

    The 1-pixel border is left at zero.

    Args:
        image: RGBA frame

    Returns:
        Edge magnitude map, uint8, same height/width as the frame
    """
    gray = to_grayscale(image).astype(np.float32)
    h, w = gray.shape
    edges = np.zeros((h, w), dtype=np.uint8)
    if h < 3 or w < 3:
        return edges

    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    magnitude = np.minimum(np.sqrt(gx * gx + gy * gy), 255.0)

    edges[1:-1, 1:-1] = np.rint(magnitude[1:-1, 1:-1]).astype(np.uint8)
    return edges


def laplacian_map(image: np.ndarray) -> np.ndarray:
    """
    4-neighbour Laplacian (-g + 1/4 of the neighbour sum) over interior pixels.

    Returns:
        (H-2, W-2) float array
    """
    gray = luminance(image)
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return np.zeros((0, 0), dtype=np.float64)

    center = gray[1:-1, 1:-1]
    neighbours = gray[:-2, 1:-1] + gray[2:, 1:-1] + gray[1:-1, :-2] + gray[1:-1, 2:]
    return neighbours * 0.25 - center


def calculate_quality_score(image: np.ndarray) -> float:
    """
    Blur score of a frame: variance of its Laplacian.

    Higher means sharper. Frames smaller than 3x3 score 0.
    """
    lap = laplacian_map(image)
    if lap.size == 0:
        return 0.0
    return float(lap.var())


# ============================================================================
# Debug Visualization
# ============================================================================

def draw_page_outline(
    image: np.ndarray,
    corners: Sequence,
    color: Tuple[int, int, int, int] = (255, 0, 0, 255),
    line_width: int = 3,
    radius: int = 8
) -> np.ndarray:
    """
    Draw a detected page quadrilateral and its corner points.

    Args:
        image: RGBA frame
        corners: Four points (objects with x/y or (x, y) pairs)
        color: RGBA line color (red by default)
        line_width: Outline thickness
        radius: Corner dot radius

    Returns:
        Annotated copy of the frame
    """
    debug_img = to_rgba(image).copy()
    pts = np.array(
        [[_coord(c, 0), _coord(c, 1)] for c in corners], dtype=np.int32
    ).reshape(-1, 1, 2)

    cv2.polylines(debug_img, [pts], isClosed=True, color=color, thickness=line_width)
    for pt in pts.reshape(-1, 2):
        cv2.circle(debug_img, (int(pt[0]), int(pt[1])), radius, color, -1)

    return debug_img


def _coord(point, axis: int) -> int:
    if hasattr(point, "x"):
        return round(point.x if axis == 0 else point.y)
    return round(point[axis])
