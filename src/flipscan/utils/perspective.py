"""
Perspective correction of detected pages.

Provides:
- Homography estimation from four point correspondences
- Output size estimation from page corners
- Inverse-mapped bilinear resampling into an upright rectangle
"""

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from .errors import DegenerateGeometryError
from .geometry import Point, points_to_array, solve_linear_system

logger = logging.getLogger(__name__)

WHITE = np.array([255, 255, 255, 255], dtype=np.uint8)


# ============================================================================
# Homography
# ============================================================================

def calculate_homography(src: Sequence[Point], dst: Sequence[Point]) -> np.ndarray:
    """
    3x3 homography mapping the four src points onto the four dst points.

    Solves the 8-unknown linear system with h33 fixed to 1.

    Raises:
        DegenerateGeometryError: If the correspondences do not define a
            projective transform (collinear or coincident points)
    """
    src_pts = points_to_array(src)
    dst_pts = points_to_array(dst)
    if len(src_pts) != 4 or len(dst_pts) != 4:
        raise ValueError("Homography needs exactly 4 point pairs")

    A = np.zeros((8, 8), dtype=np.float64)
    b = np.zeros(8, dtype=np.float64)

    for i, ((x, y), (X, Y)) in enumerate(zip(src_pts, dst_pts)):
        A[2 * i] = [x, y, 1, 0, 0, 0, -X * x, -X * y]
        A[2 * i + 1] = [0, 0, 0, x, y, 1, -Y * x, -Y * y]
        b[2 * i] = X
        b[2 * i + 1] = Y

    h = solve_linear_system(A, b)
    return np.append(h, 1.0).reshape(3, 3)


def apply_homography(points, H: np.ndarray) -> np.ndarray:
    """
    Map points through a homography.

    Args:
        points: (N, 2) array, or a sequence of Points / (x, y) pairs
        H: 3x3 homography

    Returns:
        (N, 2) float array of mapped points
    """
    pts = points_to_array(points)
    homogeneous = np.hstack([pts, np.ones((len(pts), 1))]) @ np.asarray(H).T
    w = homogeneous[:, 2:3]
    if np.any(np.abs(w) < 1e-12):
        raise DegenerateGeometryError("Point maps to infinity")
    return homogeneous[:, :2] / w


# ============================================================================
# Rectification
# ============================================================================

def estimate_target_size(corners: Sequence[Point]) -> Tuple[int, int]:
    """
    Output (width, height) for a page: the longer of each pair of opposite sides.
    """
    width_top = corners[0].distance_to(corners[1])
    width_bottom = corners[3].distance_to(corners[2])
    height_left = corners[0].distance_to(corners[3])
    height_right = corners[1].distance_to(corners[2])

    return round(max(width_top, width_bottom)), round(max(height_left, height_right))


def rectify(
    image: np.ndarray,
    corners: Sequence[Point],
    target_width: Optional[int] = None,
    target_height: Optional[int] = None
) -> np.ndarray:
    """
    Warp the page quadrilateral into an upright rectangle.

    Each output pixel is mapped back into the source frame and bilinearly
    interpolated; pixels that land outside the frame are white.

    Args:
        image: RGBA frame
        corners: Page corners, clockwise from top-left
        target_width: Output width (estimated from the corners when omitted)
        target_height: Output height (estimated from the corners when omitted)

    Returns:
        (target_height, target_width, 4) uint8 image

    Raises:
        DegenerateGeometryError: If the corners are degenerate
    """
    if not target_width or not target_height:
        target_width, target_height = estimate_target_size(corners)
        logger.debug(f"Calculated output size {target_width}x{target_height} from corners")

    if target_width <= 0 or target_height <= 0:
        raise DegenerateGeometryError(
            f"Empty output size {target_width}x{target_height}"
        )

    dst_corners = (
        Point(0, 0),
        Point(target_width, 0),
        Point(target_width, target_height),
        Point(0, target_height),
    )

    # Destination rectangle -> source quadrilateral
    H = calculate_homography(dst_corners, corners)

    ys, xs = np.mgrid[0:target_height, 0:target_width]
    grid = np.column_stack([xs.ravel(), ys.ravel(), np.ones(xs.size)]).astype(np.float64)
    mapped = grid @ H.T
    with np.errstate(divide="ignore", invalid="ignore"):
        src_x = mapped[:, 0] / mapped[:, 2]
        src_y = mapped[:, 1] / mapped[:, 2]

    return _sample_bilinear(image, src_x, src_y).reshape(target_height, target_width, -1)


def _sample_bilinear(image: np.ndarray, src_x: np.ndarray, src_y: np.ndarray) -> np.ndarray:
    height, width = image.shape[:2]
    channels = image.shape[2] if image.ndim == 3 else 1
    pixels = image.reshape(height, width, channels)

    out = np.empty((src_x.size, channels), dtype=np.uint8)
    out[:] = WHITE[:channels] if channels <= 4 else 255

    inside = (
        np.isfinite(src_x) & np.isfinite(src_y)
        & (src_x >= 0) & (src_x <= width - 1)
        & (src_y >= 0) & (src_y <= height - 1)
    )
    if not np.any(inside):
        return out

    x = src_x[inside]
    y = src_y[inside]
    x0 = np.floor(x).astype(np.intp)
    y0 = np.floor(y).astype(np.intp)
    x1 = np.ceil(x).astype(np.intp)
    y1 = np.ceil(y).astype(np.intp)
    fx = (x - x0)[:, None]
    fy = (y - y0)[:, None]

    p00 = pixels[y0, x0].astype(np.float64)
    p01 = pixels[y0, x1].astype(np.float64)
    p10 = pixels[y1, x0].astype(np.float64)
    p11 = pixels[y1, x1].astype(np.float64)

    top = p00 * (1 - fx) + p01 * fx
    bottom = p10 * (1 - fx) + p11 * fx
    value = top * (1 - fy) + bottom * fy

    out[inside] = np.clip(np.floor(value + 0.5), 0, 255).astype(np.uint8)
    return out
