"""
Polygon geometry for page detection.

Provides:
- Point type and distance helpers
- Convex hull and Douglas-Peucker polygon simplification
- Quadrilateral extraction from an edge contour
- Corner ordering and shape-based confidence scoring
- A small Gaussian-elimination solver shared by the homography and
  affine estimators
"""

import logging
import math
from dataclasses import dataclass
from itertools import combinations
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .errors import DegenerateGeometryError

logger = logging.getLogger(__name__)

# Upper bound for the exhaustive 4-of-n corner search (C(12, 4) = 495 quads)
MAX_BRUTE_FORCE_VERTICES = 12
APPROX_EPSILON_RATIO = 0.02
PIVOT_TOLERANCE = 1e-10


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class Point:
    """Pixel coordinates (floating point)."""
    x: float
    y: float

    def distance_to(self, other: "Point") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def to_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)

    @classmethod
    def from_xy(cls, xy) -> "Point":
        return cls(float(xy[0]), float(xy[1]))


def points_to_array(points: Sequence) -> np.ndarray:
    """Convert Points or (x, y) pairs to an (N, 2) float array."""
    if isinstance(points, np.ndarray):
        return points.reshape(-1, 2).astype(np.float64)
    return np.array(
        [[p.x, p.y] if isinstance(p, Point) else [p[0], p[1]] for p in points],
        dtype=np.float64
    ).reshape(-1, 2)


def array_to_points(array: np.ndarray) -> Tuple[Point, ...]:
    return tuple(Point.from_xy(row) for row in np.asarray(array).reshape(-1, 2))


# ============================================================================
# Polygon Measures
# ============================================================================

def polygon_area(points) -> float:
    """Area of a simple polygon (shoelace formula)."""
    pts = points_to_array(points)
    if len(pts) < 3:
        return 0.0
    x, y = pts[:, 0], pts[:, 1]
    return abs(float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))) / 2.0


def polygon_perimeter(points) -> float:
    """Closed perimeter of a polygon."""
    pts = points_to_array(points)
    if len(pts) < 2:
        return 0.0
    return float(np.linalg.norm(np.roll(pts, -1, axis=0) - pts, axis=1).sum())


# ============================================================================
# Hull and Simplification
# ============================================================================

def convex_hull(points: np.ndarray) -> np.ndarray:
    """
    Convex hull of an unordered point set.

    Args:
        points: (N, 2) array of pixel coordinates

    Returns:
        (M, 2) array of hull vertices in boundary order
    """
    pts = np.asarray(points).reshape(-1, 2)
    if len(pts) < 3:
        return pts.astype(np.float64)

    hull = cv2.convexHull(pts.astype(np.float32).reshape(-1, 1, 2))
    return hull.reshape(-1, 2).astype(np.float64)


def approximate_polygon(points: np.ndarray, epsilon: float) -> np.ndarray:
    """
    Douglas-Peucker simplification of a closed polygon.

    Args:
        points: (N, 2) polygon vertices in boundary order
        epsilon: Maximum distance between the original and simplified outline

    Returns:
        (K, 2) simplified polygon
    """
    pts = np.asarray(points).reshape(-1, 2)
    if len(pts) < 3:
        return pts.astype(np.float64)

    approx = cv2.approxPolyDP(pts.astype(np.float32).reshape(-1, 1, 2), epsilon, True)
    return approx.reshape(-1, 2).astype(np.float64)


# ============================================================================
# Quadrilateral Extraction
# ============================================================================

def find_quadrilateral(contour: np.ndarray) -> Optional[np.ndarray]:
    """
    Reduce a contour to a quadrilateral.

    Hull -> Douglas-Peucker (epsilon = 2% of the hull perimeter). Exactly
    four vertices are accepted as they are; more are reduced to the
    largest-area 4-subset, or to the diagonal extremes when there are too
    many vertices for the exhaustive search.

    Args:
        contour: (N, 2) unordered pixel coordinates

    Returns:
        (4, 2) array of corners, or None when fewer than four vertices remain
    """
    hull = convex_hull(contour)
    if len(hull) < 4:
        return None

    perimeter = polygon_perimeter(hull)
    approx = approximate_polygon(hull, perimeter * APPROX_EPSILON_RATIO)

    if len(approx) == 4:
        return approx

    if len(approx) > 4:
        if len(approx) <= MAX_BRUTE_FORCE_VERTICES:
            return find_best_quadrilateral(approx)
        logger.debug(
            f"{len(approx)} vertices after simplification, using extreme corners"
        )
        return extreme_corners(approx)

    return None


def find_best_quadrilateral(points: np.ndarray) -> Optional[np.ndarray]:
    """Largest-area 4-subset of a polygon's vertices (order preserved)."""
    pts = np.asarray(points).reshape(-1, 2)
    best_quad = None
    max_area = 0.0

    for idx in combinations(range(len(pts)), 4):
        quad = pts[list(idx)]
        area = polygon_area(quad)
        if area > max_area:
            max_area = area
            best_quad = quad

    return best_quad


def extreme_corners(points: np.ndarray) -> Optional[np.ndarray]:
    """
    Pick the 4 points that lie farthest along the +/-45 degree axes.

    Returns None when two of the extremes coincide.
    """
    pts = np.asarray(points).reshape(-1, 2)
    s = pts[:, 0] + pts[:, 1]
    d = pts[:, 0] - pts[:, 1]
    idx = [int(np.argmin(s)), int(np.argmax(d)), int(np.argmax(s)), int(np.argmin(d))]

    if len(set(idx)) < 4:
        return None
    return pts[idx]


# ============================================================================
# Corner Ordering and Confidence
# ============================================================================

def order_corners(corners) -> Tuple[Point, ...]:
    """
    Order 4 corners clockwise starting at the top-left.

    Corners are sorted by polar angle around their centroid (image y axis
    points down, so ascending angle is clockwise on screen) and rotated so
    that the point with the smallest x + y comes first. Pages rotated by
    about 45 degrees can come out with a shifted starting corner.
    """
    pts = points_to_array(corners)
    if len(pts) != 4:
        raise ValueError(f"Expected 4 corners, got {len(pts)}")

    center = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - center[1], pts[:, 0] - center[0])
    ordered = pts[np.argsort(angles, kind="stable")]

    top_left = int(np.argmin(ordered[:, 0] + ordered[:, 1]))
    ordered = np.roll(ordered, -top_left, axis=0)

    return array_to_points(ordered)


def corner_angle(p1: Point, p2: Point, p3: Point) -> float:
    """Angle at p2 formed by p1-p2-p3, in degrees [0, 180]."""
    v1x, v1y = p1.x - p2.x, p1.y - p2.y
    v2x, v2y = p3.x - p2.x, p3.y - p2.y

    dot = v1x * v2x + v1y * v2y
    det = v1x * v2y - v1y * v2x
    return abs(math.degrees(math.atan2(det, dot)))


def calculate_confidence(corners: Sequence[Point]) -> float:
    """
    Score how rectangular an ordered quadrilateral looks.

    Mean of a shape score (opposite sides of similar length) and an angle
    score (interior angles near 90 degrees; 45 degrees of average
    deviation scores zero).
    """
    width_top = corners[0].distance_to(corners[1])
    width_bottom = corners[3].distance_to(corners[2])
    height_left = corners[0].distance_to(corners[3])
    height_right = corners[1].distance_to(corners[2])

    width_ratio = _side_ratio(width_top, width_bottom)
    height_ratio = _side_ratio(height_left, height_right)

    angles = [
        corner_angle(corners[i], corners[(i + 1) % 4], corners[(i + 2) % 4])
        for i in range(4)
    ]
    angle_deviation = sum(abs(90.0 - a) for a in angles) / 4

    shape_score = (width_ratio + height_ratio) / 2
    angle_score = max(0.0, 1 - angle_deviation / 45)

    return min(1.0, max(0.0, shape_score * 0.5 + angle_score * 0.5))


def _side_ratio(a: float, b: float) -> float:
    longest = max(a, b)
    if longest <= 0:
        return 0.0
    return min(a, b) / longest


# ============================================================================
# Linear Solver
# ============================================================================

def solve_linear_system(
    A: np.ndarray,
    b: np.ndarray,
    pivot_tolerance: float = PIVOT_TOLERANCE
) -> np.ndarray:
    """
    Solve A x = b by Gaussian elimination with partial pivoting.

    Args:
        A: (n, n) coefficient matrix
        b: (n,) right-hand side
        pivot_tolerance: Smallest acceptable pivot magnitude

    Returns:
        Solution vector (n,)

    Raises:
        DegenerateGeometryError: If a pivot falls below the tolerance
    """
    augmented = np.hstack([
        np.asarray(A, dtype=np.float64),
        np.asarray(b, dtype=np.float64).reshape(-1, 1)
    ])
    n = augmented.shape[0]

    # Forward elimination
    for i in range(n):
        pivot_row = i + int(np.argmax(np.abs(augmented[i:, i])))
        if abs(augmented[pivot_row, i]) < pivot_tolerance:
            raise DegenerateGeometryError(
                f"Singular system (pivot {augmented[pivot_row, i]:.3g} in column {i})"
            )
        if pivot_row != i:
            augmented[[i, pivot_row]] = augmented[[pivot_row, i]]

        factors = augmented[i + 1:, i] / augmented[i, i]
        augmented[i + 1:, i:] -= np.outer(factors, augmented[i, i:])

    # Back substitution
    x = np.zeros(n, dtype=np.float64)
    for i in range(n - 1, -1, -1):
        x[i] = (augmented[i, n] - np.dot(augmented[i, i + 1:n], x[i + 1:])) / augmented[i, i]

    if not np.all(np.isfinite(x)):
        raise DegenerateGeometryError("Non-finite solution")

    return x


def solve_affine(src: Sequence[Point], dst: Sequence[Point]) -> np.ndarray:
    """
    2x3 affine matrix mapping three src points onto three dst points.

    Raises:
        DegenerateGeometryError: If the src points are (nearly) collinear
    """
    src_pts = points_to_array(src)[:3]
    dst_pts = points_to_array(dst)[:3]

    # Twice the triangle area is the determinant of A
    if polygon_area(src_pts) < 0.5:
        raise DegenerateGeometryError("Affine reference points are collinear")

    A = np.hstack([src_pts, np.ones((3, 1))])
    row_x = solve_linear_system(A, dst_pts[:, 0])
    row_y = solve_linear_system(A, dst_pts[:, 1])

    return np.vstack([row_x, row_y])


def corners_as_list(corners: Sequence[Point]) -> List[List[float]]:
    return [[round(p.x, 2), round(p.y, 2)] for p in corners]
