"""
Page detection for document scanning.

Provides:
- Adaptive edge threshold selection
- Contour extraction from an edge map (8-connected components)
- DetectedPage result type
- PageDetector: edges -> contours -> quadrilateral -> ordered corners

A frame without a page is a normal outcome: detect() returns None.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np

from ..config import DetectionConfig
from .geometry import (
    Point,
    calculate_confidence,
    corners_as_list,
    find_quadrilateral,
    order_corners,
    polygon_area,
)
from .images import detect_edges, to_grayscale

logger = logging.getLogger(__name__)

THRESHOLD_PERCENTILE = 0.85
THRESHOLD_MIN = 30.0
THRESHOLD_MAX = 80.0


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class DetectedPage:
    """A page quadrilateral found in one frame."""
    corners: Tuple[Point, Point, Point, Point]  # Clockwise from top-left
    confidence: float
    frame_index: int = 0
    timestamp: float = 0.0
    quality_score: float = 0.0
    area_ratio: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "corners": corners_as_list(self.corners),
            "confidence": round(self.confidence, 4),
            "frame_index": self.frame_index,
            "timestamp": round(self.timestamp, 3),
            "quality_score": round(self.quality_score, 3),
            "area_ratio": round(self.area_ratio, 4),
        }


# ============================================================================
# Thresholding and Contours
# ============================================================================

def calculate_adaptive_threshold(image: np.ndarray) -> float:
    """
    Edge threshold from the brightness distribution of a frame.

    Takes the gray level at the 85th percentile of the cumulative histogram,
    halves it and clamps the result to [30, 80].

    Args:
        image: Original frame (RGBA) or grayscale image

    Returns:
        Threshold for edge magnitudes
    """
    gray = to_grayscale(image)
    total = gray.size
    if total == 0:
        return THRESHOLD_MIN

    histogram = np.bincount(gray.ravel(), minlength=256)
    cumulative = np.cumsum(histogram) / total
    level = int(np.searchsorted(cumulative, THRESHOLD_PERCENTILE))

    threshold = float(np.clip(level * 0.5, THRESHOLD_MIN, THRESHOLD_MAX))
    logger.debug(f"Adaptive threshold: {threshold}")
    return threshold


def find_contours(
    edges: np.ndarray,
    threshold: Optional[float] = None,
    image: Optional[np.ndarray] = None,
    min_pixels: int = 100
) -> List[np.ndarray]:
    """
    Group strong edge pixels into 8-connected regions.

    Args:
        edges: Edge magnitude map from detect_edges
        threshold: Edge threshold; computed adaptively when None
        image: Original frame used for the adaptive threshold
        min_pixels: Smallest region kept

    Returns:
        List of (N, 2) arrays of (x, y) pixel coordinates, unordered
    """
    if threshold is None:
        threshold = calculate_adaptive_threshold(image if image is not None else edges)

    mask = (edges > threshold).astype(np.uint8)
    num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)

    contours = []
    for label in range(1, num_labels):
        if stats[label, cv2.CC_STAT_AREA] < min_pixels:
            continue
        ys, xs = np.nonzero(labels == label)
        contours.append(np.column_stack([xs, ys]))

    return contours


# ============================================================================
# Page Detector
# ============================================================================

class PageDetector:
    """
    Finds the largest page-like quadrilateral in a frame.

    Usage:
        detector = PageDetector(DetectionConfig(min_area=0.25))
        page = detector.detect(frame)
    """

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def detect(self, image: np.ndarray) -> Optional[DetectedPage]:
        """
        Detect a page in one frame.

        Args:
            image: RGBA frame

        Returns:
            DetectedPage, or None when no quadrilateral covers at least
            min_area of the frame
        """
        height, width = image.shape[:2]
        frame_area = float(width * height)
        if frame_area == 0:
            return None

        edges = detect_edges(image)
        contours = find_contours(
            edges, image=image, min_pixels=self.config.min_contour_pixels
        )
        logger.debug(f"Found {len(contours)} contours")

        best_quad = None
        max_area = 0.0

        for contour in contours:
            quad = find_quadrilateral(contour)
            if quad is None:
                continue
            area = polygon_area(quad)
            if area / frame_area >= self.config.min_area and area > max_area:
                max_area = area
                best_quad = quad

        if best_quad is None:
            logger.debug("No valid quadrilateral found")
            return None

        corners = order_corners(best_quad)
        confidence = calculate_confidence(corners)
        area_ratio = max_area / frame_area

        logger.debug(
            f"Found page with area ratio {area_ratio:.1%}, confidence {confidence:.2f}"
        )

        return DetectedPage(
            corners=corners,
            confidence=confidence,
            timestamp=time.time(),
            area_ratio=area_ratio,
        )


def detect_page(
    image: np.ndarray,
    config: Optional[DetectionConfig] = None
) -> Optional[DetectedPage]:
    """Convenience wrapper around PageDetector.detect."""
    return PageDetector(config).detect(image)
