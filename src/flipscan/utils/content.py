"""
Content comparison between frames.

A coarse luminance histogram of the central region of a frame is enough
to tell the same page from a different one and to spot pages that were
already captured.
"""

import logging
from typing import Iterable

import numpy as np

from ..config import HISTOGRAM_BINS
from .images import to_grayscale

logger = logging.getLogger(__name__)

CENTER_REGION = 0.8


def calculate_histogram(image: np.ndarray, bins: int = HISTOGRAM_BINS) -> np.ndarray:
    """
    Normalised luminance histogram of the central 80% x 80% of a frame.

    Args:
        image: RGBA frame or grayscale image
        bins: Number of histogram bins

    Returns:
        Float array of length `bins` summing to 1 (all zeros for an empty frame)
    """
    gray = to_grayscale(image)
    height, width = gray.shape[:2]

    half_w = width * CENTER_REGION / 2
    half_h = height * CENTER_REGION / 2
    xs = np.floor(np.arange(width / 2 - half_w, width / 2 + half_w)).astype(int)
    ys = np.floor(np.arange(height / 2 - half_h, height / 2 + half_h)).astype(int)
    xs = xs[(xs >= 0) & (xs < width)]
    ys = ys[(ys >= 0) & (ys < height)]

    region = gray[np.ix_(ys, xs)]
    if region.size == 0:
        return np.zeros(bins, dtype=np.float64)

    bin_index = np.minimum(region.astype(np.int32) * bins // 256, bins - 1)
    histogram = np.bincount(bin_index.ravel(), minlength=bins).astype(np.float64)
    return histogram / region.size


def compare_histograms(hist1: np.ndarray, hist2: np.ndarray) -> float:
    """
    Chi-square style distance between two histograms.

    Bins where both histograms are empty are skipped. Identical histograms
    have distance 0.
    """
    h1 = np.asarray(hist1, dtype=np.float64)
    h2 = np.asarray(hist2, dtype=np.float64)

    total = h1 + h2
    mask = total > 0
    diff = h1[mask] - h2[mask]
    return float(np.sum(diff * diff / total[mask]))


def is_duplicate(
    histogram: np.ndarray,
    previous: Iterable[np.ndarray],
    threshold: float = 0.1
) -> bool:
    """True when `histogram` is closer than `threshold` to any earlier histogram."""
    for other in previous:
        distance = compare_histograms(histogram, other)
        if distance < threshold:
            logger.debug(f"Duplicate content (distance {distance:.4f})")
            return True
    return False
