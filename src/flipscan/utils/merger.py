"""
Multi-frame merging for pages captured in a burst.

Several frames of the same settled page are combined cell by cell: the
frame is split into a grid, every cell is scored for sharpness in every
frame and the sharpest version of each cell wins. Frames are optionally
aligned onto the sharpest one first to absorb hand jitter, and the cell
seams are softened afterwards.

Provides:
- CapturedFrame / FrameGroup / MergeResult
- Per-cell quality analysis
- merge_frames
- Frame selection for bursts (spacing-aware, adaptive target count)
- Segment-best selection for raw frame sets
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..config import MergeConfig
from .errors import DegenerateGeometryError
from .geometry import Point, solve_affine
from .images import laplacian_map

logger = logging.getLogger(__name__)

CENTER_BOOST = 0.2
CENTER_SIGMA = 0.35
SEAM_FALLOFF = 0.3  # Own-pixel weight lost per pixel of distance from the seam

Corners = Tuple[Point, Point, Point, Point]


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class CapturedFrame:
    """One analysed frame held while a page is being captured."""
    image: np.ndarray
    quality_score: float
    timestamp: float
    corners: Optional[Corners] = None
    confidence: float = 0.0


@dataclass
class FrameGroup:
    """Frames of a single page handed to the merger."""
    page_number: int
    frames: List[np.ndarray] = field(default_factory=list)
    corners: List[Optional[Corners]] = field(default_factory=list)
    quality_scores: List[float] = field(default_factory=list)
    timestamps: List[float] = field(default_factory=list)
    confidences: List[float] = field(default_factory=list)

    def __post_init__(self):
        n = len(self.frames)
        if not (len(self.corners) == len(self.quality_scores) == len(self.timestamps) == n):
            raise ValueError("FrameGroup lists must all have one entry per frame")
        if not self.confidences:
            self.confidences = [0.0] * n
        elif len(self.confidences) != n:
            raise ValueError("FrameGroup lists must all have one entry per frame")

    def __len__(self) -> int:
        return len(self.frames)

    @classmethod
    def from_captured(cls, page_number: int, captured: Sequence[CapturedFrame]) -> "FrameGroup":
        return cls(
            page_number=page_number,
            frames=[c.image for c in captured],
            corners=[c.corners for c in captured],
            quality_scores=[c.quality_score for c in captured],
            timestamps=[c.timestamp for c in captured],
            confidences=[c.confidence for c in captured],
        )


@dataclass
class MergeResult:
    """Output of merge_frames."""
    image: np.ndarray
    grid_size: int
    alignment_success: bool
    poor_regions: int
    source_map: np.ndarray  # (grid, grid) index of the frame each cell came from
    reference_index: int


# ============================================================================
# Region Quality
# ============================================================================

def auto_grid_size(width: int, height: int) -> int:
    """Grid size from resolution: 6 below 1 MP, 8 below 4 MP, 10 above."""
    pixels = width * height
    if pixels < 1_000_000:
        return 6
    elif pixels < 4_000_000:
        return 8
    return 10


def _cell_bounds(length: int, grid_size: int) -> List[Tuple[int, int]]:
    # The last cell absorbs the remainder
    cell = length // grid_size
    bounds = [(i * cell, (i + 1) * cell) for i in range(grid_size)]
    bounds[-1] = (bounds[-1][0], length)
    return bounds


def _center_weights(grid_size: int) -> np.ndarray:
    centers = (np.arange(grid_size) + 0.5) / grid_size - 0.5
    dy, dx = np.meshgrid(centers, centers, indexing="ij")
    d2 = dx * dx + dy * dy
    return 1 + CENTER_BOOST * np.exp(-d2 / (2 * CENTER_SIGMA ** 2))


def analyze_region_quality(image: np.ndarray, grid_size: int = 8) -> np.ndarray:
    """
    Sharpness score of every grid cell.

    Per cell, the variance of the 4-neighbour Laplacian over the cell's
    interior pixels, boosted by up to 20% towards the frame centre.

    Args:
        image: RGBA frame
        grid_size: Cells per side

    Returns:
        (grid_size, grid_size) float array
    """
    height, width = image.shape[:2]
    lap = laplacian_map(image)
    quality = np.zeros((grid_size, grid_size), dtype=np.float64)

    if lap.size == 0:
        return quality

    rows = _cell_bounds(height, grid_size)
    cols = _cell_bounds(width, grid_size)

    for r, (y0, y1) in enumerate(rows):
        # Laplacian pixel (y, x) lives at lap[y - 1, x - 1]
        ly0, ly1 = max(y0, 1) - 1, min(y1, height - 1) - 1
        for c, (x0, x1) in enumerate(cols):
            lx0, lx1 = max(x0, 1) - 1, min(x1, width - 1) - 1
            if ly1 <= ly0 or lx1 <= lx0:
                continue
            quality[r, c] = lap[ly0:ly1, lx0:lx1].var()

    return quality * _center_weights(grid_size)


# ============================================================================
# Merging
# ============================================================================

def _align_to_reference(
    frame: np.ndarray,
    corners: Corners,
    reference_corners: Corners,
    size: Tuple[int, int]
) -> np.ndarray:
    # Top-left, top-right and bottom-left pin the affine transform
    src = [corners[0], corners[1], corners[3]]
    dst = [reference_corners[0], reference_corners[1], reference_corners[3]]
    matrix = solve_affine(src, dst)
    return cv2.warpAffine(
        frame, matrix, size, flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE
    )


def smooth_seams(image: np.ndarray, grid_size: int) -> None:
    """
    Soften the cell boundaries of a composited image in place.

    In the 3-pixel band around every internal boundary each pixel is
    blended with its two neighbours across the seam. The boundary pixel
    keeps its own value; the pixels either side of it keep 70% (RGB only,
    alpha untouched).
    """
    height, width = image.shape[:2]

    def blend(center, before, after, offset):
        weight = 1 - abs(offset) * SEAM_FALLOFF
        side = (1 - weight) / 2
        value = center * weight + (before + after) * side
        return np.clip(np.floor(value + 0.5), 0, 255).astype(np.uint8)

    for x0, _ in _cell_bounds(width, grid_size)[1:]:
        if x0 >= width - 1:
            continue
        for offset in (-1, 0, 1):
            x = x0 + offset
            if 0 < x < width - 1:
                image[:, x, :3] = blend(
                    image[:, x, :3].astype(np.float64),
                    image[:, x - 1, :3].astype(np.float64),
                    image[:, x + 1, :3].astype(np.float64),
                    offset,
                )

    for y0, _ in _cell_bounds(height, grid_size)[1:]:
        if y0 >= height - 1:
            continue
        for offset in (-1, 0, 1):
            y = y0 + offset
            if 0 < y < height - 1:
                image[y, :, :3] = blend(
                    image[y, :, :3].astype(np.float64),
                    image[y - 1, :, :3].astype(np.float64),
                    image[y + 1, :, :3].astype(np.float64),
                    offset,
                )


def merge_frames(
    group: FrameGroup,
    grid_size: Optional[int] = None,
    enable_alignment: bool = True,
    poor_region_ratio: float = 0.2
) -> MergeResult:
    """
    Composite a burst of frames of one page.

    Args:
        group: Frames of the page with their corners and quality scores
        grid_size: Cells per side (picked from resolution when None)
        enable_alignment: Warp frames onto the sharpest frame first
        poor_region_ratio: Cells scoring below this fraction of the mean
            best-cell quality are reported as poor regions

    Returns:
        MergeResult

    Raises:
        ValueError: If the group holds no frames
    """
    if len(group) == 0:
        raise ValueError("No frames to merge")

    reference_index = int(np.argmax(group.quality_scores))
    reference = group.frames[reference_index]
    height, width = reference.shape[:2]

    if grid_size is None:
        grid_size = auto_grid_size(width, height)
    grid_size = max(1, min(grid_size, width, height))

    if len(group) == 1:
        return MergeResult(
            image=group.frames[0].copy(),
            grid_size=grid_size,
            alignment_success=False,
            poor_regions=0,
            source_map=np.zeros((grid_size, grid_size), dtype=np.int32),
            reference_index=0,
        )

    logger.debug(
        f"Merging {len(group)} frames of page {group.page_number} on a {grid_size}x{grid_size} grid"
    )

    frames = []
    aligned = 0
    reference_corners = group.corners[reference_index]

    for i, frame in enumerate(group.frames):
        if frame.shape[:2] != (height, width):
            frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_LINEAR)

        corners = group.corners[i]
        if (enable_alignment and i != reference_index
                and corners is not None and reference_corners is not None):
            try:
                frame = _align_to_reference(frame, corners, reference_corners, (width, height))
                aligned += 1
            except DegenerateGeometryError as e:
                logger.warning(f"Frame {i} not aligned: {e}")

        frames.append(frame)

    quality_grids = np.stack([analyze_region_quality(f, grid_size) for f in frames])
    source_map = np.argmax(quality_grids, axis=0).astype(np.int32)
    best_quality = np.max(quality_grids, axis=0)

    output = np.empty_like(reference)
    rows = _cell_bounds(height, grid_size)
    cols = _cell_bounds(width, grid_size)
    for r, (y0, y1) in enumerate(rows):
        for c, (x0, x1) in enumerate(cols):
            output[y0:y1, x0:x1] = frames[source_map[r, c]][y0:y1, x0:x1]

    mean_quality = float(best_quality.mean())
    poor_regions = int(np.count_nonzero(best_quality < mean_quality * poor_region_ratio))
    if poor_regions:
        logger.debug(f"{poor_regions} poor regions after merge")

    smooth_seams(output, grid_size)

    return MergeResult(
        image=output,
        grid_size=grid_size,
        alignment_success=aligned > 0,
        poor_regions=poor_regions,
        source_map=source_map,
        reference_index=reference_index,
    )


def average_corners(corner_sets: Sequence[Sequence[Point]]) -> Optional[Corners]:
    """Mean position of each corner over several detections."""
    valid = [c for c in corner_sets if c is not None and len(c) == 4]
    if not valid:
        return None
    if len(valid) == 1:
        return tuple(valid[0])

    return tuple(
        Point(
            sum(c[i].x for c in valid) / len(valid),
            sum(c[i].y for c in valid) / len(valid),
        )
        for i in range(4)
    )


# ============================================================================
# Frame Selection
# ============================================================================

def adaptive_target_count(
    quality_scores: Sequence[float],
    base: int,
    minimum: int = 3,
    maximum: int = 6
) -> int:
    """
    Number of frames worth merging for a burst.

    Uneven quality (coefficient of variation above 0.3) asks for two more
    frames, capped at `maximum`; very even quality (below 0.1) drops one,
    down to `minimum`, when the burst holds more frames than `base`.
    """
    if not quality_scores:
        return base

    scores = np.asarray(quality_scores, dtype=np.float64)
    mean = float(scores.mean())
    if mean <= 0:
        return base

    cv = float(scores.std()) / mean
    if cv > 0.3:
        return min(base + 2, maximum)
    if cv < 0.1 and len(scores) > base:
        return max(base - 1, minimum)
    return base


def select_frames(
    frames: Sequence[CapturedFrame],
    target_count: int,
    min_spacing: float = 0.2
) -> List[CapturedFrame]:
    """
    Pick the frames to merge from a burst.

    The sharpest frame is always kept; the rest are added greedily by
    quality, skipping frames closer than `min_spacing` seconds to one
    already chosen.

    Returns:
        Chosen frames in temporal order
    """
    if len(frames) <= target_count:
        return sorted(frames, key=lambda f: f.timestamp)

    ranked = sorted(frames, key=lambda f: f.quality_score, reverse=True)
    selected = [ranked[0]]

    for frame in ranked[1:]:
        if len(selected) >= target_count:
            break
        # Sampled timestamps (i * interval) carry float error
        if all(abs(frame.timestamp - s.timestamp) >= min_spacing - 1e-9 for s in selected):
            selected.append(frame)

    return sorted(selected, key=lambda f: f.timestamp)


def select_best_frames(frames: Sequence[CapturedFrame], target_count: int) -> List[CapturedFrame]:
    """
    Reduce a regularly sampled frame set to `target_count` frames.

    The sequence is cut into equal segments and the sharpest frame of each
    segment is kept, so the result still spans the whole video.
    """
    if target_count <= 0:
        return []
    if len(frames) <= target_count:
        return list(frames)

    segment = len(frames) / target_count
    selected = []
    for i in range(target_count):
        start = math.floor(i * segment)
        end = max(start + 1, math.floor((i + 1) * segment))
        selected.append(max(frames[start:end], key=lambda f: f.quality_score))

    return selected


def select_for_merge(frames: Sequence[CapturedFrame], config: MergeConfig) -> List[CapturedFrame]:
    """Selection policy used by the extractor for one candidate page."""
    target = adaptive_target_count(
        [f.quality_score for f in frames],
        base=config.frames_per_page,
        minimum=config.min_frames_per_page,
        maximum=config.max_frames_per_page,
    )
    return select_frames(frames, target, config.min_frame_spacing)
