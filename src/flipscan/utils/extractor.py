"""
Page extraction from a page-flip video.

Steps through the video at a fixed interval and runs every frame through
detection, the stability gate and the content gate. Frames of one settled
page are collected into a PageCandidate; finished candidates are merged,
rectified and emitted as PageResults. When no page is found at all the
extractor falls back to regularly sampled raw frames so the caller always
gets something back.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from ..config import ExtractionConfig, JSON_SCHEMA_VERSION, MergeConfig
from .content import calculate_histogram, compare_histograms, is_duplicate
from .detection import PageDetector
from .errors import DegenerateGeometryError, ExtractionError, FrameSourceError
from .geometry import Point, corners_as_list
from .images import calculate_quality_score, draw_page_outline
from .merger import (
    CapturedFrame,
    FrameGroup,
    average_corners,
    merge_frames,
    select_best_frames,
    select_for_merge,
)
from .motion import StabilityTracker
from .perspective import rectify

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PageResult:
    """A finished page."""
    corrected_image: np.ndarray
    corners: Optional[Tuple[Point, ...]]  # None for raw fallback frames
    confidence: float
    quality_score: float
    timestamp: float
    index: int
    frames_merged: int = 1
    poor_regions: int = 0
    alignment_success: bool = False
    debug_image: Optional[np.ndarray] = None

    def to_dict(self) -> Dict[str, Any]:
        height, width = self.corrected_image.shape[:2]
        return {
            "index": self.index,
            "timestamp": round(self.timestamp, 3),
            "width": width,
            "height": height,
            "corners": corners_as_list(self.corners) if self.corners else None,
            "confidence": round(self.confidence, 4),
            "quality_score": round(self.quality_score, 3),
            "frames_merged": self.frames_merged,
            "poor_regions": self.poor_regions,
            "alignment_success": self.alignment_success,
        }


@dataclass
class ExtractionResult:
    """All pages found in one video."""
    pages: List[PageResult] = field(default_factory=list)
    fallback_used: bool = False

    def __len__(self) -> int:
        return len(self.pages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": JSON_SCHEMA_VERSION,
            "fallback_used": self.fallback_used,
            "page_count": len(self.pages),
            "pages": [p.to_dict() for p in self.pages],
        }


class PageCandidate:
    """
    Frames of one physical page gathered while it is held still.

    The candidate owns its pixel buffers until to_frame_group() hands them
    over; after that it is spent and refuses further frames.
    """

    def __init__(self, frame: CapturedFrame, histogram: np.ndarray):
        self.frames: List[CapturedFrame] = [frame]
        self.avg_histogram = histogram.copy()
        self.start_time = frame.timestamp
        self.end_time = frame.timestamp
        self._consumed = False

    def __len__(self) -> int:
        return len(self.frames)

    def add(self, frame: CapturedFrame, histogram: np.ndarray) -> None:
        if self._consumed:
            raise RuntimeError("PageCandidate was already handed to the merger")
        self.frames.append(frame)
        self.end_time = frame.timestamp

        # Running average
        n = len(self.frames)
        self.avg_histogram = (self.avg_histogram * (n - 1) + histogram) / n

    def to_frame_group(
        self,
        page_number: int,
        merge_config: Optional[MergeConfig] = None
    ) -> FrameGroup:
        """
        Hand the frames over to the merger.

        With a merge configuration the burst is first reduced to the frames
        worth merging. The candidate keeps nothing afterwards.
        """
        if self._consumed:
            raise RuntimeError("PageCandidate was already handed to the merger")
        frames = self.frames
        self.frames = []
        self._consumed = True

        if merge_config is not None and merge_config.enabled and len(frames) > 1:
            captured = len(frames)
            frames = select_for_merge(frames, merge_config)
            logger.debug(f"Selected {len(frames)} of {captured} frames for page {page_number + 1}")
        return FrameGroup.from_captured(page_number, frames)


# ============================================================================
# Page Extractor
# ============================================================================

class PageExtractor:
    """
    Turns a page-flip video into rectified page images.

    Usage:
        with VideoFileSource("flip.mp4") as source:
            result = PageExtractor(get_config()).extract(source)
        for page in result.pages:
            save_image(page.corrected_image, f"page_{page.index + 1:03d}.jpg")
    """

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or ExtractionConfig()
        self.detector = PageDetector(self.config.detection)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def extract(
        self,
        source,
        on_progress: Optional[ProgressCallback] = None
    ) -> ExtractionResult:
        """
        Extract pages from a video.

        Args:
            source: FrameSource
            on_progress: Optional callback receiving a percentage (0-100)

        Returns:
            ExtractionResult; `fallback_used` is set when no page was
            detected and raw frames were returned instead

        Raises:
            FrameSourceError: If the source fails
            ExtractionError: If too many consecutive steps fail
        """
        config = self.config
        duration = source.duration
        interval = config.interval_seconds
        num_steps = int(math.floor(duration / interval + 1e-9))

        logger.info(f"Starting page extraction ({duration:.2f}s, {num_steps} steps)")

        tracker = StabilityTracker(config.detection)
        candidate: Optional[PageCandidate] = None
        pages: List[PageResult] = []
        emitted_histograms: List[np.ndarray] = []
        failures = 0

        for i in range(num_steps):
            t = i * interval
            try:
                candidate = self._step(source, t, i, tracker, candidate, pages, emitted_histograms)
                failures = 0
            except MemoryError as e:
                failures += 1
                logger.warning(f"Out of memory at {t:.2f}s, skipping frame ({failures} in a row)")
                if failures >= config.max_consecutive_failures:
                    raise ExtractionError(
                        f"Extraction aborted after {failures} consecutive failures"
                    ) from e
            except FrameSourceError:
                candidate = None
                raise

            if on_progress:
                on_progress((t / duration) * 100)

            if config.max_pages is not None and len(pages) >= config.max_pages:
                logger.info(f"Reached page limit ({config.max_pages})")
                candidate = None
                break

        if candidate is not None and len(candidate) >= config.min_frames_to_emit:
            self._emit(candidate, pages, emitted_histograms)
        candidate = None

        if on_progress:
            on_progress(100.0)

        if not pages:
            logger.info("No pages detected, falling back to raw frames")
            return ExtractionResult(pages=self.extract_raw_frames(source), fallback_used=True)

        logger.info(f"Extracted {len(pages)} pages")
        return ExtractionResult(pages=pages, fallback_used=False)

    def _step(
        self,
        source,
        t: float,
        frame_index: int,
        tracker: StabilityTracker,
        candidate: Optional[PageCandidate],
        pages: List[PageResult],
        emitted_histograms: List[np.ndarray]
    ) -> Optional[PageCandidate]:
        config = self.config

        source.seek(t)
        frame = source.current_frame()
        quality = calculate_quality_score(frame)

        detection = self.detector.detect(frame)
        if detection is not None:
            detection = replace(
                detection, frame_index=frame_index, timestamp=t, quality_score=quality
            )
        tracker.add_detection(detection, frame, t)

        # Only a stable detection made on this very frame is accepted
        stable = tracker.get_stable_detection()
        if detection is None or stable is not detection:
            return candidate
        if stable.confidence <= config.acceptance_confidence:
            return candidate
        if quality < config.min_quality_score:
            logger.debug(f"Frame at {t:.2f}s below quality floor ({quality:.1f})")
            return candidate

        histogram = calculate_histogram(frame)
        captured = CapturedFrame(
            image=frame,
            quality_score=quality,
            timestamp=t,
            corners=stable.corners,
            confidence=stable.confidence,
        )

        if candidate is None:
            return self._start_candidate(captured, histogram, pages, emitted_histograms)

        distance = compare_histograms(histogram, candidate.avg_histogram)
        within_window = t - candidate.start_time < config.merge.capture_window

        if distance < config.same_page_threshold and within_window:
            candidate.add(captured, histogram)
            logger.debug(f"Added frame {len(candidate)} to page {len(pages) + 1}")
            if len(candidate) >= self._burst_limit():
                self._emit(candidate, pages, emitted_histograms)
                return None
            return candidate

        # Different page, or the same page held past the capture window
        if len(candidate) >= config.min_frames_to_emit:
            self._emit(candidate, pages, emitted_histograms)
        else:
            logger.debug(f"Dropping candidate with {len(candidate)} frame(s)")
        return self._start_candidate(captured, histogram, pages, emitted_histograms)

    def _burst_limit(self) -> int:
        # Merging collects the largest burst the selection may ask for and
        # thins it afterwards; the single-frame path stops at the base count
        merge_config = self.config.merge
        if merge_config.enabled:
            return max(merge_config.max_frames_per_page, merge_config.frames_per_page)
        return merge_config.frames_per_page

    def _start_candidate(
        self,
        captured: CapturedFrame,
        histogram: np.ndarray,
        pages: List[PageResult],
        emitted_histograms: List[np.ndarray]
    ) -> Optional[PageCandidate]:
        if is_duplicate(histogram, emitted_histograms, self.config.duplicate_threshold):
            logger.debug(f"Frame at {captured.timestamp:.2f}s repeats an emitted page")
            return None
        logger.info(f"Started capturing page {len(pages) + 1} at {captured.timestamp:.2f}s")
        return PageCandidate(captured, histogram)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _emit(
        self,
        candidate: PageCandidate,
        pages: List[PageResult],
        emitted_histograms: List[np.ndarray]
    ) -> PageResult:
        index = len(pages)
        histogram = candidate.avg_histogram
        start_time = candidate.start_time
        captured = len(candidate)
        group = candidate.to_frame_group(index, self.config.merge)

        page = self._finalize(group, start_time)
        pages.append(page)
        emitted_histograms.append(histogram)

        logger.info(f"Completed page {index + 1} with {captured} frames")
        return page

    def _finalize(self, group: FrameGroup, timestamp: float) -> PageResult:
        merge_config = self.config.merge
        index = group.page_number
        alignment_success = False
        poor_regions = 0

        if merge_config.enabled and len(group) > 1:
            merged = merge_frames(
                group,
                grid_size=merge_config.grid_size,
                enable_alignment=merge_config.enable_alignment,
                poor_region_ratio=merge_config.poor_region_ratio,
            )
            image = merged.image
            alignment_success = merged.alignment_success
            poor_regions = merged.poor_regions
            used = list(range(len(group)))

            # Aligned frames share the reference geometry
            if alignment_success:
                corners = group.corners[merged.reference_index]
            else:
                corners = average_corners(group.corners)
        else:
            best = int(np.argmax(group.quality_scores))
            image = group.frames[best]
            corners = group.corners[best]
            used = [best]

        try:
            corrected = rectify(image, corners) if corners is not None else image
        except DegenerateGeometryError as e:
            logger.warning(f"Perspective correction failed for page {index + 1}: {e}")
            corrected = image

        debug_image = None
        if self.config.debug_mode and corners is not None:
            debug_image = draw_page_outline(image, corners)

        return PageResult(
            corrected_image=corrected,
            corners=corners,
            confidence=float(np.mean([group.confidences[i] for i in used])),
            quality_score=max(group.quality_scores[i] for i in used),
            timestamp=timestamp,
            index=index,
            frames_merged=len(used),
            poor_regions=poor_regions,
            alignment_success=alignment_success,
            debug_image=debug_image,
        )

    # ------------------------------------------------------------------
    # Raw frame fallback
    # ------------------------------------------------------------------

    def extract_raw_frames(
        self,
        source,
        on_progress: Optional[ProgressCallback] = None
    ) -> List[PageResult]:
        """
        Regularly sampled frames without any page detection.

        Frames below the quality floor are skipped; if more than
        `max_frames` remain, the sharpest frame of each of `max_frames`
        equal segments is kept.
        """
        config = self.config
        duration = source.duration
        interval = config.interval_seconds
        num_steps = int(math.floor(duration / interval + 1e-9))

        frames: List[CapturedFrame] = []
        for i in range(num_steps):
            t = i * interval
            source.seek(t)
            frame = source.current_frame()
            quality = calculate_quality_score(frame)

            if quality >= config.min_quality_score:
                frames.append(CapturedFrame(image=frame, quality_score=quality, timestamp=t))
            else:
                logger.debug(f"Skipping blurry frame at {t:.2f}s (quality {quality:.1f})")

            if on_progress:
                on_progress((t / duration) * 100)

        if len(frames) > config.max_frames:
            frames = select_best_frames(frames, config.max_frames)

        logger.info(f"Kept {len(frames)} raw frames")

        return [
            PageResult(
                corrected_image=f.image,
                corners=None,
                confidence=0.0,
                quality_score=f.quality_score,
                timestamp=f.timestamp,
                index=i,
            )
            for i, f in enumerate(frames)
        ]


def extract_pages(
    source,
    config: Optional[ExtractionConfig] = None,
    on_progress: Optional[ProgressCallback] = None
) -> ExtractionResult:
    """Convenience wrapper around PageExtractor.extract."""
    return PageExtractor(config).extract(source, on_progress)
