"""
Motion estimation and stability tracking.

Provides:
- Frame differencing motion score
- StabilityTracker: decides when a held page has settled
- A fast motion-only scan that splits a video into stable / moving segments
"""

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..config import DetectionConfig, MAX_HISTORY
from .detection import DetectedPage

logger = logging.getLogger(__name__)

MOTION_SAMPLE_STRIDE = 10


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class MotionData:
    """Motion between one frame and its predecessor."""
    motion_score: float  # 0-1, higher means more motion
    frame_index: int
    timestamp: float


@dataclass
class MotionSegment:
    """A run of consecutive samples that are all stable or all moving."""
    start_time: float
    end_time: float
    avg_motion: float
    is_stable: bool

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


# ============================================================================
# Motion Estimation
# ============================================================================

def detect_motion(
    current: np.ndarray,
    previous: Optional[np.ndarray],
    threshold: float = 30,
    stride: int = MOTION_SAMPLE_STRIDE
) -> float:
    """
    Fraction of the frame that changed since the previous frame.

    Every `stride`-th pixel is sampled; a sample counts as changed when
    the summed absolute RGB difference exceeds threshold * 3.

    Args:
        current: Current RGBA frame
        previous: Previous RGBA frame, or None for the first frame
        threshold: Per-channel difference threshold

    Returns:
        Motion score in [0, 1]; 0 without a previous frame, 1 when the
        frame size changed
    """
    if previous is None:
        return 0.0
    if current.shape != previous.shape:
        return 1.0

    channels = current.shape[2] if current.ndim == 3 else 1
    cur = current.reshape(-1, channels)[::stride, :3].astype(np.int16)
    prev = previous.reshape(-1, channels)[::stride, :3].astype(np.int16)

    diff = np.abs(cur - prev).sum(axis=1)
    changed = int(np.count_nonzero(diff > threshold * 3))

    total_pixels = current.shape[0] * current.shape[1]
    if total_pixels == 0:
        return 0.0
    return min(1.0, changed * stride / total_pixels)


# ============================================================================
# Stability Tracking
# ============================================================================

class StabilityTracker:
    """
    Sliding window over recent detections and motion scores.

    A page is stable once the last two detections agree on their corners
    (within twice the stability threshold) and the scene motion over the
    last two samples is at or below the motion threshold.

    reset() clears both histories but keeps the last frame, so the next
    motion sample still compares against what came right before it.
    """

    def __init__(self, config: Optional[DetectionConfig] = None, max_history: int = MAX_HISTORY):
        self.config = config or DetectionConfig()
        self._history: deque = deque(maxlen=max_history)
        self._motion_history: deque = deque(maxlen=max_history)
        self._previous_frame: Optional[np.ndarray] = None

    @property
    def history(self) -> Tuple[DetectedPage, ...]:
        return tuple(self._history)

    @property
    def motion_history(self) -> Tuple[MotionData, ...]:
        return tuple(self._motion_history)

    @property
    def last_motion(self) -> Optional[float]:
        if not self._motion_history:
            return None
        return self._motion_history[-1].motion_score

    def add_detection(
        self,
        detection: Optional[DetectedPage],
        frame: Optional[np.ndarray] = None,
        timestamp: Optional[float] = None
    ) -> None:
        """
        Record one analysed frame.

        Args:
            detection: Page found in the frame, or None
            frame: The frame itself, for motion estimation
            timestamp: Time of the frame in seconds (defaults to the
                detection's timestamp, or wall-clock time)
        """
        if timestamp is None:
            timestamp = detection.timestamp if detection is not None else time.time()

        if frame is not None and self._previous_frame is not None:
            motion_score = detect_motion(frame, self._previous_frame)
            self._motion_history.append(MotionData(
                motion_score=motion_score,
                frame_index=detection.frame_index if detection is not None else 0,
                timestamp=timestamp,
            ))
            logger.debug(f"Motion score: {motion_score:.1%}")

        if frame is not None:
            self._previous_frame = frame

        if detection is not None:
            self._history.append(detection)
        elif self._history:
            # A single missed frame keeps the history; a long gap clears it
            since_last = timestamp - self._history[-1].timestamp
            if since_last > self.config.detection_timeout:
                self._history.clear()

    def is_stable(self) -> bool:
        if len(self._history) < 2:
            return False

        if len(self._motion_history) >= 2:
            recent = list(self._motion_history)[-2:]
            avg_motion = sum(m.motion_score for m in recent) / len(recent)
            if avg_motion > self.config.motion_threshold:
                logger.debug(f"High motion detected: {avg_motion:.1%}")
                return False

        first, last = self._history[-2], self._history[-1]
        tolerance = self.config.stability_threshold * 2
        for a, b in zip(first.corners, last.corners):
            if a.distance_to(b) > tolerance:
                return False

        return True

    def get_stable_detection(self) -> Optional[DetectedPage]:
        """Most recent detection if the tracker is stable, else None."""
        if not self.is_stable():
            return None
        return self._history[-1]

    def reset(self) -> None:
        self._history.clear()
        self._motion_history.clear()


# ============================================================================
# Fast Motion Scan
# ============================================================================

def find_stable_segments(
    source,
    scan_interval: float = 0.5,
    motion_threshold: float = 0.1,
    scan_width: int = 320,
    on_progress=None
) -> List[MotionSegment]:
    """
    Quick motion-only pass over a video.

    Frames are downscaled to `scan_width` pixels wide and compared with
    their predecessor; consecutive samples on the same side of the motion
    threshold are merged into one segment.

    Args:
        source: FrameSource (duration, seek, current_frame)
        scan_interval: Seconds between samples
        motion_threshold: Motion below this counts as stable
        scan_width: Width frames are scaled to before differencing
        on_progress: Optional callback receiving a percentage

    Returns:
        Ordered list of MotionSegment
    """
    duration = source.duration
    num_samples = int(math.floor(duration / scan_interval + 1e-9))
    logger.info(f"Fast scan of {duration:.1f}s video ({num_samples} samples)")

    segments: List[MotionSegment] = []
    current: Optional[MotionSegment] = None
    last_frame = None

    for i in range(num_samples):
        t = i * scan_interval
        source.seek(t)
        frame = _downscale(source.current_frame(), scan_width)

        motion = detect_motion(frame, last_frame, stride=20)
        last_frame = frame
        stable = motion < motion_threshold

        if current is None or current.is_stable != stable:
            if current is not None:
                segments.append(current)
            current = MotionSegment(start_time=t, end_time=t, avg_motion=motion, is_stable=stable)
        else:
            current.end_time = t
            current.avg_motion = (current.avg_motion + motion) / 2

        if on_progress:
            on_progress((t / duration) * 100 if duration else 100.0)

    if current is not None:
        segments.append(current)

    logger.info(f"Found {sum(1 for s in segments if s.is_stable)} stable segments")
    return segments


def _downscale(frame: np.ndarray, width: int) -> np.ndarray:
    h, w = frame.shape[:2]
    if w <= width:
        return frame
    height = max(1, round(h * width / w))
    return cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
