"""
Configuration and constants for the page extraction pipeline.

This module provides:
- Detection, merge and extraction settings
- Environment overrides for the product-policy knobs
- Shared constants
"""

import os
import logging
from dataclasses import dataclass, field, replace
from typing import Optional

logger = logging.getLogger("flipscan")


# ============================================================================
# Constants
# ============================================================================

HISTOGRAM_BINS = 32
MAX_HISTORY = 10
JSON_SCHEMA_VERSION = "1.0"


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass(frozen=True)
class DetectionConfig:
    """Page detection and stability configuration."""
    min_area: float = 0.2  # Fraction of the frame a page must cover
    max_skew_angle: float = 30.0  # Advisory, not enforced by corner ordering
    stability_threshold: float = 10.0  # Pixels of corner movement
    stability_duration: float = 0.3  # Seconds
    motion_threshold: float = 0.15  # Fraction of changed samples
    detection_timeout: float = 1.0  # Seconds without detections before history is cleared
    min_contour_pixels: int = 100


@dataclass(frozen=True)
class MergeConfig:
    """Multi-frame capture and merge configuration."""
    enabled: bool = True
    frames_per_page: int = 4
    capture_window: float = 2.0  # Seconds a candidate may keep collecting frames
    min_frames_per_page: int = 3
    max_frames_per_page: int = 6
    min_frame_spacing: float = 0.2  # Seconds between selected frames
    grid_size: Optional[int] = None  # None = pick from resolution
    enable_alignment: bool = True
    poor_region_ratio: float = 0.2


@dataclass(frozen=True)
class ExtractionConfig:
    """Main extraction configuration."""
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)

    interval_seconds: float = 0.1
    min_quality_score: float = 10.0
    acceptance_confidence: float = 0.5
    same_page_threshold: float = 0.2
    duplicate_threshold: float = 0.1
    max_pages: Optional[int] = 4  # None = no cap
    max_frames: int = 50  # Cap for the raw-frame fallback
    min_frames_to_emit: int = 2
    max_consecutive_failures: int = 3
    debug_mode: bool = False

    def __post_init__(self):
        if not self.interval_seconds > 0:
            raise ValueError(f"interval_seconds must be positive, got {self.interval_seconds}")


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config(**overrides) -> ExtractionConfig:
    """Get the default extraction configuration with environment overrides."""
    config = ExtractionConfig()

    env = {}
    if os.environ.get("FLIPSCAN_MAX_PAGES"):
        value = int(os.environ["FLIPSCAN_MAX_PAGES"])
        env["max_pages"] = value if value > 0 else None
    if os.environ.get("FLIPSCAN_INTERVAL"):
        env["interval_seconds"] = float(os.environ["FLIPSCAN_INTERVAL"])
    if os.environ.get("FLIPSCAN_MIN_QUALITY"):
        env["min_quality_score"] = float(os.environ["FLIPSCAN_MIN_QUALITY"])
    if os.environ.get("FLIPSCAN_DEBUG", "").lower() == "true":
        env["debug_mode"] = True

    env.update(overrides)
    if env:
        config = replace(config, **env)
        logger.debug(f"Configuration overrides: {env}")

    return config
