"""
Utility modules for the page extraction pipeline.
"""

from .errors import FlipscanError, FrameSourceError, DegenerateGeometryError, ExtractionError
from .geometry import Point, order_corners, calculate_confidence
from .images import calculate_quality_score, detect_edges, draw_page_outline
from .detection import DetectedPage, PageDetector, detect_page
from .motion import StabilityTracker, MotionData, MotionSegment, detect_motion, find_stable_segments
from .content import calculate_histogram, compare_histograms, is_duplicate
from .perspective import rectify, calculate_homography, apply_homography
from .merger import FrameGroup, MergeResult, merge_frames, analyze_region_quality
from .extractor import PageExtractor, PageResult, ExtractionResult, extract_pages
from .io import FrameSource, ArrayFrameSource, VideoFileSource, encode_image, save_json, ensure_dir

__all__ = [
    # Errors
    "FlipscanError", "FrameSourceError", "DegenerateGeometryError", "ExtractionError",
    # Geometry
    "Point", "order_corners", "calculate_confidence",
    # Images
    "calculate_quality_score", "detect_edges", "draw_page_outline",
    # Detection
    "DetectedPage", "PageDetector", "detect_page",
    # Motion
    "StabilityTracker", "MotionData", "MotionSegment", "detect_motion", "find_stable_segments",
    # Content
    "calculate_histogram", "compare_histograms", "is_duplicate",
    # Perspective
    "rectify", "calculate_homography", "apply_homography",
    # Merging
    "FrameGroup", "MergeResult", "merge_frames", "analyze_region_quality",
    # Extraction
    "PageExtractor", "PageResult", "ExtractionResult", "extract_pages",
    # IO
    "FrameSource", "ArrayFrameSource", "VideoFileSource", "encode_image", "save_json", "ensure_dir",
]
