"""
Exception types for the page extraction pipeline.

No-detection is not an error: detectors return None for frames without a
page. These classes cover the faults that callers have to decide about.
"""


class FlipscanError(Exception):
    """Base class for all pipeline errors."""


class FrameSourceError(FlipscanError):
    """The frame source could not open, seek or decode the video."""


class DegenerateGeometryError(FlipscanError):
    """A homography or affine solve hit a (near) singular system."""


class ExtractionError(FlipscanError):
    """Extraction of a video had to be aborted."""
