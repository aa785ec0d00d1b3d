"""
flipscan
========

Turns a video of someone flipping through a paper document into
flattened, perspective-corrected page images.

Main components:
- Page detection (edges, contours, quadrilateral fitting)
- Stability tracking (motion and corner jitter)
- Content comparison (same page / new page / duplicate)
- Multi-frame merging of the frames of one page
- Perspective correction
- Page extraction with raw-frame fallback
"""

__version__ = "1.0.0"
__author__ = "flipscan developers"
