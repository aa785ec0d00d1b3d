#!/usr/bin/env python
"""
Command-line interface for flipscan.

Usage:
    flipscan --input <video> --output <output_dir> [options]

Examples:
    # Extract pages from a page-flip video
    flipscan --input flip.mp4 --output ./pages

    # Keep every detected page and write debug overlays
    flipscan --input flip.mp4 --output ./pages --max-pages 0 --debug
"""

import argparse
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("flipscan")


def positive_float(value: str) -> float:
    """argparse type for strictly positive numbers."""
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return number


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="flipscan - Extract flattened page images from a page-flip video",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Extract pages with default settings:
    flipscan --input flip.mp4 --output ./pages

  Sample more sparsely and accept blurrier frames:
    flipscan --input flip.mp4 --output ./pages --interval 0.2 --min-quality 5

  Use the single sharpest frame per page instead of merging:
    flipscan --input flip.mp4 --output ./pages --no-multi-frame
        """
    )

    # Required arguments
    parser.add_argument(
        "--input", "-i",
        required=True,
        help="Input video file"
    )

    parser.add_argument(
        "--output", "-o",
        required=True,
        help="Output directory for page images"
    )

    # Optional arguments
    parser.add_argument(
        "--interval",
        type=positive_float,
        default=None,
        help="Seconds between analysed frames (default: 0.1)"
    )

    parser.add_argument(
        "--min-quality",
        type=float,
        default=None,
        help="Minimum sharpness score for a frame to be used (default: 10)"
    )

    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Stop after this many pages, 0 for no limit (default: 4)"
    )

    parser.add_argument(
        "--max-frames",
        type=int,
        default=None,
        help="Maximum raw frames returned when no page is detected (default: 50)"
    )

    parser.add_argument(
        "--no-multi-frame",
        action="store_true",
        help="Use the sharpest frame of each page instead of merging several"
    )

    parser.add_argument(
        "--no-alignment",
        action="store_true",
        help="Do not align frames before merging"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (writes frames with the detected page outlined)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    return parser


def build_config(args):
    """Extraction configuration from defaults, environment and arguments."""
    from .config import get_config

    overrides = {}
    if args.interval is not None:
        overrides["interval_seconds"] = args.interval
    if args.min_quality is not None:
        overrides["min_quality_score"] = args.min_quality
    if args.max_pages is not None:
        overrides["max_pages"] = args.max_pages if args.max_pages > 0 else None
    if args.max_frames is not None:
        overrides["max_frames"] = args.max_frames
    if args.debug:
        overrides["debug_mode"] = True

    config = get_config(**overrides)

    if args.no_multi_frame or args.no_alignment:
        merge = config.merge
        if args.no_multi_frame:
            merge = replace(merge, enabled=False)
        if args.no_alignment:
            merge = replace(merge, enable_alignment=False)
        config = replace(config, merge=merge)

    return config


def run_pipeline(args) -> int:
    """Run page extraction on one video."""
    from .utils.extractor import PageExtractor
    from .utils.io import open_video, save_pages

    start_time = time.time()

    input_path = Path(args.input)
    output_dir = Path(args.output)
    config = build_config(args)

    last_reported = [-10.0]

    def report(percent: float):
        if percent - last_reported[0] >= 10:
            last_reported[0] = percent
            logger.info(f"Progress: {percent:.0f}%")

    with open_video(input_path) as source:
        result = PageExtractor(config).extract(source, on_progress=report)

    paths = save_pages(result, output_dir, save_debug=config.debug_mode)

    # Print summary
    elapsed = time.time() - start_time

    if not args.quiet:
        print("\n" + "=" * 60)
        print("PAGE EXTRACTION COMPLETE")
        print("=" * 60)
        print(f"Source: {input_path}")
        print(f"Output: {output_dir}")
        print(f"Pages written: {len(paths)}")
        if result.fallback_used:
            print("No pages detected: wrote regularly sampled frames instead")
        print(f"Processing time: {elapsed:.2f}s")
        print()
        for page in result.pages:
            print(f"  Page {page.index + 1}: t={page.timestamp:.2f}s "
                  f"quality={page.quality_score:.1f} "
                  f"frames={page.frames_merged}")
        print("=" * 60)

    return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    from .utils.errors import FlipscanError

    parser = setup_argparser()
    args = parser.parse_args(argv)

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except FlipscanError as e:
        logger.error(f"Extraction failed: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
