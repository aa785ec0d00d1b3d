"""
I/O utilities for the page extraction pipeline.

Handles:
- Frame sources (video files, in-memory frame lists)
- Image encoding and saving
- JSON serialization
- Directory management
"""

import json
import logging
import math
from dataclasses import asdict
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

import cv2
import numpy as np

from .errors import FrameSourceError
from .images import to_rgba

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = ('.mp4', '.avi', '.mov', '.mkv', '.webm', '.m4v')


# ============================================================================
# Frame Sources
# ============================================================================

class FrameSource:
    """
    Seekable source of RGBA frames.

    Subclasses provide `duration` (seconds), `seek(time)` and
    `current_frame()`. Both calls may block while the frame is decoded.
    """

    @property
    def duration(self) -> float:
        raise NotImplementedError

    def seek(self, time: float) -> None:
        raise NotImplementedError

    def current_frame(self) -> np.ndarray:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class ArrayFrameSource(FrameSource):
    """
    Frames already decoded into memory, played back at a fixed frame rate.

    Args:
        frames: RGB(A) or grayscale frames in temporal order
        fps: Frames per second
    """

    def __init__(self, frames: Sequence[np.ndarray], fps: float = 30.0):
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        self._frames = list(frames)
        self.fps = fps
        self._index = 0

    @property
    def duration(self) -> float:
        return len(self._frames) / self.fps

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    def seek(self, time: float) -> None:
        if not self._frames:
            raise FrameSourceError("Frame source is empty")
        if time < 0:
            raise FrameSourceError(f"Cannot seek to negative time {time}")
        self._index = min(int(math.floor(time * self.fps + 1e-6)), len(self._frames) - 1)

    def current_frame(self) -> np.ndarray:
        if not self._frames:
            raise FrameSourceError("Frame source is empty")
        return to_rgba(self._frames[self._index])


class VideoFileSource(FrameSource):
    """
    Video file decoded with OpenCV.

    Usage:
        with VideoFileSource("flip.mp4") as source:
            result = PageExtractor().extract(source)
    """

    def __init__(self, video_path: Union[str, Path]):
        self.video_path = Path(video_path)
        if not self.video_path.exists():
            raise FrameSourceError(f"Video file not found: {self.video_path}")

        self._cap = cv2.VideoCapture(str(self.video_path))
        if not self._cap.isOpened():
            raise FrameSourceError(f"Could not open video: {self.video_path}")

        self.fps = self._cap.get(cv2.CAP_PROP_FPS) or 0.0
        self.frame_count = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))
        self.width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))

        if self.fps <= 0 or self.frame_count <= 0:
            self._cap.release()
            raise FrameSourceError(f"Video has no readable frames: {self.video_path}")

        self._frame: Optional[np.ndarray] = None
        logger.info(
            f"Opened video {self.video_path.name}: {self.width}x{self.height}, "
            f"{self.fps:.2f} fps, {self.duration:.2f}s"
        )

    @property
    def duration(self) -> float:
        return self.frame_count / self.fps

    def seek(self, time: float) -> None:
        if self._cap is None:
            raise FrameSourceError("Video source is closed")

        position = min(int(round(time * self.fps)), self.frame_count - 1)
        self._cap.set(cv2.CAP_PROP_POS_FRAMES, position)
        ret, frame = self._cap.read()
        if not ret or frame is None:
            raise FrameSourceError(f"Failed to read frame at {time:.2f}s")

        self._frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA)

    def current_frame(self) -> np.ndarray:
        if self._frame is None:
            raise FrameSourceError("No frame decoded yet, call seek() first")
        return self._frame

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


def open_video(video_path: Union[str, Path]) -> VideoFileSource:
    """Open a video file as a frame source."""
    video_path = Path(video_path)
    if video_path.suffix.lower() not in VIDEO_EXTENSIONS:
        logger.warning(f"Unrecognised video extension: {video_path.suffix}")
    return VideoFileSource(video_path)


# ============================================================================
# Image Encoding
# ============================================================================

def _to_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2BGR)
    return cv2.cvtColor(image, cv2.COLOR_RGB2BGR)


def encode_image(image: np.ndarray, fmt: str = ".jpg", quality: int = 90) -> bytes:
    """
    Encode an RGB(A) page image.

    Args:
        image: RGBA, RGB or grayscale image
        fmt: File extension understood by OpenCV ('.jpg', '.png', ...)
        quality: JPEG quality (1-100)

    Returns:
        Encoded bytes
    """
    params = []
    if fmt.lower() in ('.jpg', '.jpeg'):
        params = [cv2.IMWRITE_JPEG_QUALITY, quality]

    ok, buffer = cv2.imencode(fmt, _to_bgr(image), params)
    if not ok:
        raise ValueError(f"Could not encode image as {fmt}")
    return buffer.tobytes()


def save_image(
    image: np.ndarray,
    output_path: Union[str, Path],
    quality: int = 90
) -> Path:
    """
    Save an RGB(A) image to file.

    Args:
        image: Numpy array representing the image
        output_path: Path to save the image
        quality: JPEG quality (1-100)

    Returns:
        Path to the saved image
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(encode_image(image, output_path.suffix or ".jpg", quality))

    logger.debug(f"Saved image: {output_path}")
    return output_path


# ============================================================================
# JSON Serialization
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy values, dataclasses and paths."""

    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        if hasattr(obj, '__dataclass_fields__'):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def save_json(
    data: Any,
    output_path: Union[str, Path],
    indent: int = 2,
    ensure_ascii: bool = False
) -> Path:
    """
    Save data to a JSON file.

    Args:
        data: Data to serialize (dict, list, dataclass, etc.)
        output_path: Path to save the JSON file
        indent: Indentation level for pretty printing
        ensure_ascii: If True, escape non-ASCII characters

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=EnhancedJSONEncoder)

    logger.debug(f"Saved JSON: {output_path}")
    return output_path


def load_json(json_path: Union[str, Path]) -> Any:
    """Load data from a JSON file."""
    json_path = Path(json_path)
    if not json_path.exists():
        raise FileNotFoundError(f"JSON file not found: {json_path}")

    with open(json_path, 'r', encoding='utf-8') as f:
        return json.load(f)


# ============================================================================
# Directory Management
# ============================================================================

def ensure_dir(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory

    Returns:
        Path object for the directory
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def save_pages(
    result,
    output_dir: Union[str, Path],
    quality: int = 90,
    save_debug: bool = False
) -> List[Path]:
    """
    Write every page of an ExtractionResult plus a pages.json manifest.

    Args:
        result: ExtractionResult
        output_dir: Destination directory
        quality: JPEG quality
        save_debug: Also write the debug overlays of pages that have one

    Returns:
        Paths of the written page images
    """
    output_dir = ensure_dir(output_dir)
    paths = []

    for page in result.pages:
        path = save_image(page.corrected_image, output_dir / f"page_{page.index + 1:03d}.jpg", quality)
        paths.append(path)
        if save_debug and page.debug_image is not None:
            save_image(page.debug_image, output_dir / f"page_{page.index + 1:03d}_debug.jpg", quality)

    save_json(result.to_dict(), output_dir / "pages.json")
    logger.info(f"Saved {len(paths)} pages to {output_dir}")
    return paths
