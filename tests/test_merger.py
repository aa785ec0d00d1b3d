"""
Tests for multi-frame merging and frame selection.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from flipscan.utils.geometry import Point
from flipscan.utils.merger import CapturedFrame, FrameGroup


def checker(shape=(120, 120)):
    """2x2 black/white checkerboard, RGBA."""
    ys, xs = np.mgrid[0:shape[0], 0:shape[1]]
    value = (((ys // 2) + (xs // 2)) % 2) * 255
    frame = np.zeros(shape + (4,), dtype=np.uint8)
    frame[:, :, :3] = value[:, :, None]
    frame[:, :, 3] = 255
    return frame


def group_of(frames, qualities=None, corners=None):
    n = len(frames)
    return FrameGroup(
        page_number=0,
        frames=list(frames),
        corners=list(corners) if corners is not None else [None] * n,
        quality_scores=list(qualities) if qualities is not None else [1.0] * n,
        timestamps=[i * 0.1 for i in range(n)],
    )


def captured(quality, timestamp):
    return CapturedFrame(
        image=np.zeros((4, 4, 4), dtype=np.uint8), quality_score=quality, timestamp=timestamp
    )


class TestRegionQuality:
    """Test per-cell sharpness."""

    def test_grid_shape(self):
        from flipscan.utils.merger import analyze_region_quality

        assert analyze_region_quality(checker(), 6).shape == (6, 6)

    def test_flat_frame(self):
        from flipscan.utils.merger import analyze_region_quality

        flat = np.full((60, 60, 4), 128, dtype=np.uint8)
        np.testing.assert_array_equal(analyze_region_quality(flat, 4), np.zeros((4, 4)))

    def test_center_boost(self):
        """Uniform texture scores highest in the central cells."""
        from flipscan.utils.merger import analyze_region_quality

        quality = analyze_region_quality(checker(), 6)

        assert quality[2, 2] > quality[0, 0]
        assert quality[2, 2] <= quality[0, 0] * 1.2 + 1e-6

    def test_textured_cell_wins(self):
        from flipscan.utils.merger import analyze_region_quality

        frame = np.full((60, 60, 4), 128, dtype=np.uint8)
        frame[20:40, 20:40] = checker((20, 20))
        quality = analyze_region_quality(frame, 3)

        assert np.argmax(quality) == 4

    def test_auto_grid_size(self):
        from flipscan.utils.merger import auto_grid_size

        assert auto_grid_size(800, 600) == 6
        assert auto_grid_size(1000, 1000) == 8
        assert auto_grid_size(1920, 1080) == 8
        assert auto_grid_size(3840, 2160) == 10


class TestMergeFrames:
    """Test compositing."""

    def test_empty_group(self):
        from flipscan.utils.merger import merge_frames

        with pytest.raises(ValueError, match="No frames to merge"):
            merge_frames(group_of([]))

    def test_single_frame_unchanged(self):
        from flipscan.utils.merger import merge_frames

        frame = checker()
        result = merge_frames(group_of([frame]))

        np.testing.assert_array_equal(result.image, frame)
        assert result.image is not frame
        assert result.alignment_success is False

    def test_picks_sharpest_cells(self):
        """Each half of the output comes from the frame sharp there."""
        from flipscan.utils.merger import merge_frames

        flat = np.full((120, 120, 4), 128, dtype=np.uint8)
        left = flat.copy()
        left[:, :60] = checker()[:, :60]
        right = flat.copy()
        right[:, 60:] = checker()[:, 60:]

        result = merge_frames(group_of([left, right], qualities=[10, 5]), grid_size=6)

        assert result.grid_size == 6
        assert result.reference_index == 0
        assert np.all(result.source_map[:, :3] == 0)
        assert np.all(result.source_map[:, 3:] == 1)
        # Away from the seams the pixels are copied verbatim
        np.testing.assert_array_equal(result.image[5:15, 5:15], left[5:15, 5:15])
        np.testing.assert_array_equal(result.image[5:15, 105:115], right[5:15, 105:115])

    def test_poor_regions(self):
        from flipscan.utils.merger import merge_frames

        frame = checker()
        frame[:20, :20, :3] = 128
        result = merge_frames(group_of([frame, frame.copy()]), grid_size=6)

        assert result.poor_regions == 1

    def test_reference_is_best_quality(self):
        from flipscan.utils.merger import merge_frames

        frames = [checker(), checker(), checker()]
        result = merge_frames(group_of(frames, qualities=[3, 9, 5]), grid_size=4)

        assert result.reference_index == 1

    def test_alignment(self):
        """Frames with corners are warped onto the reference."""
        import cv2
        from flipscan.utils.merger import merge_frames

        reference = np.zeros((120, 160, 4), dtype=np.uint8)
        reference[:, :, 3] = 255
        cv2.rectangle(reference, (30, 20), (130, 100), (220, 220, 220, 255), -1)
        shift = np.float32([[1, 0, 3], [0, 1, 2]])
        moved = cv2.warpAffine(reference, shift, (160, 120))

        ref_corners = (Point(30, 20), Point(130, 20), Point(130, 100), Point(30, 100))
        moved_corners = tuple(Point(p.x + 3, p.y + 2) for p in ref_corners)

        result = merge_frames(
            group_of([reference, moved], qualities=[10, 5], corners=[ref_corners, moved_corners]),
            grid_size=6,
        )
        assert result.alignment_success is True

        unaligned = merge_frames(
            group_of([reference, moved], qualities=[10, 5], corners=[ref_corners, moved_corners]),
            grid_size=6,
            enable_alignment=False,
        )
        assert unaligned.alignment_success is False

    def test_degenerate_alignment_falls_back(self):
        from flipscan.utils.merger import merge_frames

        frame = checker()
        good = (Point(10, 10), Point(100, 10), Point(100, 100), Point(10, 100))
        collinear = (Point(0, 0), Point(10, 0), Point(30, 0), Point(20, 0))

        result = merge_frames(
            group_of([frame, frame.copy()], qualities=[10, 5], corners=[good, collinear]),
            grid_size=6,
        )

        assert result.alignment_success is False
        assert result.image.shape == frame.shape

    def test_seam_smoothing(self):
        """The boundary pixel is kept, its neighbours keep 70% of themselves."""
        from flipscan.utils.merger import smooth_seams

        image = np.zeros((40, 40, 4), dtype=np.uint8)
        image[:, 20:, :3] = 200
        image[:, :, 3] = 255

        smooth_seams(image, 2)

        assert image[10, 18, 0] == 0
        assert image[10, 19, 0] == 30
        assert image[10, 20, 0] == 200
        assert image[10, 21, 0] == 200
        assert image[10, 30, 0] == 200
        assert np.all(image[:, :, 3] == 255)

    def test_seam_smoothing_after_boundary(self):
        from flipscan.utils.merger import smooth_seams

        image = np.zeros((40, 40, 4), dtype=np.uint8)
        image[:, 21:, :3] = 200
        image[:, :, 3] = 255

        smooth_seams(image, 2)

        assert image[10, 19, 0] == 0
        assert image[10, 20, 0] == 0
        assert image[10, 21, 0] == 170
        assert image[10, 22, 0] == 200

    def test_seam_smoothing_rows(self):
        from flipscan.utils.merger import smooth_seams

        image = np.zeros((40, 40, 4), dtype=np.uint8)
        image[20:, :, :3] = 100
        image[:, :, 3] = 255

        smooth_seams(image, 2)

        assert image[19, 5, 1] == 15
        assert image[20, 5, 1] == 100
        assert image[21, 5, 1] == 100

    def test_average_corners(self):
        from flipscan.utils.merger import average_corners

        a = (Point(0, 0), Point(10, 0), Point(10, 10), Point(0, 10))
        b = (Point(2, 2), Point(12, 2), Point(12, 12), Point(2, 12))

        assert average_corners([a, b]) == (Point(1, 1), Point(11, 1), Point(11, 11), Point(1, 11))
        assert average_corners([a, None]) == a
        assert average_corners([None]) is None


class TestFrameSelection:
    """Test burst frame selection."""

    def test_keeps_all_when_few(self):
        from flipscan.utils.merger import select_frames

        frames = [captured(5, 0.3), captured(9, 0.0)]
        selected = select_frames(frames, target_count=4)

        assert [f.timestamp for f in selected] == [0.0, 0.3]

    def test_spacing_rule(self):
        """Best frame first, then the next best far enough from those chosen."""
        from flipscan.utils.merger import select_frames

        frames = [
            captured(5, 0.0), captured(9, 0.1), captured(8, 0.15),
            captured(7, 0.5), captured(6, 1.0),
        ]
        selected = select_frames(frames, target_count=3, min_spacing=0.2)

        assert [f.timestamp for f in selected] == [0.1, 0.5, 1.0]

    def test_spacing_on_sampled_times(self):
        """Frames exactly one spacing apart on the sampling grid are allowed."""
        from flipscan.utils.merger import select_frames

        frames = [captured(10, i * 0.1) for i in range(6)]
        selected = select_frames(frames, target_count=3, min_spacing=0.2)

        assert [f.timestamp for f in selected] == pytest.approx([0.0, 0.2, 0.4])

    def test_select_for_merge_thins_even_burst(self):
        from flipscan.config import MergeConfig
        from flipscan.utils.merger import select_for_merge

        frames = [captured(10, i * 0.1) for i in range(6)]
        selected = select_for_merge(frames, MergeConfig())

        assert len(selected) == 3

    def test_best_always_kept(self):
        from flipscan.utils.merger import select_frames

        frames = [captured(1, 0.0), captured(2, 0.05), captured(50, 0.1), captured(3, 0.12)]
        selected = select_frames(frames, target_count=2, min_spacing=0.2)

        assert [f.quality_score for f in selected] == [50]

    def test_adaptive_target_count(self):
        from flipscan.utils.merger import adaptive_target_count

        assert adaptive_target_count([10, 10, 10, 10, 10], base=4) == 3
        assert adaptive_target_count([10, 10, 10], base=4) == 4
        assert adaptive_target_count([1, 10, 20, 30], base=4) == 6
        assert adaptive_target_count([1, 10, 20, 30], base=5) == 6
        assert adaptive_target_count([8, 12, 8, 12], base=4) == 4
        assert adaptive_target_count([10, 10, 10, 10, 10], base=3) == 3
        assert adaptive_target_count([], base=4) == 4

    def test_select_best_frames(self):
        """One frame per equal segment, the sharpest of each."""
        from flipscan.utils.merger import select_best_frames

        qualities = [1, 5, 3, 2, 8, 4, 6, 7, 9, 0]
        frames = [captured(q, i * 0.1) for i, q in enumerate(qualities)]
        selected = select_best_frames(frames, 5)

        assert [f.quality_score for f in selected] == [5, 3, 8, 7, 9]

    def test_select_best_frames_no_reduction(self):
        from flipscan.utils.merger import select_best_frames

        frames = [captured(1, 0.0), captured(2, 0.1)]
        assert select_best_frames(frames, 5) == frames

    def test_frame_group_validation(self):
        with pytest.raises(ValueError):
            FrameGroup(page_number=0, frames=[checker()], corners=[], quality_scores=[1.0], timestamps=[0.0])
