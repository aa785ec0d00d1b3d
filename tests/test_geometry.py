"""
Tests for polygon geometry and the linear solvers.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from flipscan.utils.geometry import Point


def rectangle_outline(x0, y0, x1, y1):
    """Pixel coordinates of a rectangle's outline, unordered."""
    xs = np.arange(x0, x1 + 1)
    ys = np.arange(y0, y1 + 1)
    top = np.column_stack([xs, np.full_like(xs, y0)])
    bottom = np.column_stack([xs, np.full_like(xs, y1)])
    left = np.column_stack([np.full_like(ys, x0), ys])
    right = np.column_stack([np.full_like(ys, x1), ys])
    points = np.vstack([top, bottom, left, right])
    np.random.default_rng(1).shuffle(points)
    return points


class TestPolygonMeasures:
    """Test area and perimeter."""

    def test_polygon_area(self):
        from flipscan.utils.geometry import polygon_area

        square = [Point(0, 0), Point(10, 0), Point(10, 10), Point(0, 10)]
        assert polygon_area(square) == pytest.approx(100.0)

    def test_polygon_area_orientation_independent(self):
        from flipscan.utils.geometry import polygon_area

        clockwise = [(0, 0), (0, 10), (20, 10), (20, 0)]
        assert polygon_area(clockwise) == pytest.approx(200.0)

    def test_polygon_area_degenerate(self):
        from flipscan.utils.geometry import polygon_area

        assert polygon_area([(0, 0), (5, 5)]) == 0.0

    def test_polygon_perimeter(self):
        from flipscan.utils.geometry import polygon_perimeter

        assert polygon_perimeter([(0, 0), (3, 0), (3, 4), (0, 4)]) == pytest.approx(14.0)

    def test_point_distance(self):
        assert Point(0, 0).distance_to(Point(3, 4)) == pytest.approx(5.0)


class TestQuadrilateral:
    """Test quadrilateral extraction from contours."""

    def test_rectangle_outline(self):
        """An axis-aligned outline reduces to its four corners."""
        from flipscan.utils.geometry import find_quadrilateral, polygon_area

        quad = find_quadrilateral(rectangle_outline(20, 30, 80, 70))

        assert quad is not None
        assert quad.shape == (4, 2)
        assert polygon_area(quad) == pytest.approx(60 * 40, rel=0.02)

    def test_triangle_is_rejected(self):
        from flipscan.utils.geometry import find_quadrilateral

        triangle = np.array([[0, 0], [100, 0], [0, 100], [10, 10], [20, 30]])
        assert find_quadrilateral(triangle) is None

    def test_too_few_points(self):
        from flipscan.utils.geometry import find_quadrilateral

        assert find_quadrilateral(np.array([[0, 0], [1, 1]])) is None

    def test_best_quadrilateral_from_hexagon(self):
        """The largest 4-subset is kept when more vertices survive."""
        from flipscan.utils.geometry import find_best_quadrilateral, polygon_area

        hexagon = np.array([
            [0, 0], [50, -2], [100, 0], [100, 100], [50, 102], [0, 100]
        ], dtype=np.float64)
        quad = find_best_quadrilateral(hexagon)

        assert quad.shape == (4, 2)
        assert polygon_area(quad) >= 10000.0

    def test_extreme_corners(self):
        from flipscan.utils.geometry import extreme_corners

        points = np.array([
            [50, 0], [0, 0], [100, 50], [100, 0], [50, 100],
            [100, 100], [0, 50], [0, 100], [30, 0], [0, 70],
        ], dtype=np.float64)
        corners = extreme_corners(points)

        np.testing.assert_array_equal(
            corners, [[0, 0], [100, 0], [100, 100], [0, 100]]
        )

    def test_extreme_corners_degenerate(self):
        from flipscan.utils.geometry import extreme_corners

        # A single point is every extreme at once
        assert extreme_corners(np.array([[5.0, 5.0]])) is None


class TestCornerOrdering:
    """Test corner ordering and confidence."""

    def test_order_shuffled_rectangle(self):
        from flipscan.utils.geometry import order_corners

        shuffled = [Point(90, 80), Point(10, 20), Point(10, 80), Point(90, 20)]
        ordered = order_corners(shuffled)

        assert ordered == (Point(10, 20), Point(90, 20), Point(90, 80), Point(10, 80))

    def test_order_requires_four(self):
        from flipscan.utils.geometry import order_corners

        with pytest.raises(ValueError):
            order_corners([Point(0, 0), Point(1, 0), Point(1, 1)])

    def test_order_skewed_quad(self):
        """Clockwise on screen, starting at the point nearest the origin."""
        from flipscan.utils.geometry import order_corners

        quad = np.array([[110, 95], [20, 15], [15, 90], [100, 10]], dtype=np.float64)
        ordered = order_corners(quad)

        assert ordered[0] == Point(20, 15)
        assert ordered[1] == Point(100, 10)
        assert ordered[2] == Point(110, 95)
        assert ordered[3] == Point(15, 90)

    def test_corner_angle(self):
        from flipscan.utils.geometry import corner_angle

        assert corner_angle(Point(1, 0), Point(0, 0), Point(0, 1)) == pytest.approx(90.0)
        assert corner_angle(Point(1, 0), Point(0, 0), Point(-1, 0)) == pytest.approx(180.0)

    def test_confidence_rectangle(self):
        from flipscan.utils.geometry import calculate_confidence

        rect = [Point(0, 0), Point(100, 0), Point(100, 60), Point(0, 60)]
        assert calculate_confidence(rect) == pytest.approx(1.0)

    def test_confidence_trapezoid_lower(self):
        from flipscan.utils.geometry import calculate_confidence

        trapezoid = [Point(30, 0), Point(70, 0), Point(100, 60), Point(0, 60)]
        confidence = calculate_confidence(trapezoid)

        assert 0.0 <= confidence < 0.9


class TestSolvers:
    """Test the Gaussian elimination and affine solvers."""

    def test_solve_linear_system(self):
        from flipscan.utils.geometry import solve_linear_system

        A = np.array([[2.0, 1.0], [1.0, 3.0]])
        b = np.array([5.0, 10.0])
        x = solve_linear_system(A, b)

        np.testing.assert_allclose(x, [1.0, 3.0])

    def test_solve_needs_pivoting(self):
        """A zero on the diagonal is handled by row exchange."""
        from flipscan.utils.geometry import solve_linear_system

        A = np.array([[0.0, 1.0], [1.0, 0.0]])
        x = solve_linear_system(A, np.array([2.0, 3.0]))

        np.testing.assert_allclose(x, [3.0, 2.0])

    def test_singular_system_raises(self):
        from flipscan.utils.geometry import solve_linear_system
        from flipscan.utils.errors import DegenerateGeometryError

        A = np.array([[1.0, 2.0], [2.0, 4.0]])
        with pytest.raises(DegenerateGeometryError):
            solve_linear_system(A, np.array([1.0, 2.0]))

    def test_solve_affine_translation(self):
        from flipscan.utils.geometry import solve_affine

        src = [Point(0, 0), Point(10, 0), Point(0, 10)]
        dst = [Point(5, 3), Point(15, 3), Point(5, 13)]
        matrix = solve_affine(src, dst)

        np.testing.assert_allclose(matrix, [[1, 0, 5], [0, 1, 3]], atol=1e-9)

    def test_solve_affine_collinear(self):
        from flipscan.utils.geometry import solve_affine
        from flipscan.utils.errors import DegenerateGeometryError

        src = [Point(0, 0), Point(10, 0), Point(20, 0)]
        with pytest.raises(DegenerateGeometryError):
            solve_affine(src, src)

    def test_corners_as_list(self):
        from flipscan.utils.geometry import corners_as_list

        assert corners_as_list([Point(1.234, 5.678)]) == [[1.23, 5.68]]
