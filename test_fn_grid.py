"""
Tests for fn_grid: indexing, coordinates and per-axis boundary wrap.
"""

import numpy as np
import pytest

from fn_grid import (
    BoundaryMode,
    Grid,
    boundary_modes,
    check_block_divisibility,
    make_grid,
    wrap_periodic,
    wrap_reflecting,
)


# ==============================================================================
# Indexing
# ==============================================================================

class TestIndexing:

    def test_index_is_c_order(self):
        grid = Grid.from_boundary(4, 5, 6, 0.5)
        arr = np.arange(grid.size).reshape(grid.shape)
        for ijk in [(0, 0, 0), (1, 2, 3), (3, 4, 5), (2, 0, 5)]:
            assert arr.ravel()[grid.index(*ijk)] == arr[ijk]

    def test_index_unravel_bijection(self):
        grid = Grid.from_boundary(3, 4, 5, 1.0)
        seen = set()
        for n in range(grid.size):
            ijk = grid.unravel(n)
            assert grid.index(*ijk) == n
            seen.add(ijk)
        assert len(seen) == grid.size

    def test_rejects_degenerate_dimensions(self):
        with pytest.raises(ValueError):
            Grid.from_boundary(1, 4, 4, 1.0)
        with pytest.raises(ValueError):
            Grid.from_boundary(4, 4, 4, 0.0)


# ==============================================================================
# Coordinates
# ==============================================================================

class TestCoordinates:

    def test_cell_centred_about_origin(self):
        grid = Grid.from_boundary(4, 6, 8, 0.5)
        np.testing.assert_allclose(grid.coords(0), [-0.75, -0.25, 0.25, 0.75])
        for axis in range(3):
            assert grid.coords(axis).sum() == pytest.approx(0.0)

    def test_position_matches_coords(self):
        grid = Grid.from_boundary(5, 6, 7, 0.3)
        ijk = (4, 1, 6)
        expected = [grid.coords(a)[ijk[a]] for a in range(3)]
        np.testing.assert_allclose(grid.position(ijk), expected)

    def test_lower_corner_of_grid_point(self):
        grid = Grid.from_boundary(10, 10, 10, 0.5)
        p = grid.position((3, 7, 0)) + 0.1 * grid.h
        assert grid.lower_corner(p) == (3, 7, 0)

    def test_lower_corner_truncates_toward_zero(self):
        grid = Grid.from_boundary(10, 10, 10, 1.0)
        # half a cell below the first grid point: x/h - 0.5 + N/2 = -0.5 -> 0
        p = grid.position((0, 0, 0)) - 0.5
        assert grid.lower_corner(p) == (0, 0, 0)
        far = grid.position((0, 0, 0)) - 1.5
        assert not grid.corner_in_grid(grid.lower_corner(far))


# ==============================================================================
# Boundary wrap
# ==============================================================================

class TestWrap:

    def test_reflecting_clamps(self):
        assert wrap_reflecting(0, -1, 10) == 0
        assert wrap_reflecting(9, +1, 10) == 9
        assert wrap_reflecting(4, +1, 10) == 5

    def test_periodic_wraps(self):
        assert wrap_periodic(0, -1, 10) == 9
        assert wrap_periodic(9, +1, 10) == 0
        assert wrap_periodic(4, -1, 10) == 3

    def test_array_inputs(self):
        idx = np.arange(5)
        np.testing.assert_array_equal(wrap_reflecting(idx, -1, 5), [0, 0, 1, 2, 3])
        np.testing.assert_array_equal(wrap_periodic(idx, +1, 5), [1, 2, 3, 4, 0])

    def test_presets(self):
        R, P = BoundaryMode.REFLECTING, BoundaryMode.PERIODIC
        assert boundary_modes("reflecting") == (R, R, R)
        assert boundary_modes("periodic") == (P, P, P)
        assert boundary_modes("periodic-z") == (R, R, P)
        assert boundary_modes("Periodic-X") == (P, R, R)
        with pytest.raises(ValueError):
            boundary_modes("periodic-w")
        with pytest.raises(ValueError):
            boundary_modes("open")

    def test_grid_uses_axis_mode(self):
        grid = Grid.from_boundary(6, 6, 6, 1.0, "periodic-y")
        assert grid.wrap(0, 0, -1) == 0
        assert grid.wrap(1, 0, -1) == 5
        np.testing.assert_array_equal(grid.neighbour_indices(2, +1), [1, 2, 3, 4, 5, 5])
        assert grid.describe_boundary() == "periodic-y"


# ==============================================================================
# GPU block size
# ==============================================================================

class TestBlockSize:

    def test_multiple_of_block_size_passes(self):
        check_block_divisibility(Grid.from_boundary(16, 8, 24, 1.0), 8)

    def test_non_multiple_raises(self):
        with pytest.raises(ValueError, match="block size"):
            make_grid(16, 12, 16, 1.0, block_size=8)
