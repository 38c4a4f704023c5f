"""
Tests for the ramp protection mask.
"""

import numpy as np
import pytest

from py_hmg.core.grid import CellFlag, create_grid
from py_hmg.core.ramp_mask import PROTECTION_THRESHOLD, RampMask, compute_ramp_mask, smoothstep


@pytest.fixture
def grid():
    grid = create_grid(30, 30)
    grid.set_flag(15, 15, CellFlag.RAMP)
    return grid


class TestComputeRampMask:
    """Test the protection field."""

    def test_ramp_cells_fully_protected(self, grid):
        """Test full protection on ramp cells."""
        mask = compute_ramp_mask(grid)
        assert mask.value_at(15, 15) == 1.0
        assert mask.is_protected(15, 15)

    def test_fades_to_zero_at_radius(self, grid):
        """Test falloff to zero at the radius."""
        mask = compute_ramp_mask(grid, falloff_radius=8.0)
        assert mask.value_at(23, 15) == 0.0
        assert mask.value_at(15, 25) == 0.0
        assert mask.value_at(0, 0) == 0.0
        assert mask.value_at(19, 15) == pytest.approx(0.5)

    def test_monotonic_with_distance(self, grid):
        """Test that protection decreases with distance."""
        row = compute_ramp_mask(grid).values[15, 15:]
        assert np.all(np.diff(row) <= 0)
        assert np.all((row >= 0.0) & (row <= 1.0))

    def test_no_ramps(self):
        """Test a grid without ramps."""
        mask = compute_ramp_mask(create_grid(10, 10))
        assert not mask.values.any()

    def test_covers_every_ramp_cell(self):
        """Test that every ramp cell is fully protected."""
        grid = create_grid(20, 20)
        for x in range(3, 17):
            grid.set_flag(x, 10, CellFlag.RAMP)
        values = compute_ramp_mask(grid, falloff_radius=5.0).values
        assert np.all(values[grid.flag_mask(CellFlag.RAMP)] == 1.0)

    @pytest.mark.parametrize("radius", [4.9, 10.5, 0.0])
    def test_radius_bounds(self, grid, radius):
        """Test rejection of radii outside [5, 10]."""
        with pytest.raises(ValueError):
            compute_ramp_mask(grid, falloff_radius=radius)

    @pytest.mark.parametrize("radius", [5.0, 10.0])
    def test_radius_limits_accepted(self, grid, radius):
        """Test the radius limits themselves."""
        assert compute_ramp_mask(grid, falloff_radius=radius).falloff_radius == radius


class TestRampMask:
    """Test mask consumers."""

    def test_read_only(self, grid):
        """Test that mask values cannot be written."""
        mask = compute_ramp_mask(grid)
        with pytest.raises(ValueError):
            mask.values[0, 0] = 1.0

    def test_attenuate(self, grid):
        """Test attenuation of requested changes."""
        mask = compute_ramp_mask(grid, falloff_radius=8.0)
        effective = mask.attenuate(np.ones(grid.shape))

        assert effective[15, 15] == 0.0
        # one cell away the mask is still above the protection threshold
        assert mask.value_at(16, 15) > PROTECTION_THRESHOLD
        assert effective[15, 16] == 0.0
        assert effective[15, 19] == pytest.approx(0.5)
        assert effective[0, 0] == 1.0

    def test_attenuate_shape_mismatch(self, grid):
        """Test rejection of a change field of the wrong shape."""
        with pytest.raises(ValueError):
            compute_ramp_mask(grid).attenuate(np.ones((3, 3)))

    def test_apply_height_delta(self, grid):
        """Test that height deltas skip protected cells."""
        grid.set_height(15, 15, 123.0)
        mask = compute_ramp_mask(grid)
        mask.apply_height_delta(grid, np.full(grid.shape, 10.0))

        assert grid.get_height(15, 15) == 123.0
        assert grid.get_height(0, 0) == 10.0

    def test_rejects_non_2d(self):
        """Test rejection of a non 2D field."""
        with pytest.raises(ValueError):
            RampMask(np.zeros(5), 8.0)

    def test_smoothstep(self):
        """Test the smoothstep falloff."""
        np.testing.assert_allclose(smoothstep(np.array([-1.0, 0.0, 0.5, 1.0, 2.0])), [0.0, 0.0, 0.5, 1.0, 1.0])
