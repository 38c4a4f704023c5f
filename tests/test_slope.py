"""
Tests for slope curves and ramp profiles.
"""

import math

import numpy as np
import pytest

from py_hmg.core.slope import (
    SlopeConfig,
    SlopeCurve,
    cell_profile,
    height_factor,
    is_walkable_slope,
    max_step_height,
    min_ramp_length,
    ramp_profile,
    slope_angle_at,
    slope_factor,
)

ALL_CURVES = list(SlopeCurve)


class TestSlopeFactor:
    """Test easing curves."""

    @pytest.mark.parametrize("curve", ALL_CURVES)
    def test_endpoints(self, curve):
        """Test curve endpoints."""
        assert slope_factor(0.0, curve) == pytest.approx(0.0)
        assert slope_factor(1.0, curve) == pytest.approx(1.0)

    @pytest.mark.parametrize("curve", ALL_CURVES)
    def test_monotonic(self, curve):
        """Test that curves never decrease."""
        values = slope_factor(np.linspace(0.0, 1.0, 101), curve)
        assert np.all(np.diff(values) >= 0)

    def test_shapes(self):
        """Test the shape of each curve."""
        assert slope_factor(0.5, SlopeCurve.LINEAR) == pytest.approx(0.5)
        assert slope_factor(0.5, SlopeCurve.EASE_IN) < 0.5
        assert slope_factor(0.5, SlopeCurve.EASE_OUT) > 0.5
        assert slope_factor(0.5, SlopeCurve.EASE_IN_OUT) == pytest.approx(0.5)
        assert slope_factor(0.25, SlopeCurve.EASE_IN_OUT) < 0.25

    def test_clamps_input(self):
        """Test clamping outside [0, 1]."""
        assert slope_factor(-1.0, SlopeCurve.EASE_IN) == 0.0
        assert slope_factor(2.0, SlopeCurve.EASE_IN) == 1.0

    def test_accepts_curve_names(self):
        """Test curves given by name."""
        assert slope_factor(0.5, "ease-in") == pytest.approx(0.25)


class TestSlopeConfig:

    def test_defaults(self):
        """Test default slope configuration."""
        config = SlopeConfig()
        assert config.start_angle == 20.0
        assert config.end_angle == 87.0
        assert config.curve is SlopeCurve.EASE_IN

    @pytest.mark.parametrize("start, end", [(50, 40), (30, 30), (-5, 40), (20, 90)])
    def test_invalid_angles(self, start, end):
        """Test rejection of invalid angles."""
        with pytest.raises(ValueError):
            SlopeConfig(start_angle=start, end_angle=end)

    def test_angle_range(self):
        """Test the angle range along a ramp."""
        config = SlopeConfig(start_angle=10, end_angle=80, curve="linear")
        assert slope_angle_at(0.0, config) == pytest.approx(10.0)
        assert slope_angle_at(0.5, config) == pytest.approx(45.0)
        assert slope_angle_at(1.0, config) == pytest.approx(80.0)


class TestProfile:
    """Test normalized height profiles."""

    @pytest.mark.parametrize("curve", ALL_CURVES)
    def test_profile_bounds(self, curve):
        """Test profile bounds and monotonicity."""
        t, g, integral = ramp_profile(65, SlopeConfig(curve=curve))
        assert t[0] == 0.0 and t[-1] == 1.0
        assert g[0] == 0.0
        assert g[-1] == 1.0
        assert np.all(np.diff(g) >= 0)
        assert integral > 0

    def test_gentle_bottom_steep_top(self):
        """Test that the profile steepens towards the top."""
        _, g, _ = ramp_profile(101, SlopeConfig())
        assert g[50] < 0.5
        assert g[10] - g[0] < g[100] - g[90]

    def test_cell_profile(self):
        """Test per-cell sampling of the profile."""
        g, integral = cell_profile(5, SlopeConfig())
        assert len(g) == 5
        assert g[0] == 0.0
        assert g[-1] == 1.0
        assert integral > 0

    def test_too_few_samples(self):
        """Test rejection of too few samples."""
        with pytest.raises(ValueError):
            ramp_profile(1, SlopeConfig())
        with pytest.raises(ValueError):
            cell_profile(1, SlopeConfig())


class TestRampLength:

    def test_nothing_to_bridge(self):
        """Test a zero height difference."""
        assert min_ramp_length(0.0, 50.0, SlopeConfig()) == 0

    def test_minimum_two_cells(self):
        """Test the two cell minimum."""
        assert min_ramp_length(1.0, 50.0, SlopeConfig()) == 2

    @pytest.mark.parametrize("curve", ALL_CURVES)
    @pytest.mark.parametrize("delta", [270.0, -270.0, 540.0, 1500.0])
    def test_steps_stay_within_end_angle(self, curve, delta):
        """Test that steps respect the end angle."""
        config = SlopeConfig(curve=curve)
        cells = min_ramp_length(delta, 50.0, config)
        g, _ = cell_profile(cells, config)
        steps = abs(delta) * np.diff(g)
        assert steps.max() <= max_step_height(50.0, config) * (1 + 1e-9)

    @pytest.mark.parametrize("curve", ALL_CURVES)
    def test_length_is_minimal(self, curve):
        """Test that one cell fewer would be too steep."""
        config = SlopeConfig(start_angle=5, end_angle=60, curve=curve)
        cells = min_ramp_length(270.0, 10.0, config)
        assert cells > 2
        _, integral = cell_profile(cells - 1, config)
        assert 270.0 > (cells - 2) * 10.0 * integral

    def test_longer_for_gentler_end(self):
        """Test that a gentler end needs a longer ramp."""
        steep = min_ramp_length(270.0, 10.0, SlopeConfig(start_angle=5, end_angle=80))
        gentle = min_ramp_length(270.0, 10.0, SlopeConfig(start_angle=5, end_angle=45))
        assert gentle > steep

    def test_invalid_cell_size(self):
        """Test rejection of a non-positive cell size."""
        with pytest.raises(ValueError):
            min_ramp_length(270.0, 0.0, SlopeConfig())


class TestWalkability:

    def test_height_factor(self):
        """Test rise per unit of run."""
        assert height_factor(45.0) == pytest.approx(1.0)
        assert max_step_height(50.0, SlopeConfig()) == pytest.approx(50.0 * math.tan(math.radians(87.0)))

    @pytest.mark.parametrize("angle, walkable", [(0.0, True), (30.0, True), (45.0, True), (60.0, False), (-1.0, False)])
    def test_is_walkable_slope(self, angle, walkable):
        """Test the walkable angle limit."""
        assert is_walkable_slope(angle) == walkable
