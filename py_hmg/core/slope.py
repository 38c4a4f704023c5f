"""
Progressive slope curves for ramps.

A ramp's slope angle starts gentle (``start_angle``) and steepens to almost
vertical (``end_angle``) following one of a few easing curves. The height
profile of a ramp is the normalized running integral of ``tan(angle)``, so
the elevation gained per cell grows with the local angle: walkable at the
entrance and effectively unclimbable near the top.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union

import numpy as np
from scipy.integrate import cumulative_trapezoid

# Trapezoid sub-steps per ramp cell when integrating the profile
PROFILE_SUBSTEPS = 32
EXPONENTIAL_RATE = 4.0
MAX_WALKABLE_ANGLE = 45.0


class SlopeCurve(str, Enum):
    LINEAR = "linear"
    EASE_IN = "ease-in"  # gentle start, steep end
    EASE_OUT = "ease-out"  # steep start, gentle end
    EASE_IN_OUT = "ease-in-out"  # S-curve
    EXPONENTIAL = "exponential"


@dataclass
class SlopeConfig:
    """Angle range and easing curve of a ramp."""

    start_angle: float = 20.0  # degrees at the bottom of the ramp
    end_angle: float = 87.0  # degrees at the top of the ramp
    curve: SlopeCurve = SlopeCurve.EASE_IN

    def __post_init__(self):
        self.curve = SlopeCurve(self.curve)
        if not 0.0 <= self.start_angle < self.end_angle < 90.0:
            raise ValueError(
                "Slope angles must satisfy 0 <= start_angle < end_angle < 90, "
                f"got {self.start_angle} and {self.end_angle}"
            )


def slope_factor(t: Union[float, np.ndarray], curve: SlopeCurve) -> Union[float, np.ndarray]:
    """
    Easing value in [0, 1] for position ``t`` in [0, 1].

    Every curve is non-decreasing with f(0) = 0 and f(1) = 1.
    """
    t = np.clip(t, 0.0, 1.0)
    curve = SlopeCurve(curve)

    if curve is SlopeCurve.LINEAR:
        result = t
    elif curve is SlopeCurve.EASE_IN:
        result = t * t
    elif curve is SlopeCurve.EASE_OUT:
        result = 1.0 - (1.0 - t) ** 2
    elif curve is SlopeCurve.EASE_IN_OUT:
        result = np.where(t < 0.5, 2.0 * t * t, 1.0 - 2.0 * (1.0 - t) ** 2)
    else:
        result = np.expm1(EXPONENTIAL_RATE * t) / math.expm1(EXPONENTIAL_RATE)

    if np.ndim(result) == 0:
        return float(result)
    return result


def slope_angle_at(t: Union[float, np.ndarray], config: SlopeConfig) -> Union[float, np.ndarray]:
    """Slope angle in degrees at normalized ramp position ``t``."""
    return config.start_angle + (config.end_angle - config.start_angle) * slope_factor(
        t, config.curve
    )


def height_factor(angle: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """Rise per unit of run for a slope angle in degrees."""
    return np.tan(np.radians(angle))


def ramp_profile(samples: int, config: SlopeConfig) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Normalized height profile sampled at ``samples`` evenly spaced positions.

    Returns ``(t, g, integral)`` where ``g`` rises monotonically from exactly
    0 to exactly 1 and ``integral`` is the trapezoid integral of
    ``height_factor`` over [0, 1] used to normalize it.
    """
    if samples < 2:
        raise ValueError(f"A ramp profile needs at least 2 samples, got {samples}")

    t = np.linspace(0.0, 1.0, samples)
    rise = height_factor(slope_angle_at(t, config))
    cumulative = cumulative_trapezoid(rise, t, initial=0.0)
    integral = float(cumulative[-1])

    g = cumulative / integral
    g[0] = 0.0
    g[-1] = 1.0
    return t, np.maximum.accumulate(g), integral


def cell_profile(cells: int, config: SlopeConfig) -> Tuple[np.ndarray, float]:
    """Profile values at ``cells`` ramp cells plus the integral they were normalized by."""
    if cells < 2:
        raise ValueError(f"A ramp needs at least 2 cells, got {cells}")
    _, g, integral = ramp_profile((cells - 1) * PROFILE_SUBSTEPS + 1, config)
    return g[::PROFILE_SUBSTEPS], integral


def min_ramp_length(height_delta: float, cell_size: float, config: SlopeConfig) -> int:
    """
    Fewest ramp cells whose steepest step stays within ``end_angle``.

    With N cells the ramp runs over ``(N - 1) * cell_size`` world units and
    its local slope is ``height_delta / ((N - 1) * cell_size * integral)``
    times ``tan(angle(t))``. The minimum N keeps that scale at or below 1.
    Returns 0 when there is nothing to bridge.
    """
    height_delta = abs(height_delta)
    if height_delta <= 0:
        return 0
    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")

    def fits(cells: int) -> bool:
        _, integral = cell_profile(cells, config)
        return height_delta <= (cells - 1) * cell_size * integral * (1.0 + 1e-12)

    _, _, estimate = ramp_profile(2049, config)
    cells = max(2, math.ceil(height_delta / (cell_size * estimate)) + 1)
    # The fine-grained estimate can be off by one cell either way
    while cells > 2 and fits(cells - 1):
        cells -= 1
    while not fits(cells):
        cells += 1
    return cells


def max_step_height(cell_size: float, config: SlopeConfig) -> float:
    """Largest height change a single ramp cell may carry."""
    return cell_size * float(height_factor(config.end_angle))


def is_walkable_slope(angle: float, max_walkable_angle: float = MAX_WALKABLE_ANGLE) -> bool:
    return 0.0 <= angle <= max_walkable_angle
