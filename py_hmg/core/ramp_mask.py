"""
Ramp protection mask.

Every height-modifying consumer (noise, sculpting, stamps, import blending)
receives a ``RampMask`` and writes heights only through it:
``effective = requested * (1 - mask)``, and cells with mask > 0.95 are left
untouched. The mask is 1.0 on ramp cells and fades to 0.0 with a smoothstep
over ``falloff_radius`` cells of Euclidean distance.
"""

from typing import Optional

import numpy as np
import structlog
from scipy.ndimage import distance_transform_edt

from .grid import CellFlag, Grid

logger = structlog.get_logger()

PROTECTION_THRESHOLD = 0.95
MIN_FALLOFF_RADIUS = 5.0
MAX_FALLOFF_RADIUS = 10.0


def smoothstep(t: np.ndarray) -> np.ndarray:
    t = np.clip(t, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


class RampMask:
    """Read-only protection field for one generation pass."""

    def __init__(self, values: np.ndarray, falloff_radius: float):
        values = np.array(values, dtype=np.float64)
        if values.ndim != 2:
            raise ValueError(f"Ramp mask must be 2D, got shape {values.shape}")
        values.setflags(write=False)
        self._values = values
        self.falloff_radius = falloff_radius

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def shape(self):
        return self._values.shape

    def value_at(self, x: int, y: int) -> float:
        return float(self._values[y, x])

    def is_protected(self, x: int, y: int) -> bool:
        return self.value_at(x, y) > PROTECTION_THRESHOLD

    def attenuate(self, requested: np.ndarray) -> np.ndarray:
        """Scale a requested height change; fully protected cells get exactly 0."""
        requested = np.asarray(requested, dtype=np.float64)
        if requested.shape != self.shape:
            raise ValueError(
                f"Height change shape {requested.shape} does not match mask {self.shape}"
            )
        effective = requested * (1.0 - self._values)
        effective[self._values > PROTECTION_THRESHOLD] = 0.0
        return effective

    def apply_height_delta(self, grid: Grid, requested: np.ndarray) -> np.ndarray:
        """Add the attenuated change to the grid heights; returns what was applied."""
        if grid.shape != self.shape:
            raise ValueError(f"Grid shape {grid.shape} does not match mask {self.shape}")
        effective = self.attenuate(requested)
        grid.heights += effective
        return effective


def compute_ramp_mask(grid: Grid, falloff_radius: float = 8.0) -> RampMask:
    """Protection field derived from the grid's RAMP cells."""
    if not MIN_FALLOFF_RADIUS <= falloff_radius <= MAX_FALLOFF_RADIUS:
        raise ValueError(
            f"falloff_radius must be within [{MIN_FALLOFF_RADIUS}, {MAX_FALLOFF_RADIUS}], "
            f"got {falloff_radius}"
        )

    ramps = grid.flag_mask(CellFlag.RAMP)
    if not ramps.any():
        return RampMask(np.zeros(grid.shape), falloff_radius)

    distance = distance_transform_edt(~ramps)
    values = 1.0 - smoothstep(distance / falloff_radius)
    values[distance >= falloff_radius] = 0.0
    values[ramps] = 1.0

    logger.info(
        "Ramp mask computed",
        ramp_cells=int(ramps.sum()),
        protected_cells=int((values > PROTECTION_THRESHOLD).sum()),
        falloff_radius=falloff_radius,
    )
    return RampMask(values, falloff_radius)
