"""
Ramp generation for level crossings along road paths.

For every place where a path steps from one level to another the generator
picks a window of path cells around the crossing and assigns each one a
target height following the progressive slope profile. The window is the
minimum length that keeps the steepest step within ``end_angle``; if the
path does not offer that many cells around the crossing the crossing is
rejected with ``HeightDifferenceExceeded`` instead of producing a steeper
ramp.

Baking a segment writes its heights and RAMP/ROAD flags into the grid and
widens it to the road width.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import structlog
from scipy.ndimage import distance_transform_edt

from .errors import HeightDifferenceExceeded
from .grid import NO_RAMP, NO_ROAD, CellFlag, Grid
from .slope import SlopeConfig, SlopeCurve, cell_profile, min_ramp_length

logger = structlog.get_logger()

Position = Tuple[int, int]


@dataclass
class RampSegment:
    """Ordered ramp cells with their target heights."""

    cells: List[Position]
    heights: np.ndarray
    from_level: int
    to_level: int
    start_angle: float
    end_angle: float
    curve: SlopeCurve
    edge_id: Optional[int] = None
    footprint: List[Position] = field(default_factory=list)

    @property
    def transition_length(self) -> int:
        return len(self.cells)

    @property
    def height_delta(self) -> float:
        return float(self.heights[-1] - self.heights[0])

    def max_step(self) -> float:
        if len(self.heights) < 2:
            return 0.0
        return float(np.max(np.abs(np.diff(self.heights))))


@dataclass
class _LevelRun:
    start: int  # first path index
    end: int  # last path index, inclusive
    level_id: int

    @property
    def midpoint(self) -> int:
        return (self.start + self.end + 1) // 2


def level_runs(levels: Sequence[int]) -> List[_LevelRun]:
    """Split a level sequence into maximal constant-level runs."""
    runs: List[_LevelRun] = []
    for index, level_id in enumerate(levels):
        if runs and runs[-1].level_id == level_id:
            runs[-1].end = index
        else:
            runs.append(_LevelRun(start=index, end=index, level_id=int(level_id)))
    return runs


class RampGenerator:
    """Builds and bakes ramps on one grid."""

    def __init__(self, grid: Grid, slope_config: Optional[SlopeConfig] = None):
        self.grid = grid
        self.slope_config = slope_config or SlopeConfig()

    def required_length(self, from_level: int, to_level: int) -> int:
        """Minimum ramp cells for a level pair; rejects pairs too far apart."""
        config = self.grid.level_config
        if not config.height_difference_valid(from_level, to_level):
            raise HeightDifferenceExceeded(from_level, to_level)
        delta = config.base_height(to_level) - config.base_height(from_level)
        return min_ramp_length(delta, self.grid.cell_size, self.slope_config)

    def build_segment(
        self,
        cells: Sequence[Position],
        from_level: int,
        to_level: int,
        edge_id: Optional[int] = None,
    ) -> RampSegment:
        """
        Height profile for ``cells`` running from ``from_level`` to ``to_level``.

        The steep end of the profile always sits at the higher level.
        """
        cells = [(int(x), int(y)) for x, y in cells]
        required = self.required_length(from_level, to_level)
        if len(cells) < required:
            raise HeightDifferenceExceeded(from_level, to_level, required, len(cells))

        config = self.grid.level_config
        start_height = config.base_height(from_level)
        end_height = config.base_height(to_level)
        low, high = min(start_height, end_height), max(start_height, end_height)

        if len(cells) < 2:
            heights = np.full(len(cells), start_height, dtype=np.float64)
        else:
            g, _ = cell_profile(len(cells), self.slope_config)
            heights = (1.0 - g) * low + g * high
            if start_height > end_height:
                heights = heights[::-1].copy()

        return RampSegment(
            cells=cells,
            heights=heights,
            from_level=from_level,
            to_level=to_level,
            start_angle=self.slope_config.start_angle,
            end_angle=self.slope_config.end_angle,
            curve=self.slope_config.curve,
            edge_id=edge_id,
        )

    def generate(
        self,
        path: Sequence[Position],
        edge_id: Optional[int] = None,
        transition_length: Optional[int] = None,
    ) -> List[RampSegment]:
        """
        One ramp segment per level crossing along ``path``.

        Each crossing may use the path cells between the midpoints of the
        constant-level runs on either side of it. A crossing whose two cells
        already belong to a ramp for the same level pair is left as it is.
        New windows never cover ramp cells of another level pair.
        """
        levels = [self.grid.get_level_id(x, y) for x, y in path]
        runs = level_runs(levels)
        ramp_levels = self.grid.ramp_level_field()
        path_ramps = np.array([ramp_levels[y, x] for x, y in path], dtype=np.int64)
        segments: List[RampSegment] = []

        for index in range(len(runs) - 1):
            before, after = runs[index], runs[index + 1]
            crossing = after.start
            if self.grid.ramp_bridges(path[crossing - 1], path[crossing]):
                logger.debug("Reusing existing ramp", edge_id=edge_id, crossing=path[crossing])
                continue

            required = self.required_length(before.level_id, after.level_id)
            length = required if transition_length is None else transition_length
            if length < required:
                raise HeightDifferenceExceeded(before.level_id, after.level_id, required, length)

            window_start = 0 if index == 0 else before.midpoint
            window_end = len(path) if index == len(runs) - 2 else after.midpoint
            available = window_end - window_start
            if length > available:
                raise HeightDifferenceExceeded(before.level_id, after.level_id, length, available)

            start = self._place_window(
                path_ramps,
                crossing,
                length,
                window_start,
                window_end,
                min(before.level_id, after.level_id),
            )
            if start is None:
                logger.debug(
                    "No ramp window fits around the crossing",
                    edge_id=edge_id,
                    crossing=path[crossing],
                    from_level=before.level_id,
                    to_level=after.level_id,
                )
                raise HeightDifferenceExceeded(before.level_id, after.level_id, length, 0)

            segments.append(
                self.build_segment(
                    path[start : start + length], before.level_id, after.level_id, edge_id
                )
            )

        return segments

    @staticmethod
    def _place_window(
        path_ramps: np.ndarray,
        crossing: int,
        length: int,
        window_start: int,
        window_end: int,
        low_level: int,
    ) -> Optional[int]:
        """
        First index of a ``length`` window covering both crossing cells.

        Windows closest to centered win. A window touching no ramp is
        preferred over one that overlaps ramps of the same level pair; ramps
        of other pairs are never overwritten. Returns None when no window fits.
        """
        first = max(window_start, crossing + 1 - length)
        last = min(window_end - length, crossing - 1)
        preferred = crossing - length // 2
        candidates = sorted(range(first, last + 1), key=lambda s: (abs(s - preferred), s))

        fallback = None
        for start in candidates:
            covered = path_ramps[start : start + length]
            on_ramp = covered != NO_RAMP
            if not on_ramp.any():
                return start
            if fallback is None and np.all(covered[on_ramp] == low_level):
                fallback = start
        return fallback

    def bake(self, segment: RampSegment, width: float = 1.0) -> List[Position]:
        """
        Write a segment into the grid.

        Centerline cells get the segment heights; cells within ``width / 2``
        that sit on one of the two bridged levels copy the height of their
        nearest centerline cell. Every written cell becomes RAMP and ROAD.
        Returns the written cells.
        """
        grid = self.grid
        if not segment.cells:
            return []
        radius = max(0.0, width / 2.0)
        pad = int(math.ceil(radius)) + 1

        xs = np.array([c[0] for c in segment.cells])
        ys = np.array([c[1] for c in segment.cells])
        x_min, x_max = max(0, xs.min() - pad), min(grid.cols, xs.max() + pad + 1)
        y_min, y_max = max(0, ys.min() - pad), min(grid.rows, ys.max() + pad + 1)

        window = (slice(y_min, y_max), slice(x_min, x_max))
        centerline = np.zeros((y_max - y_min, x_max - x_min), dtype=bool)
        target = np.zeros(centerline.shape, dtype=np.float64)
        for (x, y), height in zip(segment.cells, segment.heights):
            centerline[y - y_min, x - x_min] = True
            target[y - y_min, x - x_min] = height

        distance, (near_y, near_x) = distance_transform_edt(~centerline, return_indices=True)
        heights = target[near_y, near_x]

        levels = grid.level_ids[window]
        flags = grid.flags[window]
        footprint = distance <= radius
        footprint &= np.isin(levels, (segment.from_level, segment.to_level))
        footprint &= (flags & int(CellFlag.BLOCKED | CellFlag.VISUAL_ONLY)) == 0
        footprint &= ((flags & int(CellFlag.RAMP)) == 0) | centerline
        footprint |= centerline

        grid.heights[window][footprint] = heights[footprint]
        flags[footprint] |= np.uint16(CellFlag.RAMP | CellFlag.ROAD)
        grid.ramp_levels[window][footprint] = min(segment.from_level, segment.to_level)
        walkable = footprint & ((flags & int(CellFlag.VISUAL_ONLY)) == 0)
        flags[walkable] |= np.uint16(CellFlag.PLAYABLE)

        if segment.edge_id is not None:
            road_ids = grid.road_ids[window]
            unowned = footprint & (road_ids == NO_ROAD)
            road_ids[unowned] = segment.edge_id

        fy, fx = np.nonzero(footprint)
        written = [(int(x + x_min), int(y + y_min)) for x, y in zip(fx, fy)]
        segment.footprint = written

        logger.debug(
            "Ramp baked",
            edge_id=segment.edge_id,
            from_level=segment.from_level,
            to_level=segment.to_level,
            length=segment.transition_length,
            cells=len(written),
        )
        return written
