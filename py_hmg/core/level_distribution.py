"""
Level distribution: assigns a discrete level to every grid cell.

Process:
1. fractal_value_noise() - seeded multi-octave value noise in [0, 1]
2. distribute_levels() - map noise onto the configured level range
3. generate_random_regions() / apply_level_regions() - stamp blob-shaped
   plateaus and basins over the noise
4. collect_level_stats() - per-level cell counts for reporting

Setting a level also derives UNDERWATER, VISUAL_ONLY and PLAYABLE flags.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import numpy as np
import structlog
from pydantic import BaseModel, Field, model_validator

from .alea_prng import AleaPRNG
from .grid import CellFlag, Grid
from ..utils.random import make_prng

logger = structlog.get_logger()


class LevelDistributionOptions(BaseModel):
    """Level distribution parameters."""

    min_level: int = Field(default=-1, description="Lowest level (negative = underwater)")
    max_level: int = Field(default=3, description="Highest level, peaks above walkable included")
    noise_scale: float = Field(default=0.05, gt=0, description="Noise frequency per cell")
    octaves: int = Field(default=4, ge=1, le=8, description="Noise octaves")
    persistence: float = Field(default=0.5, gt=0, le=1, description="Amplitude falloff per octave")
    region_count: int = Field(default=5, ge=0, description="Number of blob regions stamped over the noise")
    seed: Optional[Union[str, int]] = Field(default=None, description="Seed, shared PRNG when None")

    @model_validator(mode="after")
    def _check_range(self):
        if self.max_level < self.min_level:
            raise ValueError(
                f"max_level ({self.max_level}) must be >= min_level ({self.min_level})"
            )
        return self


@dataclass
class LevelRegion:
    """Blob-shaped area forced to one level."""
    center_x: int
    center_y: int
    radius: int
    level_id: int
    falloff: float  # exponent; 0 gives a hard-edged disc


@dataclass
class LevelStats:
    level_counts: Dict[int, int] = field(default_factory=dict)
    underwater_cells: int = 0
    playable_cells: int = 0
    visual_only_cells: int = 0


@dataclass
class LevelDistributionResult:
    regions: List[LevelRegion]
    stats: LevelStats


def fractal_value_noise(
    cols: int,
    rows: int,
    scale: float,
    prng: AleaPRNG,
    octaves: int = 4,
    persistence: float = 0.5,
    lacunarity: float = 2.0,
) -> np.ndarray:
    """
    Multi-octave value noise over a ``rows x cols`` array, normalized to [0, 1].

    Each octave samples a random lattice with smoothstep-weighted bilinear
    interpolation.
    """
    total = np.zeros((rows, cols), dtype=np.float64)
    amplitude = 1.0
    amplitude_sum = 0.0

    for octave in range(octaves):
        frequency = scale * lacunarity**octave
        xs = np.arange(cols) * frequency
        ys = np.arange(rows) * frequency

        lattice_w = int(math.floor(xs[-1])) + 2
        lattice_h = int(math.floor(ys[-1])) + 2
        lattice = np.array(
            [prng.random() for _ in range(lattice_w * lattice_h)], dtype=np.float64
        ).reshape(lattice_h, lattice_w)

        x0 = np.floor(xs).astype(int)
        y0 = np.floor(ys).astype(int)
        tx = xs - x0
        ty = ys - y0
        sx = tx * tx * (3 - 2 * tx)
        sy = ty * ty * (3 - 2 * ty)

        v00 = lattice[np.ix_(y0, x0)]
        v10 = lattice[np.ix_(y0, x0 + 1)]
        v01 = lattice[np.ix_(y0 + 1, x0)]
        v11 = lattice[np.ix_(y0 + 1, x0 + 1)]

        top = v00 + (v10 - v00) * sx[None, :]
        bottom = v01 + (v11 - v01) * sx[None, :]
        total += amplitude * (top + (bottom - top) * sy[:, None])

        amplitude_sum += amplitude
        amplitude *= persistence

    return total / amplitude_sum


def distribute_levels(grid: Grid, options: LevelDistributionOptions, prng: AleaPRNG) -> np.ndarray:
    """Assign noise-driven levels to every cell; returns the level array."""
    noise = fractal_value_noise(
        grid.cols,
        grid.rows,
        options.noise_scale,
        prng,
        octaves=options.octaves,
        persistence=options.persistence,
    )
    level_range = options.max_level - options.min_level
    levels = np.rint(options.min_level + noise * level_range).astype(np.int16)
    levels = np.clip(levels, options.min_level, options.max_level)

    grid.apply_levels(levels)
    return levels


def generate_random_regions(
    grid: Grid, count: int, options: LevelDistributionOptions, prng: AleaPRNG
) -> List[LevelRegion]:
    """Random blob regions kept away from the grid edge."""
    shortest = min(grid.cols, grid.rows)
    margin = int(shortest * 0.1)
    min_radius = max(1, int(shortest * 0.1))
    max_radius = max(min_radius, int(shortest * 0.3))

    regions = []
    for _ in range(count):
        regions.append(
            LevelRegion(
                center_x=prng.randint(margin, grid.cols - 1 - margin),
                center_y=prng.randint(margin, grid.rows - 1 - margin),
                radius=prng.randint(min_radius, max_radius),
                level_id=prng.randint(options.min_level, options.max_level),
                falloff=prng.random(),
            )
        )
    return regions


def apply_level_regions(grid: Grid, regions: List[LevelRegion]) -> None:
    """Overwrite levels inside each region where its falloff stays above one half."""
    if not regions:
        return

    levels = grid.level_ids.copy()
    ys, xs = np.mgrid[0 : grid.rows, 0 : grid.cols]

    for region in regions:
        distance = np.hypot(xs - region.center_x, ys - region.center_y)
        t = distance / region.radius
        inside = t <= 1.0
        if region.falloff > 0:
            weight = np.where(inside, np.power(np.clip(1.0 - t, 0.0, 1.0), region.falloff), 0.0)
        else:
            weight = np.where(t < 1.0, 1.0, 0.0)
        levels[inside & (weight > 0.5)] = region.level_id

    grid.apply_levels(levels)


def collect_level_stats(grid: Grid) -> LevelStats:
    values, counts = np.unique(grid.level_ids, return_counts=True)
    return LevelStats(
        level_counts={int(v): int(c) for v, c in zip(values, counts)},
        underwater_cells=int(grid.flag_mask(CellFlag.UNDERWATER).sum()),
        playable_cells=int(grid.flag_mask(CellFlag.PLAYABLE).sum()),
        visual_only_cells=int(grid.flag_mask(CellFlag.VISUAL_ONLY).sum()),
    )


class LevelDistribution:
    """Runs the level phase on a grid."""

    def __init__(self, grid: Grid, options: Optional[LevelDistributionOptions] = None):
        self.grid = grid
        self.options = options or LevelDistributionOptions()
        self.prng = make_prng(self.options.seed, "levels")

    def generate(self) -> LevelDistributionResult:
        logger.info(
            "Distributing levels",
            cols=self.grid.cols,
            rows=self.grid.rows,
            min_level=self.options.min_level,
            max_level=self.options.max_level,
        )

        distribute_levels(self.grid, self.options, self.prng)
        regions = generate_random_regions(
            self.grid, self.options.region_count, self.options, self.prng
        )
        apply_level_regions(self.grid, regions)
        stats = collect_level_stats(self.grid)

        logger.info(
            "Level distribution complete",
            regions=len(regions),
            playable=stats.playable_cells,
            underwater=stats.underwater_cells,
            visual_only=stats.visual_only_cells,
        )
        return LevelDistributionResult(regions=regions, stats=stats)
