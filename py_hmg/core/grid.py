"""
Dense multi-level cell grid.

The grid stores one record per cell in parallel numpy arrays indexed
``[y, x]``:
- heights: world-unit height
- level_ids: discrete level tier
- flags: ``CellFlag`` bitfield
- road_ids: owning road edge id, -1 when the cell belongs to no road
- boundary_types: ``BoundaryType`` code for boundary cells
- ramp_levels: lower level of the pair a RAMP cell bridges, ``NO_RAMP``
  otherwise. Ramps always join adjacent levels.

``Cell`` is the value object exchanged through ``get_cell``/``set_cell``.
"""

from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import Iterator, List, Optional, Tuple

import numpy as np
import structlog
from pydantic import BaseModel, ConfigDict, Field

from .errors import OutOfBounds
from .levels import DEFAULT_LEVEL_CONFIG, LevelConfig

logger = structlog.get_logger()

NO_ROAD = -1
NO_RAMP = int(np.iinfo(np.int16).min)

# 4-connected first so callers can slice the cardinal directions
NEIGHBOR_OFFSETS: Tuple[Tuple[int, int], ...] = (
    (1, 0), (0, 1), (-1, 0), (0, -1),
    (1, 1), (-1, 1), (-1, -1), (1, -1),
)


class CellFlag(IntFlag):
    """Independent boolean cell properties packed into one integer."""

    NONE = 0
    ROAD = 1 << 0
    RAMP = 1 << 1
    WATER = 1 << 2
    UNDERWATER = 1 << 3
    BLOCKED = 1 << 4
    CLIFF = 1 << 5
    PLAYABLE = 1 << 6
    VISUAL_ONLY = 1 << 7
    BOUNDARY = 1 << 8


class BoundaryType(str, Enum):
    """Kind of boundary a BOUNDARY cell represents."""

    NONE = "none"
    EDGE = "edge"
    INTERIOR = "interior"
    OCEAN = "ocean"
    CUSTOM = "custom"


_BOUNDARY_CODES = {boundary: code for code, boundary in enumerate(BoundaryType)}
_BOUNDARY_BY_CODE = {code: boundary for boundary, code in _BOUNDARY_CODES.items()}


@dataclass(frozen=True)
class Cell:
    """Immutable view of a single grid cell."""

    level_id: int = 0
    height: float = 0.0
    flags: CellFlag = CellFlag.NONE
    road_id: Optional[int] = None
    boundary_type: BoundaryType = BoundaryType.NONE

    def __post_init__(self):
        object.__setattr__(self, "flags", CellFlag(int(self.flags)))
        if CellFlag.VISUAL_ONLY in self.flags and CellFlag.PLAYABLE in self.flags:
            raise ValueError("A visual-only cell cannot be playable")

    def has(self, flag: CellFlag) -> bool:
        return bool(self.flags & flag)

    @property
    def is_road(self) -> bool:
        return self.has(CellFlag.ROAD)

    @property
    def is_ramp(self) -> bool:
        return self.has(CellFlag.RAMP)

    @property
    def is_playable(self) -> bool:
        return self.has(CellFlag.PLAYABLE)

    @property
    def is_visual_only(self) -> bool:
        return self.has(CellFlag.VISUAL_ONLY)

    @property
    def is_blocked(self) -> bool:
        return self.has(CellFlag.BLOCKED)


class GridSnapshot(BaseModel):
    """Serializable dense copy of a grid for persistence."""

    model_config = ConfigDict(frozen=True)

    cols: int = Field(description="Grid width in cells")
    rows: int = Field(description="Grid height in cells")
    cell_size: float = Field(description="World units per cell")
    character_height: float = Field(description="Character height used by the level model")
    max_height_difference: float = Field(description="Height between adjacent levels")
    max_walkable_level: int = Field(description="Highest playable level")
    max_variation_ratio: float = Field(default=0.1, description="Allowed in-level variation per height step")
    heights: List[float] = Field(description="Row-major heights")
    level_ids: List[int] = Field(description="Row-major level ids")
    flags: List[int] = Field(description="Row-major CellFlag bitfields")
    road_ids: List[int] = Field(description="Row-major road ids, -1 for none")
    boundary_types: List[int] = Field(description="Row-major BoundaryType codes")
    ramp_levels: Optional[List[int]] = Field(
        default=None, description="Row-major lower level of each ramp's level pair"
    )


class Grid:
    """Fixed-size grid of cells owned by one generation pass."""

    def __init__(
        self,
        cols: int,
        rows: int,
        cell_size: float = 50.0,
        level_config: Optional[LevelConfig] = None,
    ):
        if cols <= 0 or rows <= 0:
            raise ValueError(f"Grid dimensions must be positive, got {cols}x{rows}")
        if cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")

        self.cols = cols
        self.rows = rows
        self.cell_size = float(cell_size)
        self.level_config = level_config or DEFAULT_LEVEL_CONFIG

        self.heights = np.zeros((rows, cols), dtype=np.float64)
        self.level_ids = np.zeros((rows, cols), dtype=np.int16)
        self.flags = np.zeros((rows, cols), dtype=np.uint16)
        self.road_ids = np.full((rows, cols), NO_ROAD, dtype=np.int32)
        self.boundary_types = np.zeros((rows, cols), dtype=np.uint8)
        self.ramp_levels = np.full((rows, cols), NO_RAMP, dtype=np.int16)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.cols)

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.cols and 0 <= y < self.rows

    def _check_bounds(self, x: int, y: int) -> None:
        if not self.in_bounds(x, y):
            raise OutOfBounds(x, y, self.cols, self.rows)

    def get_cell(self, x: int, y: int) -> Cell:
        self._check_bounds(x, y)
        road_id = int(self.road_ids[y, x])
        return Cell(
            level_id=int(self.level_ids[y, x]),
            height=float(self.heights[y, x]),
            flags=CellFlag(int(self.flags[y, x])),
            road_id=None if road_id == NO_ROAD else road_id,
            boundary_type=_BOUNDARY_BY_CODE[int(self.boundary_types[y, x])],
        )

    def set_cell(self, x: int, y: int, cell: Cell) -> None:
        self._check_bounds(x, y)
        self.level_ids[y, x] = cell.level_id
        self.heights[y, x] = cell.height
        self.flags[y, x] = int(cell.flags)
        self.road_ids[y, x] = NO_ROAD if cell.road_id is None else cell.road_id
        self.boundary_types[y, x] = _BOUNDARY_CODES[cell.boundary_type]
        if not cell.is_ramp:
            self.ramp_levels[y, x] = NO_RAMP

    def has_flag(self, x: int, y: int, flag: CellFlag) -> bool:
        self._check_bounds(x, y)
        return bool(int(self.flags[y, x]) & flag)

    def set_flag(self, x: int, y: int, flag: CellFlag, value: bool = True) -> None:
        """
        Set or clear a flag, keeping ``VISUAL_ONLY`` and ``PLAYABLE`` exclusive.

        Marking a cell visual-only clears PLAYABLE; marking a visual-only cell
        playable is rejected.
        """
        self._check_bounds(x, y)
        current = int(self.flags[y, x])
        if value:
            if flag & CellFlag.PLAYABLE and current & CellFlag.VISUAL_ONLY:
                raise ValueError(f"Cell ({x}, {y}) is visual-only and cannot be playable")
            current |= int(flag)
            if flag & CellFlag.VISUAL_ONLY:
                current &= ~int(CellFlag.PLAYABLE)
        else:
            current &= ~int(flag)
            if flag & CellFlag.RAMP:
                self.ramp_levels[y, x] = NO_RAMP
        self.flags[y, x] = current

    def flag_mask(self, flag: CellFlag) -> np.ndarray:
        """Boolean array of cells carrying any bit of ``flag``."""
        return (self.flags & int(flag)) != 0

    def mark_ramp(self, x: int, y: int, from_level: int, to_level: int) -> None:
        """Flag a cell as part of a ramp joining ``from_level`` and ``to_level``."""
        self._check_bounds(x, y)
        if abs(from_level - to_level) != 1:
            raise ValueError(f"A ramp joins adjacent levels, got {from_level} and {to_level}")
        self.flags[y, x] |= np.uint16(CellFlag.RAMP)
        self.ramp_levels[y, x] = min(from_level, to_level)

    def ramp_pair(self, x: int, y: int) -> Optional[Tuple[int, int]]:
        """Level pair bridged by the ramp at a cell, None off ramps or when unknown."""
        self._check_bounds(x, y)
        low = int(self.ramp_levels[y, x])
        if low == NO_RAMP or not int(self.flags[y, x]) & CellFlag.RAMP:
            return None
        return (low, low + 1)

    def ramp_level_field(self) -> np.ndarray:
        """``ramp_levels`` with non-ramp cells forced to ``NO_RAMP``."""
        return np.where(self.flag_mask(CellFlag.RAMP), self.ramp_levels, NO_RAMP).astype(np.int16)

    def ramp_bridges(self, a: Tuple[int, int], b: Tuple[int, int]) -> bool:
        """
        Whether two cells on different levels both belong to a ramp for
        exactly their level pair.
        """
        (x0, y0), (x1, y1) = a, b
        level_a, level_b = self.get_level_id(x0, y0), self.get_level_id(x1, y1)
        if abs(level_a - level_b) != 1:
            return False
        pair = (min(level_a, level_b), max(level_a, level_b))
        return self.ramp_pair(x0, y0) == pair and self.ramp_pair(x1, y1) == pair

    def set_height(self, x: int, y: int, height: float) -> None:
        self._check_bounds(x, y)
        self.heights[y, x] = height

    def get_height(self, x: int, y: int) -> float:
        self._check_bounds(x, y)
        return float(self.heights[y, x])

    def get_level_id(self, x: int, y: int) -> int:
        self._check_bounds(x, y)
        return int(self.level_ids[y, x])

    def set_level_id(self, x: int, y: int, level_id: int) -> None:
        """Assign a level, reset the cell to its base height and derive level flags."""
        self._check_bounds(x, y)
        self.level_ids[y, x] = level_id
        self.heights[y, x] = self.level_config.base_height(level_id)
        self.flags[y, x] = self._derive_level_flags(int(self.flags[y, x]), level_id)

    def apply_levels(self, level_ids: np.ndarray) -> None:
        """Vectorized ``set_level_id`` over the whole grid."""
        level_ids = np.asarray(level_ids)
        if level_ids.shape != self.shape:
            raise ValueError(f"Level array shape {level_ids.shape} does not match grid {self.shape}")

        config = self.level_config
        self.level_ids[:] = level_ids
        self.heights[:] = level_ids * config.max_height_difference

        underwater = level_ids < 0
        visual_only = level_ids > config.max_walkable_level
        blocked = (self.flags & int(CellFlag.BLOCKED)) != 0
        playable = ~underwater & ~visual_only & ~blocked

        cleared = self.flags & ~np.uint16(
            CellFlag.UNDERWATER | CellFlag.VISUAL_ONLY | CellFlag.PLAYABLE
        )
        self.flags[:] = (
            cleared
            | np.where(underwater, int(CellFlag.UNDERWATER), 0).astype(np.uint16)
            | np.where(visual_only, int(CellFlag.VISUAL_ONLY), 0).astype(np.uint16)
            | np.where(playable, int(CellFlag.PLAYABLE), 0).astype(np.uint16)
        )

    def _derive_level_flags(self, flags: int, level_id: int) -> int:
        flags &= ~int(CellFlag.UNDERWATER | CellFlag.VISUAL_ONLY | CellFlag.PLAYABLE)
        if level_id < 0:
            flags |= int(CellFlag.UNDERWATER)
        if self.level_config.is_visual_only(level_id):
            flags |= int(CellFlag.VISUAL_ONLY)
        elif level_id >= 0 and not flags & int(CellFlag.BLOCKED):
            flags |= int(CellFlag.PLAYABLE)
        return flags

    def mark_border(self, width: int = 1, boundary_type: BoundaryType = BoundaryType.EDGE) -> int:
        """Flag a band of ``width`` cells along the grid edge as boundary."""
        if width <= 0:
            return 0
        band = np.zeros(self.shape, dtype=bool)
        band[:width, :] = True
        band[-width:, :] = True
        band[:, :width] = True
        band[:, -width:] = True

        self.flags[band] |= np.uint16(CellFlag.BOUNDARY)
        self.boundary_types[band] = _BOUNDARY_CODES[boundary_type]
        return int(band.sum())

    def neighbors(self, x: int, y: int, diagonal: bool = True) -> Iterator[Tuple[int, int]]:
        offsets = NEIGHBOR_OFFSETS if diagonal else NEIGHBOR_OFFSETS[:4]
        for dx, dy in offsets:
            nx, ny = x + dx, y + dy
            if 0 <= nx < self.cols and 0 <= ny < self.rows:
                yield nx, ny

    def iter_cells(self) -> Iterator[Tuple[int, int, Cell]]:
        for y in range(self.rows):
            for x in range(self.cols):
                yield x, y, self.get_cell(x, y)

    def height_within_level_bounds(self, x: int, y: int) -> bool:
        """Whether a non-ramp cell's height stays within its level's variation budget."""
        self._check_bounds(x, y)
        if int(self.flags[y, x]) & CellFlag.RAMP:
            return True
        base = self.level_config.base_height(int(self.level_ids[y, x]))
        return abs(self.heights[y, x] - base) <= self.level_config.max_variation + 1e-9

    def level_bound_violations(self) -> List[Tuple[int, int]]:
        base = self.level_ids.astype(np.float64) * self.level_config.max_height_difference
        outside = np.abs(self.heights - base) > self.level_config.max_variation + 1e-9
        outside &= ~self.flag_mask(CellFlag.RAMP)
        ys, xs = np.nonzero(outside)
        return [(int(x), int(y)) for x, y in zip(xs, ys)]

    def copy(self) -> "Grid":
        clone = Grid(self.cols, self.rows, self.cell_size, self.level_config)
        clone.heights = self.heights.copy()
        clone.level_ids = self.level_ids.copy()
        clone.flags = self.flags.copy()
        clone.road_ids = self.road_ids.copy()
        clone.boundary_types = self.boundary_types.copy()
        clone.ramp_levels = self.ramp_levels.copy()
        return clone

    def to_snapshot(self) -> GridSnapshot:
        config = self.level_config
        return GridSnapshot(
            cols=self.cols,
            rows=self.rows,
            cell_size=self.cell_size,
            character_height=config.character_height,
            max_height_difference=config.max_height_difference,
            max_walkable_level=config.max_walkable_level,
            max_variation_ratio=config.max_variation_ratio,
            heights=self.heights.ravel().tolist(),
            level_ids=self.level_ids.ravel().tolist(),
            flags=self.flags.ravel().tolist(),
            road_ids=self.road_ids.ravel().tolist(),
            boundary_types=self.boundary_types.ravel().tolist(),
            ramp_levels=self.ramp_levels.ravel().tolist(),
        )

    @classmethod
    def from_snapshot(cls, snapshot: GridSnapshot) -> "Grid":
        level_config = LevelConfig(
            character_height=snapshot.character_height,
            max_height_difference=snapshot.max_height_difference,
            max_walkable_level=snapshot.max_walkable_level,
            max_variation_ratio=snapshot.max_variation_ratio,
        )
        grid = cls(snapshot.cols, snapshot.rows, snapshot.cell_size, level_config)
        shape = grid.shape
        grid.heights = np.asarray(snapshot.heights, dtype=np.float64).reshape(shape)
        grid.level_ids = np.asarray(snapshot.level_ids, dtype=np.int16).reshape(shape)
        grid.flags = np.asarray(snapshot.flags, dtype=np.uint16).reshape(shape)
        grid.road_ids = np.asarray(snapshot.road_ids, dtype=np.int32).reshape(shape)
        grid.boundary_types = np.asarray(snapshot.boundary_types, dtype=np.uint8).reshape(shape)
        if snapshot.ramp_levels is not None:
            grid.ramp_levels = np.asarray(snapshot.ramp_levels, dtype=np.int16).reshape(shape)

        if np.any(grid.flag_mask(CellFlag.VISUAL_ONLY) & grid.flag_mask(CellFlag.PLAYABLE)):
            raise ValueError("Snapshot contains cells that are both visual-only and playable")

        logger.debug("Grid restored from snapshot", cols=grid.cols, rows=grid.rows)
        return grid


def create_grid(
    cols: int,
    rows: int,
    cell_size: float = 50.0,
    level_config: Optional[LevelConfig] = None,
) -> Grid:
    """Create a grid with every cell at level 0, height 0 and no flags."""
    grid = Grid(cols, rows, cell_size, level_config)
    logger.debug("Grid created", cols=cols, rows=rows, cell_size=cell_size)
    return grid
