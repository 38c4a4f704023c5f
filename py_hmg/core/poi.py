"""
Points of Interest placement.

POIs are the endpoints of the road network. Placement picks an intended
level for each POI (biased by per-level zone weights), samples a position
and snaps it to the nearest valid cell of that level that keeps the
minimum spacing to every POI already placed on the same level.

Valid cells are playable and neither blocked, water, boundary nor
visual-only.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import structlog
from pydantic import BaseModel, ConfigDict, Field
from sklearn.neighbors import KDTree

from .errors import PlacementInfeasible
from .grid import CellFlag, Grid
from ..utils.random import make_prng

logger = structlog.get_logger()


class POIType(str, Enum):
    TOWN = "town"
    DUNGEON = "dungeon"
    EXIT = "exit"
    PORTAL = "portal"


class POINode(BaseModel):
    """A placed point of interest."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="Stable integer handle")
    x: int = Field(description="X coordinate in cells")
    y: int = Field(description="Y coordinate in cells")
    level_id: int = Field(description="Level the POI sits on")
    type: POIType = Field(default=POIType.TOWN, description="POI type")
    name: Optional[str] = Field(default=None, description="Optional label")

    @property
    def position(self) -> Tuple[int, int]:
        return (self.x, self.y)


class PlacementOptions(BaseModel):
    """POI placement parameters."""

    min_spacing: float = Field(default=10.0, ge=0, description="Minimum distance between POIs on one level")
    type_weights: Dict[POIType, float] = Field(
        default_factory=lambda: {POIType.TOWN: 0.5, POIType.DUNGEON: 0.3, POIType.PORTAL: 0.2},
        description="Relative frequency of each POI type",
    )
    level_weights: Dict[int, float] = Field(
        default_factory=dict,
        description="Zone bias per level id; levels not listed weigh 1.0",
    )
    edge_margin: int = Field(default=2, ge=0, description="Cells kept free along the grid edge")
    max_attempts_per_poi: int = Field(default=30, ge=1, description="Sampling attempts before giving up on one POI")
    snap_candidates: int = Field(default=16, ge=1, description="Nearest cells tried when snapping")
    include_exits: bool = Field(default=False, description="Place one exit per grid border first")
    exit_border_width: int = Field(default=4, ge=1, description="Depth of the border band searched for exits")
    include_ramp_waypoints: bool = Field(
        default=False, description="Place a portal at every ramp cluster already on the grid"
    )
    waypoint_cluster_size: int = Field(default=50, ge=1, description="Side of the square ramp clusters, in cells")
    waypoint_min_cluster: int = Field(default=10, ge=0, description="Ramp cells a cluster needs to get a waypoint")
    seed: Optional[Union[str, int]] = Field(default=None, description="Seed, shared PRNG when None")


@dataclass
class PlacementResult:
    pois: List[POINode] = field(default_factory=list)
    requested: int = 0

    @property
    def placed(self) -> int:
        return len(self.pois)


def valid_cell_mask(grid: Grid, edge_margin: int = 0) -> np.ndarray:
    """Cells a POI may occupy."""
    mask = grid.flag_mask(CellFlag.PLAYABLE)
    mask &= ~grid.flag_mask(
        CellFlag.BLOCKED | CellFlag.BOUNDARY | CellFlag.WATER | CellFlag.VISUAL_ONLY
    )
    if edge_margin > 0:
        mask[:edge_margin, :] = False
        mask[-edge_margin:, :] = False
        mask[:, :edge_margin] = False
        mask[:, -edge_margin:] = False
    return mask


def spacing_capacity(cells: np.ndarray, min_spacing: float) -> int:
    """
    Upper bound on how many points with pairwise distance >= ``min_spacing``
    fit on ``cells`` (an ``(n, 2)`` array of x, y).

    Disks of radius ``min_spacing / 2`` around such points are disjoint and
    lie inside the cells' bounding box grown by ``min_spacing / 2``.
    """
    if len(cells) == 0:
        return 0
    if min_spacing <= 1.0:
        return len(cells)
    extent = cells.max(axis=0) - cells.min(axis=0) + 1
    disk_area = math.pi * (min_spacing / 2.0) ** 2
    bound = (extent[0] + min_spacing) * (extent[1] + min_spacing) / disk_area
    return min(len(cells), int(math.floor(bound)))


def find_exit_points(grid: Grid, border_width: int = 4) -> List[POINode]:
    """
    One exit POI per grid side, at the centroid of the valid cells in that
    side's border band, snapped to the nearest valid band cell.
    """
    valid = valid_cell_mask(grid)
    bands = {
        "north": (slice(0, border_width), slice(None)),
        "south": (slice(max(0, grid.rows - border_width), grid.rows), slice(None)),
        "west": (slice(None), slice(0, border_width)),
        "east": (slice(None), slice(max(0, grid.cols - border_width), grid.cols)),
    }

    exits = []
    for name, (rows, cols) in bands.items():
        band = np.zeros(grid.shape, dtype=bool)
        band[rows, cols] = True
        ys, xs = np.nonzero(valid & band)
        if len(xs) == 0:
            continue

        cells = np.column_stack([xs, ys])
        centroid = cells.mean(axis=0)
        _, index = KDTree(cells).query([centroid], k=1)
        x, y = (int(v) for v in cells[index[0][0]])

        exits.append(
            POINode(
                id=len(exits),
                x=x,
                y=y,
                level_id=grid.get_level_id(x, y),
                type=POIType.EXIT,
                name=f"exit-{name}",
            )
        )
    return exits


def find_ramp_waypoints(grid: Grid, cluster_size: int = 50, min_cluster: int = 10) -> List[POINode]:
    """
    Portal POIs at the centroid of every ramp cluster with more than
    ``min_cluster`` cells. Clusters are the cells of a ``cluster_size``
    square tiling of the grid.
    """
    ys, xs = np.nonzero(grid.flag_mask(CellFlag.RAMP))
    clusters: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
    for x, y in zip(xs.tolist(), ys.tolist()):
        clusters.setdefault((x // cluster_size, y // cluster_size), []).append((x, y))

    waypoints = []
    for key in sorted(clusters):
        members = clusters[key]
        if len(members) <= min_cluster:
            continue
        x = int(round(sum(m[0] for m in members) / len(members)))
        y = int(round(sum(m[1] for m in members) / len(members)))
        waypoints.append(
            POINode(
                id=len(waypoints),
                x=x,
                y=y,
                level_id=grid.get_level_id(x, y),
                type=POIType.PORTAL,
                name=f"ramp-waypoint-{len(waypoints)}",
            )
        )
    return waypoints


class POIPlacer:
    """Places POIs on a leveled grid."""

    def __init__(self, grid: Grid, options: Optional[PlacementOptions] = None):
        self.grid = grid
        self.options = options or PlacementOptions()
        self.prng = make_prng(self.options.seed, "poi")

        valid = valid_cell_mask(grid, self.options.edge_margin)
        self.level_cells: Dict[int, np.ndarray] = {}
        for level_id in np.unique(grid.level_ids[valid]).tolist():
            if self.options.level_weights.get(level_id, 1.0) <= 0:
                continue
            ys, xs = np.nonzero(valid & (grid.level_ids == level_id))
            self.level_cells[level_id] = np.column_stack([xs, ys])

        self._level_trees = {
            level_id: KDTree(cells) for level_id, cells in self.level_cells.items()
        }

    def capacity(self) -> int:
        return sum(
            spacing_capacity(cells, self.options.min_spacing)
            for cells in self.level_cells.values()
        )

    def place(self, count: int) -> PlacementResult:
        """
        Place up to ``count`` POIs.

        Raises PlacementInfeasible when ``count`` exceeds the spacing capacity
        of the valid cells. Otherwise running out of room is reported through
        ``PlacementResult.placed`` being lower than ``requested``.
        """
        if count < 0:
            raise ValueError(f"POI count must be non-negative, got {count}")

        result = PlacementResult(requested=count)
        if count == 0:
            return result

        capacity = self.capacity()
        if count > capacity:
            raise PlacementInfeasible(count, capacity, self.options.min_spacing)

        logger.info(
            "Placing POIs",
            requested=count,
            capacity=capacity,
            min_spacing=self.options.min_spacing,
        )

        placed_by_level: Dict[int, List[Tuple[int, int]]] = {}

        if self.options.include_exits:
            exits = find_exit_points(self.grid, self.options.exit_border_width)
            self._place_fixed(exits, count, result, placed_by_level)
        if self.options.include_ramp_waypoints:
            waypoints = find_ramp_waypoints(
                self.grid, self.options.waypoint_cluster_size, self.options.waypoint_min_cluster
            )
            self._place_fixed(waypoints, count, result, placed_by_level)

        while result.placed < count:
            position = self._place_one(placed_by_level)
            if position is None:
                break
            level_id, (x, y) = position
            poi = POINode(
                id=result.placed,
                x=x,
                y=y,
                level_id=level_id,
                type=self.prng.weighted_choice(self.options.type_weights),
            )
            result.pois.append(poi)
            placed_by_level.setdefault(level_id, []).append((x, y))

        if result.placed < count:
            logger.warning("Grid full, placed fewer POIs", requested=count, placed=result.placed)
        else:
            logger.info("POIs placed", placed=result.placed)
        return result

    def _place_fixed(
        self,
        candidates: List[POINode],
        count: int,
        result: PlacementResult,
        placed_by_level: Dict[int, List[Tuple[int, int]]],
    ) -> None:
        """Add precomputed POIs that sit on valid cells and keep the spacing."""
        valid = valid_cell_mask(self.grid)
        for candidate in candidates:
            if result.placed >= count:
                break
            if not valid[candidate.y, candidate.x]:
                continue
            if not self._spacing_ok(candidate.level_id, candidate.position, placed_by_level):
                continue
            poi = candidate.model_copy(update={"id": result.placed})
            result.pois.append(poi)
            placed_by_level.setdefault(poi.level_id, []).append(poi.position)

    def _place_one(
        self, placed_by_level: Dict[int, List[Tuple[int, int]]]
    ) -> Optional[Tuple[int, Tuple[int, int]]]:
        weights = {
            level_id: self.options.level_weights.get(level_id, 1.0)
            for level_id in self.level_cells
        }
        margin = self.options.edge_margin

        for _ in range(self.options.max_attempts_per_poi):
            level_id = self.prng.weighted_choice(weights)
            target = (
                self.prng.uniform(margin, self.grid.cols - margin),
                self.prng.uniform(margin, self.grid.rows - margin),
            )
            snapped = self.snap_to_level(target, level_id, placed_by_level)
            if snapped is not None:
                return level_id, snapped
        return None

    def snap_to_level(
        self,
        target: Tuple[float, float],
        level_id: int,
        placed_by_level: Optional[Dict[int, List[Tuple[int, int]]]] = None,
    ) -> Optional[Tuple[int, int]]:
        """Nearest valid cell of ``level_id`` to ``target`` that respects spacing."""
        if level_id not in self._level_trees:
            return None
        cells = self.level_cells[level_id]
        k = min(self.options.snap_candidates, len(cells))
        _, indices = self._level_trees[level_id].query([target], k=k)

        for index in indices[0]:
            x, y = (int(v) for v in cells[index])
            if self._spacing_ok(level_id, (x, y), placed_by_level or {}):
                return x, y
        return None

    def _spacing_ok(
        self,
        level_id: int,
        position: Tuple[int, int],
        placed_by_level: Dict[int, List[Tuple[int, int]]],
    ) -> bool:
        placed = placed_by_level.get(level_id)
        if not placed:
            return True
        tree = KDTree(placed)
        distances, _ = tree.query([position], k=1)
        return distances[0][0] >= self.options.min_spacing


def place_pois(grid: Grid, count: int, options: Optional[PlacementOptions] = None) -> PlacementResult:
    return POIPlacer(grid, options).place(count)
