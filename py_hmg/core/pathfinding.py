"""
Level-aware A* pathfinding on the cell grid.

Step cost:
- base: ``base_cost`` times the step length (1 or sqrt(2)), scaled by the
  terrain multiplier of the entered cell (road, water)
- curve: ``curve_cost`` added whenever the step changes direction
- level change: ``level_change_cost`` added when the step enters another
  level, unless both cells already belong to a ramp for that level pair;
  then the step is only scaled by ``ramp_cost``

Neighbors whose level pair fails ``height_difference_valid`` are never
expanded, so no returned path steps directly between levels more than one
height step apart. Blocked and visual-only cells are impassable.

The search state includes the incoming direction so curve penalties are
exact. The heuristic is the octile (or Manhattan without diagonals)
distance scaled by the cheapest possible step, which keeps it admissible
and consistent.
"""

import heapq
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np
import structlog

from .errors import PathNotFound
from .grid import NEIGHBOR_OFFSETS, CellFlag, Grid

logger = structlog.get_logger()

SQRT2 = math.sqrt(2.0)
NO_DIRECTION = -1

Position = Tuple[int, int]


@dataclass
class AStarOptions:
    """A* cost model."""

    base_cost: float = 1.0  # flat terrain, per cell
    curve_cost: float = 2.0  # per direction change
    level_change_cost: float = 1000.0  # entering another level without a ramp
    road_cost: float = 0.5  # multiplier on existing road cells
    water_cost: float = 5.0  # multiplier on water and underwater cells
    ramp_cost: float = 1.5  # multiplier when changing level over an existing ramp
    allow_diagonal: bool = True
    max_expansions: Optional[int] = None  # node budget, None for unbounded

    def __post_init__(self):
        if self.base_cost <= 0:
            raise ValueError(f"base_cost must be positive, got {self.base_cost}")
        if self.curve_cost < 0 or self.level_change_cost < 0:
            raise ValueError("curve_cost and level_change_cost must be non-negative")
        for name in ("road_cost", "water_cost", "ramp_cost"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.max_expansions is not None and self.max_expansions <= 0:
            raise ValueError(f"max_expansions must be positive, got {self.max_expansions}")

    @property
    def min_step_factor(self) -> float:
        return self.base_cost * min(1.0, self.road_cost, self.water_cost, self.ramp_cost)


class SearchState(str, Enum):
    OPEN = "open"
    EXPANDING = "expanding"
    FOUND = "found"
    EXHAUSTED = "exhausted"


@dataclass
class PathResult:
    path: List[Position] = field(default_factory=list)
    cost: float = 0.0
    expanded: int = 0
    state: SearchState = SearchState.FOUND

    @property
    def length(self) -> float:
        """Geometric length of the path in cells."""
        total = 0.0
        for (x0, y0), (x1, y1) in zip(self.path, self.path[1:]):
            total += SQRT2 if x0 != x1 and y0 != y1 else 1.0
        return total


class AStarPathfinder:
    """
    A* search over one grid.

    The terrain arrays are captured at construction, so a pathfinder can be
    shared by worker threads as long as nobody mutates the grid meanwhile.
    """

    def __init__(self, grid: Grid, options: Optional[AStarOptions] = None):
        self.grid = grid
        self.options = options or AStarOptions()
        self.state = SearchState.OPEN

        self.passable = ~grid.flag_mask(CellFlag.BLOCKED | CellFlag.VISUAL_ONLY)
        self.ramp_levels = grid.ramp_level_field()
        self.levels = grid.level_ids

        multiplier = np.ones(grid.shape, dtype=np.float64)
        multiplier[grid.flag_mask(CellFlag.WATER | CellFlag.UNDERWATER)] = self.options.water_cost
        multiplier[grid.flag_mask(CellFlag.ROAD)] = self.options.road_cost
        self.multiplier = multiplier

        self.offsets = NEIGHBOR_OFFSETS if self.options.allow_diagonal else NEIGHBOR_OFFSETS[:4]

    def heuristic(self, position: Position, goal: Position) -> float:
        dx = abs(goal[0] - position[0])
        dy = abs(goal[1] - position[1])
        if self.options.allow_diagonal:
            distance = max(dx, dy) + (SQRT2 - 1.0) * min(dx, dy)
        else:
            distance = dx + dy
        return distance * self.options.min_step_factor

    def step_cost(self, current: Position, direction: int, previous_direction: int) -> Optional[float]:
        """Cost of moving from ``current`` along ``direction``, or None if not allowed."""
        x, y = current
        dx, dy = self.offsets[direction]
        nx, ny = x + dx, y + dy
        if not (0 <= nx < self.grid.cols and 0 <= ny < self.grid.rows):
            return None
        if not self.passable[ny, nx]:
            return None

        diagonal = dx != 0 and dy != 0
        if diagonal and not (self.passable[y, nx] and self.passable[ny, x]):
            return None

        options = self.options
        cost = options.base_cost * (SQRT2 if diagonal else 1.0) * self.multiplier[ny, nx]

        level, next_level = int(self.levels[y, x]), int(self.levels[ny, nx])
        if level != next_level:
            if not self.grid.level_config.height_difference_valid(level, next_level):
                return None
            low = min(level, next_level)
            if self.ramp_levels[y, x] == low and self.ramp_levels[ny, nx] == low:
                cost *= options.ramp_cost
            else:
                cost += options.level_change_cost

        if previous_direction != NO_DIRECTION and previous_direction != direction:
            cost += options.curve_cost
        return cost

    def find_path(self, start: Position, goal: Position) -> PathResult:
        grid = self.grid
        # Raises OutOfBounds for positions outside the grid
        grid.get_cell(*start)
        grid.get_cell(*goal)

        self.state = SearchState.OPEN
        for label, (x, y) in (("start", start), ("goal", goal)):
            if not self.passable[y, x]:
                self.state = SearchState.EXHAUSTED
                raise PathNotFound(start, goal, self.state.value, 0, f"{label} cell is impassable")

        if start == goal:
            self.state = SearchState.FOUND
            return PathResult(path=[start], cost=0.0, expanded=0, state=self.state)

        counter = 0
        start_key = (start[0], start[1], NO_DIRECTION)
        open_heap = [(self.heuristic(start, goal), counter, start_key)]
        g_score: Dict[Tuple[int, int, int], float] = {start_key: 0.0}
        came_from: Dict[Tuple[int, int, int], Optional[Tuple[int, int, int]]] = {start_key: None}
        closed = set()
        expanded = 0
        budget = self.options.max_expansions

        self.state = SearchState.EXPANDING
        while open_heap:
            _, _, key = heapq.heappop(open_heap)
            if key in closed:
                continue
            closed.add(key)

            x, y, previous_direction = key
            if (x, y) == goal:
                self.state = SearchState.FOUND
                return PathResult(
                    path=self._reconstruct(came_from, key),
                    cost=g_score[key],
                    expanded=expanded,
                    state=self.state,
                )

            expanded += 1
            if budget is not None and expanded >= budget:
                self.state = SearchState.EXHAUSTED
                logger.debug("A* node budget exhausted", start=start, goal=goal, budget=budget)
                raise PathNotFound(start, goal, self.state.value, expanded, "node budget exhausted")

            current_g = g_score[key]
            for direction, (dx, dy) in enumerate(self.offsets):
                cost = self.step_cost((x, y), direction, previous_direction)
                if cost is None:
                    continue
                next_key = (x + dx, y + dy, direction)
                if next_key in closed:
                    continue
                tentative = current_g + cost
                if tentative < g_score.get(next_key, math.inf) - 1e-12:
                    g_score[next_key] = tentative
                    came_from[next_key] = key
                    counter += 1
                    priority = tentative + self.heuristic((x + dx, y + dy), goal)
                    heapq.heappush(open_heap, (priority, counter, next_key))

        self.state = SearchState.EXHAUSTED
        raise PathNotFound(start, goal, self.state.value, expanded)

    @staticmethod
    def _reconstruct(came_from, key) -> List[Position]:
        path = []
        while key is not None:
            path.append((key[0], key[1]))
            key = came_from[key]
        path.reverse()
        return path


def find_path(
    grid: Grid,
    start: Position,
    goal: Position,
    options: Optional[AStarOptions] = None,
) -> PathResult:
    """Find the cheapest admissible path from ``start`` to ``goal``."""
    return AStarPathfinder(grid, options).find_path(start, goal)
