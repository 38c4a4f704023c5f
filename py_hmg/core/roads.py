"""
Road path simplification and rasterization.

Process:
1. simplify_path() - Douglas-Peucker reduction of the A* centerline
2. rasterize_path() - Bresenham segments through the kept points, dilated
   by a disk of radius width/2
3. RoadRasterizer.mark_road() - ROAD/PLAYABLE flags and road ownership
4. mark_cliffs() - CLIFF on level boundaries not bridged by a ramp

Rasterization writes flags only, heights stay as the level and ramp phases
left them.
"""

import math
from typing import Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np
import structlog
from scipy.ndimage import binary_dilation

from .grid import NO_ROAD, CellFlag, Grid

logger = structlog.get_logger()

Point = Tuple[float, float]
Position = Tuple[int, int]


def perpendicular_distance(point: Point, line_start: Point, line_end: Point) -> float:
    """Distance from ``point`` to the line through ``line_start`` and ``line_end``."""
    (px, py), (x1, y1), (x2, y2) = point, line_start, line_end
    dx, dy = x2 - x1, y2 - y1
    length = math.hypot(dx, dy)
    if length == 0:
        return math.hypot(px - x1, py - y1)
    return abs(dy * px - dx * py + x2 * y1 - y2 * x1) / length


def _douglas_peucker_keep(points: Sequence[Point], epsilon: float) -> List[bool]:
    keep = [False] * len(points)
    keep[0] = keep[-1] = True
    stack = [(0, len(points) - 1)]

    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue

        max_distance = -1.0
        split = first
        for index in range(first + 1, last):
            distance = perpendicular_distance(points[index], points[first], points[last])
            if distance > max_distance:
                max_distance = distance
                split = index

        if max_distance > epsilon:
            keep[split] = True
            stack.append((first, split))
            stack.append((split, last))

    return keep


def simplify_path(points: Sequence[Point], epsilon: float = 1.0) -> List[Point]:
    """
    Douglas-Peucker simplification.

    Both endpoints are kept exactly and every dropped point lies within
    ``epsilon`` of the segment that replaces it.
    """
    if epsilon < 0:
        raise ValueError(f"epsilon must be non-negative, got {epsilon}")
    points = list(points)
    if len(points) < 3:
        return points

    keep = _douglas_peucker_keep(points, epsilon)
    return [point for point, kept in zip(points, keep) if kept]


def simplify_path_with_levels(
    points: Sequence[Point], levels: Sequence[int], epsilon: float = 1.0
) -> Tuple[List[Point], List[int]]:
    """
    Simplify while keeping both cells of every level change.

    Each constant-level run is simplified on its own, so ramps keep their
    entry and exit points.
    """
    if len(points) != len(levels):
        raise ValueError("points and levels must have the same length")
    if epsilon < 0:
        raise ValueError(f"epsilon must be non-negative, got {epsilon}")
    if len(points) < 3:
        return list(points), list(levels)

    anchors = [0]
    for index in range(1, len(points)):
        if levels[index] != levels[index - 1]:
            if anchors[-1] != index - 1:
                anchors.append(index - 1)
            anchors.append(index)
    if anchors[-1] != len(points) - 1:
        anchors.append(len(points) - 1)

    kept_indices = [anchors[0]]
    for first, last in zip(anchors, anchors[1:]):
        run = points[first : last + 1]
        keep = _douglas_peucker_keep(run, epsilon) if len(run) >= 3 else [True] * len(run)
        kept_indices.extend(first + offset for offset, kept in enumerate(keep) if kept and offset > 0)

    return [points[i] for i in kept_indices], [levels[i] for i in kept_indices]


def bresenham_line(start: Position, end: Position) -> List[Position]:
    """Grid cells on the line from ``start`` to ``end``, both included."""
    x0, y0 = int(round(start[0])), int(round(start[1]))
    x1, y1 = int(round(end[0])), int(round(end[1]))
    dx, dy = abs(x1 - x0), -abs(y1 - y0)
    sx = 1 if x0 < x1 else -1
    sy = 1 if y0 < y1 else -1
    error = dx + dy

    cells = []
    while True:
        cells.append((x0, y0))
        if x0 == x1 and y0 == y1:
            return cells
        doubled = 2 * error
        if doubled >= dy:
            error += dy
            x0 += sx
        if doubled <= dx:
            error += dx
            y0 += sy


def disk_structure(radius: float) -> np.ndarray:
    """Boolean disk of cells within ``radius`` of the center."""
    reach = int(math.floor(radius))
    offsets = np.arange(-reach, reach + 1)
    xx, yy = np.meshgrid(offsets, offsets)
    return xx * xx + yy * yy <= radius * radius + 1e-9


def rasterize_path(points: Sequence[Point], width: float, shape: Tuple[int, int]) -> Set[Position]:
    """
    Cells covered by a road of ``width`` cells along ``points``.

    ``shape`` is ``(rows, cols)``; cells outside it are dropped.
    """
    if width <= 0:
        raise ValueError(f"Road width must be positive, got {width}")
    rows, cols = shape
    centerline = np.zeros(shape, dtype=bool)
    if not points:
        return set()

    segments = zip(points, points[1:]) if len(points) > 1 else [(points[0], points[0])]
    for start, end in segments:
        for x, y in bresenham_line(start, end):
            if 0 <= x < cols and 0 <= y < rows:
                centerline[y, x] = True

    covered = binary_dilation(centerline, structure=disk_structure(width / 2.0))
    ys, xs = np.nonzero(covered)
    return {(int(x), int(y)) for x, y in zip(xs, ys)}


class RoadRasterizer:
    """Writes road flags into a grid."""

    def __init__(self, grid: Grid):
        self.grid = grid

    def mark_road(self, cells: Iterable[Position], road_id: Optional[int] = None) -> int:
        """
        Flag ``cells`` as road; returns how many cells were newly marked.

        Blocked and visual-only cells are skipped. Marking a road cell again
        changes nothing and the first road to claim a cell keeps it.
        """
        grid = self.grid
        skip = int(CellFlag.BLOCKED | CellFlag.VISUAL_ONLY)
        newly_marked = 0

        for x, y in cells:
            if not grid.in_bounds(x, y):
                continue
            flags = int(grid.flags[y, x])
            if flags & skip:
                continue
            if not flags & CellFlag.ROAD:
                newly_marked += 1
            grid.flags[y, x] = flags | int(CellFlag.ROAD | CellFlag.PLAYABLE)
            if road_id is not None and grid.road_ids[y, x] == NO_ROAD:
                grid.road_ids[y, x] = road_id

        return newly_marked

    def rasterize(
        self,
        path: Sequence[Position],
        width: float,
        epsilon: float = 1.0,
        road_id: Optional[int] = None,
    ) -> Set[Position]:
        """Simplify, rasterize and mark one road path; returns the covered cells."""
        levels = [self.grid.get_level_id(x, y) for x, y in path]
        simplified, _ = simplify_path_with_levels(path, levels, epsilon)
        cells = rasterize_path(simplified, width, self.grid.shape)
        newly_marked = self.mark_road(cells, road_id)
        logger.debug(
            "Road rasterized",
            road_id=road_id,
            points=len(path),
            simplified=len(simplified),
            cells=len(cells),
            newly_marked=newly_marked,
        )
        return cells


def mark_cliffs(grid: Grid) -> int:
    """
    Flag cells that border a different level without a ramp between them.

    Returns the number of cliff cells.
    """
    levels = grid.level_ids
    ramps = grid.flag_mask(CellFlag.RAMP)
    cliffs = np.zeros(grid.shape, dtype=bool)

    for axis in (0, 1):
        a = [slice(None), slice(None)]
        b = [slice(None), slice(None)]
        a[axis] = slice(0, -1)
        b[axis] = slice(1, None)
        a, b = tuple(a), tuple(b)

        edge = (levels[a] != levels[b]) & ~ramps[a] & ~ramps[b]
        cliffs[a] |= edge
        cliffs[b] |= edge

    grid.flags[cliffs] |= np.uint16(CellFlag.CLIFF)
    return int(cliffs.sum())
