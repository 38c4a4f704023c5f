"""Error types raised by the terrain generation core.

All of them are recoverable at the call site. The generation pipeline catches
them, retries with relaxed parameters and only raises ``GenerationFailed``
once its retries are exhausted.
"""

from typing import Optional, Tuple


class TerrainError(Exception):
    """Base error for the terrain core."""


class OutOfBounds(TerrainError, IndexError):
    """Raised when a cell outside the grid is accessed."""

    def __init__(self, x: int, y: int, cols: int, rows: int):
        self.x = x
        self.y = y
        self.cols = cols
        self.rows = rows
        super().__init__(f"Cell ({x}, {y}) is outside grid {cols}x{rows}")


class PlacementInfeasible(TerrainError):
    """Raised when POI spacing cannot be satisfied for the requested count."""

    def __init__(self, requested: int, capacity: int, min_spacing: float):
        self.requested = requested
        self.capacity = capacity
        self.min_spacing = min_spacing
        super().__init__(
            f"Cannot place {requested} POIs with spacing {min_spacing}: "
            f"grid holds at most {capacity}"
        )


class PathNotFound(TerrainError):
    """Raised when A* exhausts its search without reaching the goal."""

    def __init__(
        self,
        start: Tuple[int, int],
        goal: Tuple[int, int],
        state: Optional[str] = None,
        expanded: int = 0,
        reason: str = "no admissible path",
    ):
        self.start = start
        self.goal = goal
        self.state = state
        self.expanded = expanded
        self.reason = reason
        super().__init__(f"No path from {start} to {goal}: {reason} (expanded {expanded} nodes)")


class HeightDifferenceExceeded(TerrainError):
    """Raised when a ramp cannot bridge two levels within the slope limits."""

    def __init__(
        self,
        from_level: int,
        to_level: int,
        required_length: Optional[int] = None,
        available_length: Optional[int] = None,
    ):
        self.from_level = from_level
        self.to_level = to_level
        self.required_length = required_length
        self.available_length = available_length

        if required_length is None:
            message = f"Levels {from_level} and {to_level} are too far apart for a ramp"
        else:
            message = (
                f"Ramp from level {from_level} to {to_level} needs {required_length} "
                f"cells, only {available_length} available"
            )
        super().__init__(message)


class GenerationFailed(TerrainError):
    """Raised by the pipeline when retries could not recover a phase."""
