"""
Unit tests for the cell grid.

Tests cover:
- Default cell values and bounds checking
- Level assignment and derived flags
- The visual-only / playable invariant
- Border marking and neighborhood iteration
- Snapshot round trips
"""

import numpy as np
import pytest

from py_hmg.core.errors import OutOfBounds
from py_hmg.core.grid import NO_RAMP, BoundaryType, Cell, CellFlag, Grid, GridSnapshot, create_grid
from py_hmg.core.levels import LevelConfig


class TestGridCreation:
    """Test grid construction."""

    def test_defaults(self):
        """Test default cell values."""
        grid = create_grid(10, 8)
        assert grid.cols == 10
        assert grid.rows == 8
        assert grid.shape == (8, 10)

        cell = grid.get_cell(3, 4)
        assert cell.level_id == 0
        assert cell.height == 0.0
        assert cell.flags == CellFlag.NONE
        assert cell.road_id is None
        assert cell.boundary_type == BoundaryType.NONE

    def test_invalid_dimensions(self):
        """Test rejection of empty grids and zero cell size."""
        with pytest.raises(ValueError):
            Grid(0, 5)
        with pytest.raises(ValueError):
            Grid(5, 5, cell_size=0)


class TestGridAccess:
    """Test cell access and bounds."""

    @pytest.fixture
    def grid(self):
        return create_grid(5, 4)

    @pytest.mark.parametrize("x, y", [(-1, 0), (0, -1), (5, 0), (0, 4), (10, 10)])
    def test_out_of_bounds(self, grid, x, y):
        """Test bounds checks on cell access."""
        with pytest.raises(OutOfBounds):
            grid.get_cell(x, y)
        with pytest.raises(OutOfBounds):
            grid.set_cell(x, y, Cell())

    def test_out_of_bounds_is_index_error(self, grid):
        """Test that OutOfBounds is an IndexError."""
        with pytest.raises(IndexError):
            grid.get_height(7, 0)

    def test_set_and_get_cell(self, grid):
        """Test cell round trip through set_cell and get_cell."""
        cell = Cell(
            level_id=1,
            height=275.0,
            flags=CellFlag.ROAD | CellFlag.PLAYABLE,
            road_id=4,
            boundary_type=BoundaryType.CUSTOM,
        )
        grid.set_cell(2, 3, cell)
        assert grid.get_cell(2, 3) == cell
        assert grid.get_cell(2, 3).is_road
        assert grid.get_cell(2, 2) == Cell()

    def test_flags(self, grid):
        """Test setting and clearing a flag."""
        grid.set_flag(1, 1, CellFlag.WATER)
        assert grid.has_flag(1, 1, CellFlag.WATER)
        grid.set_flag(1, 1, CellFlag.WATER, False)
        assert not grid.has_flag(1, 1, CellFlag.WATER)

    def test_flag_mask(self, grid):
        """Test the boolean flag mask."""
        grid.set_flag(0, 0, CellFlag.ROAD)
        grid.set_flag(4, 3, CellFlag.RAMP)
        mask = grid.flag_mask(CellFlag.ROAD | CellFlag.RAMP)
        assert mask.sum() == 2
        assert mask[0, 0] and mask[3, 4]

    def test_mark_ramp_records_level_pair(self, grid):
        """Test that ramp cells remember their level pair."""
        grid.mark_ramp(1, 1, 2, 1)
        assert grid.has_flag(1, 1, CellFlag.RAMP)
        assert grid.ramp_pair(1, 1) == (1, 2)
        assert grid.ramp_pair(0, 0) is None

        grid.set_flag(1, 1, CellFlag.RAMP, False)
        assert grid.ramp_pair(1, 1) is None
        assert grid.ramp_levels[1, 1] == NO_RAMP

    def test_mark_ramp_rejects_non_adjacent_levels(self, grid):
        """Test that a ramp must join adjacent levels."""
        with pytest.raises(ValueError):
            grid.mark_ramp(1, 1, 0, 2)

    def test_ramp_without_pair_bridges_nothing(self, grid):
        """Test that a bare RAMP flag bridges no level pair."""
        grid.set_level_id(2, 1, 1)
        grid.set_flag(1, 1, CellFlag.RAMP)
        grid.set_flag(2, 1, CellFlag.RAMP)
        assert grid.ramp_pair(1, 1) is None
        assert not grid.ramp_bridges((1, 1), (2, 1))

    def test_ramp_bridges_same_pair_only(self, grid):
        """Test the same-pair ramp check between two cells."""
        grid.set_level_id(2, 1, 1)
        grid.set_level_id(3, 1, 2)
        grid.mark_ramp(1, 1, 0, 1)
        grid.mark_ramp(2, 1, 0, 1)
        assert grid.ramp_bridges((1, 1), (2, 1))
        assert grid.ramp_bridges((2, 1), (1, 1))
        # (2, 1) belongs to the 0-1 ramp, not to a 1-2 ramp
        grid.mark_ramp(3, 1, 1, 2)
        assert not grid.ramp_bridges((2, 1), (3, 1))
        assert not grid.ramp_bridges((1, 1), (1, 2))

    def test_set_cell_without_ramp_clears_pair(self, grid):
        """Test that overwriting a ramp cell drops its pair."""
        grid.mark_ramp(1, 1, 0, 1)
        grid.set_cell(1, 1, Cell(flags=CellFlag.ROAD))
        assert grid.ramp_pair(1, 1) is None


class TestVisualOnlyInvariant:
    """Test that visual-only cells are never playable."""

    def test_cell_constructor_rejects_both(self):
        """Test that Cell refuses visual-only and playable together."""
        with pytest.raises(ValueError):
            Cell(flags=CellFlag.VISUAL_ONLY | CellFlag.PLAYABLE)

    def test_setting_visual_only_clears_playable(self):
        """Test that marking visual-only clears playable."""
        grid = create_grid(3, 3)
        grid.set_flag(1, 1, CellFlag.PLAYABLE)
        grid.set_flag(1, 1, CellFlag.VISUAL_ONLY)
        cell = grid.get_cell(1, 1)
        assert cell.is_visual_only
        assert not cell.is_playable

    def test_cannot_make_visual_only_playable(self):
        """Test that a visual-only cell cannot become playable."""
        grid = create_grid(3, 3)
        grid.set_flag(0, 0, CellFlag.VISUAL_ONLY)
        with pytest.raises(ValueError):
            grid.set_flag(0, 0, CellFlag.PLAYABLE)


class TestLevelAssignment:
    """Test level ids and derived flags."""

    def test_ground_level_is_playable(self):
        """Test flags derived for a walkable level."""
        grid = create_grid(4, 4)
        grid.set_level_id(1, 1, 1)
        cell = grid.get_cell(1, 1)
        assert cell.level_id == 1
        assert cell.height == 270
        assert cell.is_playable
        assert not cell.has(CellFlag.UNDERWATER)

    def test_underwater_level(self):
        """Test flags derived for a negative level."""
        grid = create_grid(4, 4)
        grid.set_level_id(0, 0, -1)
        cell = grid.get_cell(0, 0)
        assert cell.height == -270
        assert cell.has(CellFlag.UNDERWATER)
        assert not cell.is_playable

    def test_peak_above_walkable_is_visual_only(self):
        """Test flags derived above the walkable limit."""
        grid = create_grid(4, 4)
        grid.set_level_id(2, 2, 3)
        cell = grid.get_cell(2, 2)
        assert cell.is_visual_only
        assert not cell.is_playable

    def test_blocked_cell_stays_unplayable(self):
        """Test that level assignment keeps blocked cells unplayable."""
        grid = create_grid(4, 4)
        grid.set_flag(3, 3, CellFlag.BLOCKED)
        grid.set_level_id(3, 3, 1)
        assert not grid.get_cell(3, 3).is_playable

    def test_apply_levels_matches_per_cell_assignment(self):
        """Test vectorized level assignment against set_level_id."""
        levels = np.array([[-1, 0, 1], [2, 3, 0]])
        vectorized = create_grid(3, 2)
        vectorized.apply_levels(levels)

        per_cell = create_grid(3, 2)
        for y in range(2):
            for x in range(3):
                per_cell.set_level_id(x, y, int(levels[y, x]))

        np.testing.assert_array_equal(vectorized.level_ids, per_cell.level_ids)
        np.testing.assert_array_equal(vectorized.heights, per_cell.heights)
        np.testing.assert_array_equal(vectorized.flags, per_cell.flags)

    def test_apply_levels_shape_mismatch(self):
        """Test rejection of a level array of the wrong shape."""
        grid = create_grid(3, 3)
        with pytest.raises(ValueError):
            grid.apply_levels(np.zeros((2, 3)))

    def test_level_bounds(self):
        """Test in-level height variation limits."""
        grid = create_grid(3, 3)
        grid.set_level_id(0, 0, 1)
        grid.set_height(0, 0, 290.0)
        assert grid.height_within_level_bounds(0, 0)

        grid.set_height(0, 0, 400.0)
        assert not grid.height_within_level_bounds(0, 0)
        assert grid.level_bound_violations() == [(0, 0)]

        grid.set_flag(0, 0, CellFlag.RAMP)
        assert grid.height_within_level_bounds(0, 0)
        assert grid.level_bound_violations() == []


class TestBorderAndNeighbors:

    def test_mark_border(self):
        """Test border band marking."""
        grid = create_grid(6, 5)
        marked = grid.mark_border(1)
        assert marked == 6 * 5 - 4 * 3
        assert grid.get_cell(0, 2).boundary_type == BoundaryType.EDGE
        assert grid.has_flag(5, 4, CellFlag.BOUNDARY)
        assert not grid.has_flag(2, 2, CellFlag.BOUNDARY)

    def test_neighbors(self):
        """Test neighbor iteration at corners and in the interior."""
        grid = create_grid(4, 4)
        assert len(list(grid.neighbors(0, 0))) == 3
        assert len(list(grid.neighbors(0, 0, diagonal=False))) == 2
        assert len(list(grid.neighbors(2, 2))) == 8

    def test_iter_cells(self):
        """Test row-major cell iteration."""
        grid = create_grid(3, 2)
        cells = list(grid.iter_cells())
        assert len(cells) == 6
        assert cells[0][:2] == (0, 0)
        assert cells[-1][:2] == (2, 1)


class TestSnapshot:
    """Test persistence snapshots."""

    @pytest.fixture
    def grid(self):
        grid = create_grid(6, 4, cell_size=25.0, level_config=LevelConfig(character_height=200))
        grid.apply_levels(np.array([[0, 0, 1, 1, 2, 3]] * 4))
        grid.mark_border(1, BoundaryType.OCEAN)
        grid.set_cell(2, 1, Cell(level_id=1, height=150.0, flags=CellFlag.RAMP | CellFlag.ROAD, road_id=7))
        grid.mark_ramp(2, 1, 0, 1)
        return grid

    def test_round_trip(self, grid):
        """Test snapshot round trip of every array."""
        restored = Grid.from_snapshot(grid.to_snapshot())
        assert restored.cols == grid.cols
        assert restored.rows == grid.rows
        assert restored.cell_size == 25.0
        assert restored.level_config.max_height_difference == 300
        np.testing.assert_array_equal(restored.heights, grid.heights)
        np.testing.assert_array_equal(restored.level_ids, grid.level_ids)
        np.testing.assert_array_equal(restored.flags, grid.flags)
        np.testing.assert_array_equal(restored.road_ids, grid.road_ids)
        np.testing.assert_array_equal(restored.boundary_types, grid.boundary_types)
        np.testing.assert_array_equal(restored.ramp_levels, grid.ramp_levels)
        assert restored.ramp_pair(2, 1) == (0, 1)
        assert restored.get_cell(2, 1).road_id == 7

    def test_json_round_trip(self, grid):
        """Test snapshot round trip through JSON."""
        payload = grid.to_snapshot().model_dump_json()
        restored = Grid.from_snapshot(GridSnapshot.model_validate_json(payload))
        assert restored.get_cell(0, 0) == grid.get_cell(0, 0)
        assert restored.get_cell(2, 1) == grid.get_cell(2, 1)

    def test_rejects_invalid_flags(self, grid):
        """Test that snapshots with visual-only playable cells are rejected."""
        snapshot = grid.to_snapshot()
        flags = list(snapshot.flags)
        flags[0] = int(CellFlag.VISUAL_ONLY | CellFlag.PLAYABLE)
        broken = snapshot.model_copy(update={"flags": flags})
        with pytest.raises(ValueError):
            Grid.from_snapshot(broken)

    def test_copy_is_independent(self, grid):
        """Test that a copy does not share arrays."""
        clone = grid.copy()
        clone.set_height(1, 1, 999.0)
        assert grid.get_height(1, 1) != 999.0
        clone.mark_ramp(1, 1, 0, 1)
        assert grid.ramp_pair(1, 1) is None

    def test_round_trip_keeps_variation_ratio(self):
        """Test that a non-default variation ratio survives a snapshot."""
        config = LevelConfig(max_variation_ratio=0.3)
        grid = create_grid(4, 4, level_config=config)
        grid.apply_levels(np.ones((4, 4), dtype=int))
        grid.set_height(1, 1, 270.0 + 60.0)

        restored = Grid.from_snapshot(grid.to_snapshot())
        assert restored.level_config.max_variation_ratio == 0.3
        assert restored.level_config == config
        assert restored.height_within_level_bounds(1, 1) == grid.height_within_level_bounds(1, 1)
        assert restored.height_within_level_bounds(1, 1)

    def test_snapshot_without_ramp_levels(self, grid):
        """Test restoring a snapshot that carries no ramp pairs."""
        snapshot = grid.to_snapshot().model_copy(update={"ramp_levels": None})
        restored = Grid.from_snapshot(snapshot)
        assert restored.has_flag(2, 1, CellFlag.RAMP)
        assert restored.ramp_pair(2, 1) is None
