"""
Core terrain generation functionality.
"""

from .errors import (
    TerrainError,
    OutOfBounds,
    PlacementInfeasible,
    PathNotFound,
    HeightDifferenceExceeded,
    GenerationFailed,
)
from .levels import (
    MAX_HEIGHT_DIFFERENCE,
    LevelConfig,
    base_height,
    height_difference_valid,
    is_underwater_level,
    is_mountain_peak_level,
)
from .grid import NO_RAMP, BoundaryType, Cell, CellFlag, Grid, GridSnapshot, create_grid
from .level_distribution import LevelDistribution, LevelDistributionOptions
from .poi import POINode, POIType, POIPlacer, PlacementOptions, PlacementResult, place_pois
from .road_graph import RoadEdge, RoadGraph, RoadGraphBuilder, RoadGraphOptions
from .pathfinding import AStarOptions, AStarPathfinder, PathResult, SearchState, find_path
from .slope import SlopeConfig, SlopeCurve
from .ramps import RampGenerator, RampSegment
from .ramp_mask import RampMask, compute_ramp_mask
from .roads import RoadRasterizer, rasterize_path, simplify_path, simplify_path_with_levels
from .pipeline import GenerationResult, PipelineOptions, TerrainPipeline, generate_terrain

__all__ = ['TerrainError', 'OutOfBounds', 'PlacementInfeasible', 'PathNotFound',
           'HeightDifferenceExceeded', 'GenerationFailed',
           'MAX_HEIGHT_DIFFERENCE', 'LevelConfig', 'base_height', 'height_difference_valid',
           'is_underwater_level', 'is_mountain_peak_level',
           'BoundaryType', 'Cell', 'CellFlag', 'Grid', 'GridSnapshot', 'NO_RAMP', 'create_grid',
           'LevelDistribution', 'LevelDistributionOptions',
           'POINode', 'POIType', 'POIPlacer', 'PlacementOptions', 'PlacementResult', 'place_pois',
           'RoadEdge', 'RoadGraph', 'RoadGraphBuilder', 'RoadGraphOptions',
           'AStarOptions', 'AStarPathfinder', 'PathResult', 'SearchState', 'find_path',
           'SlopeConfig', 'SlopeCurve', 'RampGenerator', 'RampSegment',
           'RampMask', 'compute_ramp_mask',
           'RoadRasterizer', 'rasterize_path', 'simplify_path', 'simplify_path_with_levels',
           'GenerationResult', 'PipelineOptions', 'TerrainPipeline', 'generate_terrain']
