"""
Terrain generation pipeline.

Runs the phases strictly in order on one grid:
1. Grid creation and border marking
2. Level distribution
3. POI placement
4. Road graph (MST + loop edges)
5. Pathfinding, one A* search per road edge
6. Ramp generation and baking
7. Ramp mask computation
8. Road rasterization and cliff marking

Only the pathfinding phase fans out across threads. Workers search a
read-only copy of the grid and results are merged by edge id, so the output
does not depend on the worker count.

Recoverable errors are retried with relaxed parameters:
- PlacementInfeasible: fewer POIs
- PathNotFound: extra edges are dropped; tree edges are retried without a
  node budget and recorded as failed if that does not help
- HeightDifferenceExceeded: retried with the relaxed end angle, then recorded
  as failed
"""

import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ..config.config import Settings, settings as default_settings
from .errors import GenerationFailed, HeightDifferenceExceeded, PathNotFound, PlacementInfeasible
from .grid import Grid, create_grid
from .level_distribution import (
    LevelDistribution,
    LevelDistributionOptions,
    LevelStats,
    collect_level_stats,
)
from .levels import LevelConfig
from .pathfinding import AStarOptions, AStarPathfinder, PathResult
from .poi import PlacementOptions, PlacementResult, POINode, POIPlacer
from .ramp_mask import RampMask, compute_ramp_mask
from .ramps import RampGenerator, RampSegment
from .road_graph import RoadEdge, RoadGraph, RoadGraphBuilder, RoadGraphOptions
from .roads import RoadRasterizer, mark_cliffs
from .slope import SlopeConfig

logger = structlog.get_logger()

Position = Tuple[int, int]


class PipelineOptions(BaseModel):
    """Options for one generation pass."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    cols: int = Field(default=100, gt=0, description="Grid width in cells")
    rows: int = Field(default=100, gt=0, description="Grid height in cells")
    cell_size: float = Field(default=50.0, gt=0, description="World units per cell")
    seed: Union[str, int] = Field(default="py-hmg", description="Seed for every randomized phase")

    character_height: float = Field(default=180.0, gt=0, description="Character height in world units")
    max_height_difference: Optional[float] = Field(default=None, gt=0, description="Level step override")
    max_walkable_level: int = Field(default=2, description="Highest playable level")
    border_width: int = Field(default=1, ge=0, description="Grid edge band flagged as boundary")

    poi_count: int = Field(default=6, ge=0, description="Requested number of POIs")
    levels: LevelDistributionOptions = Field(default_factory=LevelDistributionOptions)
    placement: PlacementOptions = Field(default_factory=PlacementOptions)
    road_graph: RoadGraphOptions = Field(default_factory=RoadGraphOptions)
    astar: AStarOptions = Field(default_factory=AStarOptions)
    slope: SlopeConfig = Field(default_factory=SlopeConfig)

    road_width: float = Field(default=3.0, gt=0, description="Road width in cells")
    simplify_epsilon: float = Field(default=2.0, ge=0, description="Douglas-Peucker tolerance in cells")
    falloff_radius: float = Field(default=8.0, ge=5.0, le=10.0, description="Ramp mask falloff in cells")

    max_workers: int = Field(default=1, ge=1, description="Threads for the pathfinding phase")
    max_retries: int = Field(default=3, ge=0, description="POI placement retries with fewer POIs")
    relaxed_end_angle: float = Field(default=89.0, gt=0, lt=90, description="End angle used when a ramp does not fit")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "PipelineOptions":
        settings = settings or default_settings
        values = dict(
            cols=settings.default_cols,
            rows=settings.default_rows,
            cell_size=settings.cell_size,
            seed=settings.default_seed,
            character_height=settings.character_height,
            max_height_difference=settings.max_height_difference,
            max_walkable_level=settings.max_walkable_level,
            max_workers=settings.max_workers,
        )
        values.update(overrides)
        return cls(**values)

    @property
    def level_config(self) -> LevelConfig:
        return LevelConfig(
            character_height=self.character_height,
            max_height_difference=self.max_height_difference,
            max_walkable_level=self.max_walkable_level,
        )


@dataclass
class GenerationResult:
    grid: Grid
    mask: RampMask
    pois: List[POINode]
    graph: RoadGraph
    placement: PlacementResult
    level_stats: LevelStats
    paths: Dict[int, List[Position]] = field(default_factory=dict)
    ramps: List[RampSegment] = field(default_factory=list)
    failed_edges: List[int] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)


class TerrainPipeline:
    """Orchestrates one generation pass."""

    def __init__(self, options: Optional[PipelineOptions] = None):
        self.options = options or PipelineOptions.from_settings()
        self.timings: Dict[str, float] = {}

    @contextmanager
    def _phase(self, name: str):
        logger.info("Phase started", phase=name)
        started = time.perf_counter()
        try:
            yield
        except Exception as exc:
            logger.error(
                "Phase failed",
                phase=name,
                error=str(exc),
                seconds=round(time.perf_counter() - started, 4),
            )
            raise
        finally:
            self.timings[name] = time.perf_counter() - started
        logger.info("Phase complete", phase=name, seconds=round(self.timings[name], 4))

    def run(self, grid: Optional[Grid] = None, pois: Optional[List[POINode]] = None) -> GenerationResult:
        """
        Generate a complete terrain.

        A caller-supplied ``grid`` skips grid creation and level distribution;
        caller-supplied ``pois`` skip placement.
        """
        options = self.options
        self.timings = {}
        logger.info("Starting terrain generation", cols=options.cols, rows=options.rows, seed=options.seed)

        with self._phase("grid"):
            if grid is None:
                grid = create_grid(options.cols, options.rows, options.cell_size, options.level_config)
                grid.mark_border(options.border_width)
                generate_levels = True
            else:
                generate_levels = False

        with self._phase("levels"):
            if generate_levels:
                level_options = options.levels
                if level_options.seed is None:
                    level_options = level_options.model_copy(update={"seed": options.seed})
                level_stats = LevelDistribution(grid, level_options).generate().stats
            else:
                level_stats = collect_level_stats(grid)

        with self._phase("pois"):
            if pois is None:
                placement = self._place_pois(grid)
            else:
                placement = PlacementResult(pois=list(pois), requested=len(pois))

        with self._phase("road_graph"):
            graph = RoadGraphBuilder(options.road_graph).build(placement.pois)

        with self._phase("pathfinding"):
            paths, failed_edges = self._find_paths(grid, graph, placement.pois)

        with self._phase("ramps"):
            ramps = self._build_ramps(grid, paths, failed_edges)

        with self._phase("mask"):
            mask = compute_ramp_mask(grid, options.falloff_radius)

        with self._phase("rasterize"):
            rasterizer = RoadRasterizer(grid)
            for edge_id in sorted(paths):
                rasterizer.rasterize(
                    paths[edge_id],
                    options.road_width,
                    options.simplify_epsilon,
                    road_id=edge_id,
                )
            cliffs = mark_cliffs(grid)

        tree_ids = [edge.id for edge in graph.tree_edges]
        if tree_ids and all(edge_id in failed_edges for edge_id in tree_ids):
            raise GenerationFailed(f"All {len(tree_ids)} tree edges failed to route")

        logger.info(
            "Terrain generation complete",
            pois=len(placement.pois),
            roads=len(paths),
            ramps=len(ramps),
            cliffs=cliffs,
            failed_edges=len(failed_edges),
        )
        return GenerationResult(
            grid=grid,
            mask=mask,
            pois=placement.pois,
            graph=graph,
            placement=placement,
            level_stats=level_stats,
            paths=paths,
            ramps=ramps,
            failed_edges=sorted(failed_edges),
            timings=dict(self.timings),
        )

    def _place_pois(self, grid: Grid) -> PlacementResult:
        options = self.options
        placement_options = options.placement
        if placement_options.seed is None:
            placement_options = placement_options.model_copy(update={"seed": options.seed})

        count = options.poi_count
        for attempt in range(options.max_retries + 1):
            try:
                return POIPlacer(grid, placement_options).place(count)
            except PlacementInfeasible as exc:
                if attempt == options.max_retries or count <= 1:
                    raise GenerationFailed(f"POI placement failed after {attempt + 1} attempts") from exc
                count = max(1, int(count * 0.75))
                logger.warning(
                    "POI placement infeasible, retrying with fewer POIs",
                    capacity=exc.capacity,
                    next_count=count,
                )
        raise GenerationFailed("POI placement retries exhausted")

    def _search_edge(
        self, snapshot: Grid, positions: Dict[int, Position], edge: RoadEdge
    ) -> Tuple[RoadEdge, Optional[PathResult], Optional[PathNotFound]]:
        start, goal = positions[edge.source], positions[edge.target]
        astar = self.options.astar
        try:
            return edge, AStarPathfinder(snapshot, astar).find_path(start, goal), None
        except PathNotFound as exc:
            if not edge.is_tree or astar.max_expansions is None:
                return edge, None, exc
            unbounded = replace(astar, max_expansions=None)
            try:
                return edge, AStarPathfinder(snapshot, unbounded).find_path(start, goal), None
            except PathNotFound as retry_exc:
                return edge, None, retry_exc

    def _find_paths(
        self, grid: Grid, graph: RoadGraph, pois: List[POINode]
    ) -> Tuple[Dict[int, List[Position]], List[int]]:
        positions = {poi.id: poi.position for poi in pois}
        snapshot = grid.copy()
        snapshot.heights.setflags(write=False)
        snapshot.level_ids.setflags(write=False)
        snapshot.flags.setflags(write=False)
        snapshot.ramp_levels.setflags(write=False)

        if self.options.max_workers > 1 and len(graph.edges) > 1:
            with ThreadPoolExecutor(max_workers=self.options.max_workers) as executor:
                outcomes = list(
                    executor.map(lambda edge: self._search_edge(snapshot, positions, edge), graph.edges)
                )
        else:
            outcomes = [self._search_edge(snapshot, positions, edge) for edge in graph.edges]

        paths: Dict[int, List[Position]] = {}
        failed: List[int] = []
        for edge, result, error in sorted(outcomes, key=lambda outcome: outcome[0].id):
            if result is not None:
                paths[edge.id] = result.path
            elif edge.is_tree:
                logger.warning("Tree edge could not be routed", edge_id=edge.id, reason=str(error))
                failed.append(edge.id)
            else:
                logger.warning("Dropping unroutable loop edge", edge_id=edge.id, reason=str(error))

        logger.info("Paths found", routed=len(paths), failed=len(failed))
        return paths, failed

    def _build_ramps(
        self, grid: Grid, paths: Dict[int, List[Position]], failed: List[int]
    ) -> List[RampSegment]:
        options = self.options
        generator = RampGenerator(grid, options.slope)
        relaxed = RampGenerator(
            grid,
            SlopeConfig(
                start_angle=min(options.slope.start_angle, options.relaxed_end_angle - 1.0),
                end_angle=max(options.slope.end_angle, options.relaxed_end_angle),
                curve=options.slope.curve,
            ),
        )

        ramps: List[RampSegment] = []
        for edge_id in sorted(paths):
            path = paths[edge_id]
            try:
                segments = generator.generate(path, edge_id)
            except HeightDifferenceExceeded as exc:
                logger.warning("Ramp does not fit, retrying with relaxed slope", edge_id=edge_id, reason=str(exc))
                try:
                    segments = relaxed.generate(path, edge_id)
                except HeightDifferenceExceeded as retry_exc:
                    logger.warning("Dropping road without a valid ramp", edge_id=edge_id, reason=str(retry_exc))
                    del paths[edge_id]
                    failed.append(edge_id)
                    continue

            for segment in segments:
                generator.bake(segment, options.road_width)
            ramps.extend(segments)

        logger.info("Ramps generated", ramps=len(ramps))
        return ramps


def generate_terrain(options: Optional[PipelineOptions] = None, **overrides) -> GenerationResult:
    """Run a full generation pass; keyword overrides apply on top of the settings defaults."""
    if options is None:
        options = PipelineOptions.from_settings(**overrides)
    elif overrides:
        options = options.model_copy(update=overrides)
    return TerrainPipeline(options).run()
