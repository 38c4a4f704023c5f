"""
Road graph construction over placed POIs.

Process:
1. build_candidate_edges() - complete graph, weight = Euclidean distance
   plus a per-level penalty
2. minimum_spanning_tree() - Kruskal with union-find; ties go to the
   lower POI ids
3. add_extra_edges() - cheapest non-tree edges that open a real loop, i.e.
   whose endpoints are currently much further apart in the graph than
   directly

The graph only stores POI ids and edge ids; the POIs themselves stay in the
placement result.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

import numpy as np
import structlog
from pydantic import BaseModel, Field
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components, dijkstra

from .poi import POINode

logger = structlog.get_logger()


class RoadGraphOptions(BaseModel):
    """Road graph construction parameters."""

    level_penalty: float = Field(default=10.0, ge=0, description="Extra weight per level of difference")
    extra_edges: int = Field(default=2, ge=0, description="Maximum number of loop edges added to the tree")
    loop_ratio: float = Field(
        default=1.5,
        ge=1.0,
        description="Minimum graph-distance / direct-weight ratio for a loop edge to be useful",
    )


@dataclass(frozen=True)
class RoadEdge:
    id: int
    source: int
    target: int
    weight: float
    is_tree: bool = True

    @property
    def key(self):
        return (min(self.source, self.target), max(self.source, self.target))


@dataclass
class RoadGraph:
    """Vertices are POI ids; edge ids are dense, tree edges first."""

    vertices: List[int] = field(default_factory=list)
    edges: List[RoadEdge] = field(default_factory=list)

    @property
    def tree_edges(self) -> List[RoadEdge]:
        return [edge for edge in self.edges if edge.is_tree]

    @property
    def extra_edges(self) -> List[RoadEdge]:
        return [edge for edge in self.edges if not edge.is_tree]

    @property
    def total_weight(self) -> float:
        return sum(edge.weight for edge in self.edges)

    def edge(self, edge_id: int) -> RoadEdge:
        return self.edges[edge_id]

    def neighbors(self, vertex: int) -> List[int]:
        result = []
        for edge in self.edges:
            if edge.source == vertex:
                result.append(edge.target)
            elif edge.target == vertex:
                result.append(edge.source)
        return sorted(result)

    def degree(self, vertex: int) -> int:
        return len(self.neighbors(vertex))

    def adjacency_matrix(self) -> csr_matrix:
        index = {vertex: i for i, vertex in enumerate(self.vertices)}
        n = len(self.vertices)
        if not self.edges:
            return csr_matrix((n, n))
        rows = [index[e.source] for e in self.edges] + [index[e.target] for e in self.edges]
        cols = [index[e.target] for e in self.edges] + [index[e.source] for e in self.edges]
        weights = [e.weight for e in self.edges] * 2
        return csr_matrix((weights, (rows, cols)), shape=(n, n))

    def is_connected(self) -> bool:
        if len(self.vertices) <= 1:
            return True
        n_components, _ = connected_components(self.adjacency_matrix(), directed=False)
        return n_components == 1


class UnionFind:
    """Disjoint sets with path compression and union by rank."""

    def __init__(self, elements: Sequence[int]):
        self.parent: Dict[int, int] = {e: e for e in elements}
        self.rank: Dict[int, int] = {e: 0 for e in elements}

    def find(self, element: int) -> int:
        root = element
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[element] != root:
            self.parent[element], element = root, self.parent[element]
        return root

    def union(self, a: int, b: int) -> bool:
        """Merge the sets of ``a`` and ``b``; False if they were already joined."""
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return False
        if self.rank[root_a] < self.rank[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        if self.rank[root_a] == self.rank[root_b]:
            self.rank[root_a] += 1
        return True


def weighted_distance(a: POINode, b: POINode, level_penalty: float = 10.0) -> float:
    return math.hypot(b.x - a.x, b.y - a.y) + abs(b.level_id - a.level_id) * level_penalty


def build_candidate_edges(pois: Sequence[POINode], level_penalty: float = 10.0) -> List[RoadEdge]:
    """Every unordered POI pair, sorted by (weight, lower id, higher id)."""
    candidates = []
    for i, a in enumerate(pois):
        for b in pois[i + 1 :]:
            source, target = sorted((a.id, b.id))
            candidates.append(
                RoadEdge(
                    id=-1,
                    source=source,
                    target=target,
                    weight=weighted_distance(a, b, level_penalty),
                    is_tree=False,
                )
            )
    candidates.sort(key=lambda e: (e.weight, e.source, e.target))
    return candidates


def minimum_spanning_tree(vertices: Sequence[int], candidates: Sequence[RoadEdge]) -> List[RoadEdge]:
    """Kruskal over pre-sorted candidates; edge ids follow acceptance order."""
    union_find = UnionFind(vertices)
    tree: List[RoadEdge] = []
    for candidate in candidates:
        if len(tree) == len(vertices) - 1:
            break
        if union_find.union(candidate.source, candidate.target):
            tree.append(
                RoadEdge(
                    id=len(tree),
                    source=candidate.source,
                    target=candidate.target,
                    weight=candidate.weight,
                    is_tree=True,
                )
            )
    return tree


def add_extra_edges(
    graph: RoadGraph,
    candidates: Sequence[RoadEdge],
    max_extra: int,
    loop_ratio: float = 1.5,
) -> List[RoadEdge]:
    """
    Add up to ``max_extra`` loop edges to ``graph`` in place.

    A candidate is skipped when the graph already connects its endpoints by
    a path shorter than ``loop_ratio`` times the candidate's own weight.
    """
    added: List[RoadEdge] = []
    if max_extra <= 0:
        return added

    index = {vertex: i for i, vertex in enumerate(graph.vertices)}
    existing: Set = {edge.key for edge in graph.edges}

    for candidate in candidates:
        if len(added) >= max_extra:
            break
        if candidate.key in existing:
            continue

        distances = dijkstra(
            graph.adjacency_matrix(), directed=False, indices=index[candidate.source]
        )
        path_length = distances[index[candidate.target]]
        if np.isfinite(path_length) and path_length < loop_ratio * candidate.weight:
            continue

        edge = RoadEdge(
            id=len(graph.edges),
            source=candidate.source,
            target=candidate.target,
            weight=candidate.weight,
            is_tree=False,
        )
        graph.edges.append(edge)
        existing.add(edge.key)
        added.append(edge)

    return added


class RoadGraphBuilder:
    """MST plus loop edges over a POI set."""

    def __init__(self, options: Optional[RoadGraphOptions] = None):
        self.options = options or RoadGraphOptions()

    def build(self, pois: Sequence[POINode], extra_edges: Optional[int] = None) -> RoadGraph:
        vertices = sorted(poi.id for poi in pois)
        if len(set(vertices)) != len(vertices):
            raise ValueError("POI ids must be unique")

        graph = RoadGraph(vertices=vertices)
        if len(vertices) < 2:
            return graph

        candidates = build_candidate_edges(pois, self.options.level_penalty)
        graph.edges = minimum_spanning_tree(vertices, candidates)

        max_extra = self.options.extra_edges if extra_edges is None else extra_edges
        added = add_extra_edges(graph, candidates, max_extra, self.options.loop_ratio)

        logger.info(
            "Road graph built",
            vertices=len(vertices),
            tree_edges=len(graph.edges) - len(added),
            extra_edges=len(added),
            total_weight=round(graph.total_weight, 2),
        )
        return graph
