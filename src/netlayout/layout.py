"""Layout module — cold-start positioning pipeline for network graphs.

Phases:
  1. Component decomposition (explicit-stack traversal, direction ignored)
  2. Distance matrix (all-pairs shortest paths within one component)
  3. Initial embedding (classical MDS, seeded fallback)
  4. Stress majorization (Jacobi sweeps until displacement < epsilon)
  5. Component packing (square cells on a growable occupancy grid)

``solve_positions`` runs the whole pipeline and writes ``pos``/``pinned``
back onto the graph.
"""

from __future__ import annotations

import hashlib
import logging
import math
from collections.abc import Hashable, Iterable
from dataclasses import dataclass, field
from itertools import chain

import networkx as nx
import numpy as np

from netlayout.config import EdgeWeight, LayoutConfig
from netlayout.errors import LayoutError
from netlayout.graph import has_positions, is_pinned, set_pinned, set_position, special_nodes

logger = logging.getLogger(__name__)

# Squared distance under which two points count as coincident.
COINCIDENT_DIST2: float = 1e-6
# Relative eigenvalue floor for a usable MDS axis.
EIGEN_TOLERANCE: float = 1e-9

# ─── Component Decomposition ──────────────────────────────────────────────────


def _incident_neighbors(graph: nx.Graph, node: Hashable) -> Iterable[Hashable]:
    """Neighbours of ``node`` across incident edges, irrespective of direction."""
    if graph.is_directed():
        return chain(graph.successors(node), graph.predecessors(node))
    return graph.neighbors(node)


def _induced_subgraph(graph: nx.Graph, nodes: list[Hashable]) -> nx.Graph:
    """Copy of the subgraph induced by ``nodes``, preserving their order.

    ``graph.subgraph`` views may iterate nodes in set order, which would make
    the per-component node ordering depend on string hashing.
    """
    sub = graph.__class__()
    sub.add_nodes_from((node, graph.nodes[node]) for node in nodes)
    if graph.is_multigraph():
        sub.add_edges_from(graph.edges(nodes, keys=True, data=True))
    else:
        sub.add_edges_from(graph.edges(nodes, data=True))
    return sub


def connected_components(graph: nx.Graph) -> list[nx.Graph]:
    """Split ``graph`` into maximal connected subgraphs.

    Components come back as induced subgraph copies in discovery order; within
    a component, nodes keep the order they have in ``graph``. Traversal uses an
    explicit stack so component size is not bounded by the recursion limit.
    Isolated nodes form singleton components; an empty graph yields ``[]``.
    """
    order: dict[Hashable, int] = {node: i for i, node in enumerate(graph.nodes)}
    visited: set[Hashable] = set()
    components: list[nx.Graph] = []

    for start in graph.nodes:
        if start in visited:
            continue
        members: set[Hashable] = {start}
        stack: list[Hashable] = [start]
        while stack:
            node = stack.pop()
            for nb in _incident_neighbors(graph, node):
                if nb not in members:
                    members.add(nb)
                    stack.append(nb)
        visited |= members
        components.append(_induced_subgraph(graph, sorted(members, key=order.__getitem__)))

    logger.debug("decomposed %d nodes into %d components", graph.number_of_nodes(), len(components))
    return components


# ─── Distance Matrix ──────────────────────────────────────────────────────────


def _undirected_multigraph(component: nx.Graph) -> nx.Graph:
    """Undirected copy of ``component`` in which no edge is merged away.

    ``to_undirected`` keeps one edge per (u, v, key), so ``u -> v`` and
    ``v -> u`` under the same key would collapse into whichever came last.
    """
    if not component.is_directed():
        return component
    undirected = nx.MultiGraph()
    undirected.add_nodes_from(component.nodes)
    undirected.add_edges_from(component.edges(data=True))
    return undirected


def distance_matrix(component: nx.Graph, nodes: list[Hashable], weight: EdgeWeight = None) -> np.ndarray:
    """All-pairs shortest-path distances over ``nodes`` (row/column order).

    ``weight=None`` measures hop counts with one BFS per node; any other value
    is passed to networkx's Dijkstra (attribute name or ``(u, v, data)``
    callable). Edge direction is ignored, every parallel edge stays a
    candidate (reverse edges included), and self-loops never shorten anything.

    Raises ``LayoutError`` if some pair is unreachable.
    """
    n = len(nodes)
    index: dict[Hashable, int] = {node: i for i, node in enumerate(nodes)}
    undirected = _undirected_multigraph(component)

    dist = np.full((n, n), np.inf)
    for i, source in enumerate(nodes):
        if weight is None:
            lengths = nx.single_source_shortest_path_length(undirected, source)
        else:
            lengths = nx.single_source_dijkstra_path_length(undirected, source, weight=weight)
        for target, length in lengths.items():
            j = index.get(target)
            if j is not None:
                dist[i, j] = float(length)

    if not np.isfinite(dist).all():
        raise LayoutError("distance matrix requested for a disconnected component")

    # Dijkstra on float weights can disagree in the last bit between directions.
    dist = np.minimum(dist, dist.T)
    np.fill_diagonal(dist, 0.0)
    return dist


# ─── Initial Embedding (Classical MDS) ────────────────────────────────────────


def node_seed(node: Hashable) -> int:
    """Stable 64-bit seed derived from a node identifier.

    Uses MD5 of ``str(node)`` rather than ``hash()``, which is salted per
    process for strings.
    """
    digest = hashlib.md5(str(node).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def _node_rng(node: Hashable) -> np.random.Generator:
    return np.random.default_rng(node_seed(node))


def seed_positions(nodes: list[Hashable]) -> np.ndarray:
    """Per-node pseudo-random coordinates in ``[0, 1)²``, reproducible by node id."""
    if not nodes:
        return np.zeros((0, 2))
    return np.array([_node_rng(node).random(2) for node in nodes])


def _jitter(nodes: list[Hashable], magnitude: float) -> np.ndarray:
    """Small per-node offsets in ``[0, magnitude)²``.

    Drawn after the two seed coordinates from the same per-node stream, so they
    are reproducible too.
    """
    if not nodes:
        return np.zeros((0, 2))
    return np.array([_node_rng(node).random(4)[2:] for node in nodes]) * magnitude


def _mds_coordinates(dist: np.ndarray) -> np.ndarray | None:
    """Top-2 classical MDS coordinates, or None if the eigen step is unusable."""
    n = dist.shape[0]
    centering = np.eye(n) - np.full((n, n), 1.0 / n)
    gram = -0.5 * centering @ (dist**2) @ centering
    gram = 0.5 * (gram + gram.T)

    try:
        eigenvalues, eigenvectors = np.linalg.eigh(gram)
    except np.linalg.LinAlgError:
        return None

    # eigh sorts ascending; take the two largest.
    top_values = eigenvalues[-1:-3:-1]
    top_vectors = eigenvectors[:, -1:-3:-1]
    if not np.isfinite(top_values).all() or not np.isfinite(top_vectors).all():
        return None
    floor = EIGEN_TOLERANCE * max(1.0, float(np.abs(eigenvalues).max()))
    if top_values[1] <= floor:
        return None
    return top_vectors * np.sqrt(top_values)


def classical_mds(dist: np.ndarray, nodes: list[Hashable], jitter: float = 0.001) -> np.ndarray:
    """Seed 2D coordinates approximately preserving the distances in ``dist``.

    Double-centers the squared distance matrix and scales its two dominant
    eigenvectors by the square roots of their eigenvalues. When fewer than two
    positive eigenvalues survive (collinear or otherwise degenerate input) the
    coordinates come from ``seed_positions`` instead. Every point then gets a
    small jitter so no two points coincide exactly.
    """
    coords = _mds_coordinates(dist) if len(nodes) >= 3 else None
    if coords is None:
        logger.debug("degenerate MDS input (%d nodes), using seeded coordinates", len(nodes))
        coords = seed_positions(nodes)
    return coords + _jitter(nodes, jitter)


# ─── Stress Majorization ──────────────────────────────────────────────────────


def stress(dist: np.ndarray, positions: np.ndarray) -> float:
    """Weighted stress Σ_{i≠j} w_ij (‖p_i − p_j‖ − d_ij)² with w_ij = 1/d_ij²."""
    diff = positions[:, None, :] - positions[None, :, :]
    realized = np.sqrt((diff**2).sum(axis=-1))
    mask = dist > 0
    weights = np.zeros_like(dist)
    weights[mask] = 1.0 / dist[mask] ** 2
    return float((weights * (realized - dist) ** 2).sum())


def majorization_sweep(dist: np.ndarray, positions: np.ndarray) -> tuple[np.ndarray, float]:
    """One simultaneous (Jacobi) majorization sweep.

    Every node moves to the weighted average of its targets computed from the
    previous positions only. Pairs closer than ``sqrt(COINCIDENT_DIST2)`` get a
    zero distance ratio. Returns the new positions and the summed per-node
    displacement.
    """
    diff = positions[:, None, :] - positions[None, :, :]
    dist2 = (diff**2).sum(axis=-1)

    mask = dist > 0
    weights = np.zeros_like(dist)
    weights[mask] = 1.0 / dist[mask] ** 2

    far = mask & (dist2 >= COINCIDENT_DIST2)
    ratio = np.zeros_like(dist)
    ratio[far] = dist[far] / np.sqrt(dist2[far])

    wsum = weights.sum(axis=1)
    if not (wsum > 0).all():
        return positions.copy(), 0.0

    numerator = weights @ positions + ((weights * ratio)[:, :, None] * diff).sum(axis=1)
    updated = numerator / wsum[:, None]
    displacement = float(np.sqrt(((updated - positions) ** 2).sum(axis=1)).sum())
    return updated, displacement


def majorize(
    dist: np.ndarray,
    positions: np.ndarray,
    epsilon: float = 0.005,
    max_sweeps: int | None = None,
) -> np.ndarray:
    """Refine ``positions`` by stress majorization.

    Sweeps repeat while the summed displacement exceeds ``epsilon``. Without
    ``max_sweeps`` there is no iteration cap.
    """
    sweeps = 0
    while max_sweeps is None or sweeps < max_sweeps:
        positions, displacement = majorization_sweep(dist, positions)
        sweeps += 1
        if displacement <= epsilon:
            break
    logger.debug("stress majorization: %d sweeps over %d nodes", sweeps, positions.shape[0])
    return positions


def normalize(positions: np.ndarray) -> np.ndarray:
    """Center the bounding box on the origin and scale into ``[-1, 1]²``."""
    if positions.shape[0] == 0:
        return positions.copy()
    lo = positions.min(axis=0)
    hi = positions.max(axis=0)
    centered = positions - (lo + hi) / 2.0
    extent = float(np.abs(centered).max())
    if extent == 0.0:
        return centered
    return centered / extent


# ─── Per-Component Solve ──────────────────────────────────────────────────────


@dataclass
class ComponentLayout:
    """Positions for one component, in component-local coordinates.

    ``positions[i]`` belongs to ``nodes[i]``; ``pinned[i]`` is the node's
    pinned flag after the solve.
    """

    nodes: list[Hashable]
    positions: np.ndarray
    pinned: list[bool] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.nodes)


def solve_component(
    component: nx.Graph,
    config: LayoutConfig | None = None,
    rng: np.random.Generator | None = None,
) -> ComponentLayout:
    """Lay out a single connected component.

    - 0 or 1 node: the origin, pinned.
    - 2 nodes: ``(-gap, 0)`` and ``(gap, 0)``, no randomness; existing pins
      are kept.
    - more than ``max_solved_nodes``: uniform random in ``[-0.5, 0.5)²``,
      unpinned. Embedding and majorization are skipped entirely.
    - otherwise: distance matrix, classical MDS, majorization, normalization.
    """
    config = config or LayoutConfig()
    nodes = list(component.nodes)
    n = len(nodes)

    if n < 2:
        return ComponentLayout(nodes=nodes, positions=np.zeros((n, 2)), pinned=[True] * n)

    if n == 2:
        gap = config.pair_half_gap
        positions = np.array([[-gap, 0.0], [gap, 0.0]])
        return ComponentLayout(
            nodes=nodes,
            positions=positions,
            pinned=[is_pinned(component, node) for node in nodes],
        )

    if n > config.max_solved_nodes:
        logger.warning(
            "component of %d nodes exceeds %d, placing it randomly",
            n,
            config.max_solved_nodes,
        )
        rng = rng if rng is not None else np.random.default_rng()
        positions = rng.random((n, 2)) - 0.5
        return ComponentLayout(nodes=nodes, positions=positions, pinned=[False] * n)

    dist = distance_matrix(component, nodes, config.weight)
    seeds = classical_mds(dist, nodes, config.jitter)
    positions = majorize(dist, seeds, config.majorization_epsilon, config.max_sweeps)
    return ComponentLayout(nodes=nodes, positions=normalize(positions), pinned=[False] * n)


# ─── Component Packing ────────────────────────────────────────────────────────


def footprint(node_count: int) -> int:
    """Side length, in grid cells, of the square reserved for a component."""
    return max(1, 2 * math.ceil(node_count**0.7))


@dataclass
class PackingCell:
    """A square region of the packing grid: origin (x, y) and side length."""

    x: int
    y: int
    size: int

    def overlaps(self, other: PackingCell) -> bool:
        return (
            self.x < other.x + other.size
            and other.x < self.x + self.size
            and self.y < other.y + other.size
            and other.y < self.y + self.size
        )


class SquarePacker:
    """First-fit packing of squares into a fixed-width, growable boolean grid.

    Scans row-major for the first free ``size x size`` block. When nothing
    fits, the grid grows downward by ``2 * size`` rows and the scan retries.
    """

    def __init__(self, width: int) -> None:
        self.width = width
        self.grid = np.zeros((0, width), dtype=bool)

    @property
    def height(self) -> int:
        return self.grid.shape[0]

    def _find_free(self, size: int) -> tuple[int, int] | None:
        for y in range(self.height - size + 1):
            for x in range(self.width - size + 1):
                if not self.grid[y : y + size, x : x + size].any():
                    return (x, y)
        return None

    def pack(self, size: int) -> PackingCell:
        """Reserve a ``size x size`` block and return its cell.

        Raises ``LayoutError`` if the square is wider than the grid.
        """
        if size > self.width:
            raise LayoutError(f"square of side {size} does not fit grid width {self.width}")

        spot = self._find_free(size)
        while spot is None:
            self.grid = np.vstack([self.grid, np.zeros((2 * size, self.width), dtype=bool)])
            spot = self._find_free(size)

        x, y = spot
        self.grid[y : y + size, x : x + size] = True
        return PackingCell(x=x, y=y, size=size)


def place_in_cell(positions: np.ndarray, cell: PackingCell, scale: float = 120.0, fill: float = 0.9) -> np.ndarray:
    """Map normalized positions into ``cell`` on the shared canvas.

    Each coordinate ``p`` becomes ``(origin + 0.5 * (1 + fill * p) * size) * scale``,
    leaving a margin inside the cell.
    """
    origin = np.array([cell.x, cell.y], dtype=float)
    return (origin + 0.5 * (1.0 + fill * positions) * cell.size) * scale


# ─── Full Cold-Start Pipeline ─────────────────────────────────────────────────


def solve_positions(
    graph: nx.Graph,
    config: LayoutConfig | None = None,
    rng: np.random.Generator | None = None,
) -> list[PackingCell]:
    """Compute initial positions for every node of ``graph``.

    Writes ``pos`` and ``pinned`` on every node and returns the packing cell of
    each component, largest component first. An empty graph is a no-op.
    """
    config = config or LayoutConfig()
    components = connected_components(graph)
    if not components:
        return []

    layouts = [solve_component(component, config, rng) for component in components]
    # Stable: equal-sized components keep discovery order.
    layouts.sort(key=lambda layout: layout.size, reverse=True)

    packer = SquarePacker(footprint(layouts[0].size))
    cells: list[PackingCell] = []
    for layout in layouts:
        cell = packer.pack(footprint(layout.size))
        cells.append(cell)
        placed = place_in_cell(layout.positions, cell, config.scale, config.cell_fill)
        for node, (x, y), pinned in zip(layout.nodes, placed, layout.pinned):
            set_position(graph, node, float(x), float(y))
            set_pinned(graph, node, pinned)

    logger.debug("packed %d components into a %dx%d grid", len(cells), packer.width, packer.height)
    return cells


def ensure_positions(
    graph: nx.Graph,
    config: LayoutConfig | None = None,
    rng: np.random.Generator | None = None,
) -> bool:
    """Load-time entry point: solve only if no node has a position yet.

    After solving, special nodes are pinned. Returns True if a solve ran.
    """
    if has_positions(graph):
        return False
    solve_positions(graph, config, rng)
    for node in special_nodes(graph):
        set_pinned(graph, node, True)
    return True
