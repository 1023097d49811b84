"""Configuration for the cold-start solver and the freeze detector."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

# ─── Cold-start constants ─────────────────────────────────────────────────────

CANVAS_SCALE: float = 120.0  # canvas units per packing-grid cell
CELL_FILL: float = 0.9  # fraction of a cell a normalized layout may span
MAX_SOLVED_NODES: int = 300  # larger components get random placement
PAIR_HALF_GAP: float = 0.75  # two-node components sit at (±0.75, 0)
MAJORIZATION_EPSILON: float = 0.005
JITTER: float = 0.001

# ─── Freeze constants ─────────────────────────────────────────────────────────

MIN_EPSILON: float = 0.0
DEFAULT_EPSILON: float = 0.0001
MAX_EPSILON: float = 0.001
GRACE_MS: int = 2000

EdgeWeight = str | Callable[[Any, Any, dict], float] | None


@dataclass
class LayoutConfig:
    """Tunables for ``solve_positions``.

    ``weight`` selects the shortest-path metric: ``None`` counts hops, a string
    names an edge attribute, and a callable ``(u, v, data) -> float`` computes
    the length of an edge. Both non-``None`` forms go through Dijkstra; on
    directed graphs and multigraphs networkx hands the callable the
    key-to-data mapping of all parallel edges between the two nodes.

    ``max_sweeps`` caps stress majorization; ``None`` iterates until the
    displacement drops under ``majorization_epsilon``.
    """

    scale: float = CANVAS_SCALE
    cell_fill: float = CELL_FILL
    max_solved_nodes: int = MAX_SOLVED_NODES
    pair_half_gap: float = PAIR_HALF_GAP
    majorization_epsilon: float = MAJORIZATION_EPSILON
    jitter: float = JITTER
    max_sweeps: int | None = None
    weight: EdgeWeight = None


def clamp_epsilon(value: float) -> float:
    """Clamp a freeze epsilon into ``[MIN_EPSILON, MAX_EPSILON]``."""
    return min(MAX_EPSILON, max(MIN_EPSILON, float(value)))


@dataclass
class FreezeConfig:
    """Tunables for ``FreezeDetector``."""

    epsilon: float = DEFAULT_EPSILON
    grace_ms: int = GRACE_MS
    freeze_stationary: bool = True

    def __post_init__(self) -> None:
        self.epsilon = clamp_epsilon(self.epsilon)
