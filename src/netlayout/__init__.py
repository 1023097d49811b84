"""netlayout — cold-start layout and freeze detection for network graphs."""

from netlayout.config import FreezeConfig, LayoutConfig
from netlayout.errors import LayoutError
from netlayout.freeze import FreezeDetector, FreezeState
from netlayout.host import GraphSimulationHost, SimulationHost, SimulationParameter
from netlayout.layout import ensure_positions, solve_positions

__all__ = [
    "FreezeConfig",
    "FreezeDetector",
    "FreezeState",
    "GraphSimulationHost",
    "LayoutConfig",
    "LayoutError",
    "SimulationHost",
    "SimulationParameter",
    "ensure_positions",
    "solve_positions",
]
