"""Simulation host protocol — what the freeze detector needs from a live layout loop."""

from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Protocol

import networkx as nx

from netlayout.graph import get_position, set_position

AXES = ("x", "y")


def check_axis(axis: str) -> int:
    """Index of ``axis`` in ``AXES``; raises ``ValueError`` for anything else."""
    try:
        return AXES.index(axis)
    except ValueError:
        raise ValueError(f"axis must be 'x' or 'y', got {axis!r}") from None


class SimulationHost(Protocol):
    """Protocol that every live simulation host must implement."""

    def get_coordinate(self, node: Hashable, axis: str) -> float:
        """Current coordinate of ``node`` on ``axis``."""
        ...

    def set_coordinate(self, node: Hashable, axis: str, value: float) -> None:
        """Store a new coordinate for ``node`` on ``axis``."""
        ...

    @property
    def automatic_layout(self) -> bool:
        """The user's standing choice to run the layout at all."""
        ...

    def set_layout_enabled(self, enabled: bool) -> None:
        """Pause (False) or resume (True) the host's own tick loop."""
        ...


@dataclass
class SimulationParameter:
    """A bounded, named tunable in the host's generic parameter mechanism.

    Assigning ``value`` clamps it into ``[min_value, max_value]`` and calls
    ``on_change`` with the clamped value.
    """

    name: str
    default: float
    min_value: float
    max_value: float
    on_change: Callable[[float], None] | None = None
    _value: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._value = self._clamp(self.default)

    def _clamp(self, value: float) -> float:
        return min(self.max_value, max(self.min_value, float(value)))

    @property
    def value(self) -> float:
        return self._value

    @value.setter
    def value(self, value: float) -> None:
        self._value = self._clamp(value)
        if self.on_change is not None:
            self.on_change(self._value)


class GraphSimulationHost:
    """A ``SimulationHost`` storing positions in the graph's ``pos`` attributes.

    Nodes without a position read as ``(0.0, 0.0)``. ``enabled`` mirrors the
    last ``set_layout_enabled`` call; the tick loop driving this host is
    expected to check it. ``automatic_layout`` is the user's preference and
    only changes through ``set_automatic_layout``.
    """

    def __init__(self, graph: nx.Graph, enabled: bool = True) -> None:
        self.graph = graph
        self.automatic_layout = enabled
        self.enabled = enabled
        self._parameters: dict[str, SimulationParameter] = {}

    def get_coordinate(self, node: Hashable, axis: str) -> float:
        pos = get_position(self.graph, node) or (0.0, 0.0)
        return pos[check_axis(axis)]

    def set_coordinate(self, node: Hashable, axis: str, value: float) -> None:
        pos = list(get_position(self.graph, node) or (0.0, 0.0))
        pos[check_axis(axis)] = value
        set_position(self.graph, node, pos[0], pos[1])

    def set_layout_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    def set_automatic_layout(self, enabled: bool) -> None:
        """User pause/resume: records the preference and applies it."""
        self.automatic_layout = enabled
        self.set_layout_enabled(enabled)

    def add_parameter(self, parameter: SimulationParameter) -> None:
        self._parameters[parameter.name] = parameter

    @property
    def parameters(self) -> dict[str, SimulationParameter]:
        return dict(self._parameters)
