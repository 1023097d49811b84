"""Graph model helpers — the node attributes the layout engine reads and writes.

Positions travel as ``"x,y"`` strings and the pinned flag as ``"0"``/``"1"``,
so a graph round-trips through GraphML (or any string-attribute format)
without losing layout state.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterator

import networkx as nx

POS_KEY = "pos"
PINNED_KEY = "pinned"
SPECIAL_KEY = "special"

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})


def parse_position(text: str) -> tuple[float, float]:
    """Parse an ``"x,y"`` position string.

    Raises ``ValueError`` if the string does not hold exactly two floats.
    """
    parts = text.split(",")
    if len(parts) != 2:
        raise ValueError(f"position must be 'x,y', got {text!r}")
    return (float(parts[0]), float(parts[1]))


def format_position(x: float, y: float) -> str:
    return f"{float(x)!r},{float(y)!r}"


def _truthy(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def get_position(graph: nx.Graph, node: Hashable) -> tuple[float, float] | None:
    """Return the node's position, or None if it has none yet."""
    text = graph.nodes[node].get(POS_KEY)
    if text is None:
        return None
    return parse_position(text)


def set_position(graph: nx.Graph, node: Hashable, x: float, y: float) -> None:
    graph.nodes[node][POS_KEY] = format_position(x, y)


def is_pinned(graph: nx.Graph, node: Hashable) -> bool:
    return _truthy(graph.nodes[node].get(PINNED_KEY, "0"))


def set_pinned(graph: nx.Graph, node: Hashable, pinned: bool) -> None:
    graph.nodes[node][PINNED_KEY] = "1" if pinned else "0"


def is_special(graph: nx.Graph, node: Hashable) -> bool:
    return _truthy(graph.nodes[node].get(SPECIAL_KEY, False))


def special_nodes(graph: nx.Graph) -> Iterator[Hashable]:
    """Yield the nodes carrying the special marker, in graph order."""
    return (node for node in graph.nodes if is_special(graph, node))


def has_positions(graph: nx.Graph) -> bool:
    """True if at least one node already carries a position."""
    return any(POS_KEY in attrs for _, attrs in graph.nodes(data=True))
