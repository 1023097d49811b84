"""Batch CLI: compute initial positions for a GraphML graph.

    netlayout [PATH]

Reads PATH (or stdin), solves positions, and writes the graph back to PATH
(or stdout). Exits with status 1 if the graph cannot be read or laid out.
Set ``NETLAYOUT_LOG_LEVEL`` to change log verbosity.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from xml.etree.ElementTree import ParseError

import networkx as nx

from netlayout.errors import LayoutError
from netlayout.layout import solve_positions

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "NETLAYOUT_LOG_LEVEL"


def read_graph(path: str | None) -> nx.MultiGraph:
    source = path if path is not None else sys.stdin.buffer
    return nx.read_graphml(source, force_multigraph=True)


def write_graph(graph: nx.Graph, path: str | None) -> None:
    if path is not None:
        nx.write_graphml(graph, path)
    else:
        nx.write_graphml(graph, sys.stdout.buffer)
        sys.stdout.flush()


def _log_level() -> int:
    level = getattr(logging, os.environ.get(LOG_LEVEL_ENV, "WARNING").upper(), None)
    return level if isinstance(level, int) else logging.WARNING


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netlayout",
        description="Compute initial node positions for a GraphML graph.",
    )
    parser.add_argument("path", nargs="?", help="graph file, rewritten in place (default: stdin to stdout)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=_log_level(),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        graph = read_graph(args.path)
    except (OSError, ParseError, ValueError, nx.NetworkXError) as exc:
        logger.error("failed to read graph: %s", exc)
        return 1

    try:
        solve_positions(graph)
    except LayoutError as exc:
        logger.error("failed to lay out graph: %s", exc)
        return 1

    write_graph(graph, args.path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
