"""Exceptions raised by the layout engine."""

from __future__ import annotations


class LayoutError(Exception):
    """A cold-start layout invariant was broken (e.g. a disconnected component)."""
