"""Freeze detection for a live, externally driven force simulation.

The detector sits between the simulation and its position store. Every
proposed coordinate is forwarded to the host and folded into per-pass
statistics: axis bounds and the largest single-axis move. At the end of a
pass the layout counts as converged when

    max_delta <= epsilon * diameter

where ``diameter`` is the diagonal of the pass's bounding box. Convergence
arms a one-shot grace timer; convergence observed again after the timer has
fired tells the host to stop its tick loop.

A pass ends either when the host calls ``end_frame`` (explicit frames) or,
in inferred mode, when the first node seen after a reset (the origin) comes
round again, or when more x-updates than nodes have arrived.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Hashable
from enum import Enum
from typing import Protocol

from netlayout.config import MAX_EPSILON, MIN_EPSILON, FreezeConfig
from netlayout.host import SimulationHost, SimulationParameter, check_axis

logger = logging.getLogger(__name__)

EPSILON_PARAMETER = "Epsilon"

_NO_ORIGIN = object()


class FreezeState(Enum):
    TRACKING = "tracking"
    CONVERGED_WAITING = "converged_waiting"
    FROZEN = "frozen"


class GraceTimer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], GraceTimer]


class FreezeDetector:
    """Decides when a running force simulation has settled.

    Args:
        host: Receives every coordinate update and the freeze signal.
        node_count: Number of nodes the simulation moves per tick.
        config: Epsilon, grace period and initial freeze policy.
        timer_factory: Builds the one-shot grace timer; called as
            ``timer_factory(seconds, callback)``. Defaults to
            ``threading.Timer``.
        explicit_frames: When True, passes end only at ``end_frame`` and the
            origin-node inference is off.

    The grace timer fires on its own thread. Each reset bumps a generation
    counter, and a firing whose generation is stale is ignored.
    """

    def __init__(
        self,
        host: SimulationHost,
        node_count: int,
        config: FreezeConfig | None = None,
        *,
        timer_factory: TimerFactory = threading.Timer,
        explicit_frames: bool = False,
    ) -> None:
        config = config or FreezeConfig()
        self.node_count = node_count
        self.explicit_frames = explicit_frames
        self._host = host
        self._freeze_stationary = config.freeze_stationary
        self._grace_seconds = config.grace_ms / 1000.0
        self._timer_factory = timer_factory

        self.parameter = SimulationParameter(
            name=EPSILON_PARAMETER,
            default=config.epsilon,
            min_value=MIN_EPSILON,
            max_value=MAX_EPSILON,
            on_change=self._epsilon_changed,
        )
        add_parameter = getattr(host, "add_parameter", None)
        if add_parameter is not None:
            add_parameter(self.parameter)

        self._lock = threading.Lock()
        self._timer: GraceTimer | None = None
        self._generation = 0
        self._slack_over = False
        self._frozen = False
        self._origin: object = _NO_ORIGIN
        self._restart_tracking()

    # ── Public state ──────────────────────────────────────────────────────

    @property
    def state(self) -> FreezeState:
        if self._frozen:
            return FreezeState.FROZEN
        if self._timer is not None:
            return FreezeState.CONVERGED_WAITING
        return FreezeState.TRACKING

    @property
    def epsilon(self) -> float:
        return self.parameter.value

    @epsilon.setter
    def epsilon(self, value: float) -> None:
        self.parameter.value = value

    @property
    def freeze_stationary(self) -> bool:
        return self._freeze_stationary

    @freeze_stationary.setter
    def freeze_stationary(self, enabled: bool) -> None:
        self._freeze_stationary = enabled
        if enabled:
            self._restart_tracking()
        else:
            self.reset()
            self._resume_layout()

    @property
    def max_delta(self) -> float:
        return self._max_delta

    @property
    def diameter(self) -> float:
        """Diagonal of the current pass's bounding box (0 before any update)."""
        if self._updates == 0:
            return 0.0
        width = self._max[0] - self._min[0] if self._max[0] >= self._min[0] else 0.0
        height = self._max[1] - self._min[1] if self._max[1] >= self._min[1] else 0.0
        return math.hypot(width, height)

    # ── Update stream ─────────────────────────────────────────────────────

    def propose(self, node: Hashable, axis: str, value: float) -> None:
        """Forward a proposed coordinate to the host and record the move."""
        index = check_axis(axis)
        if index == 0 and not self.explicit_frames:
            self._advance_pass(node)

        old = self._host.get_coordinate(node, axis)
        self._host.set_coordinate(node, axis, value)

        self._updates += 1
        if value < self._min[index]:
            self._min[index] = value
        if value > self._max[index]:
            self._max[index] = value
        delta = abs(old - value)
        if delta > self._max_delta:
            self._max_delta = delta

    def set_x(self, node: Hashable, x: float) -> None:
        self.propose(node, "x", x)

    def set_y(self, node: Hashable, y: float) -> None:
        self.propose(node, "y", y)

    def end_frame(self) -> None:
        """Explicit pass boundary, called by hosts after each complete tick."""
        self._check_convergence()

    def _advance_pass(self, node: Hashable) -> None:
        self._iteration += 1
        if self._origin is _NO_ORIGIN:
            self._origin = node
            self._restart_tracking()
        elif node == self._origin or self._iteration > self.node_count:
            self._check_convergence()

    # ── Convergence ───────────────────────────────────────────────────────

    def _check_convergence(self) -> None:
        if self._updates == 0:
            return

        # A pass that reaches evaluation means the host is ticking again.
        self._frozen = False
        diameter = self.diameter
        if self._freeze_stationary and self._max_delta <= self.epsilon * diameter:
            with self._lock:
                slack_over = self._slack_over
            if slack_over:
                logger.debug("layout frozen: max_delta=%g diameter=%g", self._max_delta, diameter)
                self._origin = _NO_ORIGIN
                self._restart_tracking()
                self._frozen = True
                self._host.set_layout_enabled(False)
            elif self._timer is None:
                logger.debug("layout converged, grace timer armed for %.3fs", self._grace_seconds)
                self._arm_timer()
            return

        # No convergence: the next update starts a new pass.
        self._origin = _NO_ORIGIN
        self._restart_tracking()

    def _arm_timer(self) -> None:
        generation = self._generation
        timer = self._timer_factory(self._grace_seconds, lambda: self._grace_elapsed(generation))
        if isinstance(timer, threading.Thread):
            timer.daemon = True
        self._timer = timer
        timer.start()

    def _grace_elapsed(self, generation: int) -> None:
        with self._lock:
            if generation == self._generation:
                self._slack_over = True

    # ── Resets ────────────────────────────────────────────────────────────

    def _restart_tracking(self) -> None:
        with self._lock:
            self._generation += 1
            self._slack_over = False
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

        self._iteration = 1
        self._updates = 0
        self._min = [math.inf, math.inf]
        self._max = [-math.inf, -math.inf]
        self._max_delta = 0.0

    def reset(self) -> None:
        """Forget the current pass, origin and frozen status."""
        self._origin = _NO_ORIGIN
        self._frozen = False
        self._restart_tracking()

    def close(self) -> None:
        """Cancel any pending grace timer."""
        self._restart_tracking()

    def _epsilon_changed(self, value: float) -> None:
        logger.debug("freeze epsilon set to %g", value)
        self.reset()
        self._resume_layout()

    def _resume_layout(self) -> None:
        """Hand the tick loop back to the user's automatic-layout choice."""
        self._host.set_layout_enabled(self._host.automatic_layout)
