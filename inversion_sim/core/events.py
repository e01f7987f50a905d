"""
Event detection for the square lattice.

Classifies a transition (prev -> next) into labels:
- corner: next position lies on an X-edge and a Y-edge at once,
  split into diagonal / off-diagonal by the configured CornerMode
- edge hit (optional): first tick a boundary is touched
- near-corner enter/exit (optional): crossing a Manhattan-distance
  threshold around the nearest corner

Instrumentation labels never change phase; only the two corner labels
are consumed by the phase rules.
"""

from __future__ import annotations
import math
from typing import List, Optional

from ..config import CornerMode, EventOptions, ReflectMode, RunConfig
from .state import EventLabel, State


EDGE_HIT_X = "edge.hit.x"
EDGE_HIT_Y = "edge.hit.y"
NEAR_CORNER_ENTER = "near.corner.enter"
NEAR_CORNER_EXIT = "near.corner.exit"


def is_on_edge_x(x: float, config: RunConfig) -> bool:
    return x == 0 or x == config.size_x


def is_on_edge_y(y: float, config: RunConfig) -> bool:
    return y == 0 or y == config.size_y


def is_corner(x: float, y: float, config: RunConfig) -> bool:
    return is_on_edge_x(x, config) and is_on_edge_y(y, config)


def is_diagonal_corner(state: State, config: RunConfig, mode: CornerMode) -> bool:
    """Classify a corner state; exactly one mode is active per run."""
    x, y = state.x, state.y

    if mode == CornerMode.MAIN_DIAG:
        return (x == 0 and y == 0) or (x == config.size_x and y == config.size_y)
    if mode == CornerMode.ANTI_DIAG:
        return (x == 0 and y == config.size_y) or (x == config.size_x and y == 0)
    if mode == CornerMode.PARITY:
        return (x + y) % 2 == 0
    if mode == CornerMode.VELOCITY:
        return state.vx * state.vy >= 0
    return False


def manhattan_dist_to_nearest_corner(x: float, y: float, config: RunConfig) -> float:
    corners = (
        (0, 0),
        (0, config.size_y),
        (config.size_x, 0),
        (config.size_x, config.size_y),
    )
    return min(abs(x - cx) + abs(y - cy) for cx, cy in corners)


class EventDetector:
    """
    Detects boundary events between consecutive states.

    Labels are emitted in a fixed order: edge hits, near-corner
    transitions, then the corner event.

    Example:
        detector = EventDetector()
        labels = detector.detect(prev, next_state, config)
        [label.event_type for label in labels]  # e.g. ["corner.diag"]
    """

    def __init__(self, options: Optional[EventOptions] = None):
        """
        Args:
            options: Overrides config.events when given
        """
        self.options = options

    def _options(self, config: RunConfig) -> EventOptions:
        return self.options if self.options is not None else config.events

    def detect(
        self,
        prev: State,
        next_state: State,
        config: RunConfig,
        reflect_mode: Optional[ReflectMode] = None,
    ) -> List[EventLabel]:
        """
        Detect all events of the transition prev -> next_state.

        Args:
            prev: State before the tick
            next_state: State after the tick
            config: Run configuration
            reflect_mode: Boundary mode reported in the corner details

        Returns:
            Labels in detection order
        """
        opts = self._options(config)
        out: List[EventLabel] = []

        if opts.emit_edge_events:
            out.extend(self._edge_events(prev, next_state, config))

        if opts.emit_near_corner_events:
            out.extend(self._near_corner_events(prev, next_state, config, opts))

        if not is_corner(next_state.x, next_state.y, config):
            return out

        diag = is_diagonal_corner(next_state, config, opts.corner_mode)
        event_type = opts.corner_diag_event_type if diag else opts.corner_off_event_type
        mode = reflect_mode if reflect_mode is not None else config.reflect_mode

        out.append(EventLabel(event_type, {
            "cornerClass": "diag" if diag else "off",
            "cornerKey": f"{next_state.x},{next_state.y}",
            "x": next_state.x,
            "y": next_state.y,
            "vx": next_state.vx,
            "vy": next_state.vy,
            "geometry": "square",
            "reflectMode": mode.value,
            "cornerMode": opts.corner_mode.value,
        }))
        return out

    def _edge_events(self, prev: State, next_state: State, config: RunConfig) -> List[EventLabel]:
        # Only the tick a boundary is first touched, not every tick spent on it
        out = []
        if not is_on_edge_x(prev.x, config) and is_on_edge_x(next_state.x, config):
            out.append(EventLabel(EDGE_HIT_X, {"edge": "x", "x": next_state.x, "y": next_state.y}))
        if not is_on_edge_y(prev.y, config) and is_on_edge_y(next_state.y, config):
            out.append(EventLabel(EDGE_HIT_Y, {"edge": "y", "x": next_state.x, "y": next_state.y}))
        return out

    def _near_corner_events(
        self,
        prev: State,
        next_state: State,
        config: RunConfig,
        opts: EventOptions,
    ) -> List[EventLabel]:
        dist = max(0, math.floor(opts.near_corner_dist))
        d_prev = manhattan_dist_to_nearest_corner(prev.x, prev.y, config)
        d_next = manhattan_dist_to_nearest_corner(next_state.x, next_state.y, config)

        if d_prev > dist and d_next <= dist:
            return [EventLabel(NEAR_CORNER_ENTER, {"dist": d_next, "x": next_state.x, "y": next_state.y})]
        if d_prev <= dist and d_next > dist:
            return [EventLabel(NEAR_CORNER_EXIT, {"dist": d_prev, "x": next_state.x, "y": next_state.y})]
        return []
