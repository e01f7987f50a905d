"""
Inversion scheduling.

Two mutually exclusive modes per run:
- legacy single inversion at `inversion_step` (velocity and phase negated,
  one INVERT event)
- multi-stage schedule of InversionMark entries, each kind firing at most
  once and setting its bit in the state's inversion mask

The deterministic step selection hash lives here as well; its mixing order
and constants are part of the reproducibility contract.
"""

from __future__ import annotations
import logging
import math
from functools import lru_cache
from typing import Dict, List, Set, Tuple

from ..config import InversionKind, InversionMark, RunConfig
from .phase import negate_phase
from .state import Event, State

logger = logging.getLogger(__name__)


FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619
_MASK32 = 0xFFFFFFFF

LEGACY_EVENT_TYPE = "INVERT"


def _to_uint32(value: float) -> int:
    """Two's-complement 32-bit image of the truncated value (0 for NaN/inf)."""
    if not math.isfinite(value):
        return 0
    return int(math.trunc(value)) & _MASK32


def _to_int32(value: float) -> int:
    u = _to_uint32(value)
    return u - (1 << 32) if u & 0x80000000 else u


@lru_cache(maxsize=1024)
def compute_inversion_step_from_start(config: RunConfig) -> int:
    """
    Derive an inversion step from the starting configuration.

    Nine fields are mixed in fixed order into a 32-bit FNV-style hash;
    each value is first XORed with its own right shift by 16. The hash is
    mapped into [0, steps-1] and 0 is moved to 1, so the inversion always
    happens strictly inside the run.

    Returns:
        Step in [1, steps-1], or 0 when steps <= 1
    """
    h = FNV_OFFSET_BASIS
    for value in (
        config.size_x, config.size_y,
        config.x0, config.y0,
        config.vx0, config.vy0,
        config.phase0, config.multiplier, config.mod,
    ):
        u = _to_uint32(value)
        h ^= u ^ (u >> 16)
        h = (h * FNV_PRIME) & _MASK32

    steps = max(1, _to_int32(config.steps))
    if steps <= 1:
        return 0

    u = h % steps
    return 1 if u == 0 else u


def sphere_reflect(value: float, size: float) -> float:
    """Point-reflect a coordinate through (size-1)/2, rounded half up."""
    return math.floor((size - 1) - value + 0.5)


class InversionScheduler:
    """
    Applies scheduled inversions to the engine's proposed next state.

    One scheduler instance belongs to one run: the per-kind applied set
    and the legacy "already fired" flag are run state.

    Example:
        scheduler = InversionScheduler(config)
        state, events = scheduler.apply(proposed_state)
    """

    def __init__(self, config: RunConfig):
        self.config = config
        self.legacy = (not config.has_schedule) and config.inversion_step is not None

        # step -> marks, preserving schedule order within a step
        self._by_step: Dict[int, List[InversionMark]] = {}
        for mark in config.inversion_schedule or ():
            self._by_step.setdefault(int(mark.step), []).append(mark)

        self.applied: Set[InversionKind] = set()
        self.legacy_fired = False
        self.inverted = False
        self.mask = 0

    @property
    def active(self) -> bool:
        return self.legacy or bool(self._by_step)

    def reset(self) -> None:
        """Clear run state."""
        self.applied.clear()
        self.legacy_fired = False
        self.inverted = False
        self.mask = 0

    def apply(self, state: State) -> Tuple[State, List[Event]]:
        """
        Apply every inversion due on the tick that produced `state`.

        The inverted flag and mask accumulated so far are always merged
        into the returned state, whether or not anything fires.

        Returns:
            (state with inversion effects, INVERT events in firing order)
        """
        events: List[Event] = []

        if self.legacy:
            if not self.legacy_fired and state.step == self.config.inversion_step:
                state, event = self._apply_legacy(state)
                events.append(event)
        else:
            for mark in self._by_step.get(state.step, ()):
                if mark.kind in self.applied:
                    continue
                state, event = self._apply_mark(state, mark.kind)
                events.append(event)

        if self.inverted != state.inverted or self.mask != state.inversion_mask:
            state = state.evolve(inverted=self.inverted, inversion_mask=self.mask)
        return state, events

    def _apply_legacy(self, state: State) -> Tuple[State, Event]:
        self.legacy_fired = True
        self.inverted = True

        phase_before = state.phase
        state = state.evolve(
            vx=-state.vx,
            vy=-state.vy,
            phase=negate_phase(phase_before),
            inverted=True,
        )
        logger.debug(f"Legacy inversion at step {state.step}")
        return state, Event.at(state, LEGACY_EVENT_TYPE, phase_before, state.phase)

    def _apply_mark(self, state: State, kind: InversionKind) -> Tuple[State, Event]:
        self.applied.add(kind)
        self.inverted = True
        self.mask |= kind.bit

        cfg = self.config
        phase_before = state.phase

        if kind == InversionKind.GEOM:
            state = state.evolve(x=cfg.x0, y=cfg.y0, vx=-state.vx, vy=-state.vy)
        elif kind == InversionKind.SPHERE:
            state = state.evolve(
                x=sphere_reflect(state.x, cfg.size_x),
                y=sphere_reflect(state.y, cfg.size_y),
            )
        elif kind == InversionKind.OBSERVER:
            state = state.evolve(phase=negate_phase(phase_before))
        # CAUSAL only marks the mask

        state = state.evolve(inverted=True, inversion_mask=self.mask)
        logger.debug(f"{kind.value} inversion at step {state.step}, mask={self.mask:#06b}")
        return state, Event.at(state, f"INVERT_{kind.value}", phase_before, state.phase)
