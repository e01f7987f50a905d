"""
Phase evolution rules.

Canonical rules keyed by event label:
    off-diagonal corner:  phase' = (phase * multiplier) mod mod
    diagonal corner:      phase' = (phase + 1) mod mod

Every other label leaves phase unchanged unless a variant overrides it.
The remainder keeps the sign of the dividend, so a phase that was negated
elsewhere stays negative after a corner rule.
"""

from __future__ import annotations
import math
from typing import Optional

from ..config import EventOptions, RunConfig


def truncated_mod(value: float, mod: float) -> float:
    """
    Remainder with the sign of the dividend (C / JavaScript `%`).

    Integers stay exact; anything else goes through math.fmod.
    """
    if isinstance(value, int) and isinstance(mod, int):
        r = abs(value) % abs(mod)
        return r if value >= 0 else -r
    return math.fmod(value, mod)


def negate_phase(phase: float) -> float:
    """Unreduced negation used by mirror crossings and observer inversions."""
    return -phase


class PhaseEvolver:
    """
    Applies the modular phase rules for corner events.

    Example:
        evolver = PhaseEvolver()
        evolver.apply(5, "corner.off", config)   # 35 with multiplier 7
        evolver.apply(5, "corner.diag", config)  # 6
    """

    def __init__(self, options: Optional[EventOptions] = None):
        self.options = options

    def apply(self, phase: float, event_type: str, config: RunConfig) -> float:
        opts = self.options if self.options is not None else config.events

        if event_type == opts.corner_off_event_type:
            return truncated_mod(phase * config.multiplier, config.mod)
        if event_type == opts.corner_diag_event_type:
            return truncated_mod(phase + 1, config.mod)

        # Other channels are instrumentation only
        return phase
