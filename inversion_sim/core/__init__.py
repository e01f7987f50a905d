"""
Core module for the inversion simulator.

Contains:
- State, Event, EventLabel: per-tick records
- Boundary handling: clamp-reflect and true reflect fold
- EventDetector: corner / edge / near-corner classification
- PhaseEvolver: modular phase rules
- Variants: the four interchangeable stepping policies
- InversionScheduler: legacy and multi-stage inversions
- RunEngine: the deterministic run loop
"""

from .state import State, Event, EventLabel, EVENT_FIELDS
from .geometry import clamp_reflect, reflect_with_remainder, move_axis
from .events import EventDetector, is_corner, manhattan_dist_to_nearest_corner
from .phase import PhaseEvolver, truncated_mod, negate_phase
from .schedule import InversionScheduler, compute_inversion_step_from_start
from .variants import (
    Variant, VariantKind, UnknownVariantError,
    ClampReflectVariant, MirrorVariant, StickyVariant, InversionReflectVariant,
    get_variant, available_variants,
)
from .engine import RunEngine, RunResult, RunStats, run_variant

__all__ = [
    "State",
    "Event",
    "EventLabel",
    "EVENT_FIELDS",
    # Boundaries
    "clamp_reflect",
    "reflect_with_remainder",
    "move_axis",
    # Events & phase
    "EventDetector",
    "is_corner",
    "manhattan_dist_to_nearest_corner",
    "PhaseEvolver",
    "truncated_mod",
    "negate_phase",
    # Inversions
    "InversionScheduler",
    "compute_inversion_step_from_start",
    # Variants
    "Variant",
    "VariantKind",
    "UnknownVariantError",
    "ClampReflectVariant",
    "MirrorVariant",
    "StickyVariant",
    "InversionReflectVariant",
    "get_variant",
    "available_variants",
    # Engine
    "RunEngine",
    "RunResult",
    "RunStats",
    "run_variant",
]
