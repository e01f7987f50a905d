"""
Inversion Simulator

A deterministic 2D lattice billiard: a point moves on a bounded grid with
reflecting walls, corner hits drive a modular phase value, and scheduled
inversions swap or negate geometry and phase mid-run.

Main components:
- config: RunConfig, inversion schedule, event/boundary options
- core: State/Event records, variants, event detection, phase rules,
  inversion scheduler, run engine
- analysis: anomaly metrics and category scorers
- storage: run output writer, top-K ranking stores, JSON persistence
- exploration: seeded parameter sweeps and replays
"""

__version__ = "0.1.0"
__author__ = "Inversion Sim Team"

from .config import RunConfig, InversionKind, InversionMark, EventOptions, ConfigError
from .core import State, Event, RunEngine, RunResult, get_variant, compute_inversion_step_from_start
from .storage import TopKStore, TopKEntry, StoreSet, RunOutputWriter

__all__ = [
    "RunConfig",
    "InversionKind",
    "InversionMark",
    "EventOptions",
    "ConfigError",
    "State",
    "Event",
    "RunEngine",
    "RunResult",
    "get_variant",
    "compute_inversion_step_from_start",
    "TopKStore",
    "TopKEntry",
    "StoreSet",
    "RunOutputWriter",
]
