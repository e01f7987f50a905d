"""
Analysis module for the inversion simulator.

Anomaly metrics over trajectories and the category scorers used to rank
runs in the top-K stores.
"""

from .metrics import (
    event_rate,
    visit_entropy,
    max_window_entropy,
    repeat_rate,
    time_to_structure,
    reemergence,
    trajectory_signature,
    compute_anomalies,
    score_run,
    SCORERS,
)

__all__ = [
    "event_rate",
    "visit_entropy",
    "max_window_entropy",
    "repeat_rate",
    "time_to_structure",
    "reemergence",
    "trajectory_signature",
    "compute_anomalies",
    "score_run",
    "SCORERS",
]
