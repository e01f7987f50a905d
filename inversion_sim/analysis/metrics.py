"""
Anomaly metrics for completed runs.

Provides the measures used to rank runs:
- Event rate
- Visit entropy of lattice cells (whole run and best sliding window)
- Repetition of kinematic states and time to first repetition
- Re-emergence of pre-inversion states after an inversion
- Trajectory signatures for deduplication

and SCORERS, the per-category scoring functions fed to the top-K stores.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Optional, Sequence, Tuple
import hashlib
import json
import math

import numpy as np
from numba import njit
from scipy.stats import entropy

from ..core.engine import RunResult
from ..core.state import State


DEFAULT_WINDOW = 256


def event_rate(result: RunResult) -> float:
    """Events per tick."""
    return len(result.events) / max(int(result.config.steps), 1)


def cell_ids(trajectory: Sequence[State]) -> Tuple[np.ndarray, int]:
    """
    Map visited positions to dense integer cell ids.

    Returns:
        (id per tick, number of distinct cells)
    """
    if len(trajectory) == 0:
        return np.zeros(0, dtype=np.int64), 0
    positions = np.array([(s.x, s.y) for s in trajectory], dtype=np.float64)
    cells, ids = np.unique(positions, axis=0, return_inverse=True)
    return ids.reshape(-1).astype(np.int64), len(cells)


def visit_entropy(trajectory: Sequence[State]) -> float:
    """
    Shannon entropy (bits) of the cell visit distribution.

    0 for a particle that never moves, log2(#cells) for uniform visits.
    """
    ids, n_cells = cell_ids(trajectory)
    if n_cells == 0:
        return 0.0
    return float(entropy(np.bincount(ids, minlength=n_cells), base=2))


@njit(cache=True)
def _xlog2x(c):
    if c <= 0:
        return 0.0
    return c * math.log2(c)


@njit(cache=True)
def _max_window_entropy_kernel(ids, n_cells, window, stride):
    """Sliding-window visit entropy, updated incrementally per tick."""
    n = len(ids)
    counts = np.zeros(n_cells, dtype=np.int64)
    acc = 0.0  # sum of c*log2(c) over cells

    for i in range(window):
        c = counts[ids[i]]
        acc += _xlog2x(c + 1) - _xlog2x(c)
        counts[ids[i]] = c + 1

    log_w = math.log2(window)
    best = log_w - acc / window

    start = 0
    while start + stride + window <= n:
        for k in range(stride):
            out_id = ids[start + k]
            c = counts[out_id]
            acc += _xlog2x(c - 1) - _xlog2x(c)
            counts[out_id] = c - 1

            in_id = ids[start + window + k]
            c = counts[in_id]
            acc += _xlog2x(c + 1) - _xlog2x(c)
            counts[in_id] = c + 1
        start += stride

        h = log_w - acc / window
        if h > best:
            best = h

    return best


def _max_window_entropy_numpy(ids: np.ndarray, n_cells: int, window: int, stride: int) -> float:
    best = 0.0
    for start in range(0, len(ids) - window + 1, stride):
        counts = np.bincount(ids[start:start + window], minlength=n_cells)
        best = max(best, float(entropy(counts, base=2)))
    return best


def max_window_entropy(
    trajectory: Sequence[State],
    window: int = DEFAULT_WINDOW,
    stride: int = 1,
    use_numba: bool = True,
) -> float:
    """
    Highest visit entropy over sliding windows of `window` ticks.

    Runs shorter than the window are measured as a single window.

    Args:
        trajectory: States of a run
        window: Window length in ticks
        stride: Ticks between window starts (1 <= stride <= window)
        use_numba: Use the compiled incremental kernel
    """
    if window < 1 or stride < 1 or stride > window:
        raise ValueError(f"need 1 <= stride <= window, got window={window}, stride={stride}")

    ids, n_cells = cell_ids(trajectory)
    if n_cells == 0:
        return 0.0
    window = min(window, len(ids))

    if use_numba:
        return float(_max_window_entropy_kernel(ids, n_cells, window, stride))
    return _max_window_entropy_numpy(ids, n_cells, window, stride)


def repeat_rate(trajectory: Sequence[State]) -> float:
    """Fraction of ticks whose (x, y, vx, vy) already occurred earlier in the run."""
    if len(trajectory) == 0:
        return 0.0
    seen = set()
    repeats = 0
    for state in trajectory:
        key = state.kinematic_key
        if key in seen:
            repeats += 1
        else:
            seen.add(key)
    return repeats / len(trajectory)


def time_to_structure(trajectory: Sequence[State]) -> Optional[int]:
    """First step whose kinematic state repeats an earlier one (None if never)."""
    seen = set()
    for state in trajectory:
        key = state.kinematic_key
        if key in seen:
            return state.step
        seen.add(key)
    return None


def _key_signature(key: Tuple[float, ...]) -> str:
    text = ",".join(repr(v) for v in key)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def reemergence(trajectory: Sequence[State]) -> Dict[str, Any]:
    """
    Look for a pre-inversion state that comes back after the first inversion.

    Returns:
        {"reemerges": bool, "first": step first seen, "again": step seen
        after the inversion, "sig": short hash of the state}. Fields other
        than "reemerges" are None when nothing re-emerges.
    """
    result: Dict[str, Any] = {"reemerges": False, "first": None, "again": None, "sig": None}

    first_seen: Dict[Tuple[float, ...], int] = {}
    inverted_from = None
    for i, state in enumerate(trajectory):
        if state.inverted:
            inverted_from = i
            break
        first_seen.setdefault(state.kinematic_key, state.step)

    if inverted_from is None:
        return result

    for state in trajectory[inverted_from:]:
        key = state.kinematic_key
        if key in first_seen:
            result.update(
                reemerges=True,
                first=first_seen[key],
                again=state.step,
                sig=_key_signature(key),
            )
            break
    return result


def trajectory_signature(trajectory: Sequence[State]) -> str:
    """sha256 of the canonical JSON form of the trajectory."""
    payload = json.dumps(
        [s.to_dict() for s in trajectory],
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_anomalies(result: RunResult, window: int = DEFAULT_WINDOW) -> Dict[str, Any]:
    """All anomaly metrics of a run in one dictionary."""
    trajectory = result.trajectory
    return {
        "eventRate": event_rate(result),
        "randomness": {
            "visitEntropy": visit_entropy(trajectory),
            "maxEntropy": max_window_entropy(trajectory, window=window),
        },
        "structure": {"repeatRate": repeat_rate(trajectory)},
        "timeToStructure": {"t_struct": time_to_structure(trajectory)},
        "reemergence": reemergence(trajectory),
    }


# ===== Category scorers =====

def _score_randomness(result: RunResult) -> Optional[float]:
    return max_window_entropy(result.trajectory)


def _score_structure(result: RunResult) -> Optional[float]:
    return repeat_rate(result.trajectory)


def _score_reemergence(result: RunResult) -> Optional[float]:
    info = reemergence(result.trajectory)
    if not info["reemerges"]:
        return None
    return float(info["again"] - info["first"])


def _score_tfast(result: RunResult) -> Optional[float]:
    t = time_to_structure(result.trajectory)
    return None if t is None else float(-t)


def _score_tslow(result: RunResult) -> Optional[float]:
    t = time_to_structure(result.trajectory)
    return None if t is None else float(t)


# category -> score (higher is better), None = no entry for that category
SCORERS: Dict[str, Callable[[RunResult], Optional[float]]] = {
    "randomness": _score_randomness,
    "structure": _score_structure,
    "reemergence": _score_reemergence,
    "tfast": _score_tfast,
    "tslow": _score_tslow,
}


def score_run(result: RunResult) -> Dict[str, Optional[float]]:
    """Scores of a run for every category in SCORERS."""
    return {category: scorer(result) for category, scorer in SCORERS.items()}
