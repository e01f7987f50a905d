"""
Boundary handling on a closed interval [lo, hi].

Two modes:
- clamp_reflect: clamp to the wall and flip velocity, discarding the
  distance left over after the wall hit (historical default)
- reflect_with_remainder: fold the position onto [lo, hi] with a
  period-2L triangle wave, so steps longer than the interval still
  reflect correctly
"""

from __future__ import annotations
import math
from typing import Tuple

from ..config import ReflectMode


def _wrap(value: float, period: float) -> float:
    """Non-negative remainder of value / period."""
    if isinstance(value, int) and isinstance(period, int):
        return value % period
    return math.fmod(math.fmod(value, period) + period, period)


def clamp_reflect(pos: float, vel: float, lo: float, hi: float) -> Tuple[float, float]:
    """
    Move by vel; on overshoot clamp to the wall and flip velocity.

    Returns:
        (new position, new velocity)
    """
    p = pos + vel
    v = vel
    if p < lo:
        p = lo
        v = -v
    if p > hi:
        p = hi
        v = -v
    return p, v


def reflect_with_remainder(pos: float, vel: float, lo: float, hi: float) -> Tuple[float, float]:
    """
    Move by vel and fold onto [lo, hi] keeping the leftover distance.

    The unfolded coordinate is reduced modulo 2L; the upper half-period is
    the mirrored copy of the interval, where velocity points the other way.
    A degenerate interval (L <= 0) folds to lo and flips velocity.

    Example:
        >>> reflect_with_remainder(0, -3, 0, 5)
        (3, 3)
    """
    length = hi - lo
    if length <= 0:
        return lo, -vel

    unfolded = (pos - lo) + vel
    period = 2 * length
    m = _wrap(unfolded, period)

    if m <= length:
        return lo + m, vel
    return lo + (period - m), -vel


def move_axis(
    pos: float,
    vel: float,
    hi: float,
    mode: ReflectMode = ReflectMode.CLAMP,
) -> Tuple[float, float]:
    """Advance one axis on [0, hi] with the given boundary mode."""
    if mode == ReflectMode.REFLECT:
        return reflect_with_remainder(pos, vel, 0, hi)
    return clamp_reflect(pos, vel, 0, hi)
