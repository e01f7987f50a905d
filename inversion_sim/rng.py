"""
Seeded pseudo-random generator for configuration sampling.

Mulberry32: 32-bit state, one float in [0, 1) per call. The sequence for
a given seed is fixed, so a sweep can be replayed run by run from
(seed, run index) alone. Not used by the simulation itself.
"""

from __future__ import annotations
import math

MASK32 = 0xFFFFFFFF
_INCREMENT = 0x6D2B79F5


def _imul(a: int, b: int) -> int:
    """Low 32 bits of a 32x32 multiplication."""
    return (a * b) & MASK32


class Mulberry32:
    """
    Mulberry32 generator.

    Example:
        rng = Mulberry32(424242)
        u = rng.random()          # float in [0, 1)
        n = rng.rand_int(3, 25)   # integer in [3, 25]
    """

    def __init__(self, seed: int):
        self.seed = int(seed)
        self._t = self.seed & MASK32

    def next_uint32(self) -> int:
        self._t = (self._t + _INCREMENT) & MASK32
        x = self._t
        x = _imul(x ^ (x >> 15), x | 1)
        x ^= (x + _imul(x ^ (x >> 7), x | 61)) & MASK32
        return (x ^ (x >> 14)) & MASK32

    def random(self) -> float:
        return self.next_uint32() / 4294967296

    __call__ = random

    def rand_int(self, a: int, b: int) -> int:
        """Uniform integer in [a, b], both ends included."""
        return a + math.floor(self.random() * (b - a + 1))
