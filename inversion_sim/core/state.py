"""
State and event records for the inversion simulator.

A run produces two sequences:
- trajectory: one State per tick, including tick 0
- events: one Event per detected transition, ordered by step

Both are plain immutable records; a new State is produced every tick.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Tuple

from ..config import RunConfig


# Column order of the tabular event export
EVENT_FIELDS: Tuple[str, ...] = (
    "step", "eventType", "phaseBefore", "phaseAfter", "x", "y", "vx", "vy",
)


@dataclass(frozen=True)
class State:
    """
    Particle state at a tick.

    Attributes:
        step: Tick index (0 = initial state)
        x, y: Position on the lattice
        vx, vy: Velocity
        phase: Signed phase value, only reduced modulo `mod` by the corner rules
        inverted: True once any inversion has fired (never resets)
        inversion_mask: Bitfield of inversion kinds fired so far
        stuck: Wall-dwell flag used by the sticky variant
    """
    step: int
    x: float
    y: float
    vx: float
    vy: float
    phase: float
    inverted: bool = False
    inversion_mask: int = 0
    stuck: bool = False

    @classmethod
    def initial(cls, config: RunConfig) -> "State":
        """Tick-0 state of a run."""
        return cls(
            step=0,
            x=config.x0,
            y=config.y0,
            vx=config.vx0,
            vy=config.vy0,
            phase=config.phase0,
        )

    def evolve(self, **changes: Any) -> "State":
        """Copy with changed fields; fields not named are carried over."""
        return replace(self, **changes)

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)

    @property
    def kinematic_key(self) -> Tuple[float, float, float, float]:
        """(x, y, vx, vy) - the part of the state that determines the next move."""
        return (self.x, self.y, self.vx, self.vy)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "step": self.step,
            "x": self.x,
            "y": self.y,
            "vx": self.vx,
            "vy": self.vy,
            "phase": self.phase,
            "inverted": self.inverted,
            "inversionMask": self.inversion_mask,
        }
        if self.stuck:
            data["stuck"] = True
        return data

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "State":
        return cls(
            step=d["step"],
            x=d["x"],
            y=d["y"],
            vx=d["vx"],
            vy=d["vy"],
            phase=d["phase"],
            inverted=d.get("inverted", False),
            inversion_mask=d.get("inversionMask", 0),
            stuck=d.get("stuck", False),
        )


@dataclass(frozen=True)
class EventLabel:
    """A detected transition, before the phase rules have been applied."""
    event_type: str
    details: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class Event:
    """Append-only log entry for one transition at one tick."""
    step: int
    event_type: str
    phase_before: float
    phase_after: float
    x: float
    y: float
    vx: float
    vy: float

    @classmethod
    def at(cls, state: State, event_type: str, phase_before: float, phase_after: float) -> "Event":
        """Event tagged with the tick and kinematics of `state`."""
        return cls(
            step=state.step,
            event_type=event_type,
            phase_before=phase_before,
            phase_after=phase_after,
            x=state.x,
            y=state.y,
            vx=state.vx,
            vy=state.vy,
        )

    def to_row(self) -> List[Any]:
        """Values in EVENT_FIELDS order."""
        return [
            self.step, self.event_type, self.phase_before, self.phase_after,
            self.x, self.y, self.vx, self.vy,
        ]

    def to_dict(self) -> Dict[str, Any]:
        return dict(zip(EVENT_FIELDS, self.to_row()))

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Event":
        return cls(
            step=d["step"],
            event_type=d["eventType"],
            phase_before=d["phaseBefore"],
            phase_after=d["phaseAfter"],
            x=d["x"],
            y=d["y"],
            vx=d["vx"],
            vy=d["vy"],
        )
