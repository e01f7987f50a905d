"""
Configuration module for the inversion simulator.

Contains all parameters of a single run: grid extents, initial kinematics,
phase arithmetic, inversion schedule and the optional event/boundary knobs
consumed by the variants.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple, Union
from enum import Enum
import json
import math
from pathlib import Path


class ConfigError(ValueError):
    """Fatal configuration error, raised before a run starts."""

    def __init__(self, issues: List[str]):
        self.issues = list(issues)
        super().__init__("Invalid run configuration: " + "; ".join(self.issues))


class InversionKind(Enum):
    """Kinds of scheduled inversion. The value order defines the mask bit."""
    GEOM = "GEOM"          # velocity flip + teleport to start
    SPHERE = "SPHERE"      # point reflection through grid center
    OBSERVER = "OBSERVER"  # phase negation
    CAUSAL = "CAUSAL"      # marker only

    @property
    def bit(self) -> int:
        return 1 << list(InversionKind).index(self)


class ReflectMode(Enum):
    """Boundary handling for the square variants."""
    CLAMP = "clamp"      # clamp to wall, discard leftover distance
    REFLECT = "reflect"  # triangle-wave fold, keeps leftover distance


class CornerMode(Enum):
    """How a corner hit is split into diagonal / off-diagonal."""
    MAIN_DIAG = "mainDiag"   # (0,0) and (sizeX,sizeY)
    ANTI_DIAG = "antiDiag"   # (0,sizeY) and (sizeX,0)
    PARITY = "parity"        # (x+y) even
    VELOCITY = "velocity"    # vx*vy >= 0


@dataclass(frozen=True)
class InversionMark:
    """One entry of a multi-stage inversion schedule."""
    step: int
    kind: InversionKind

    def to_dict(self) -> Dict[str, Any]:
        return {"step": self.step, "kind": self.kind.value}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InversionMark":
        return cls(step=d["step"], kind=InversionKind(d["kind"]))


@dataclass(frozen=True)
class EventOptions:
    """Event detection knobs. Defaults reproduce the historical corner-only output."""
    corner_mode: CornerMode = CornerMode.MAIN_DIAG

    # Instrumentation channels (never affect phase)
    emit_edge_events: bool = False
    emit_near_corner_events: bool = False
    near_corner_dist: int = 1

    # Labels used by the phase rules
    corner_off_event_type: str = "corner.off"
    corner_diag_event_type: str = "corner.diag"


# camelCase keys used by every external consumer of a config
_KEYS = {
    "size_x": "sizeX",
    "size_y": "sizeY",
    "x0": "x0",
    "y0": "y0",
    "vx0": "vx0",
    "vy0": "vy0",
    "phase0": "phase0",
    "steps": "steps",
    "multiplier": "multiplier",
    "mod": "mod",
    "inversion_step": "inversionStep",
    "inversion_schedule": "inversionSchedule",
    "reflect_mode": "reflectMode",
}

_EVENT_KEYS = {
    "corner_mode": "cornerMode",
    "emit_edge_events": "emitEdgeEvents",
    "emit_near_corner_events": "emitNearCornerEvents",
    "near_corner_dist": "nearCornerDist",
    "corner_off_event_type": "cornerOffEventType",
    "corner_diag_event_type": "cornerDiagEventType",
}


def _is_finite_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _is_integral(value: Any) -> bool:
    return _is_finite_number(value) and float(value).is_integer()


@dataclass(frozen=True)
class RunConfig:
    """
    Immutable parameters of a single simulation run.

    Example:
        config = RunConfig(size_x=5, size_y=7, x0=1, y0=1, vx0=1, vy0=1,
                           phase0=0, steps=100, multiplier=7, mod=1000003)
        config.check()
        config.save("run_config.json")
    """
    # Grid extents
    size_x: float = 5
    size_y: float = 7

    # Initial kinematics
    x0: float = 1
    y0: float = 1
    vx0: float = 1
    vy0: float = 1

    # Phase arithmetic
    phase0: float = 0
    multiplier: float = 7
    mod: int = 1000003

    steps: int = 100

    # Legacy single inversion; ignored when a schedule is present
    inversion_step: Optional[int] = None
    # Multi-stage schedule
    inversion_schedule: Optional[Tuple[InversionMark, ...]] = None

    reflect_mode: ReflectMode = ReflectMode.CLAMP
    events: EventOptions = field(default_factory=EventOptions)

    def __post_init__(self):
        # Lists are accepted for convenience but stored as tuples (hashable)
        if self.inversion_schedule is not None and not isinstance(self.inversion_schedule, tuple):
            object.__setattr__(self, "inversion_schedule", tuple(self.inversion_schedule))

    @property
    def has_schedule(self) -> bool:
        return bool(self.inversion_schedule)

    def validate(self) -> List[str]:
        """Validate configuration, return list of issues (empty if valid)."""
        issues = []

        if not _is_finite_number(self.size_x) or not _is_finite_number(self.size_y):
            issues.append(f"sizeX/sizeY must be finite numbers, got {self.size_x}, {self.size_y}")
        elif self.size_x <= 0 or self.size_y <= 0:
            issues.append(f"sizeX/sizeY must be > 0, got {self.size_x}, {self.size_y}")

        if not _is_finite_number(self.mod) or self.mod <= 0:
            issues.append(f"mod must be a positive number, got {self.mod}")
        elif not _is_integral(self.mod):
            issues.append(f"mod must be an integer, got {self.mod}")

        if not _is_finite_number(self.multiplier):
            issues.append(f"multiplier must be a finite number, got {self.multiplier}")

        if not _is_integral(self.steps) or self.steps <= 0:
            issues.append(f"steps must be a positive integer, got {self.steps}")

        for name in ("x0", "y0", "vx0", "vy0", "phase0"):
            if not _is_finite_number(getattr(self, name)):
                issues.append(f"{_KEYS[name]} must be a finite number, got {getattr(self, name)}")

        if self.inversion_step is not None and not _is_integral(self.inversion_step):
            issues.append(f"inversionStep must be an integer, got {self.inversion_step}")

        for mark in self.inversion_schedule or ():
            if not isinstance(mark, InversionMark):
                issues.append(f"schedule entries must be InversionMark, got {mark!r}")
            elif not _is_integral(mark.step) or mark.step < 0:
                issues.append(f"schedule step must be a non-negative integer, got {mark.step}")

        return issues

    def check(self) -> "RunConfig":
        """Raise ConfigError if the configuration is invalid."""
        issues = self.validate()
        if issues:
            raise ConfigError(issues)
        return self

    def with_derived_inversion_step(self) -> "RunConfig":
        """Copy with the legacy inversion step derived from the start hash."""
        from .core.schedule import compute_inversion_step_from_start
        return replace(self, inversion_step=compute_inversion_step_from_start(self))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with the external camelCase keys."""
        data: Dict[str, Any] = {}
        for attr, key in _KEYS.items():
            value = getattr(self, attr)
            if attr == "inversion_schedule":
                if value is None:
                    continue
                value = [mark.to_dict() for mark in value]
            elif attr == "inversion_step" and value is None:
                continue
            elif isinstance(value, Enum):
                value = value.value
            data[key] = value

        events = {}
        for attr, key in _EVENT_KEYS.items():
            value = getattr(self.events, attr)
            events[key] = value.value if isinstance(value, Enum) else value
        data["events"] = events
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunConfig":
        """Reconstruct from dictionary (camelCase keys)."""
        kwargs: Dict[str, Any] = {}
        for attr, key in _KEYS.items():
            if key in data:
                kwargs[attr] = data[key]

        if kwargs.get("inversion_schedule") is not None:
            kwargs["inversion_schedule"] = tuple(
                InversionMark.from_dict(m) for m in kwargs["inversion_schedule"]
            )
        if "reflect_mode" in kwargs:
            kwargs["reflect_mode"] = ReflectMode(kwargs["reflect_mode"])

        if "events" in data:
            ev = {attr: data["events"][key] for attr, key in _EVENT_KEYS.items() if key in data["events"]}
            if "corner_mode" in ev:
                ev["corner_mode"] = CornerMode(ev["corner_mode"])
            kwargs["events"] = EventOptions(**ev)

        return cls(**kwargs)

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "RunConfig":
        """Load configuration from JSON file."""
        with open(path, 'r', encoding='utf-8') as f:
            return cls.from_dict(json.load(f))


# Preset configurations
def four_stage_schedule(steps: int) -> Tuple[InversionMark, ...]:
    """GEOM, SPHERE, OBSERVER, CAUSAL at 20/40/60/80 % of the run."""
    return (
        InversionMark(step=math.floor(steps * 0.20), kind=InversionKind.GEOM),
        InversionMark(step=math.floor(steps * 0.40), kind=InversionKind.SPHERE),
        InversionMark(step=math.floor(steps * 0.60), kind=InversionKind.OBSERVER),
        InversionMark(step=math.floor(steps * 0.80), kind=InversionKind.CAUSAL),
    )


def minimal_config() -> RunConfig:
    """Small 5x7 run without inversions, for quick testing."""
    return RunConfig(
        size_x=5, size_y=7,
        x0=1, y0=1, vx0=1, vy0=1,
        phase0=0, steps=100,
        multiplier=7, mod=1000003,
    )


def canonical_config() -> RunConfig:
    """The canonical 5x7 long run with the four-stage schedule."""
    steps = 200003
    return RunConfig(
        size_x=5, size_y=7,
        x0=1, y0=1, vx0=1, vy0=1,
        phase0=0, steps=steps,
        multiplier=7, mod=1000003,
        inversion_schedule=four_stage_schedule(steps),
    )
