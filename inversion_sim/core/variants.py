"""
Stepping policies (variants) for the inversion simulator.

Every variant offers the same three operations:
    step_once(state, config)           -> next state
    detect_events(prev, next, config)  -> event labels
    apply_phase(phase, label, config)  -> new phase

Variants are substituted, never composed at run time: exactly one is
active per run. The four implementations are tagged by VariantKind and
looked up through `get_variant`.
"""

from __future__ import annotations
from enum import Enum
from typing import Dict, List, Optional, Protocol, Union, runtime_checkable

from ..config import ReflectMode, RunConfig
from .events import EventDetector
from .geometry import move_axis
from .phase import PhaseEvolver, negate_phase
from .schedule import compute_inversion_step_from_start
from .state import EventLabel, State


MIRROR_CROSS = "mirror.cross"
STICKY_ENTER = "sticky.enter"
STICKY_EXIT = "sticky.exit"
INVERSION_SWAP = "inversion.swap"


class UnknownVariantError(KeyError):
    """Raised when a variant name or kind is not registered."""


class VariantKind(Enum):
    """Tags of the available stepping policies."""
    CLAMP_REFLECT = "square.clamp_reflect.corner_mult_or_plus1"
    MIRROR = "mirror.inversion"
    STICKY = "square.sticky_reflect"
    INVERSION_REFLECT = "square.inversion_reflect.start_defined"


@runtime_checkable
class Variant(Protocol):
    """Contract shared by all stepping policies."""

    kind: VariantKind

    @property
    def name(self) -> str: ...

    def step_once(self, state: State, config: RunConfig) -> State: ...

    def detect_events(self, prev: State, next_state: State, config: RunConfig) -> List[EventLabel]: ...

    def apply_phase(self, phase: float, event_type: str, config: RunConfig) -> float: ...


def _sign(v: float) -> int:
    return 1 if v > 0 else -1 if v < 0 else 0


class ClampReflectVariant:
    """
    Square lattice with wall reflection and corner-driven phase rules.

    Boundary mode comes from config.reflect_mode (clamp by default, the
    historical behavior). Corner hits multiply the phase (off-diagonal)
    or add one (diagonal), modulo config.mod.
    """

    kind = VariantKind.CLAMP_REFLECT

    def __init__(self):
        self.detector = EventDetector()
        self.evolver = PhaseEvolver()

    @property
    def name(self) -> str:
        return self.kind.value

    def step_once(self, state: State, config: RunConfig, reflect_mode: Optional[ReflectMode] = None) -> State:
        mode = reflect_mode if reflect_mode is not None else config.reflect_mode
        x, vx = move_axis(state.x, state.vx, config.size_x, mode)
        y, vy = move_axis(state.y, state.vy, config.size_y, mode)
        # Phase is only touched through events
        return state.evolve(step=state.step + 1, x=x, y=y, vx=vx, vy=vy)

    def detect_events(
        self,
        prev: State,
        next_state: State,
        config: RunConfig,
        reflect_mode: Optional[ReflectMode] = None,
    ) -> List[EventLabel]:
        return self.detector.detect(prev, next_state, config, reflect_mode)

    def apply_phase(self, phase: float, event_type: str, config: RunConfig) -> float:
        return self.evolver.apply(phase, event_type, config)


class MirrorVariant:
    """
    Square lattice with a vertical mirror at floor(sizeX / 2).

    Walls follow config.reflect_mode like the clamp-reflect variant.
    Crossing the mirror folds x back across it, flips vx and negates the
    phase without reducing it modulo `mod`.
    """

    kind = VariantKind.MIRROR

    def __init__(self):
        self.base = ClampReflectVariant()

    @property
    def name(self) -> str:
        return self.kind.value

    @staticmethod
    def mirror_x(config: RunConfig) -> int:
        return int(config.size_x // 2)

    @staticmethod
    def crosses(x_before: float, x_after: float, mirror: float) -> bool:
        return (x_before < mirror and x_after >= mirror) or (x_before > mirror and x_after <= mirror)

    def step_once(self, state: State, config: RunConfig) -> State:
        mirror = self.mirror_x(config)
        nxt = self.base.step_once(state, config)
        if self.crosses(state.x, nxt.x, mirror):
            return nxt.evolve(vx=-nxt.vx, x=mirror - (nxt.x - mirror))
        return nxt

    def detect_events(self, prev: State, next_state: State, config: RunConfig) -> List[EventLabel]:
        labels = self.base.detect_events(prev, next_state, config)
        if self.crosses(prev.x, next_state.x, self.mirror_x(config)):
            labels.append(EventLabel(MIRROR_CROSS))
        return labels

    def apply_phase(self, phase: float, event_type: str, config: RunConfig) -> float:
        if event_type == MIRROR_CROSS:
            return negate_phase(phase)
        return self.base.apply_phase(phase, event_type, config)


class StickyVariant:
    """
    Walls hold the particle for one tick before releasing it.

    Overshooting a wall clamps to it, zeroes that axis' velocity and sets
    `stuck`. On release every axis moves one unit in the direction of its
    velocity and both velocities flip. No corner phase rules apply.
    """

    kind = VariantKind.STICKY

    @property
    def name(self) -> str:
        return self.kind.value

    def step_once(self, state: State, config: RunConfig) -> State:
        if state.stuck:
            return state.evolve(
                step=state.step + 1,
                x=state.x + _sign(state.vx),
                y=state.y + _sign(state.vy),
                vx=-state.vx,
                vy=-state.vy,
                stuck=False,
            )

        x, y = state.x + state.vx, state.y + state.vy
        vx, vy = state.vx, state.vy
        stuck = False
        if x < 0 or x > config.size_x:
            x = 0 if x < 0 else config.size_x
            vx = 0
            stuck = True
        if y < 0 or y > config.size_y:
            y = 0 if y < 0 else config.size_y
            vy = 0
            stuck = True
        return state.evolve(step=state.step + 1, x=x, y=y, vx=vx, vy=vy, stuck=stuck)

    def detect_events(self, prev: State, next_state: State, config: RunConfig) -> List[EventLabel]:
        if next_state.stuck and not prev.stuck:
            return [EventLabel(STICKY_ENTER)]
        if prev.stuck and not next_state.stuck:
            return [EventLabel(STICKY_EXIT)]
        return []

    def apply_phase(self, phase: float, event_type: str, config: RunConfig) -> float:
        return phase


class InversionReflectVariant:
    """
    Geometry swap at a step derived from the start configuration.

    Before the derived step the lattice clamps at walls; from it on the
    walls reflect with remainder. An `inversion.swap` marker is emitted
    once, on the tick that reaches the derived step.
    """

    kind = VariantKind.INVERSION_REFLECT

    def __init__(self):
        self.base = ClampReflectVariant()

    @property
    def name(self) -> str:
        return self.kind.value

    def step_once(self, state: State, config: RunConfig) -> State:
        inversion_step = compute_inversion_step_from_start(config)
        mode = ReflectMode.CLAMP if state.step < inversion_step else ReflectMode.REFLECT
        return self.base.step_once(state, config, mode)

    def detect_events(self, prev: State, next_state: State, config: RunConfig) -> List[EventLabel]:
        inversion_step = compute_inversion_step_from_start(config)
        labels = self.base.detect_events(prev, next_state, config)

        if prev.step < inversion_step <= next_state.step:
            labels.append(EventLabel(INVERSION_SWAP, {
                "inversionStep": inversion_step,
                "from": ReflectMode.CLAMP.value,
                "to": ReflectMode.REFLECT.value,
            }))
        return labels

    def apply_phase(self, phase: float, event_type: str, config: RunConfig) -> float:
        if event_type == INVERSION_SWAP:
            return phase
        return self.base.apply_phase(phase, event_type, config)


_REGISTRY: Dict[VariantKind, type] = {
    VariantKind.CLAMP_REFLECT: ClampReflectVariant,
    VariantKind.MIRROR: MirrorVariant,
    VariantKind.STICKY: StickyVariant,
    VariantKind.INVERSION_REFLECT: InversionReflectVariant,
}

# Short names accepted on the command line
ALIASES: Dict[str, VariantKind] = {
    "clamp": VariantKind.CLAMP_REFLECT,
    "mirror": VariantKind.MIRROR,
    "sticky": VariantKind.STICKY,
    "inversion": VariantKind.INVERSION_REFLECT,
}


def get_variant(kind: Union[VariantKind, str] = VariantKind.CLAMP_REFLECT) -> Variant:
    """
    Create a variant from its kind, full name or short alias.

    Raises:
        UnknownVariantError: If nothing is registered under that name
    """
    if isinstance(kind, str):
        if kind in ALIASES:
            kind = ALIASES[kind]
        else:
            try:
                kind = VariantKind(kind)
            except ValueError:
                raise UnknownVariantError(kind) from None
    try:
        return _REGISTRY[kind]()
    except KeyError:
        raise UnknownVariantError(kind) from None


def available_variants() -> List[str]:
    return [kind.value for kind in VariantKind]
