"""
Run engine for the inversion simulator.

Drives one run tick by tick:
    1. variant.step_once proposes the next state
    2. the inversion scheduler applies any inversion due on this tick
    3. variant.detect_events labels the transition, and every label is
       passed through variant.apply_phase in detection order
    4. the merged state and all events are appended to the output

The loop is single-threaded and has no I/O. Configuration is validated
once, before the first tick.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import time

from ..config import RunConfig
from .schedule import InversionScheduler
from .state import Event, State
from .variants import Variant, VariantKind, get_variant

logger = logging.getLogger(__name__)


@dataclass
class RunStats:
    """Statistics from a run."""
    total_steps: int = 0
    events_by_type: Dict[str, int] = field(default_factory=dict)
    inversions: int = 0

    # Timing
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def total_events(self) -> int:
        return sum(self.events_by_type.values())

    @property
    def elapsed_time(self) -> float:
        return self.end_time - self.start_time

    @property
    def steps_per_second(self) -> float:
        if self.elapsed_time > 0:
            return self.total_steps / self.elapsed_time
        return 0.0


@dataclass
class RunResult:
    """
    Complete result of a run.

    Contains:
    - trajectory: steps + 1 states, tick 0 included
    - events: ordered by step, stable within a tick
    - the configuration and variant used
    - statistics (not part of the reproducible output)
    """
    trajectory: List[State]
    events: List[Event]
    config: RunConfig
    variant_name: str
    stats: RunStats = field(default_factory=RunStats)

    @property
    def final_state(self) -> State:
        return self.trajectory[-1]

    def events_of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]

    def phase_series(self) -> List[float]:
        return [s.phase for s in self.trajectory]

    def to_dict(self) -> Dict[str, Any]:
        """Serializable output: trajectory, events and the config used."""
        return {
            "variant": self.variant_name,
            "config": self.config.to_dict(),
            "trajectory": [s.to_dict() for s in self.trajectory],
            "events": [e.to_dict() for e in self.events],
        }


class RunEngine:
    """
    Deterministic run loop for one variant.

    The engine holds no state between runs; every call to `run` builds a
    fresh scheduler, trajectory and event log. Identical (variant, config)
    pairs always give identical trajectories and event logs.

    Example:
        engine = RunEngine(get_variant("clamp"))
        result = engine.run(minimal_config())

        for event in result.events:
            print(event.step, event.event_type, event.phase_after)
    """

    def __init__(self, variant: Optional[Variant] = None):
        """
        Initialize run engine.

        Args:
            variant: Stepping policy (clamp-reflect if None)
        """
        self.variant = variant if variant is not None else get_variant(VariantKind.CLAMP_REFLECT)

        # Callbacks
        self._step_callbacks: List[Callable[[State, List[Event]], None]] = []

    def add_step_callback(self, callback: Callable[[State, List[Event]], None]) -> None:
        """Add callback to be called after each tick with the new state and its events."""
        self._step_callbacks.append(callback)

    def step(
        self,
        state: State,
        config: RunConfig,
        scheduler: InversionScheduler,
    ) -> Tuple[State, List[Event]]:
        """
        Perform a single tick.

        Args:
            state: Current state
            config: Run configuration (already validated)
            scheduler: Scheduler of the current run

        Returns:
            (next state, events of this tick)
        """
        proposed = self.variant.step_once(state, config)
        nxt, events = scheduler.apply(proposed)

        phase = nxt.phase
        for label in self.variant.detect_events(state, nxt, config):
            before = phase
            phase = self.variant.apply_phase(phase, label.event_type, config)
            events.append(Event.at(nxt, label.event_type, before, phase))

        if phase != nxt.phase:
            nxt = nxt.evolve(phase=phase)
        return nxt, events

    def run(self, config: RunConfig) -> RunResult:
        """
        Run the configured number of ticks.

        Args:
            config: Run configuration

        Returns:
            RunResult with trajectory, events and statistics

        Raises:
            ConfigError: If the configuration is invalid
        """
        config.check()

        stats = RunStats(start_time=time.time())
        scheduler = InversionScheduler(config)

        state = State.initial(config)
        trajectory: List[State] = [state]
        events: List[Event] = []

        logger.debug(f"Starting run: variant={self.variant.name}, steps={config.steps}")

        for _ in range(int(config.steps)):
            state, tick_events = self.step(state, config, scheduler)
            trajectory.append(state)
            events.extend(tick_events)

            for callback in self._step_callbacks:
                callback(state, tick_events)

        # Finalize stats
        stats.end_time = time.time()
        stats.total_steps = int(config.steps)
        for event in events:
            stats.events_by_type[event.event_type] = stats.events_by_type.get(event.event_type, 0) + 1
        stats.inversions = sum(
            n for name, n in stats.events_by_type.items() if name.startswith("INVERT")
        )

        logger.debug(
            f"Run finished: {len(trajectory)} states, {len(events)} events, "
            f"{stats.steps_per_second:.0f} steps/s"
        )

        return RunResult(
            trajectory=trajectory,
            events=events,
            config=config,
            variant_name=self.variant.name,
            stats=stats,
        )


# ===== Utility functions =====

def run_variant(variant: Variant, config: RunConfig) -> RunResult:
    """Run `config` once with `variant`."""
    return RunEngine(variant).run(config)
