"""
Tests for the run engine and run configuration.
"""

import math
import pytest
from dataclasses import replace

from inversion_sim.config import (
    ConfigError,
    CornerMode,
    EventOptions,
    InversionKind,
    InversionMark,
    ReflectMode,
    RunConfig,
    canonical_config,
    four_stage_schedule,
    minimal_config,
)
from inversion_sim.core import (
    EVENT_FIELDS,
    Event,
    RunEngine,
    State,
    available_variants,
    get_variant,
)


class TestRunConfig:
    """Tests for configuration validation and persistence."""

    def test_defaults_valid(self):
        """Presets validate cleanly."""
        assert minimal_config().validate() == []
        assert canonical_config().validate() == []

    @pytest.mark.parametrize("changes", [
        {"size_x": 0},
        {"size_y": -1},
        {"size_x": math.inf},
        {"mod": 0},
        {"mod": 2.5},
        {"multiplier": math.nan},
        {"steps": 0},
        {"x0": math.nan},
    ])
    def test_invalid(self, changes):
        """Invalid values are reported and check() raises."""
        cfg = replace(minimal_config(), **changes)
        assert cfg.validate()
        with pytest.raises(ConfigError):
            cfg.check()

    def test_error_lists_all_issues(self):
        """ConfigError carries every issue found."""
        cfg = replace(minimal_config(), size_x=0, mod=0)
        with pytest.raises(ConfigError) as info:
            cfg.check()
        assert len(info.value.issues) == 2

    def test_negative_schedule_step(self):
        """Schedule steps must be non-negative integers."""
        cfg = replace(minimal_config(), inversion_schedule=[InversionMark(-1, InversionKind.GEOM)])
        assert cfg.validate()

    def test_schedule_stored_as_tuple(self):
        """Lists are converted so configs stay hashable."""
        cfg = RunConfig(inversion_schedule=[InversionMark(3, InversionKind.CAUSAL)])
        assert isinstance(cfg.inversion_schedule, tuple)
        hash(cfg)

    def test_to_dict_keys(self):
        """External keys are camelCase; unset optionals are omitted."""
        data = minimal_config().to_dict()
        assert data["sizeX"] == 5 and data["sizeY"] == 7
        assert data["reflectMode"] == "clamp"
        assert data["events"]["cornerMode"] == "mainDiag"
        assert "inversionStep" not in data
        assert "inversionSchedule" not in data

    def test_dict_roundtrip(self):
        """from_dict(to_dict()) restores an equal config."""
        cfg = RunConfig(
            size_x=9, size_y=4, steps=300, multiplier=0.5, inversion_step=12,
            inversion_schedule=four_stage_schedule(300),
            reflect_mode=ReflectMode.REFLECT,
            events=EventOptions(corner_mode=CornerMode.PARITY, emit_edge_events=True, near_corner_dist=2),
        )
        assert RunConfig.from_dict(cfg.to_dict()) == cfg

    def test_save_load(self, tmp_path):
        """Configurations persist as JSON."""
        cfg = canonical_config()
        path = tmp_path / "cfg" / "run.json"
        cfg.save(path)
        assert RunConfig.load(path) == cfg


class TestRunEngine:
    """Tests for the run loop."""

    def test_end_to_end(self):
        """The 5x7 scenario: 101 states, finite event count, reproducible."""
        cfg = minimal_config()
        engine = RunEngine(get_variant("clamp"))
        first = engine.run(cfg)
        second = engine.run(cfg)

        assert len(first.trajectory) == 101
        assert 0 <= len(first.events) < math.inf
        assert first.trajectory == second.trajectory
        assert first.events == second.events

    def test_known_corner_sequence(self):
        """Corners of the 5x7 scenario and their phase updates."""
        result = RunEngine().run(minimal_config())
        assert [e.step for e in result.events] == [22, 23, 46, 47, 70, 71, 94, 95]
        assert [e.event_type for e in result.events] == [
            "corner.off", "corner.off", "corner.diag", "corner.diag",
            "corner.off", "corner.off", "corner.diag", "corner.diag",
        ]
        assert [e.phase_after for e in result.events] == [0, 0, 1, 2, 14, 98, 99, 100]
        final = result.final_state
        assert (final.step, final.x, final.y, final.vx, final.vy, final.phase) == (100, 5, 5, 1, 1, 100)

    def test_events_chain_phase(self):
        """Each event sees the phase left by the previous one."""
        result = RunEngine().run(minimal_config())
        for prev, nxt in zip(result.events, result.events[1:]):
            assert nxt.phase_before == prev.phase_after
        for event in result.events:
            assert result.trajectory[event.step].phase == event.phase_after

    @pytest.mark.parametrize("variant", available_variants())
    def test_length_and_determinism(self, variant):
        """Every variant gives steps+1 states and reproduces itself."""
        cfg = replace(
            minimal_config(),
            steps=250,
            vx0=2,
            inversion_schedule=four_stage_schedule(250),
        )
        a = RunEngine(get_variant(variant)).run(cfg)
        b = RunEngine(get_variant(variant)).run(cfg)
        assert len(a.trajectory) == 251
        assert [s.step for s in a.trajectory] == list(range(251))
        assert a.trajectory == b.trajectory
        assert a.events == b.events

    def test_events_ordered_by_step(self):
        """The event log is sorted by step."""
        cfg = replace(minimal_config(), steps=500, inversion_schedule=four_stage_schedule(500),
                      events=EventOptions(emit_edge_events=True, emit_near_corner_events=True))
        result = RunEngine().run(cfg)
        steps = [e.step for e in result.events]
        assert steps == sorted(steps)

    def test_instrumentation_does_not_change_phase(self):
        """Edge and near-corner events leave the phase series untouched."""
        plain = RunEngine().run(replace(minimal_config(), steps=500))
        instrumented = RunEngine().run(replace(
            minimal_config(), steps=500,
            events=EventOptions(emit_edge_events=True, emit_near_corner_events=True),
        ))
        assert plain.phase_series() == instrumented.phase_series()
        assert len(instrumented.events) > len(plain.events)

    def test_invert_and_corner_same_tick(self):
        """A schedule marker and a corner event can share a tick, marker first."""
        cfg = replace(minimal_config(), inversion_schedule=(InversionMark(22, InversionKind.CAUSAL),))
        result = RunEngine().run(cfg)
        tick = [e.event_type for e in result.events if e.step == 22]
        assert tick == ["INVERT_CAUSAL", "corner.off"]

    def test_invalid_config_raises_before_run(self):
        """Configuration errors surface before any tick."""
        calls = []
        engine = RunEngine()
        engine.add_step_callback(lambda state, events: calls.append(state.step))
        with pytest.raises(ConfigError):
            engine.run(replace(minimal_config(), mod=-3))
        assert calls == []

    def test_step_callbacks(self):
        """Callbacks see every tick in order."""
        seen = []
        engine = RunEngine()
        engine.add_step_callback(lambda state, events: seen.append(state.step))
        engine.run(minimal_config())
        assert seen == list(range(1, 101))

    def test_stats(self):
        """Event counts by type and inversion count."""
        cfg = replace(minimal_config(), inversion_schedule=four_stage_schedule(100))
        result = RunEngine().run(cfg)
        assert result.stats.total_steps == 100
        assert result.stats.total_events == len(result.events)
        assert result.stats.inversions == 4

    def test_result_to_dict(self):
        """Serializable output carries trajectory, events and config."""
        result = RunEngine().run(minimal_config())
        data = result.to_dict()
        assert len(data["trajectory"]) == 101
        assert data["trajectory"][0] == {
            "step": 0, "x": 1, "y": 1, "vx": 1, "vy": 1, "phase": 0,
            "inverted": False, "inversionMask": 0,
        }
        assert list(data["events"][0].keys()) == list(EVENT_FIELDS)
        assert data["config"] == minimal_config().to_dict()


class TestRecords:
    """Tests for State and Event records."""

    def test_state_initial(self):
        """Tick 0 is built from the config."""
        state = State.initial(minimal_config())
        assert (state.step, state.x, state.y, state.vx, state.vy, state.phase) == (0, 1, 1, 1, 1, 0)
        assert not state.inverted and state.inversion_mask == 0

    def test_state_is_immutable(self):
        """States are frozen; evolve() returns a copy."""
        state = State.initial(minimal_config())
        with pytest.raises(AttributeError):
            state.x = 3
        moved = state.evolve(x=3)
        assert moved.x == 3 and state.x == 1

    def test_event_row(self):
        """Rows follow the tabular header order."""
        event = Event(step=4, event_type="corner.off", phase_before=5, phase_after=35, x=0, y=7, vx=-1, vy=1)
        assert event.to_row() == [4, "corner.off", 5, 35, 0, 7, -1, 1]
        assert Event.from_dict(event.to_dict()) == event
