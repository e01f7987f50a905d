"""
Tests for core module: boundaries, event detection, phase rules, variants.
"""

import pytest
from inversion_sim.config import (
    CornerMode,
    EventOptions,
    ReflectMode,
    RunConfig,
    minimal_config,
)
from inversion_sim.core import (
    ClampReflectVariant,
    EventDetector,
    InversionReflectVariant,
    MirrorVariant,
    PhaseEvolver,
    State,
    StickyVariant,
    UnknownVariantError,
    Variant,
    VariantKind,
    available_variants,
    clamp_reflect,
    compute_inversion_step_from_start,
    get_variant,
    manhattan_dist_to_nearest_corner,
    reflect_with_remainder,
    run_variant,
    truncated_mod,
)
from inversion_sim.core.events import (
    EDGE_HIT_X,
    EDGE_HIT_Y,
    NEAR_CORNER_ENTER,
    NEAR_CORNER_EXIT,
)
from inversion_sim.core.variants import (
    INVERSION_SWAP,
    MIRROR_CROSS,
    STICKY_ENTER,
    STICKY_EXIT,
)


def _state(x, y, vx=1, vy=1, step=1, phase=0):
    return State(step=step, x=x, y=y, vx=vx, vy=vy, phase=phase)


class TestBoundaries:
    """Tests for clamp-reflect and true reflect."""

    def test_clamp_inside(self):
        """Moves inside the interval are unchanged."""
        assert clamp_reflect(2, 1, 0, 5) == (3, 1)

    def test_clamp_upper_wall(self):
        """Overshoot clamps to the wall and flips velocity."""
        assert clamp_reflect(4, 3, 0, 5) == (5, -3)

    def test_clamp_lower_wall(self):
        """Leftover distance is discarded at the lower wall."""
        assert clamp_reflect(1, -3, 0, 5) == (0, 3)

    def test_clamp_landing_on_wall_keeps_velocity(self):
        """Exactly reaching the wall is not an overshoot."""
        assert clamp_reflect(4, 1, 0, 5) == (5, 1)

    def test_fold_below_lower_bound(self):
        """pos=0, vel=-3 on [0, 5] folds to 3 moving up."""
        assert reflect_with_remainder(0, -3, 0, 5) == (3, 3)

    def test_fold_above_upper_bound(self):
        """pos=4, vel=3 on [0, 5] folds to 3 moving down."""
        assert reflect_with_remainder(4, 3, 0, 5) == (3, -3)

    def test_fold_longer_than_interval(self):
        """Velocities larger than the grid still reflect without losing distance."""
        # unfolded 1 + 12 = 13, period 10 -> 3, lower half-period
        assert reflect_with_remainder(1, 12, 0, 5) == (3, 12)

    def test_fold_float(self):
        """Fractional positions fold the same way."""
        pos, vel = reflect_with_remainder(4.5, 1.0, 0, 5)
        assert pos == pytest.approx(4.5)
        assert vel == -1.0

    def test_degenerate_interval(self):
        """L <= 0 folds to lo and flips velocity without dividing by zero."""
        assert reflect_with_remainder(3, 2, 0, 0) == (0, -2)
        assert reflect_with_remainder(3, 2, 4, 1) == (4, -2)


class TestEventDetector:
    """Tests for corner / edge / near-corner detection."""

    def test_no_event_inside(self):
        """A move inside the grid emits nothing."""
        cfg = minimal_config()
        assert EventDetector().detect(_state(1, 1), _state(2, 2), cfg) == []

    def test_main_diag_corner(self):
        """(sizeX, sizeY) is diagonal in the default mode."""
        cfg = minimal_config()
        labels = EventDetector().detect(_state(4, 6), _state(5, 7), cfg)
        assert [l.event_type for l in labels] == ["corner.diag"]

    def test_off_diag_corner(self):
        """(0, sizeY) is off-diagonal in the default mode."""
        cfg = minimal_config()
        labels = EventDetector().detect(_state(1, 6), _state(0, 7), cfg)
        assert [l.event_type for l in labels] == ["corner.off"]

    def test_corner_details(self):
        """Corner labels carry their classification payload."""
        cfg = minimal_config()
        label = EventDetector().detect(_state(1, 6), _state(0, 7), cfg)[0]
        assert label.details["cornerClass"] == "off"
        assert label.details["cornerKey"] == "0,7"
        assert label.details["geometry"] == "square"
        assert label.details["reflectMode"] == "clamp"
        assert label.details["cornerMode"] == "mainDiag"

    @pytest.mark.parametrize("mode,corner,velocity,expected", [
        (CornerMode.ANTI_DIAG, (5, 7), (1, 1), "corner.off"),
        (CornerMode.ANTI_DIAG, (5, 0), (1, 1), "corner.diag"),
        (CornerMode.PARITY, (5, 7), (1, 1), "corner.diag"),
        (CornerMode.PARITY, (0, 7), (1, 1), "corner.off"),
        (CornerMode.VELOCITY, (5, 7), (1, -1), "corner.off"),
        (CornerMode.VELOCITY, (0, 0), (-1, -1), "corner.diag"),
    ])
    def test_corner_modes(self, mode, corner, velocity, expected):
        """Each corner mode splits corners its own way."""
        cfg = RunConfig(size_x=5, size_y=7, events=EventOptions(corner_mode=mode))
        nxt = _state(*corner, *velocity)
        labels = EventDetector().detect(_state(2, 2), nxt, cfg)
        assert [l.event_type for l in labels] == [expected]

    def test_edge_events_only_on_first_touch(self):
        """Edge hits fire when a boundary is first touched, not while on it."""
        cfg = RunConfig(size_x=5, size_y=7, events=EventOptions(emit_edge_events=True))
        det = EventDetector()
        assert [l.event_type for l in det.detect(_state(4, 3), _state(5, 4), cfg)] == [EDGE_HIT_X]
        assert det.detect(_state(5, 4), _state(5, 5), cfg) == []

    def test_near_corner_enter_exit(self):
        """Crossing the Manhattan threshold emits enter, then exit."""
        cfg = RunConfig(size_x=5, size_y=7, events=EventOptions(
            emit_near_corner_events=True, near_corner_dist=1))
        det = EventDetector()
        assert [l.event_type for l in det.detect(_state(2, 2), _state(1, 0), cfg)] == [NEAR_CORNER_ENTER]
        assert [l.event_type for l in det.detect(_state(1, 0), _state(2, 1), cfg)] == [NEAR_CORNER_EXIT]

    def test_detection_order(self):
        """Edges, then near-corner, then the corner event."""
        cfg = RunConfig(size_x=5, size_y=7, events=EventOptions(
            emit_edge_events=True, emit_near_corner_events=True))
        labels = EventDetector().detect(_state(4, 6), _state(5, 7), cfg)
        assert [l.event_type for l in labels] == [
            EDGE_HIT_X, EDGE_HIT_Y, NEAR_CORNER_ENTER, "corner.diag",
        ]

    def test_manhattan_distance(self):
        """Distance to the nearest of the four corners."""
        cfg = minimal_config()
        assert manhattan_dist_to_nearest_corner(0, 0, cfg) == 0
        assert manhattan_dist_to_nearest_corner(2, 3, cfg) == 5
        assert manhattan_dist_to_nearest_corner(4, 6, cfg) == 2


class TestPhaseRules:
    """Tests for modular phase arithmetic."""

    def test_off_diagonal_multiplies(self):
        """phase 5 -> 35 with multiplier 7."""
        assert PhaseEvolver().apply(5, "corner.off", minimal_config()) == 35

    def test_diagonal_adds_one(self):
        """phase 5 -> 6."""
        assert PhaseEvolver().apply(5, "corner.diag", minimal_config()) == 6

    def test_reduction_modulo(self):
        """Results are reduced modulo mod."""
        cfg = RunConfig(multiplier=7, mod=11)
        assert PhaseEvolver().apply(5, "corner.off", cfg) == 2
        assert PhaseEvolver().apply(10, "corner.diag", cfg) == 0

    def test_negative_phase_keeps_sign(self):
        """The remainder keeps the sign of the dividend."""
        cfg = minimal_config()
        assert PhaseEvolver().apply(-5, "corner.off", cfg) == -35
        assert PhaseEvolver().apply(-5, "corner.diag", cfg) == -4
        assert truncated_mod(-1000010, 1000003) == -7

    def test_fractional_multiplier(self):
        """Fractional multipliers are legal."""
        cfg = RunConfig(multiplier=0.5)
        assert PhaseEvolver().apply(5, "corner.off", cfg) == pytest.approx(2.5)

    def test_other_events_are_noops(self):
        """Instrumentation labels never touch phase."""
        cfg = minimal_config()
        for label in (EDGE_HIT_X, NEAR_CORNER_ENTER, "INVERT_CAUSAL"):
            assert PhaseEvolver().apply(5, label, cfg) == 5

    def test_custom_labels(self):
        """Corner labels can be renamed through EventOptions."""
        cfg = RunConfig(events=EventOptions(corner_off_event_type="hit.off"))
        assert PhaseEvolver().apply(5, "hit.off", cfg) == 35
        assert PhaseEvolver().apply(5, "corner.off", cfg) == 5


class TestVariants:
    """Tests for the four stepping policies."""

    def test_registry(self):
        """Aliases, full names and kinds resolve to the same variant class."""
        assert isinstance(get_variant("clamp"), ClampReflectVariant)
        assert isinstance(get_variant("mirror.inversion"), MirrorVariant)
        assert isinstance(get_variant(VariantKind.STICKY), StickyVariant)
        assert isinstance(get_variant("inversion"), InversionReflectVariant)
        assert len(available_variants()) == 4

    def test_unknown_variant(self):
        """Unregistered names raise UnknownVariantError."""
        with pytest.raises(UnknownVariantError):
            get_variant("hexagonal")

    def test_protocol(self):
        """All variants satisfy the Variant protocol."""
        for name in available_variants():
            assert isinstance(get_variant(name), Variant)

    def test_clamp_step_is_pure(self):
        """step_once does not mutate its input and only advances kinematics."""
        cfg = minimal_config()
        state = State.initial(cfg)
        nxt = ClampReflectVariant().step_once(state, cfg)
        assert state.step == 0 and state.x == 1
        assert (nxt.step, nxt.x, nxt.y, nxt.vx, nxt.vy, nxt.phase) == (1, 2, 2, 1, 1, 0)

    def test_clamp_reflect_mode_from_config(self):
        """reflect_mode=REFLECT keeps leftover distance."""
        cfg = RunConfig(size_x=5, size_y=7, x0=4, y0=1, vx0=3, vy0=1, reflect_mode=ReflectMode.REFLECT)
        nxt = ClampReflectVariant().step_once(State.initial(cfg), cfg)
        assert (nxt.x, nxt.vx) == (3, -3)

    def test_mirror_crossing(self):
        """Crossing x = floor(sizeX/2) flips vx and negates phase."""
        cfg = RunConfig(size_x=6, size_y=7, x0=2, y0=1, vx0=1, vy0=1, phase0=5, steps=1)
        result = run_variant(MirrorVariant(), cfg)
        nxt = result.trajectory[1]
        assert (nxt.x, nxt.vx) == (3, -1)
        assert nxt.phase == -5
        crosses = result.events_of_type(MIRROR_CROSS)
        assert len(crosses) == 1
        assert (crosses[0].phase_before, crosses[0].phase_after) == (5, -5)

    def test_mirror_negation_unreduced(self):
        """Mirror negation is not reduced modulo mod."""
        assert MirrorVariant().apply_phase(5, MIRROR_CROSS, minimal_config()) == -5

    def test_mirror_reflect_mode_from_config(self):
        """The mirror variant folds at walls under reflect_mode=REFLECT."""
        cfg = RunConfig(size_x=6, size_y=7, x0=4, y0=1, vx0=4, vy0=1, reflect_mode=ReflectMode.REFLECT)
        variant = MirrorVariant()
        state = State.initial(cfg)
        nxt = variant.step_once(state, cfg)
        # 4 + 4 = 8 folds back to 4 without crossing the mirror at 3
        assert (nxt.x, nxt.vx) == (4, -4)
        assert MIRROR_CROSS not in [label.event_type for label in variant.detect_events(state, nxt, cfg)]

        clamped = variant.step_once(state, RunConfig(size_x=6, size_y=7, x0=4, y0=1, vx0=4, vy0=1))
        assert (clamped.x, clamped.vx) == (6, -4)

    def test_sticky_dwell_and_release(self):
        """Walls hold for one tick, then release with flipped velocities."""
        cfg = RunConfig(size_x=5, size_y=7, x0=4, y0=1, vx0=2, vy0=1, steps=2)
        result = run_variant(StickyVariant(), cfg)
        s1, s2 = result.trajectory[1], result.trajectory[2]
        assert (s1.x, s1.y, s1.vx, s1.vy, s1.stuck) == (5, 2, 0, 1, True)
        assert (s2.x, s2.y, s2.vx, s2.vy, s2.stuck) == (5, 3, 0, -1, False)
        assert [e.event_type for e in result.events] == [STICKY_ENTER, STICKY_EXIT]

    def test_sticky_never_changes_phase(self):
        """No corner rules in the sticky variant."""
        cfg = RunConfig(size_x=3, size_y=3, x0=0, y0=0, vx0=1, vy0=1, phase0=5, steps=50)
        result = run_variant(StickyVariant(), cfg)
        assert all(s.phase == 5 for s in result.trajectory)

    def test_stuck_flag_roundtrip(self):
        """The stuck flag survives serialization."""
        state = State(step=3, x=5, y=2, vx=0, vy=1, phase=0, stuck=True)
        assert State.from_dict(state.to_dict()) == state
        assert "stuck" not in state.evolve(stuck=False).to_dict()

    def test_inversion_reflect_swap_marker(self):
        """One inversion.swap marker, on the derived step, without phase change."""
        cfg = RunConfig(size_x=5, size_y=7, x0=1, y0=1, vx0=3, vy0=2, steps=200)
        inv = compute_inversion_step_from_start(cfg)
        result = run_variant(InversionReflectVariant(), cfg)
        swaps = result.events_of_type(INVERSION_SWAP)
        assert len(swaps) == 1
        assert swaps[0].step == inv
        assert swaps[0].phase_before == swaps[0].phase_after

    def test_inversion_reflect_mode_switch(self):
        """Clamp before the derived step, true reflect from it on."""
        cfg = RunConfig(size_x=5, size_y=7, x0=4, y0=1, vx0=3, vy0=1, steps=200)
        inv = compute_inversion_step_from_start(cfg)
        variant = InversionReflectVariant()

        before = variant.step_once(State(step=inv - 1, x=4, y=1, vx=3, vy=1, phase=0), cfg)
        after = variant.step_once(State(step=inv, x=4, y=1, vx=3, vy=1, phase=0), cfg)
        assert (before.x, before.vx) == (5, -3)
        assert (after.x, after.vx) == (3, -3)
