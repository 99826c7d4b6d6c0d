"""
Cones exercise state machine: session lifecycle and repetition counting.
"""

import pytest

from physio_service.models import (
    ALIGNMENT_OK_FRAMES,
    COUNTDOWN_SEC,
    ZONE_DWELL_FRAMES,
    Confidence,
    ExerciseConfig,
    ExerciseEvent,
    ExerciseMode,
    ExerciseState,
    ExerciseStateMachine,
    RepState,
)

from conftest import aligned_frame, frame, grip_rep_frames, to_active


# ═══════════════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════════

def test_initial_state(machine):
    state = machine.get_state()
    assert state.exercise_state == ExerciseState.SETUP_ALIGNMENT
    assert state.rep_state == RepState.WAIT_PICKUP
    assert state.countdown_remaining == COUNTDOWN_SEC
    assert state.rep_count == 0


def test_alignment_needs_consecutive_frames(machine):
    for _ in range(ALIGNMENT_OK_FRAMES - 1):
        machine.process_frame(aligned_frame())
    assert machine.exercise_state == ExerciseState.SETUP_ALIGNMENT
    assert machine.get_state().alignment_ok_frames == ALIGNMENT_OK_FRAMES - 1

    machine.process_frame(aligned_frame())
    assert machine.exercise_state == ExerciseState.SETUP_ZONES


def test_alignment_counter_resets_on_bad_frame(machine):
    for _ in range(ALIGNMENT_OK_FRAMES - 1):
        machine.process_frame(aligned_frame())
    machine.process_frame(aligned_frame(shoulder_center_x=0.7))
    assert machine.get_state().alignment_ok_frames == 0

    for _ in range(ALIGNMENT_OK_FRAMES - 1):
        machine.process_frame(aligned_frame())
    assert machine.exercise_state == ExerciseState.SETUP_ALIGNMENT
    machine.process_frame(aligned_frame())
    assert machine.exercise_state == ExerciseState.SETUP_ZONES


@pytest.mark.parametrize("changes", [
    {"shoulder_center_x": None},
    {"shoulder_width": None},
    {"shoulder_width": 0.5},
    {"shoulder_center_x": 0.3},
    {"pose_ok": False},
    {"hand_ok": False},
    {"confidence": Confidence(pose=0.4, hand=0.9)},
    {"confidence": Confidence(pose=0.9, hand=0.4)},
])
def test_alignment_rejects_bad_frames(machine, changes):
    for _ in range(ALIGNMENT_OK_FRAMES * 2):
        machine.process_frame(aligned_frame().with_changes(**changes))
    assert machine.exercise_state == ExerciseState.SETUP_ALIGNMENT
    assert machine.get_state().alignment_ok_frames == 0


def test_alignment_bounds_are_inclusive(machine):
    for _ in range(ALIGNMENT_OK_FRAMES):
        machine.process_frame(aligned_frame(shoulder_center_x=0.4, shoulder_width=0.45))
    assert machine.exercise_state == ExerciseState.SETUP_ZONES


def test_invalid_events_are_ignored(machine):
    before = machine.get_state()
    for event in (ExerciseEvent.PAUSE, ExerciseEvent.RESUME, ExerciseEvent.COUNTDOWN_DONE,
                  ExerciseEvent.USER_STOP, ExerciseEvent.TIME_UP, ExerciseEvent.READY_PRESSED):
        assert machine.dispatch(event) is False
    assert machine.get_state() == before


def test_string_and_unknown_events(machine):
    assert machine.dispatch("ALIGNMENT_OK") is True
    assert machine.exercise_state == ExerciseState.SETUP_ZONES
    assert machine.dispatch("DANCE") is False
    assert machine.dispatch(ExerciseEvent.FRAME) is False


def test_ready_gate_only_by_explicit_request(machine):
    assert machine.enter_ready_gate() is False

    machine.dispatch(ExerciseEvent.ALIGNMENT_OK)
    assert machine.dispatch(ExerciseEvent.READY_PRESSED) is False
    assert machine.enter_ready_gate() is True
    assert machine.exercise_state == ExerciseState.READY_GATE

    assert machine.dispatch(ExerciseEvent.READY_PRESSED) is True
    assert machine.exercise_state == ExerciseState.COUNTDOWN_3_2_1
    assert machine.get_state().countdown_remaining == COUNTDOWN_SEC


def test_countdown_ticks_to_active(machine):
    machine.dispatch(ExerciseEvent.ALIGNMENT_OK)
    machine.dispatch(ExerciseEvent.ZONES_CONFIRMED)

    for expected in range(COUNTDOWN_SEC - 1, 0, -1):
        assert machine.tick_countdown() is False
        assert machine.get_state().countdown_remaining == expected

    assert machine.tick_countdown() is True
    assert machine.exercise_state == ExerciseState.ACTIVE
    assert machine.tick_countdown() is False


def test_countdown_is_reset_before_state_callback(machine):
    seen = []
    machine.set_on_state_change(lambda s: seen.append((s, machine.get_state().countdown_remaining)))
    machine.dispatch(ExerciseEvent.ALIGNMENT_OK)
    machine.dispatch(ExerciseEvent.ZONES_CONFIRMED)
    assert seen[-1] == (ExerciseState.COUNTDOWN_3_2_1, COUNTDOWN_SEC)


def test_tick_outside_countdown_does_nothing(machine):
    assert machine.tick_countdown() is False
    assert machine.get_state().countdown_remaining == COUNTDOWN_SEC


def test_pause_resume_stop(active_machine):
    m = active_machine
    assert m.dispatch(ExerciseEvent.PAUSE) is True
    assert m.exercise_state == ExerciseState.PAUSED

    # Frames and time-up are ignored while paused
    assert m.process_frame(frame(in_start_zone=True, grip=True)) is False
    assert m.rep_state == RepState.WAIT_PICKUP
    assert m.dispatch(ExerciseEvent.TIME_UP) is False

    assert m.dispatch(ExerciseEvent.RESUME) is True
    assert m.exercise_state == ExerciseState.ACTIVE

    m.dispatch(ExerciseEvent.PAUSE)
    assert m.dispatch(ExerciseEvent.USER_STOP) is True
    assert m.exercise_state == ExerciseState.COMPLETED


def test_completed_is_terminal(active_machine):
    m = active_machine
    m.dispatch(ExerciseEvent.TIME_UP)
    assert m.exercise_state == ExerciseState.COMPLETED
    for event in ExerciseEvent:
        m.dispatch(event)
    assert m.exercise_state == ExerciseState.COMPLETED


def test_state_change_callback_order(machine):
    seen = []
    machine.set_on_state_change(seen.append)
    to_active(machine)
    machine.dispatch(ExerciseEvent.USER_STOP)
    assert seen == [
        ExerciseState.SETUP_ZONES,
        ExerciseState.COUNTDOWN_3_2_1,
        ExerciseState.ACTIVE,
        ExerciseState.COMPLETED,
    ]


def test_frames_ignored_during_setup_zones(machine):
    machine.dispatch(ExerciseEvent.ALIGNMENT_OK)
    assert machine.process_frame(frame(in_start_zone=True, grip=True)) is False
    assert machine.rep_state == RepState.WAIT_PICKUP


# ═══════════════════════════════════════════════════════════════════════════════
# REPETITIONS
# ═══════════════════════════════════════════════════════════════════════════════

def test_rep_counted_via_grip(active_machine):
    m = active_machine
    starts, counts = [], []
    m.set_on_rep_start(lambda: starts.append(m.rep_state))
    m.set_on_rep_counted(lambda: counts.append(m.rep_count))

    f_pickup, f_carry, f_end, f_release = grip_rep_frames()
    m.process_frame(f_pickup)
    assert m.rep_state == RepState.CARRYING
    assert m.get_state().entered_carrying_by_dwell is False
    assert starts == [RepState.CARRYING]

    m.process_frame(f_carry)
    assert m.rep_state == RepState.WAIT_DROP
    m.process_frame(f_end)
    assert m.rep_state == RepState.CONFIRM_RELEASE
    m.process_frame(f_release)

    assert m.rep_count == 1
    assert counts == [1]
    assert m.rep_state == RepState.WAIT_PICKUP


def test_rep_counted_via_dwell(active_machine):
    m = active_machine
    for _ in range(ZONE_DWELL_FRAMES - 1):
        m.process_frame(frame(in_start_zone=True))
    assert m.rep_state == RepState.WAIT_PICKUP

    m.process_frame(frame(in_start_zone=True))
    assert m.rep_state == RepState.CARRYING
    assert m.get_state().entered_carrying_by_dwell is True

    m.process_frame(frame())
    assert m.rep_state == RepState.WAIT_DROP

    for _ in range(ZONE_DWELL_FRAMES - 1):
        m.process_frame(frame(in_end_zone=True))
    assert m.rep_state == RepState.WAIT_DROP
    m.process_frame(frame(in_end_zone=True))
    assert m.rep_state == RepState.CONFIRM_RELEASE
    assert m.rep_count == 0

    m.process_frame(frame(in_end_zone=True))
    assert m.rep_count == 1
    assert m.rep_state == RepState.WAIT_PICKUP


def test_start_dwell_needs_hand(active_machine):
    m = active_machine
    for _ in range(ZONE_DWELL_FRAMES * 2):
        m.process_frame(frame(in_start_zone=True, hand_ok=False))
    assert m.rep_state == RepState.WAIT_PICKUP
    assert m.get_state().start_zone_dwell_frames == 0


def test_grip_pickup_cancelled_when_grip_lost_in_start_zone(active_machine):
    m = active_machine
    m.process_frame(frame(in_start_zone=True, grip=True))
    m.process_frame(frame(in_start_zone=True, grip=False))
    assert m.rep_state == RepState.WAIT_PICKUP
    assert m.get_state().start_zone_dwell_frames == 0


def test_dwell_pickup_survives_grip_loss(active_machine):
    m = active_machine
    for _ in range(ZONE_DWELL_FRAMES):
        m.process_frame(frame(in_start_zone=True))
    m.process_frame(frame(in_start_zone=True, grip=False))
    assert m.rep_state == RepState.CARRYING


def test_grip_lost_before_end_zone_aborts(active_machine):
    m = active_machine
    m.process_frame(frame(in_start_zone=True, grip=True))
    m.process_frame(frame(grip=True))
    assert m.rep_state == RepState.WAIT_DROP
    m.process_frame(frame(grip=False))
    assert m.rep_state == RepState.WAIT_PICKUP
    assert m.rep_count == 0


def test_grip_lost_outside_end_zone_during_release_aborts(active_machine):
    m = active_machine
    for f in grip_rep_frames()[:3]:
        m.process_frame(f)
    assert m.rep_state == RepState.CONFIRM_RELEASE
    m.process_frame(frame(grip=False))
    assert m.rep_state == RepState.WAIT_PICKUP
    assert m.rep_count == 0


def test_cooldown_blocks_double_count(active_machine, clock):
    m = active_machine
    for f in grip_rep_frames():
        m.process_frame(f)
    assert m.rep_count == 1

    clock.advance(100)
    for f in grip_rep_frames():
        m.process_frame(f)
    assert m.rep_count == 1
    assert m.rep_state == RepState.CONFIRM_RELEASE

    clock.advance(400)
    m.process_frame(frame(in_end_zone=True, grip=False))
    assert m.rep_count == 2


def test_target_reps_completes_session(clock):
    config = ExerciseConfig(mode=ExerciseMode.TARGET_REPS, target_reps=2)
    m = ExerciseStateMachine(config, clock=clock)
    seen = []
    m.set_on_state_change(seen.append)
    to_active(m)

    for _ in range(2):
        for f in grip_rep_frames():
            m.process_frame(f)
        clock.advance(config.rep_cooldown_ms)

    assert m.rep_count == 2
    assert m.exercise_state == ExerciseState.COMPLETED
    assert seen[-1] == ExerciseState.COMPLETED

    for f in grip_rep_frames():
        m.process_frame(f)
    assert m.rep_count == 2


def test_timed_mode_ignores_target(clock):
    config = ExerciseConfig(mode=ExerciseMode.TIMED, target_reps=1)
    m = ExerciseStateMachine(config, clock=clock)
    to_active(m)
    for f in grip_rep_frames():
        m.process_frame(f)
    assert m.rep_count == 1
    assert m.exercise_state == ExerciseState.ACTIVE


def test_rep_counted_outside_active_is_ignored(machine):
    assert machine.dispatch(ExerciseEvent.REP_COUNTED) is False
    assert machine.rep_count == 0


def test_rep_state_resumes_after_pause(active_machine):
    m = active_machine
    m.process_frame(frame(in_start_zone=True, grip=True))
    m.dispatch(ExerciseEvent.PAUSE)
    m.dispatch(ExerciseEvent.RESUME)
    assert m.rep_state == RepState.CARRYING
