"""
Cones session handler: wiring of state machine, metrics and extractor.
"""

import pytest

from physio_service.models import (
    ConesSessionHandler,
    ExerciseMode,
    ExerciseState,
    JointAngles,
    NormalizedRect,
    RepState,
)

from conftest import frame, grip_rep_frames, make_hand, make_pose



@pytest.fixture
def handler(clock):
    return ConesSessionHandler(clock=clock)


def start_active(handler, session):
    sid = session.session_id
    handler.send_command(sid, "ALIGNMENT_OK")
    handler.send_command(sid, "ZONES_CONFIRMED")
    for _ in range(5):
        result = handler.tick_countdown(sid)
    assert result["finished"] is True
    return sid


def event_types(result):
    return [e["type"] for e in result["events"]]


def test_create_session_uses_defaults(handler):
    session = handler.create_session(exercise_id="task-42")
    assert session.exercise_id == "task-42"
    assert session.config.target_reps == 10
    assert session.config.rep_cooldown_ms == 500
    assert session.config.hold_grip_threshold == pytest.approx(0.12)
    assert session.state == ExerciseState.SETUP_ALIGNMENT
    assert handler.get_session(session.session_id) is session


def test_create_session_rejects_bad_config(handler):
    with pytest.raises(ValueError):
        handler.create_session(hold_grip_threshold=0.3, release_grip_threshold=0.2)
    with pytest.raises(ValueError):
        handler.create_session(mode=ExerciseMode.TARGET_REPS, target_reps=0)
    assert handler.active_sessions == {}


def test_unknown_session(handler):
    assert handler.process_frame("nope", frame()) == {"error": "Session not found"}
    assert handler.send_command("nope", "PAUSE") == {"error": "Session not found"}
    assert handler.get_summary("nope") == {"error": "Session not found"}
    assert handler.complete_session("nope") == {"error": "Session not found"}
    assert handler.cleanup_session("nope") is False


def test_unknown_session_wins_over_bad_command(handler):
    assert handler.send_command("nope", "JUMP") == {"error": "Session not found"}


def test_invalid_commands(handler):
    session = handler.create_session()
    with pytest.raises(ValueError):
        handler.send_command(session.session_id, "FRAME")
    with pytest.raises(ValueError):
        handler.send_command(session.session_id, "JUMP")


def test_ignored_command_reports_not_applied(handler):
    session = handler.create_session()
    result = handler.send_command(session.session_id, "PAUSE")
    assert result["applied"] is False
    assert result["state"]["exercise_state"] == "SETUP_ALIGNMENT"


def test_metrics_start_when_active(handler):
    session = handler.create_session()
    assert session.metrics.started is False
    start_active(handler, session)
    assert session.metrics.started is True


def test_rep_flows_into_metrics(handler, clock):
    session = handler.create_session()
    sid = start_active(handler, session)

    results = [handler.process_frame(sid, f) for f in grip_rep_frames()]

    assert event_types(results[0]) == ["REP_STARTED"]
    assert event_types(results[-1]) == ["REP_COUNTED"]
    assert results[-1]["events"][0]["rep_count"] == 1
    assert session.machine.rep_count == session.metrics.get_rep_count() == 1
    assert results[-1]["progress"] == pytest.approx(10.0)


def test_angle_samples_only_while_carrying(handler, clock):
    session = handler.create_session()
    sid = start_active(handler, session)

    def with_elbow(f, elbow):
        return f.with_changes(angles=JointAngles(elbow_angle_deg=elbow))

    pickup, carry, end, release = grip_rep_frames()
    handler.process_frame(sid, with_elbow(pickup, 179))    # too close to pickup
    clock.advance(100)
    handler.process_frame(sid, with_elbow(pickup, 120))    # still carrying in start zone
    clock.advance(100)
    handler.process_frame(sid, with_elbow(carry, 150))     # now WAIT_DROP
    assert session.machine.rep_state == RepState.WAIT_DROP
    clock.advance(100)
    handler.process_frame(sid, with_elbow(end, 175))       # CONFIRM_RELEASE, not sampled
    clock.advance(100)
    handler.process_frame(sid, with_elbow(release, 178))

    rep = session.metrics.get_reps()[0]
    assert rep.max_elbow_extension == pytest.approx(150)
    assert rep.avg_elbow_extension == pytest.approx(135)
    assert rep.duration_ms == pytest.approx(400)


def test_pause_resume_keeps_metrics(handler, clock):
    session = handler.create_session()
    sid = start_active(handler, session)
    for f in grip_rep_frames():
        handler.process_frame(sid, f)

    handler.send_command(sid, "PAUSE")
    result = handler.send_command(sid, "RESUME")
    assert result["applied"] is True
    assert session.metrics.get_rep_count() == 1
    assert session.state == ExerciseState.ACTIVE


def test_time_up_in_timed_mode(handler, clock):
    session = handler.create_session(mode=ExerciseMode.TIMED, duration_sec=10)
    sid = start_active(handler, session)

    clock.advance(9_000)
    assert handler.process_frame(sid, frame())["state"]["exercise_state"] == "ACTIVE"

    clock.advance(1_000)
    result = handler.process_frame(sid, frame())
    assert result["state"]["exercise_state"] == "COMPLETED"
    assert "SESSION_COMPLETED" in event_types(result)


def test_three_rep_target_records_time_to_target(handler, clock):
    session = handler.create_session(mode=ExerciseMode.TARGET_REPS, target_reps=3)
    sid = start_active(handler, session)

    for _ in range(3):
        for f in grip_rep_frames():
            clock.advance(200)
            result = handler.process_frame(sid, f)

    assert "SESSION_COMPLETED" in event_types(result)
    summary = handler.get_summary(sid)
    assert summary["rep_count"] == 3
    assert summary["time_to_target_reps_sec"] == pytest.approx(2.4)

    clock.advance(5_000)
    assert handler.get_summary(sid)["time_to_target_reps_sec"] == pytest.approx(2.4)


def test_timed_session_without_reps(handler, clock):
    session = handler.create_session(mode=ExerciseMode.TIMED, duration_sec=10)
    sid = start_active(handler, session)

    clock.advance(10_000)
    handler.process_frame(sid, frame())

    assert session.state == ExerciseState.COMPLETED
    summary = handler.get_summary(sid)
    assert summary["rep_count"] == 0
    assert summary["duration_sec"] == pytest.approx(10)
    assert summary["reps_per_minute"] == 0
    assert summary["time_to_target_reps_sec"] is None


def test_target_reps_completes(handler, clock):
    session = handler.create_session(target_reps=1)
    sid = start_active(handler, session)
    results = [handler.process_frame(sid, f) for f in grip_rep_frames()]
    assert event_types(results[-1]) == ["REP_COUNTED", "STATE_CHANGED", "SESSION_COMPLETED"]
    assert session.state == ExerciseState.COMPLETED


def test_complete_session_result(handler, clock):
    session = handler.create_session(exercise_id="task-7")
    sid = start_active(handler, session)
    for f in grip_rep_frames():
        handler.process_frame(sid, f)
    clock.advance(2_000)

    result = handler.complete_session(sid)
    assert result["completed"] is True
    assert result["score"] == 10
    assert result["repetitions"] == 1
    assert result["duration"] == 2
    assert result["metadata"]["practice_type"] == "cones"
    summary = result["metadata"]["session_summary"]
    assert summary["exercise_id"] == "task-7"
    assert summary["rep_count"] == 1
    assert summary["raw_events"]
    assert len(result["metadata"]["reps"]) == 1
    assert result["metadata"]["reps"][0]["rep_index"] == 0


def test_complete_timed_session_score(handler, clock):
    session = handler.create_session(mode=ExerciseMode.TIMED, duration_sec=100)
    sid = start_active(handler, session)
    clock.advance(50_000)
    assert handler.complete_session(sid)["score"] == 50


def test_complete_before_active_is_not_completed(handler):
    session = handler.create_session()
    result = handler.complete_session(session.session_id)
    assert result["completed"] is False
    assert result["repetitions"] == 0
    assert result["score"] == 0


def test_update_zones(handler):
    session = handler.create_session()
    zone = NormalizedRect(0.5, 0.1, 0.6, 0.2)
    result = handler.update_zones(session.session_id, start_zone=zone)
    assert result["start_zone"] == zone.to_dict()
    assert session.config.start_zone == zone
    assert session.config.end_zone.to_dict() == result["end_zone"]


def test_landmarks_drive_alignment(handler):
    session = handler.create_session()
    sid = session.session_id
    for _ in range(30):
        result = handler.process_landmarks(sid, pose_landmarks=make_pose())
    assert result["state"]["exercise_state"] == "SETUP_ZONES"
    assert result["features"]["shoulder_width"] == pytest.approx(0.3)


def test_landmarks_drive_reps(handler, clock):
    session = handler.create_session()
    sid = start_active(handler, session)
    handedness = [{"label": "Right", "score": 0.9}]

    def push(wrist_x, pinch):
        return handler.process_landmarks(
            sid,
            multi_hand_landmarks=[make_hand(wrist_x=wrist_x, wrist_y=0.7, pinch=pinch)],
            multi_handedness=handedness,
        )

    # mirrored x: 0.8 -> start zone, 0.5 -> between zones, 0.2 -> end zone
    push(0.8, 0.05)
    push(0.5, 0.05)
    push(0.2, 0.05)
    result = push(0.2, 0.3)
    assert result["state"]["rep_count"] == 1


def test_status_and_cleanup(handler):
    session = handler.create_session()
    sid = session.session_id
    status = handler.get_session_status(sid)
    assert status["session_id"] == sid
    assert status["prompt"] == "Position yourself in frame. Ensure shoulders and hands are visible."
    assert handler.cleanup_session(sid) is True
    assert handler.get_session(sid) is None
