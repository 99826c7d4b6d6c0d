"""
Shared fixtures for the cones exercise tests.
"""

import pytest

from physio_service.models import (
    Confidence,
    ExerciseConfig,
    ExerciseEvent,
    ExerciseStateMachine,
    FrameFeatures,
)


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


def frame(**changes) -> FrameFeatures:
    """A frame with a detected, correct hand; override any field."""
    base = FrameFeatures(
        pose_ok=True,
        hand_ok=True,
        confidence=Confidence(pose=0.9, hand=0.9),
    )
    return base.with_changes(**changes)


def aligned_frame(**changes) -> FrameFeatures:
    """A frame that passes the shoulder framing check."""
    values = {"shoulder_center_x": 0.5, "shoulder_width": 0.3}
    values.update(changes)
    return frame(**values)


def make_hand(wrist_x=0.8, wrist_y=0.7, pinch=0.3):
    """21 hand landmarks around the wrist with a given thumb-index gap."""
    points = [{"x": wrist_x, "y": wrist_y, "z": 0.0} for _ in range(21)]
    points[3] = {"x": wrist_x - 0.05, "y": wrist_y - 0.05, "z": 0.0}   # thumb ip
    points[4] = {"x": wrist_x, "y": wrist_y - 0.1, "z": 0.0}           # thumb tip
    points[6] = {"x": wrist_x + 0.05, "y": wrist_y - 0.05, "z": 0.0}   # index pip
    points[8] = {"x": wrist_x + pinch, "y": wrist_y - 0.1, "z": 0.0}   # index tip
    points[9] = {"x": wrist_x, "y": wrist_y - 0.1, "z": 0.0}           # middle mcp
    return points


def make_pose(left_shoulder_x=0.35, right_shoulder_x=0.65, visibility=0.9):
    """33 pose landmarks with the shoulders at the given x positions."""
    points = [{"x": 0.5, "y": 0.5, "z": 0.0, "visibility": visibility} for _ in range(33)]
    points[11] = {"x": left_shoulder_x, "y": 0.3, "z": 0.0, "visibility": visibility}
    points[12] = {"x": right_shoulder_x, "y": 0.3, "z": 0.0, "visibility": visibility}
    return points


def to_active(machine: ExerciseStateMachine):
    machine.dispatch(ExerciseEvent.ALIGNMENT_OK)
    machine.dispatch(ExerciseEvent.ZONES_CONFIRMED)
    machine.dispatch(ExerciseEvent.COUNTDOWN_DONE)


def grip_rep_frames():
    """Pickup by grip, carry out of the start zone, reach the end zone, release."""
    return [
        frame(in_start_zone=True, grip=True),
        frame(grip=True),
        frame(in_end_zone=True, grip=True),
        frame(in_end_zone=True, grip=False),
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return ExerciseConfig()


@pytest.fixture
def machine(config, clock):
    return ExerciseStateMachine(config, clock=clock)


@pytest.fixture
def active_machine(machine):
    to_active(machine)
    return machine
