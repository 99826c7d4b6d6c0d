"""
SMARTCARE+ Physio Service - Cones Metrics Collector

Collects per-repetition kinematics and session statistics for one cones
session. Driven by the state machine callbacks:

    on_rep_start   -> record_rep_start()
    frames while a rep is in flight -> add_angle_sample()
    on_rep_counted -> record_rep_complete()
"""

import logging
from typing import Callable, List, Optional

import numpy as np

from .cones_types import (
    ExerciseMode,
    FrameFeatures,
    HandToUse,
    PerRepMetrics,
    RangeOfMotion,
    RangeStat,
    RawEvent,
    SessionSummary,
)
from .state_machine import wall_clock_ms

logger = logging.getLogger(__name__)

# Samples this close to the pickup are transition noise
MIN_SAMPLE_DELAY_MS = 50


class MetricsCollector:
    """
    Accumulates repetition metrics for a session.

    Args:
        exercise_id: identifier copied into the summary
        hand_to_use: exercising hand
        mode: Timed or TargetReps
        duration_sec: configured session length (Timed mode)
        target_reps: configured repetition goal (TargetReps mode)
        clock: returns the current time in milliseconds
    """

    def __init__(
        self,
        exercise_id: str,
        hand_to_use: HandToUse,
        mode: ExerciseMode,
        duration_sec: float,
        target_reps: int,
        clock: Optional[Callable[[], float]] = None
    ):
        self.exercise_id = exercise_id
        self.hand_to_use = HandToUse(hand_to_use)
        self.mode = ExerciseMode(mode)
        self.duration_sec = duration_sec
        self.target_reps = target_reps
        self._clock = clock or wall_clock_ms

        self._start_time: Optional[float] = None
        self._rep_count = 0
        self._reps: List[PerRepMetrics] = []
        self._current_rep_start: Optional[float] = None
        self._elbow_samples: List[float] = []
        self._flexion_samples: List[float] = []
        self._abduction_samples: List[float] = []
        self._time_to_target_sec: Optional[float] = None
        self._events: List[RawEvent] = []

    @property
    def started(self) -> bool:
        return self._start_time is not None

    def start(self):
        """Begin (or restart) timing and clear all collected data."""
        self._start_time = self._clock()
        self._rep_count = 0
        self._reps = []
        self._current_rep_start = None
        self._clear_samples()
        self._time_to_target_sec = None
        self._events = [RawEvent(timestamp=self._start_time, event="SESSION_STARTED")]
        logger.info(f"Metrics started for exercise {self.exercise_id}")

    def record_rep_start(self):
        now = self._clock()
        self._current_rep_start = now
        self._clear_samples()
        self._events.append(RawEvent(timestamp=now, event="REP_STARTED", rep_index=self._rep_count))

    def add_angle_sample(self, features: FrameFeatures) -> bool:
        """
        Buffer the frame's angles for the current repetition.

        Returns:
            True if the sample was kept
        """
        if self._current_rep_start is None:
            return False
        if self._clock() - self._current_rep_start < MIN_SAMPLE_DELAY_MS:
            return False

        angles = features.angles
        self._elbow_samples.append(angles.elbow_angle_deg)
        self._flexion_samples.append(angles.shoulder_flexion_deg)
        self._abduction_samples.append(angles.shoulder_abduction_deg)
        return True

    def record_rep_complete(self) -> PerRepMetrics:
        now = self._clock()
        # A rep counted without a recorded start has zero duration
        pickup = self._current_rep_start if self._current_rep_start is not None else now

        rep = PerRepMetrics(
            rep_index=self._rep_count,
            pickup_time=pickup,
            release_time=now,
            duration_ms=now - pickup,
            max_elbow_extension=_max(self._elbow_samples),
            avg_elbow_extension=_mean(self._elbow_samples),
            max_shoulder_flexion=_max(self._flexion_samples),
            max_shoulder_abduction=_max(self._abduction_samples),
        )
        self._reps.append(rep)
        self._rep_count += 1
        self._current_rep_start = None
        self._clear_samples()
        self._events.append(RawEvent(timestamp=now, event="REP_COUNTED", rep_index=rep.rep_index))

        if (
            self.mode == ExerciseMode.TARGET_REPS
            and self._rep_count >= self.target_reps
            and self._time_to_target_sec is None
        ):
            self._time_to_target_sec = self.get_elapsed_sec()
            self._events.append(RawEvent(timestamp=now, event="TARGET_REACHED", rep_index=rep.rep_index))

        logger.debug(
            f"Rep {rep.rep_index} metrics: {rep.duration_ms:.0f}ms, "
            f"elbow max {rep.max_elbow_extension:.1f}"
        )
        return rep

    def record_event(self, event: str):
        """Append a free-form session event (pause, resume, stop) to the log."""
        self._events.append(RawEvent(timestamp=self._clock(), event=event))

    def get_rep_count(self) -> int:
        return self._rep_count

    def get_reps(self) -> List[PerRepMetrics]:
        return list(self._reps)

    def get_elapsed_sec(self) -> float:
        if self._start_time is None:
            return 0.0
        return (self._clock() - self._start_time) / 1000.0

    def get_summary(self, include_events: bool = False) -> SessionSummary:
        elapsed = self.get_elapsed_sec()
        durations = [r.duration_ms / 1000.0 for r in self._reps]

        range_of_motion = RangeOfMotion(
            shoulder_flexion=RangeStat(
                max=_max([r.max_shoulder_flexion for r in self._reps]),
                avg=_mean([r.max_shoulder_flexion for r in self._reps]),
            ),
            shoulder_abduction=RangeStat(
                max=_max([r.max_shoulder_abduction for r in self._reps]),
                avg=_mean([r.max_shoulder_abduction for r in self._reps]),
            ),
            elbow_extension=RangeStat(
                max=_max([r.max_elbow_extension for r in self._reps]),
                avg=_mean([r.avg_elbow_extension for r in self._reps]),
            ),
        )

        return SessionSummary(
            exercise_id=self.exercise_id,
            hand_to_use=self.hand_to_use,
            duration_sec=elapsed,
            rep_count=self._rep_count,
            reps_per_minute=(self._rep_count / elapsed) * 60 if elapsed > 0 else 0.0,
            avg_rep_time_sec=_mean(durations),
            min_rep_time_sec=_min(durations),
            max_rep_time_sec=_max(durations),
            range_of_motion=range_of_motion,
            time_to_target_reps_sec=self._time_to_target_sec,
            raw_events=list(self._events) if include_events else None,
        )

    def _clear_samples(self):
        self._elbow_samples = []
        self._flexion_samples = []
        self._abduction_samples = []


def _max(values: List[float]) -> float:
    return float(np.max(values)) if values else 0.0


def _min(values: List[float]) -> float:
    return float(np.min(values)) if values else 0.0


def _mean(values: List[float]) -> float:
    return float(np.mean(values)) if values else 0.0
