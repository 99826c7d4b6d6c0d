"""
SMARTCARE+ Physio Service - Cones Exercise State Machine

Drives one cones session from camera alignment to completion and counts
repetitions (pick a cone in the Start Zone, carry it, release it in the
End Zone).

Session flow:
    SETUP_ALIGNMENT ──► SETUP_ZONES ──► COUNTDOWN_3_2_1 ──► ACTIVE ⇄ PAUSED
                             │                 ▲               │        │
                             └─► READY_GATE ───┘               └──► COMPLETED

Repetition flow (only while ACTIVE):
    WAIT_PICKUP ──► CARRYING ──► WAIT_DROP ──► CONFIRM_RELEASE ──┐
         ▲                                                        │
         └────────────────────── rep counted ◄───────────────────┘

Pickup and release are each confirmed by EITHER the grip signal OR by the
wrist dwelling in the zone for ZONE_DWELL_FRAMES consecutive frames. Grip
is object dependent and noisy, so dwell is the fallback.

Not thread-safe: feed frames and commands from a single context.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from .cones_types import (
    ExerciseConfig,
    ExerciseMode,
    ExerciseState,
    FrameFeatures,
    RepState,
)

logger = logging.getLogger(__name__)


ALIGNMENT_OK_FRAMES = 30
ZONE_DWELL_FRAMES = 12
COUNTDOWN_SEC = 5

SHOULDER_CENTER_RANGE = (0.4, 0.6)
SHOULDER_WIDTH_RANGE = (0.2, 0.45)


def wall_clock_ms() -> float:
    """Current wall-clock time in milliseconds."""
    return time.time() * 1000.0


class ExerciseEvent(str, Enum):
    """Events accepted by ExerciseStateMachine.dispatch."""
    ALIGNMENT_OK = "ALIGNMENT_OK"
    ZONES_CONFIRMED = "ZONES_CONFIRMED"
    REQUEST_READY_GATE = "REQUEST_READY_GATE"
    READY_PRESSED = "READY_PRESSED"
    COUNTDOWN_DONE = "COUNTDOWN_DONE"
    TIME_UP = "TIME_UP"
    TARGET_REPS_REACHED = "TARGET_REPS_REACHED"
    USER_STOP = "USER_STOP"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    REP_COUNTED = "REP_COUNTED"
    FRAME = "FRAME"


# (event, required current state) -> next state
_TRANSITIONS: Dict[tuple, ExerciseState] = {
    (ExerciseEvent.ALIGNMENT_OK, ExerciseState.SETUP_ALIGNMENT): ExerciseState.SETUP_ZONES,
    (ExerciseEvent.ZONES_CONFIRMED, ExerciseState.SETUP_ZONES): ExerciseState.COUNTDOWN_3_2_1,
    (ExerciseEvent.REQUEST_READY_GATE, ExerciseState.SETUP_ZONES): ExerciseState.READY_GATE,
    (ExerciseEvent.READY_PRESSED, ExerciseState.READY_GATE): ExerciseState.COUNTDOWN_3_2_1,
    (ExerciseEvent.COUNTDOWN_DONE, ExerciseState.COUNTDOWN_3_2_1): ExerciseState.ACTIVE,
    (ExerciseEvent.TIME_UP, ExerciseState.ACTIVE): ExerciseState.COMPLETED,
    (ExerciseEvent.TARGET_REPS_REACHED, ExerciseState.ACTIVE): ExerciseState.COMPLETED,
    (ExerciseEvent.USER_STOP, ExerciseState.ACTIVE): ExerciseState.COMPLETED,
    (ExerciseEvent.USER_STOP, ExerciseState.PAUSED): ExerciseState.COMPLETED,
    (ExerciseEvent.PAUSE, ExerciseState.ACTIVE): ExerciseState.PAUSED,
    (ExerciseEvent.RESUME, ExerciseState.PAUSED): ExerciseState.ACTIVE,
}


@dataclass(frozen=True)
class StateSnapshot:
    """Point-in-time copy of the machine's state."""
    exercise_state: ExerciseState
    rep_state: RepState
    alignment_ok_frames: int
    start_zone_dwell_frames: int
    end_zone_dwell_frames: int
    entered_carrying_by_dwell: bool
    countdown_remaining: int
    rep_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exercise_state": self.exercise_state.value,
            "rep_state": self.rep_state.value,
            "alignment_ok_frames": self.alignment_ok_frames,
            "start_zone_dwell_frames": self.start_zone_dwell_frames,
            "end_zone_dwell_frames": self.end_zone_dwell_frames,
            "entered_carrying_by_dwell": self.entered_carrying_by_dwell,
            "countdown_remaining": self.countdown_remaining,
            "rep_count": self.rep_count,
        }


class ExerciseStateMachine:
    """
    Session lifecycle and repetition counter for the cones exercise.

    Events that are not valid in the current state are ignored; `dispatch`
    returns False for them so callers can log it if they care.

    Args:
        config: live exercise configuration (zones may change mid-session)
        clock: returns the current time in milliseconds
    """

    def __init__(self, config: ExerciseConfig, clock: Optional[Callable[[], float]] = None):
        self.config = config
        self._clock = clock or wall_clock_ms

        self._exercise_state = ExerciseState.SETUP_ALIGNMENT
        self._rep_state = RepState.WAIT_PICKUP
        self._alignment_ok_frames = 0
        self._start_zone_dwell_frames = 0
        self._end_zone_dwell_frames = 0
        self._entered_carrying_by_dwell = False
        self._countdown_remaining = COUNTDOWN_SEC
        self._rep_count = 0
        self._last_rep_time: Optional[float] = None

        self._on_state_change: Optional[Callable[[ExerciseState], None]] = None
        self._on_rep_start: Optional[Callable[[], None]] = None
        self._on_rep_counted: Optional[Callable[[], None]] = None

    # ═══════════════════════════════════════════════════════════════════════════
    # CALLBACKS
    # ═══════════════════════════════════════════════════════════════════════════

    def set_on_state_change(self, cb: Optional[Callable[[ExerciseState], None]]):
        self._on_state_change = cb

    def set_on_rep_start(self, cb: Optional[Callable[[], None]]):
        self._on_rep_start = cb

    def set_on_rep_counted(self, cb: Optional[Callable[[], None]]):
        self._on_rep_counted = cb

    # ═══════════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════════

    @property
    def exercise_state(self) -> ExerciseState:
        return self._exercise_state

    @property
    def rep_state(self) -> RepState:
        return self._rep_state

    @property
    def rep_count(self) -> int:
        return self._rep_count

    def get_state(self) -> StateSnapshot:
        return StateSnapshot(
            exercise_state=self._exercise_state,
            rep_state=self._rep_state,
            alignment_ok_frames=self._alignment_ok_frames,
            start_zone_dwell_frames=self._start_zone_dwell_frames,
            end_zone_dwell_frames=self._end_zone_dwell_frames,
            entered_carrying_by_dwell=self._entered_carrying_by_dwell,
            countdown_remaining=self._countdown_remaining,
            rep_count=self._rep_count,
        )

    def dispatch(
        self,
        event: Union[ExerciseEvent, str],
        features: Optional[FrameFeatures] = None
    ) -> bool:
        """
        Apply one event.

        Args:
            event: ExerciseEvent or its string value
            features: required for FRAME, ignored otherwise

        Returns:
            True if the event was applied, False if it was ignored
        """
        try:
            event = ExerciseEvent(event)
        except ValueError:
            logger.debug(f"Ignoring unknown event {event!r}")
            return False

        if event == ExerciseEvent.FRAME:
            if features is None:
                return False
            return self._process_frame(features)

        if event == ExerciseEvent.REP_COUNTED:
            return self._count_rep()

        next_state = _TRANSITIONS.get((event, self._exercise_state))
        if next_state is None:
            logger.debug(f"Ignoring {event.value} in {self._exercise_state.value}")
            return False

        if next_state == ExerciseState.COUNTDOWN_3_2_1:
            self._countdown_remaining = COUNTDOWN_SEC
        self._set_state(next_state)
        return True

    def enter_ready_gate(self) -> bool:
        """Explicitly route SETUP_ZONES to READY_GATE (user-confirmed start)."""
        return self.dispatch(ExerciseEvent.REQUEST_READY_GATE)

    def process_frame(self, features: FrameFeatures) -> bool:
        """Shorthand for dispatch(FRAME, features)."""
        return self.dispatch(ExerciseEvent.FRAME, features)

    def tick_countdown(self) -> bool:
        """
        Advance the countdown by one second.

        Returns:
            True if this tick finished the countdown (session now ACTIVE)
        """
        if self._exercise_state != ExerciseState.COUNTDOWN_3_2_1:
            return False
        self._countdown_remaining -= 1
        if self._countdown_remaining <= 0:
            self._countdown_remaining = 0
            self.dispatch(ExerciseEvent.COUNTDOWN_DONE)
            return True
        return False

    # ═══════════════════════════════════════════════════════════════════════════
    # INTERNALS
    # ═══════════════════════════════════════════════════════════════════════════

    def _set_state(self, state: ExerciseState):
        previous = self._exercise_state
        self._exercise_state = state
        logger.info(f"Exercise state {previous.value} -> {state.value}")
        if self._on_state_change:
            self._on_state_change(state)

    def _process_frame(self, features: FrameFeatures) -> bool:
        if self._exercise_state == ExerciseState.SETUP_ALIGNMENT:
            self._process_alignment(features)
            return True
        if self._exercise_state == ExerciseState.ACTIVE:
            self._process_rep(features)
            return True
        return False

    def _is_aligned(self, features: FrameFeatures) -> bool:
        if not features.pose_ok or not features.hand_ok:
            return False
        if features.confidence.pose < self.config.min_pose_confidence:
            return False
        if features.confidence.hand < self.config.min_hand_confidence:
            return False

        center = features.shoulder_center_x
        width = features.shoulder_width
        if center is None or width is None:
            return False
        center_ok = SHOULDER_CENTER_RANGE[0] <= center <= SHOULDER_CENTER_RANGE[1]
        width_ok = SHOULDER_WIDTH_RANGE[0] <= width <= SHOULDER_WIDTH_RANGE[1]
        return center_ok and width_ok

    def _process_alignment(self, features: FrameFeatures):
        if not self._is_aligned(features):
            if self._alignment_ok_frames:
                logger.debug(f"Alignment lost after {self._alignment_ok_frames} frames")
            self._alignment_ok_frames = 0
            return

        self._alignment_ok_frames += 1
        if self._alignment_ok_frames >= ALIGNMENT_OK_FRAMES:
            self.dispatch(ExerciseEvent.ALIGNMENT_OK)

    def _cooldown_passed(self) -> bool:
        if self._last_rep_time is None:
            return True
        return self._clock() - self._last_rep_time >= self.config.rep_cooldown_ms

    def _abort_rep(self, reason: str):
        logger.debug(f"Repetition aborted in {self._rep_state.value}: {reason}")
        self._rep_state = RepState.WAIT_PICKUP
        self._start_zone_dwell_frames = 0
        self._end_zone_dwell_frames = 0
        self._entered_carrying_by_dwell = False

    def _process_rep(self, f: FrameFeatures):
        by_dwell = self._entered_carrying_by_dwell

        if self._rep_state == RepState.WAIT_PICKUP:
            if f.in_start_zone and f.hand_ok:
                self._start_zone_dwell_frames += 1
            else:
                self._start_zone_dwell_frames = 0

            pickup_by_grip = f.in_start_zone and f.grip
            pickup_by_dwell = self._start_zone_dwell_frames >= ZONE_DWELL_FRAMES
            if pickup_by_grip or pickup_by_dwell:
                self._rep_state = RepState.CARRYING
                self._start_zone_dwell_frames = 0
                self._end_zone_dwell_frames = 0
                self._entered_carrying_by_dwell = pickup_by_dwell
                logger.debug(f"Pickup by {'dwell' if pickup_by_dwell else 'grip'}")
                if self._on_rep_start:
                    self._on_rep_start()

        elif self._rep_state == RepState.CARRYING:
            # Dwell pickups ignore grip loss; the object may never register a pinch.
            if not by_dwell and not f.grip and f.in_start_zone:
                self._abort_rep("grip lost in start zone")
            elif not f.in_start_zone:
                self._rep_state = RepState.WAIT_DROP

        elif self._rep_state == RepState.WAIT_DROP:
            if not by_dwell and not f.grip and not f.in_end_zone:
                self._abort_rep("grip lost before end zone")
                return

            if f.in_end_zone and f.hand_ok:
                self._end_zone_dwell_frames += 1
            else:
                self._end_zone_dwell_frames = 0

            if f.in_end_zone and (self._end_zone_dwell_frames >= ZONE_DWELL_FRAMES or f.grip):
                self._rep_state = RepState.CONFIRM_RELEASE

        elif self._rep_state == RepState.CONFIRM_RELEASE:
            if f.in_end_zone and f.hand_ok:
                self._end_zone_dwell_frames += 1
            else:
                self._end_zone_dwell_frames = 0

            release_by_grip = not f.grip and f.in_end_zone
            release_by_dwell = self._end_zone_dwell_frames >= ZONE_DWELL_FRAMES
            if self._cooldown_passed() and (release_by_grip or release_by_dwell):
                self._end_zone_dwell_frames = 0
                self.dispatch(ExerciseEvent.REP_COUNTED)
            elif not f.grip and not f.in_end_zone:
                self._abort_rep("grip lost outside end zone")

    def _count_rep(self) -> bool:
        if self._exercise_state != ExerciseState.ACTIVE:
            logger.debug(f"Ignoring REP_COUNTED in {self._exercise_state.value}")
            return False

        self._rep_count += 1
        self._last_rep_time = self._clock()
        logger.info(f"Repetition {self._rep_count} counted")
        if self._on_rep_counted:
            self._on_rep_counted()

        self._rep_state = RepState.WAIT_PICKUP
        self._entered_carrying_by_dwell = False

        if (
            self.config.mode == ExerciseMode.TARGET_REPS
            and self._rep_count >= self.config.target_reps
        ):
            self.dispatch(ExerciseEvent.TARGET_REPS_REACHED)
        return True
