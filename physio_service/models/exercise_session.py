"""
SMARTCARE+ Physio Service - Cones Session Handler

Owns the live cones sessions. Each session pairs one ExerciseStateMachine
with one MetricsCollector (created and destroyed together) plus the
FeatureExtractor that turns raw landmarks into frames.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from core.config import settings

from .coach import get_coach_prompt
from .cones_types import (
    ExerciseConfig,
    ExerciseMode,
    ExerciseState,
    FrameFeatures,
    HandToUse,
    NormalizedRect,
    RepState,
    DEFAULT_END_ZONE,
    DEFAULT_START_ZONE,
)
from .feature_extractor import FeatureExtractor, select_hand
from .metrics_collector import MetricsCollector
from .state_machine import ExerciseEvent, ExerciseStateMachine, wall_clock_ms

logger = logging.getLogger(__name__)


# Events a client may send directly; FRAME, REP_COUNTED and COUNTDOWN_DONE are engine-driven
COMMANDS = {
    ExerciseEvent.ALIGNMENT_OK,
    ExerciseEvent.ZONES_CONFIRMED,
    ExerciseEvent.REQUEST_READY_GATE,
    ExerciseEvent.READY_PRESSED,
    ExerciseEvent.PAUSE,
    ExerciseEvent.RESUME,
    ExerciseEvent.USER_STOP,
    ExerciseEvent.TIME_UP,
}

# Angle samples are only meaningful while the cone is being carried
SAMPLING_REP_STATES = (RepState.CARRYING, RepState.WAIT_DROP)


@dataclass
class ConesSession:
    """One live cones exercise session."""
    session_id: str
    exercise_id: str
    config: ExerciseConfig
    machine: ExerciseStateMachine
    metrics: MetricsCollector
    extractor: FeatureExtractor
    lock: threading.Lock = field(default_factory=threading.Lock)
    last_features: Optional[FrameFeatures] = None
    pending_events: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def state(self) -> ExerciseState:
        return self.machine.exercise_state

    def drain_events(self) -> List[Dict[str, Any]]:
        events, self.pending_events = self.pending_events, []
        return events

    def prompt(self) -> str:
        snapshot = self.machine.get_state()
        return get_coach_prompt(
            snapshot.exercise_state,
            self.last_features,
            self.config.hand_to_use,
            countdown_remaining=snapshot.countdown_remaining,
        )

    def progress_percent(self) -> float:
        """Session progress 0-100 (reps for TargetReps, time for Timed)."""
        if self.config.mode == ExerciseMode.TARGET_REPS:
            return min(100.0, self.machine.rep_count / self.config.target_reps * 100)
        return min(100.0, self.metrics.get_elapsed_sec() / self.config.duration_sec * 100)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "session_id": self.session_id,
            "exercise_id": self.exercise_id,
            "state": self.machine.get_state().to_dict(),
            "config": self.config.to_dict(),
            "prompt": self.prompt(),
            "elapsed_sec": round(self.metrics.get_elapsed_sec(), 3),
            "progress": round(self.progress_percent(), 1),
        }


class ConesSessionHandler:
    """
    Manages cones exercise sessions.

    Features:
    - Session creation with validated configuration
    - Frame and raw-landmark processing
    - UI commands (zones confirmed, ready, pause, resume, stop)
    - Countdown ticks and live zone edits
    - Time limit enforcement in Timed mode
    - Practice result generation
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        """
        Initialize session handler.

        Args:
            clock: millisecond clock shared by every session (wall clock if None)
        """
        self.clock = clock or wall_clock_ms
        self.active_sessions: Dict[str, ConesSession] = {}

    # ═══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    def create_session(
        self,
        exercise_id: Optional[str] = None,
        hand_to_use: HandToUse = HandToUse.RIGHT,
        mode: ExerciseMode = ExerciseMode.TARGET_REPS,
        duration_sec: Optional[float] = None,
        target_reps: Optional[int] = None,
        start_zone: Optional[NormalizedRect] = None,
        end_zone: Optional[NormalizedRect] = None,
        min_pose_confidence: Optional[float] = None,
        min_hand_confidence: Optional[float] = None,
        rep_cooldown_ms: Optional[float] = None,
        hold_grip_threshold: Optional[float] = None,
        release_grip_threshold: Optional[float] = None,
    ) -> ConesSession:
        """
        Create a new cones session. Unset parameters use the configured defaults.

        Raises:
            ValueError: if the resulting configuration is invalid
        """
        config = ExerciseConfig(
            hand_to_use=HandToUse(hand_to_use),
            mode=ExerciseMode(mode),
            duration_sec=_pick(duration_sec, settings.CONES_DURATION_SEC),
            target_reps=_pick(target_reps, settings.CONES_TARGET_REPS),
            start_zone=start_zone or DEFAULT_START_ZONE,
            end_zone=end_zone or DEFAULT_END_ZONE,
            min_pose_confidence=_pick(min_pose_confidence, settings.CONES_MIN_POSE_CONFIDENCE),
            min_hand_confidence=_pick(min_hand_confidence, settings.CONES_MIN_HAND_CONFIDENCE),
            rep_cooldown_ms=_pick(rep_cooldown_ms, settings.CONES_REP_COOLDOWN_MS),
            hold_grip_threshold=_pick(hold_grip_threshold, settings.CONES_HOLD_GRIP_THRESHOLD),
            release_grip_threshold=_pick(release_grip_threshold, settings.CONES_RELEASE_GRIP_THRESHOLD),
        )
        config.validate()

        session_id = str(uuid.uuid4())[:8]
        exercise_id = exercise_id or session_id

        session = ConesSession(
            session_id=session_id,
            exercise_id=exercise_id,
            config=config,
            machine=ExerciseStateMachine(config, clock=self.clock),
            metrics=MetricsCollector(
                exercise_id,
                config.hand_to_use,
                config.mode,
                config.duration_sec,
                config.target_reps,
                clock=self.clock,
            ),
            extractor=FeatureExtractor(config, selfie_mode=settings.CONES_SELFIE_MODE),
        )
        self._wire(session)
        self.active_sessions[session_id] = session

        logger.info(
            f"Created cones session {session_id} ({config.mode.value}, "
            f"{config.hand_to_use.value} hand)"
        )
        return session

    def _wire(self, session: ConesSession):
        machine, metrics = session.machine, session.metrics

        def on_state_change(state: ExerciseState):
            # Resuming from PAUSED must not reset the collected reps
            if state == ExerciseState.ACTIVE and not metrics.started:
                metrics.start()
            elif state in (ExerciseState.PAUSED, ExerciseState.ACTIVE, ExerciseState.COMPLETED):
                if metrics.started:
                    metrics.record_event(state.value)
            session.pending_events.append({"type": "STATE_CHANGED", "state": state.value})
            if state == ExerciseState.COMPLETED:
                session.pending_events.append({
                    "type": "SESSION_COMPLETED",
                    "rep_count": machine.rep_count,
                })

        def on_rep_start():
            metrics.record_rep_start()
            session.pending_events.append({
                "type": "REP_STARTED",
                "rep_index": machine.rep_count,
            })

        def on_rep_counted():
            rep = metrics.record_rep_complete()
            session.pending_events.append({
                "type": "REP_COUNTED",
                "rep_count": machine.rep_count,
                "rep": rep.to_dict(),
            })

        machine.set_on_state_change(on_state_change)
        machine.set_on_rep_start(on_rep_start)
        machine.set_on_rep_counted(on_rep_counted)

    def get_session(self, session_id: str) -> Optional[ConesSession]:
        """Get session by ID."""
        return self.active_sessions.get(session_id)

    def get_session_status(self, session_id: str) -> Dict[str, Any]:
        """Get current session status."""
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        with session.lock:
            return session.to_dict()

    def cleanup_session(self, session_id: str) -> bool:
        """Remove session from active sessions."""
        session = self.active_sessions.pop(session_id, None)
        if session is None:
            return False
        logger.info(f"Removed cones session {session_id}")
        return True

    # ═══════════════════════════════════════════════════════════════════════════
    # FRAMES
    # ═══════════════════════════════════════════════════════════════════════════

    def process_frame(self, session_id: str, features: FrameFeatures) -> Dict[str, Any]:
        """
        Feed one frame of features to the session.

        Returns:
            State snapshot, coach prompt and the events the frame produced
        """
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        with session.lock:
            self._apply_frame(session, features)
            return self._frame_response(session)

    def process_landmarks(
        self,
        session_id: str,
        multi_hand_landmarks: Optional[Sequence[Sequence[Any]]] = None,
        multi_handedness: Optional[Sequence[Dict[str, Any]]] = None,
        pose_landmarks: Optional[Sequence[Any]] = None,
    ) -> Dict[str, Any]:
        """
        Build features from raw MediaPipe output and feed them to the session.

        Alignment features are used while aligning, exercise features otherwise.
        """
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        with session.lock:
            hand, handedness, score = select_hand(
                multi_hand_landmarks, multi_handedness, session.config.hand_to_use
            )
            if session.state == ExerciseState.SETUP_ALIGNMENT:
                features = session.extractor.extract_alignment(pose_landmarks, hand, handedness, score)
            else:
                features = session.extractor.extract_exercise(hand, handedness, score, pose_landmarks)

            self._apply_frame(session, features)
            response = self._frame_response(session)
            response["features"] = features.to_dict()
            return response

    def _apply_frame(self, session: ConesSession, features: FrameFeatures):
        session.last_features = features
        machine = session.machine
        machine.process_frame(features)

        if machine.exercise_state == ExerciseState.ACTIVE and machine.rep_state in SAMPLING_REP_STATES:
            session.metrics.add_angle_sample(features)

        self._check_time_up(session)

    def _check_time_up(self, session: ConesSession):
        if session.config.mode != ExerciseMode.TIMED:
            return
        if session.state != ExerciseState.ACTIVE:
            return
        if session.metrics.get_elapsed_sec() >= session.config.duration_sec:
            logger.info(f"Session {session.session_id} reached its time limit")
            session.machine.dispatch(ExerciseEvent.TIME_UP)

    def _frame_response(self, session: ConesSession) -> Dict[str, Any]:
        return {
            "session_id": session.session_id,
            "state": session.machine.get_state().to_dict(),
            "prompt": session.prompt(),
            "progress": round(session.progress_percent(), 1),
            "events": session.drain_events(),
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # COMMANDS
    # ═══════════════════════════════════════════════════════════════════════════

    def send_command(self, session_id: str, command: str) -> Dict[str, Any]:
        """
        Apply a UI command.

        Raises:
            ValueError: if `command` is not a client command
        """
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        try:
            event = ExerciseEvent(command)
        except ValueError:
            raise ValueError(f"Unknown command: {command}")
        if event not in COMMANDS:
            raise ValueError(f"{event.value} cannot be sent as a command")

        with session.lock:
            applied = session.machine.dispatch(event)
            if not applied:
                logger.debug(f"Command {event.value} ignored in {session.state.value}")
            response = self._frame_response(session)
            response["command"] = event.value
            response["applied"] = applied
            return response

    def tick_countdown(self, session_id: str) -> Dict[str, Any]:
        """Advance the pre-exercise countdown by one second."""
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        with session.lock:
            finished = session.machine.tick_countdown()
            response = self._frame_response(session)
            response["finished"] = finished
            return response

    def update_zones(
        self,
        session_id: str,
        start_zone: Optional[NormalizedRect] = None,
        end_zone: Optional[NormalizedRect] = None
    ) -> Dict[str, Any]:
        """Replace the start and/or end zone; the next frame uses the new zones."""
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        with session.lock:
            session.config.set_zones(start_zone=start_zone, end_zone=end_zone)
            logger.info(f"Zones updated for session {session_id}")
            return {
                "session_id": session_id,
                "start_zone": session.config.start_zone.to_dict(),
                "end_zone": session.config.end_zone.to_dict(),
            }

    # ═══════════════════════════════════════════════════════════════════════════
    # RESULTS
    # ═══════════════════════════════════════════════════════════════════════════

    def get_summary(self, session_id: str, include_events: bool = False) -> Dict[str, Any]:
        """Current session summary (valid at any point, including after stop)."""
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        with session.lock:
            return session.metrics.get_summary(include_events=include_events).to_dict()

    def complete_session(self, session_id: str) -> Dict[str, Any]:
        """
        Stop the session (if running) and build the practice result.

        Returns:
            {completed, score, duration, repetitions, metadata}
        """
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        with session.lock:
            if session.state != ExerciseState.COMPLETED:
                session.machine.dispatch(ExerciseEvent.USER_STOP)
            summary = session.metrics.get_summary(include_events=True)
            result = {
                "completed": session.state == ExerciseState.COMPLETED,
                "score": self._score(session, summary.duration_sec),
                "duration": round(summary.duration_sec),
                "repetitions": session.machine.rep_count,
                "metadata": {
                    "session_summary": summary.to_dict(),
                    "reps": [rep.to_dict() for rep in session.metrics.get_reps()],
                    "practice_type": "cones",
                },
            }

        logger.info(
            f"Cones session {session_id} finished: {result['repetitions']} reps, "
            f"score {result['score']}"
        )
        return result

    @staticmethod
    def _score(session: ConesSession, elapsed_sec: float) -> int:
        config = session.config
        if config.mode == ExerciseMode.TARGET_REPS:
            return round(min(1.0, session.machine.rep_count / config.target_reps) * 100)
        return round(min(1.0, elapsed_sec / config.duration_sec) * 100)


def _pick(value, default):
    return default if value is None else value


# ═══════════════════════════════════════════════════════════════════════════════
# MODULE-LEVEL SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_handler_instance: Optional[ConesSessionHandler] = None


def get_session_handler() -> ConesSessionHandler:
    """Get or create the global session handler instance."""
    global _handler_instance
    if _handler_instance is None:
        _handler_instance = ConesSessionHandler()
    return _handler_instance
