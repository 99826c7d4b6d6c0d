"""
SMARTCARE+ Physio Service Models

Cones exercise engine: repetition state machine, metrics, feature
extraction from MediaPipe landmarks and session management.
"""

from .cones_types import (
    HandToUse,
    ExerciseMode,
    ExerciseState,
    RepState,
    NormalizedRect,
    JointAngles,
    Confidence,
    FrameFeatures,
    ExerciseConfig,
    PerRepMetrics,
    RangeStat,
    RangeOfMotion,
    RawEvent,
    SessionSummary,
    DEFAULT_START_ZONE,
    DEFAULT_END_ZONE,
)

from .state_machine import (
    ExerciseEvent,
    ExerciseStateMachine,
    StateSnapshot,
    ALIGNMENT_OK_FRAMES,
    ZONE_DWELL_FRAMES,
    COUNTDOWN_SEC,
)

from .metrics_collector import MetricsCollector

from .feature_extractor import (
    FeatureExtractor,
    GripHysteresis,
    Landmark,
    PoseLandmark,
    HandLandmark,
    select_hand,
)

from .coach import get_alignment_prompt, get_coach_prompt

from .exercise_session import (
    ConesSession,
    ConesSessionHandler,
    get_session_handler,
)

__all__ = [
    # Types
    "HandToUse",
    "ExerciseMode",
    "ExerciseState",
    "RepState",
    "NormalizedRect",
    "JointAngles",
    "Confidence",
    "FrameFeatures",
    "ExerciseConfig",
    "PerRepMetrics",
    "RangeStat",
    "RangeOfMotion",
    "RawEvent",
    "SessionSummary",
    "DEFAULT_START_ZONE",
    "DEFAULT_END_ZONE",
    # State Machine
    "ExerciseEvent",
    "ExerciseStateMachine",
    "StateSnapshot",
    "ALIGNMENT_OK_FRAMES",
    "ZONE_DWELL_FRAMES",
    "COUNTDOWN_SEC",
    # Metrics
    "MetricsCollector",
    # Feature Extraction
    "FeatureExtractor",
    "GripHysteresis",
    "Landmark",
    "PoseLandmark",
    "HandLandmark",
    "select_hand",
    # Coach
    "get_alignment_prompt",
    "get_coach_prompt",
    # Sessions
    "ConesSession",
    "ConesSessionHandler",
    "get_session_handler",
]
