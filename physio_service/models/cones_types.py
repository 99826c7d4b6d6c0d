"""
SMARTCARE+ Physio Service - Cones Exercise Types

Data contracts for the cones transfer exercise: the patient moves cones
from a Start Zone to an End Zone with the prescribed hand while the camera
tracks the hand and upper body.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class HandToUse(str, Enum):
    """Hand prescribed for the exercise."""
    LEFT = "Left"
    RIGHT = "Right"


class ExerciseMode(str, Enum):
    """How the session ends on its own."""
    TIMED = "Timed"
    TARGET_REPS = "TargetReps"


class ExerciseState(str, Enum):
    """Top-level session states."""
    SETUP_ALIGNMENT = "SETUP_ALIGNMENT"
    SETUP_ZONES = "SETUP_ZONES"
    READY_GATE = "READY_GATE"
    COUNTDOWN_3_2_1 = "COUNTDOWN_3_2_1"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class RepState(str, Enum):
    """Repetition sub-states, only advanced while the session is ACTIVE."""
    WAIT_PICKUP = "WAIT_PICKUP"
    CARRYING = "CARRYING"
    WAIT_DROP = "WAIT_DROP"
    CONFIRM_RELEASE = "CONFIRM_RELEASE"


# ═══════════════════════════════════════════════════════════════════════════════
# ZONES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NormalizedRect:
    """Axis-aligned rectangle in normalized (0-1) frame coordinates."""
    x1: float
    y1: float
    x2: float
    y2: float

    def normalized(self) -> "NormalizedRect":
        """Same rectangle with x1<=x2 and y1<=y2."""
        return NormalizedRect(
            x1=min(self.x1, self.x2),
            y1=min(self.y1, self.y2),
            x2=max(self.x1, self.x2),
            y2=max(self.y1, self.y2),
        )

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x1, self.y1, self.x2, self.y2)

    def to_dict(self) -> Dict[str, float]:
        return {"x1": self.x1, "y1": self.y1, "x2": self.x2, "y2": self.y2}


DEFAULT_START_ZONE = NormalizedRect(x1=0.1, y1=0.55, x2=0.35, y2=0.9)
DEFAULT_END_ZONE = NormalizedRect(x1=0.6, y1=0.55, x2=0.9, y2=0.9)


# ═══════════════════════════════════════════════════════════════════════════════
# FRAME FEATURES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class JointAngles:
    """Joint-angle proxies in degrees."""
    elbow_angle_deg: float = 0.0
    shoulder_flexion_deg: float = 0.0
    shoulder_abduction_deg: float = 0.0
    wrist_extension_proxy: float = 0.0


@dataclass(frozen=True)
class Confidence:
    """Detector confidence (0-1)."""
    pose: float = 0.0
    hand: float = 0.0


def _as_bool(value: Any) -> bool:
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return False


def _as_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _as_optional_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


@dataclass(frozen=True)
class FrameFeatures:
    """
    Per-frame measurements produced by the perception layer.

    `wrist_x`/`wrist_y` are meaningless when `hand_ok` is False.
    `shoulder_center_x` and `shoulder_width` are only populated while
    aligning; when missing, the alignment check fails.
    """
    pose_ok: bool = False
    hand_ok: bool = False
    wrist_x: float = 0.5
    wrist_y: float = 0.5
    pinch_dist: float = 1.0
    grip: bool = False
    in_start_zone: bool = False
    in_end_zone: bool = False
    shoulder_center_x: Optional[float] = None
    shoulder_width: Optional[float] = None
    angles: JointAngles = field(default_factory=JointAngles)
    confidence: Confidence = field(default_factory=Confidence)
    selected_hand_landmarks: Optional[Tuple[Tuple[float, float, float], ...]] = None

    def with_changes(self, **changes: Any) -> "FrameFeatures":
        """Copy with some fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FrameFeatures":
        """
        Build from a loosely-typed dict (e.g. a JSON message).

        Missing or malformed fields fall back to the "not ok" defaults
        instead of raising.
        """
        if not isinstance(data, dict):
            data = {}
        angles = data.get("angles") or {}
        confidence = data.get("confidence") or {}
        if not isinstance(angles, dict):
            angles = {}
        if not isinstance(confidence, dict):
            confidence = {}

        return cls(
            pose_ok=_as_bool(data.get("pose_ok")),
            hand_ok=_as_bool(data.get("hand_ok")),
            wrist_x=_as_float(data.get("wrist_x"), 0.5),
            wrist_y=_as_float(data.get("wrist_y"), 0.5),
            pinch_dist=_as_float(data.get("pinch_dist"), 1.0),
            grip=_as_bool(data.get("grip")),
            in_start_zone=_as_bool(data.get("in_start_zone")),
            in_end_zone=_as_bool(data.get("in_end_zone")),
            shoulder_center_x=_as_optional_float(data.get("shoulder_center_x")),
            shoulder_width=_as_optional_float(data.get("shoulder_width")),
            angles=JointAngles(
                elbow_angle_deg=_as_float(angles.get("elbow_angle_deg"), 0.0),
                shoulder_flexion_deg=_as_float(angles.get("shoulder_flexion_deg"), 0.0),
                shoulder_abduction_deg=_as_float(angles.get("shoulder_abduction_deg"), 0.0),
                wrist_extension_proxy=_as_float(angles.get("wrist_extension_proxy"), 0.0),
            ),
            confidence=Confidence(
                pose=_as_float(confidence.get("pose"), 0.0),
                hand=_as_float(confidence.get("hand"), 0.0),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pose_ok": self.pose_ok,
            "hand_ok": self.hand_ok,
            "wrist_x": self.wrist_x,
            "wrist_y": self.wrist_y,
            "pinch_dist": self.pinch_dist,
            "grip": self.grip,
            "in_start_zone": self.in_start_zone,
            "in_end_zone": self.in_end_zone,
            "shoulder_center_x": self.shoulder_center_x,
            "shoulder_width": self.shoulder_width,
            "angles": {
                "elbow_angle_deg": self.angles.elbow_angle_deg,
                "shoulder_flexion_deg": self.angles.shoulder_flexion_deg,
                "shoulder_abduction_deg": self.angles.shoulder_abduction_deg,
                "wrist_extension_proxy": self.angles.wrist_extension_proxy,
            },
            "confidence": {"pose": self.confidence.pose, "hand": self.confidence.hand},
        }


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class ExerciseConfig:
    """
    Therapist-configurable exercise parameters.

    Fixed for the lifetime of a session except `start_zone` and
    `end_zone`, which the zone editor may replace at any time. The state
    machine and the feature extractor read this object live on every
    frame, so edits apply to the next processed frame.
    """
    hand_to_use: HandToUse = HandToUse.RIGHT
    mode: ExerciseMode = ExerciseMode.TARGET_REPS
    duration_sec: float = 300.0
    target_reps: int = 10
    start_zone: NormalizedRect = DEFAULT_START_ZONE
    end_zone: NormalizedRect = DEFAULT_END_ZONE
    min_pose_confidence: float = 0.5
    min_hand_confidence: float = 0.5
    rep_cooldown_ms: float = 500.0
    hold_grip_threshold: float = 0.12
    release_grip_threshold: float = 0.18

    def validate(self):
        """Raise ValueError for parameter combinations the engine cannot honour."""
        if self.hold_grip_threshold > self.release_grip_threshold:
            raise ValueError("hold_grip_threshold must not exceed release_grip_threshold")
        if self.mode == ExerciseMode.TARGET_REPS and self.target_reps < 1:
            raise ValueError("target_reps must be at least 1 in TargetReps mode")
        if self.mode == ExerciseMode.TIMED and self.duration_sec <= 0:
            raise ValueError("duration_sec must be positive in Timed mode")
        if self.rep_cooldown_ms < 0:
            raise ValueError("rep_cooldown_ms must not be negative")
        for name in ("min_pose_confidence", "min_hand_confidence"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1]")

    def set_zones(self, start_zone: Optional[NormalizedRect] = None, end_zone: Optional[NormalizedRect] = None):
        """Replace one or both zones."""
        if start_zone is not None:
            self.start_zone = start_zone
        if end_zone is not None:
            self.end_zone = end_zone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hand_to_use": self.hand_to_use.value,
            "mode": self.mode.value,
            "duration_sec": self.duration_sec,
            "target_reps": self.target_reps,
            "start_zone": self.start_zone.to_dict(),
            "end_zone": self.end_zone.to_dict(),
            "min_pose_confidence": self.min_pose_confidence,
            "min_hand_confidence": self.min_hand_confidence,
            "rep_cooldown_ms": self.rep_cooldown_ms,
            "hold_grip_threshold": self.hold_grip_threshold,
            "release_grip_threshold": self.release_grip_threshold,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# METRICS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PerRepMetrics:
    """Kinematics of one counted repetition."""
    rep_index: int
    pickup_time: float  # ms
    release_time: float  # ms
    duration_ms: float
    max_elbow_extension: float
    avg_elbow_extension: float
    max_shoulder_flexion: float
    max_shoulder_abduction: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rep_index": self.rep_index,
            "pickup_time": self.pickup_time,
            "release_time": self.release_time,
            "duration_ms": self.duration_ms,
            "max_elbow_extension": self.max_elbow_extension,
            "avg_elbow_extension": self.avg_elbow_extension,
            "max_shoulder_flexion": self.max_shoulder_flexion,
            "max_shoulder_abduction": self.max_shoulder_abduction,
        }


@dataclass(frozen=True)
class RangeStat:
    """Max/avg aggregate for one angle category."""
    max: float = 0.0
    avg: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"max": self.max, "avg": self.avg}


@dataclass(frozen=True)
class RangeOfMotion:
    shoulder_flexion: RangeStat = field(default_factory=RangeStat)
    shoulder_abduction: RangeStat = field(default_factory=RangeStat)
    elbow_extension: RangeStat = field(default_factory=RangeStat)

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {
            "shoulder_flexion": self.shoulder_flexion.to_dict(),
            "shoulder_abduction": self.shoulder_abduction.to_dict(),
            "elbow_extension": self.elbow_extension.to_dict(),
        }


@dataclass(frozen=True)
class RawEvent:
    """Timestamped engine event kept for the session record."""
    timestamp: float  # ms
    event: str
    rep_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"timestamp": self.timestamp, "event": self.event}
        if self.rep_index is not None:
            data["rep_index"] = self.rep_index
        return data


@dataclass(frozen=True)
class SessionSummary:
    """Session statistics handed to the caller for persistence."""
    exercise_id: str
    hand_to_use: HandToUse
    duration_sec: float
    rep_count: int
    reps_per_minute: float
    avg_rep_time_sec: float
    min_rep_time_sec: float
    max_rep_time_sec: float
    range_of_motion: RangeOfMotion
    time_to_target_reps_sec: Optional[float] = None
    raw_events: Optional[List[RawEvent]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "exercise_id": self.exercise_id,
            "hand_to_use": self.hand_to_use.value,
            "duration_sec": self.duration_sec,
            "rep_count": self.rep_count,
            "reps_per_minute": self.reps_per_minute,
            "avg_rep_time_sec": self.avg_rep_time_sec,
            "min_rep_time_sec": self.min_rep_time_sec,
            "max_rep_time_sec": self.max_rep_time_sec,
            "time_to_target_reps_sec": self.time_to_target_reps_sec,
            "range_of_motion": self.range_of_motion.to_dict(),
        }
        if self.raw_events is not None:
            data["raw_events"] = [e.to_dict() for e in self.raw_events]
        return data
