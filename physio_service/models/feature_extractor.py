"""
SMARTCARE+ Physio Service - Cones Feature Extractor

Turns already-detected MediaPipe landmarks into the per-frame FrameFeatures
consumed by the cones state machine.

Two modes, matching how the camera client runs the models:
- alignment: pose (33 points) + hands, used during SETUP_ALIGNMENT
- exercise: hands only (21 points), optionally enriched with pose angles

Landmark detection itself happens on the client; this module only does the
geometry.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .cones_types import (
    Confidence,
    ExerciseConfig,
    FrameFeatures,
    HandToUse,
    JointAngles,
)
from .geometry import angle_3d, angle_deg, distance, heading_deg, point_in_rect

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# LANDMARKS
# ═══════════════════════════════════════════════════════════════════════════════

class PoseLandmark(IntEnum):
    """MediaPipe pose indices used by the cones exercise."""
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_HIP = 23
    RIGHT_HIP = 24


class HandLandmark(IntEnum):
    """MediaPipe hand indices used by the cones exercise."""
    WRIST = 0
    THUMB_IP = 3
    THUMB_TIP = 4
    INDEX_PIP = 6
    INDEX_TIP = 8
    MIDDLE_MCP = 9


MIN_HAND_POINTS = 9
MIN_ALIGNMENT_POSE_POINTS = 17
MIN_VISIBILITY = 0.5
# Confidence reported when it comes from landmark visibility instead of a model score
VISIBILITY_CONFIDENCE = 0.8
DEFAULT_HANDEDNESS_SCORE = 0.5


@dataclass
class Landmark:
    """A single landmark with normalized coordinates and visibility."""
    x: float
    y: float
    z: float = 0.0
    visibility: float = 0.0

    def to_numpy(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])

    def as_list(self) -> List[float]:
        return [self.x, self.y, self.z]

    @classmethod
    def parse(cls, value: Any) -> "Landmark":
        """Accept a Landmark, a {x, y, z, visibility} dict or an [x, y, z] sequence."""
        if isinstance(value, Landmark):
            return value
        if isinstance(value, dict):
            return cls(
                x=float(value.get("x", 0.0)),
                y=float(value.get("y", 0.0)),
                z=float(value.get("z") or 0.0),
                visibility=float(value.get("visibility") or 0.0),
            )
        coords = list(value)
        return cls(
            x=float(coords[0]),
            y=float(coords[1]),
            z=float(coords[2]) if len(coords) > 2 else 0.0,
            visibility=float(coords[3]) if len(coords) > 3 else 0.0,
        )


def parse_landmarks(values: Optional[Sequence[Any]]) -> Optional[List[Landmark]]:
    if not values:
        return None
    return [Landmark.parse(v) for v in values]


def _as_tuples(landmarks: Optional[List[Landmark]]) -> Optional[Tuple[Tuple[float, float, float], ...]]:
    if not landmarks:
        return None
    return tuple((lm.x, lm.y, lm.z) for lm in landmarks)


def _visibility(landmarks: List[Landmark], index: int) -> float:
    if index >= len(landmarks):
        return 0.0
    return landmarks[index].visibility


def select_hand(
    multi_hand_landmarks: Optional[Sequence[Sequence[Any]]],
    multi_handedness: Optional[Sequence[Dict[str, Any]]],
    hand_to_use: HandToUse
) -> Tuple[Optional[List[Landmark]], Optional[str], float]:
    """
    Pick the detected hand matching `hand_to_use`, falling back to the first one.

    Returns:
        (landmarks, handedness label, handedness score); (None, None, 0.0)
        when nothing was detected
    """
    if not multi_hand_landmarks or not multi_handedness:
        return None, None, 0.0

    want = HandToUse(hand_to_use).value
    idx = next(
        (i for i, h in enumerate(multi_handedness) if h.get("label") == want),
        0
    )
    if idx >= len(multi_hand_landmarks):
        idx = 0

    info = multi_handedness[idx]
    score = info.get("score")
    return (
        parse_landmarks(multi_hand_landmarks[idx]),
        info.get("label"),
        float(score) if score is not None else DEFAULT_HANDEDNESS_SCORE,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# GRIP
# ═══════════════════════════════════════════════════════════════════════════════

class GripHysteresis:
    """
    Debounced grip from thumb-index pinch distance.

    Below `hold` the hand is gripping, above `release` it is open; inside
    the band the previous value is kept.
    """

    def __init__(self, hold: float, release: float):
        self.hold = hold
        self.release = release
        self.gripping = False

    def update(self, pinch_dist: float) -> bool:
        if pinch_dist < self.hold:
            self.gripping = True
        elif pinch_dist > self.release:
            self.gripping = False
        return self.gripping

    def reset(self):
        self.gripping = False


# ═══════════════════════════════════════════════════════════════════════════════
# EXTRACTOR
# ═══════════════════════════════════════════════════════════════════════════════

class FeatureExtractor:
    """
    Builds FrameFeatures for one session.

    Zones and grip thresholds are read from the live config on every call,
    so zone edits apply to the next frame. Stateful only through the grip
    hysteresis.

    Args:
        config: session configuration (shared with the state machine)
        selfie_mode: landmarks come from a mirrored camera; zone tests use 1 - x
    """

    def __init__(self, config: ExerciseConfig, selfie_mode: bool = True):
        self.config = config
        self.selfie_mode = selfie_mode
        self.grip = GripHysteresis(config.hold_grip_threshold, config.release_grip_threshold)

    def _zone_x(self, x: float) -> float:
        return 1.0 - x if self.selfie_mode else x

    def _side(self) -> Tuple[int, int, int, int]:
        """(shoulder, elbow, wrist, hip) pose indices for the exercising side."""
        if self.config.hand_to_use == HandToUse.LEFT:
            return (PoseLandmark.LEFT_SHOULDER, PoseLandmark.LEFT_ELBOW,
                    PoseLandmark.LEFT_WRIST, PoseLandmark.LEFT_HIP)
        return (PoseLandmark.RIGHT_SHOULDER, PoseLandmark.RIGHT_ELBOW,
                PoseLandmark.RIGHT_WRIST, PoseLandmark.RIGHT_HIP)

    def extract_exercise(
        self,
        hand_landmarks: Optional[Sequence[Any]],
        handedness: Optional[str],
        hand_confidence: float,
        pose_landmarks: Optional[Sequence[Any]] = None
    ) -> FrameFeatures:
        """
        Features for an ACTIVE frame.

        Without pose landmarks, the elbow angle is approximated by the
        thumb-wrist-index opening and shoulder angles stay 0.
        """
        hand = parse_landmarks(hand_landmarks)
        pose = parse_landmarks(pose_landmarks)

        detected = hand is not None and len(hand) >= MIN_HAND_POINTS and bool(handedness)
        correct_hand = handedness == self.config.hand_to_use.value

        changes: Dict[str, Any] = {
            "pose_ok": detected,
            "hand_ok": detected and correct_hand,
            "confidence": Confidence(pose=0.0, hand=float(hand_confidence or 0.0)),
            "selected_hand_landmarks": _as_tuples(hand),
        }
        if not hand or len(hand) <= HandLandmark.INDEX_TIP:
            # no pinch to measure; a new hand starts open
            self.grip.reset()
            return FrameFeatures(**changes)

        self.grip.hold = self.config.hold_grip_threshold
        self.grip.release = self.config.release_grip_threshold

        wrist = hand[HandLandmark.WRIST]
        pinch = distance(hand[HandLandmark.THUMB_TIP].as_list(), hand[HandLandmark.INDEX_TIP].as_list())
        zone_x = self._zone_x(wrist.x)

        elbow = angle_deg(
            (hand[HandLandmark.THUMB_IP].x, hand[HandLandmark.THUMB_IP].y),
            (wrist.x, wrist.y),
            (hand[HandLandmark.INDEX_PIP].x, hand[HandLandmark.INDEX_PIP].y),
        )
        wrist_ext = 0.0
        if len(hand) > HandLandmark.MIDDLE_MCP:
            mcp = hand[HandLandmark.MIDDLE_MCP]
            wrist_ext = heading_deg((wrist.x, wrist.y), (mcp.x, mcp.y))

        flexion, abduction = 0.0, 0.0
        pose_angles = self._pose_angles(pose)
        if pose_angles is not None:
            elbow, flexion, abduction = pose_angles

        changes.update(
            wrist_x=wrist.x,
            wrist_y=wrist.y,
            pinch_dist=pinch,
            grip=self.grip.update(pinch),
            in_start_zone=point_in_rect(zone_x, wrist.y, self.config.start_zone),
            in_end_zone=point_in_rect(zone_x, wrist.y, self.config.end_zone),
            angles=JointAngles(
                elbow_angle_deg=elbow,
                shoulder_flexion_deg=flexion,
                shoulder_abduction_deg=abduction,
                wrist_extension_proxy=wrist_ext,
            ),
        )
        return FrameFeatures(**changes)

    def _pose_angles(self, pose: Optional[List[Landmark]]) -> Optional[Tuple[float, float, float]]:
        """(elbow, shoulder flexion, shoulder abduction) from pose, or None if not visible."""
        if not pose:
            return None
        shoulder_i, elbow_i, wrist_i, hip_i = self._side()
        if any(_visibility(pose, i) < MIN_VISIBILITY for i in (shoulder_i, elbow_i, wrist_i, hip_i)):
            return None

        shoulder, elbow, wrist, hip = pose[shoulder_i], pose[elbow_i], pose[wrist_i], pose[hip_i]
        elbow_angle = angle_3d(shoulder.to_numpy(), elbow.to_numpy(), wrist.to_numpy())
        # Abduction lives in the camera (frontal) plane, flexion in the depth (sagittal) plane
        abduction = angle_deg((hip.x, hip.y), (shoulder.x, shoulder.y), (elbow.x, elbow.y))
        flexion = angle_deg((hip.z, hip.y), (shoulder.z, shoulder.y), (elbow.z, elbow.y))
        return elbow_angle, flexion, abduction

    def extract_alignment(
        self,
        pose_landmarks: Optional[Sequence[Any]],
        hand_landmarks: Optional[Sequence[Any]],
        handedness: Optional[str],
        hand_confidence: float
    ) -> FrameFeatures:
        """Features for a SETUP_ALIGNMENT frame (shoulder framing + hand visibility)."""
        hand = parse_landmarks(hand_landmarks)
        pose = parse_landmarks(pose_landmarks)

        hand_ok = False
        hand_conf = 0.0
        wrist_x, wrist_y = 0.5, 0.5
        selected = None

        detected = hand is not None and len(hand) >= MIN_HAND_POINTS and bool(handedness)
        if detected and handedness == self.config.hand_to_use.value:
            hand_ok = True
            hand_conf = float(hand_confidence or 0.0)
            wrist_x, wrist_y = hand[HandLandmark.WRIST].x, hand[HandLandmark.WRIST].y
            selected = _as_tuples(hand)

        if not pose or len(pose) < MIN_ALIGNMENT_POSE_POINTS:
            return FrameFeatures(
                hand_ok=hand_ok,
                wrist_x=wrist_x,
                wrist_y=wrist_y,
                confidence=Confidence(pose=0.0, hand=hand_conf),
                selected_hand_landmarks=selected,
            )

        def visible(*indices: int) -> bool:
            return all(_visibility(pose, i) >= MIN_VISIBILITY for i in indices)

        shoulders = visible(PoseLandmark.LEFT_SHOULDER, PoseLandmark.RIGHT_SHOULDER)
        pose_ok = (
            shoulders
            and visible(PoseLandmark.LEFT_ELBOW, PoseLandmark.RIGHT_ELBOW)
            and visible(PoseLandmark.LEFT_WRIST, PoseLandmark.RIGHT_WRIST)
        )

        _, _, wrist_i, _ = self._side()
        pose_wrist_visible = visible(wrist_i)
        if not hand_ok:
            hand_ok = pose_wrist_visible
            if pose_wrist_visible:
                wrist_x, wrist_y = pose[wrist_i].x, pose[wrist_i].y
        if hand_conf == 0.0 and pose_wrist_visible:
            hand_conf = VISIBILITY_CONFIDENCE

        center_x, width = None, None
        if shoulders:
            left = pose[PoseLandmark.LEFT_SHOULDER]
            right = pose[PoseLandmark.RIGHT_SHOULDER]
            center_x = (left.x + right.x) / 2
            width = abs(left.x - right.x)

        return FrameFeatures(
            pose_ok=pose_ok,
            hand_ok=hand_ok,
            wrist_x=wrist_x,
            wrist_y=wrist_y,
            shoulder_center_x=center_x,
            shoulder_width=width,
            confidence=Confidence(
                pose=VISIBILITY_CONFIDENCE if shoulders else 0.0,
                hand=hand_conf,
            ),
            selected_hand_landmarks=selected,
        )
