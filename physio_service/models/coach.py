"""
SMARTCARE+ Physio Service - Cones Coach Prompts

User-facing guidance text for each stage of a cones session.
"""

from typing import Optional, Union

from .cones_types import ExerciseState, FrameFeatures, HandToUse
from .state_machine import SHOULDER_CENTER_RANGE, SHOULDER_WIDTH_RANGE

ALIGNMENT_OK_PROMPT = "Alignment OK. Proceed."


def _hand_name(hand: Union[HandToUse, str]) -> str:
    return hand.value if isinstance(hand, HandToUse) else str(hand)


def get_alignment_prompt(features: Optional[FrameFeatures], hand: Union[HandToUse, str]) -> str:
    """Tell the user how to fix their framing, most basic problem first."""
    if features is None:
        return "Position yourself in frame. Ensure shoulders and hands are visible."
    if not features.pose_ok:
        return "Step into frame. Keep your upper body visible."
    if not features.hand_ok:
        return f"Show your {_hand_name(hand)} hand to the camera."

    center = features.shoulder_center_x
    if center is not None:
        if center < SHOULDER_CENTER_RANGE[0]:
            return "Move slightly right."
        if center > SHOULDER_CENTER_RANGE[1]:
            return "Move slightly left."

    width = features.shoulder_width
    if width is not None:
        if width > SHOULDER_WIDTH_RANGE[1]:
            return "Please step back."
        if width < SHOULDER_WIDTH_RANGE[0]:
            return "Please step closer."

    return ALIGNMENT_OK_PROMPT


def get_coach_prompt(
    state: ExerciseState,
    features: Optional[FrameFeatures],
    hand: Union[HandToUse, str],
    countdown_remaining: Optional[int] = None
) -> str:
    """Prompt to display for the current session state."""
    state = ExerciseState(state)
    hand_name = _hand_name(hand)

    if state == ExerciseState.SETUP_ALIGNMENT:
        return get_alignment_prompt(features, hand_name)
    if state == ExerciseState.SETUP_ZONES:
        return "Drag the zones to fit your setup, or use Skip for default zones."
    if state == ExerciseState.READY_GATE:
        return f"Hold the first cone with your {hand_name} hand. Press Ready when set."
    if state == ExerciseState.COUNTDOWN_3_2_1:
        if countdown_remaining is not None and countdown_remaining > 0:
            return f"{countdown_remaining}..."
        return "Go!"
    if state == ExerciseState.ACTIVE:
        return "Place cone in target zone. Good job!"
    if state == ExerciseState.PAUSED:
        return "Paused. Press Resume to continue."
    if state == ExerciseState.COMPLETED:
        return "Exercise complete!"
    return ""
